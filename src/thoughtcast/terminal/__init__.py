"""Simulated terminal: the scrollback buffer and the typing scheduler."""

from thoughtcast.terminal.buffer import FrameBuffer
from thoughtcast.terminal.scheduler import TypingScheduler

__all__ = ["FrameBuffer", "TypingScheduler"]
