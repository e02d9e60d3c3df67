"""Viewer fan-out: session tracking, event delivery, and liveness checks."""

from thoughtcast.broadcast.hub import BroadcastHub, CommandHandler, ViewerSession

__all__ = ["BroadcastHub", "CommandHandler", "ViewerSession"]
