"""Outbound live stream: frame rendering and the encoder subprocess."""

from thoughtcast.encoder.frames import FrameRenderer
from thoughtcast.encoder.process import (
    EncoderError,
    EncoderParams,
    EncoderProcessManager,
    EncoderUnavailableError,
    build_ffmpeg_command,
    probe_encoder,
)

__all__ = [
    "EncoderError",
    "EncoderParams",
    "EncoderProcessManager",
    "EncoderUnavailableError",
    "FrameRenderer",
    "build_ffmpeg_command",
    "probe_encoder",
]
