"""Domain models for thoughtcast.

This package contains the core data structures, enumerations, and value
objects used throughout the system. All models use Pydantic v2 for
validation and serialization.
"""

from thoughtcast.domain.models import (
    Command,
    ConfigUpdate,
    EncoderResult,
    EncoderState,
    Event,
    FeedResult,
    RunConfig,
    SchedulerState,
    parse_command,
)

__all__ = [
    "Command",
    "ConfigUpdate",
    "EncoderResult",
    "EncoderState",
    "Event",
    "FeedResult",
    "RunConfig",
    "SchedulerState",
    "parse_command",
]
