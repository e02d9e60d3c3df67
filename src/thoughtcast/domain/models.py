"""Core domain models for the thoughtcast system.

These models represent the data flowing through the engine: the live
run configuration, inbound control commands from viewers, outbound
broadcast events, and the state enumerations of the scheduler and the
encoder subsystem.
"""

from __future__ import annotations

import enum
import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class SchedulerState(str, enum.Enum):
    """Lifecycle of the typing scheduler."""

    IDLE = "idle"
    REQUESTING = "requesting"  # Waiting on the content source
    TYPING = "typing"  # Emitting the pending response character by character
    STOPPED = "stopped"  # Halted by the cycle or duration limit


class EncoderState(str, enum.Enum):
    """Lifecycle of the external encoder process."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    CRASHED = "crashed"


class FeedResult(str, enum.Enum):
    """Outcome of handing one frame to the encoder."""

    ACCEPTED = "accepted"
    BACKPRESSURE = "backpressure"  # Accepted, but the oldest queued frame was dropped
    REJECTED = "rejected"  # Encoder is not running


# ---------------------------------------------------------------------------
# Run configuration
# ---------------------------------------------------------------------------


class RunConfig(BaseModel):
    """Active configuration of a broadcast run.

    Immutable: every change produces a new instance through merged(),
    so readers never observe a half-applied update. Serialized with the
    camelCase names viewers use on the wire.
    """

    model_config = ConfigDict(
        frozen=True, alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )

    duration: float = Field(default=5, ge=0, description="Wall-clock limit in minutes, 0 = none")
    cycles: int = Field(default=15, ge=0, description="Cycle limit, 0 = unlimited")
    typing_speed: float = Field(default=0.06, gt=0, description="Seconds per typed character")
    terminal_width: int = Field(default=70, gt=0, description="Characters per line")
    max_lines: int = Field(default=100, gt=0, description="Scrollback capacity in lines")
    font_size: int = Field(default=16, gt=0)
    show_thinking: bool = Field(default=True)
    enable_streaming: bool = Field(default=True)
    debug_mode: bool = Field(default=False)

    @property
    def duration_seconds(self) -> float | None:
        return self.duration * 60.0 if self.duration > 0 else None

    def merged(self, update: ConfigUpdate) -> RunConfig:
        """Return a new config with the fields present in update replaced.

        Raises:
            pydantic.ValidationError: If the merged config is invalid. The
                current config is left untouched in that case.
        """
        changes = update.model_dump(exclude_none=True)
        return RunConfig.model_validate({**self.model_dump(), **changes})


class ConfigUpdate(BaseModel):
    """A partial RunConfig; fields left as None are not touched."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    duration: float | None = None
    cycles: int | None = None
    typing_speed: float | None = None
    terminal_width: int | None = None
    max_lines: int | None = None
    font_size: int | None = None
    show_thinking: bool | None = None
    enable_streaming: bool | None = None
    debug_mode: bool | None = None


# ---------------------------------------------------------------------------
# Inbound viewer commands (discriminated union)
# ---------------------------------------------------------------------------


class StartCommand(BaseModel):
    type: Literal["start"] = "start"


class StopCommand(BaseModel):
    type: Literal["stop"] = "stop"


class StartStreamCommand(BaseModel):
    type: Literal["start-stream"] = "start-stream"


class StopStreamCommand(BaseModel):
    type: Literal["stop-stream"] = "stop-stream"


class ConfigureCommand(ConfigUpdate):
    type: Literal["configure"] = "configure"

    def to_update(self) -> ConfigUpdate:
        return ConfigUpdate.model_validate(self.model_dump(exclude={"type"}))


class HeartbeatCommand(BaseModel):
    type: Literal["heartbeat"] = "heartbeat"


Command = Annotated[
    Union[
        StartCommand,
        StopCommand,
        StartStreamCommand,
        StopStreamCommand,
        ConfigureCommand,
        HeartbeatCommand,
    ],
    Field(discriminator="type"),
]

_COMMAND_ADAPTER: TypeAdapter[Command] = TypeAdapter(Command)

# Message names sent by earlier versions of the viewer page
LEGACY_COMMAND_ALIASES = {
    "startStream": "start",
    "stopStream": "stop",
    "startYouTubeStream": "start-stream",
    "stopYouTubeStream": "stop-stream",
    "configUpdate": "configure",
    "ping": "heartbeat",
}


def parse_command(raw: str | bytes | dict[str, Any]) -> Command:
    """Parse an inbound viewer message into a typed command.

    Raises:
        ValueError: If the message is not valid JSON, not an object, or
            not a recognized command (pydantic.ValidationError is a
            ValueError subclass).
    """
    data = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    kind = data.get("type")
    if isinstance(kind, str) and kind in LEGACY_COMMAND_ALIASES:
        data = {**data, "type": LEGACY_COMMAND_ALIASES[kind]}
    return _COMMAND_ADAPTER.validate_python(data)


# ---------------------------------------------------------------------------
# Outbound broadcast events
# ---------------------------------------------------------------------------


class Event(BaseModel):
    """Base class for server -> viewer events."""

    model_config = ConfigDict(frozen=True)

    type: str

    def to_message(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class StatusEvent(Event):
    type: Literal["status"] = "status"
    message: str


class StreamStatusEvent(Event):
    type: Literal["streamStatus"] = "streamStatus"
    message: str


class TerminalContentEvent(Event):
    type: Literal["terminalContent"] = "terminalContent"
    lines: tuple[str, ...]


class FrameUpdateEvent(Event):
    type: Literal["frameUpdate"] = "frameUpdate"
    count: int


class CycleUpdateEvent(Event):
    type: Literal["cycleUpdate"] = "cycleUpdate"
    count: int


class ConfigUpdateEvent(Event):
    type: Literal["configUpdate"] = "configUpdate"
    config: RunConfig

    def to_message(self) -> dict[str, Any]:
        # Config fields travel flat next to the type key
        return {"type": self.type, **self.config.model_dump(mode="json", by_alias=True)}


class LogEvent(Event):
    type: Literal["log"] = "log"
    message: str


class HeartbeatAckEvent(Event):
    type: Literal["heartbeatAck"] = "heartbeatAck"


class PingEvent(Event):
    """Liveness probe; any reply from the viewer confirms it."""

    type: Literal["ping"] = "ping"


class DebugEvent(Event):
    type: Literal["debug"] = "debug"
    debug: dict[str, str]


# ---------------------------------------------------------------------------
# Encoder results
# ---------------------------------------------------------------------------


class EncoderResult(BaseModel):
    """Outcome of an encoder start/stop request."""

    model_config = ConfigDict(frozen=True)

    ok: bool
    message: str
