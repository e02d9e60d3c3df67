"""Shared test fixtures for the thoughtcast test suite.

Provides common fixtures used across the unit tests: fast run
configurations, scripted content sources, recording viewer transports,
and stand-in encoder commands built on the current Python interpreter.
"""

from __future__ import annotations

import sys
from typing import Any

import pytest

from thoughtcast.config.settings import EncoderConfig, HubConfig, Settings
from thoughtcast.domain.models import Event, RunConfig
from thoughtcast.encoder.process import EncoderParams
from thoughtcast.generator.base import ContentSource, GenerationError, GenerationParams
from thoughtcast.generator.scripted import ScriptedContentSource


# ---------------------------------------------------------------------------
# Run Configuration Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fast_config() -> RunConfig:
    """A RunConfig that types quickly and has no duration limit."""
    return RunConfig(duration=0, cycles=1, typing_speed=0.001, show_thinking=False)


@pytest.fixture
def fast_settings(tmp_path) -> Settings:
    """Settings tuned for tests: quick timers, tiny frames, no static dir."""
    return Settings(
        server={"static_dir": str(tmp_path / "missing")},
        run=RunConfig(duration=0, cycles=1, typing_speed=0.001, show_thinking=False),
        hub=HubConfig(heartbeat_interval=3600),
        encoder=EncoderConfig(
            executable=sys.executable,
            stream_key="test-key",
            width=32,
            height=16,
            fps=50,
            stop_grace=0.5,
            kill_grace=0.5,
        ),
    )


# ---------------------------------------------------------------------------
# Content Source Fixtures
# ---------------------------------------------------------------------------


class FailingContentSource(ContentSource):
    """Raises GenerationError on every request."""

    def __init__(self, message: str = "upstream unavailable") -> None:
        super().__init__(model="failing")
        self._message = message
        self.calls = 0

    async def generate(self, prompt: str, params: GenerationParams) -> str:
        self.calls += 1
        raise GenerationError(self._message, provider="test")


@pytest.fixture
def hi_source() -> ScriptedContentSource:
    """Always answers "hi"."""
    return ScriptedContentSource(passages=["hi"])


@pytest.fixture
def failing_source() -> FailingContentSource:
    return FailingContentSource()


# ---------------------------------------------------------------------------
# Event / Transport Fixtures
# ---------------------------------------------------------------------------


class EventRecorder:
    """Collects published events; usable as a scheduler publish callback."""

    def __init__(self) -> None:
        self.events: list[Event] = []

    def __call__(self, event: Event) -> None:
        self.events.append(event)

    def of_type(self, kind: str) -> list[Event]:
        return [e for e in self.events if e.type == kind]


class RecordingTransport:
    """A viewer transport that records everything sent to it."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: list[dict[str, Any]] = []
        self.closed_with: int | None = None
        self._fail = fail

    async def send_json(self, data: Any) -> None:
        if self._fail:
            raise ConnectionResetError("viewer went away")
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.closed_with = code

    def types(self) -> list[str]:
        return [m["type"] for m in self.sent]


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


# ---------------------------------------------------------------------------
# Encoder Fixtures
# ---------------------------------------------------------------------------

# Reads stdin until EOF, like an encoder consuming frames
CONSUMER_SCRIPT = "import sys\nwhile sys.stdin.buffer.read(65536):\n    pass\n"

# Exits with code 3 after writing a diagnostic line
CRASH_SCRIPT = "import sys, time\nsys.stderr.write('fatal: ingest refused\\n')\nsys.stderr.flush()\ntime.sleep(0.2)\nsys.exit(3)\n"

# Ignores stdin EOF and SIGTERM, so only SIGKILL ends it
STUBBORN_SCRIPT = (
    "import signal, time\n"
    "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
    "while True:\n"
    "    time.sleep(0.1)\n"
)


def python_command(script: str):
    """Command factory running ``script`` in a child Python process."""

    def factory(target: str, params: EncoderParams) -> list[str]:
        return [sys.executable, "-c", script]

    return factory


@pytest.fixture
def small_params() -> EncoderParams:
    return EncoderParams(width=4, height=2, fps=10)
