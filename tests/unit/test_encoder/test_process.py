"""Tests for the EncoderProcessManager lifecycle.

A child Python process stands in for ffmpeg so the full spawn, feed,
crash and shutdown paths run against a real subprocess.
"""

from __future__ import annotations

import asyncio
import signal
import stat

import pytest

from conftest import CONSUMER_SCRIPT, CRASH_SCRIPT, STUBBORN_SCRIPT, python_command
from thoughtcast.domain.models import EncoderState, FeedResult
from thoughtcast.encoder.process import (
    EncoderParams,
    EncoderProcessManager,
    EncoderUnavailableError,
    build_ffmpeg_command,
    probe_encoder,
)

SLEEPER_SCRIPT = "import time\ntime.sleep(30)\n"


async def _wait_for_state(manager: EncoderProcessManager, state: EncoderState, timeout: float = 5.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while manager.state is not state:
        if loop.time() > deadline:
            raise AssertionError(f"encoder stuck in {manager.state}, expected {state}")
        await asyncio.sleep(0.01)


class TestBuildFfmpegCommand:
    """Test the ffmpeg argument list."""

    def test_reads_raw_frames_and_pushes_flv(self) -> None:
        params = EncoderParams(width=640, height=360, fps=25)
        cmd = build_ffmpeg_command("rtmp://ingest/live2/KEY", params, executable="/opt/ffmpeg")

        assert cmd[0] == "/opt/ffmpeg"
        assert cmd[-1] == "rtmp://ingest/live2/KEY"
        assert cmd[cmd.index("-s") + 1] == "640x360"
        assert cmd[cmd.index("-r") + 1] == "25"
        assert cmd[cmd.index("-pix_fmt") + 1] == "rgb24"
        assert "pipe:0" in cmd
        assert cmd[cmd.index("-c:v") + 1] == "libx264"
        assert cmd[cmd.index("-f", cmd.index("-c:a")) + 1] == "flv"

    def test_frame_size(self) -> None:
        assert EncoderParams(width=4, height=2).frame_size == 24


class TestEncoderProcessManager:
    """Test start, feed, crash detection and the shutdown ladder."""

    @pytest.mark.asyncio
    async def test_start_and_graceful_stop(self, small_params: EncoderParams) -> None:
        states: list[EncoderState] = []
        manager = EncoderProcessManager(
            command_factory=python_command(CONSUMER_SCRIPT),
            on_state_change=lambda state, message: states.append(state),
        )

        result = await manager.start("rtmp://ingest/KEY", small_params)
        assert result.ok
        assert manager.is_running
        assert manager.pid is not None
        assert manager.feed(b"\x00" * small_params.frame_size) is FeedResult.ACCEPTED

        result = await manager.stop()
        assert result.ok
        assert manager.state is EncoderState.STOPPED
        assert manager.last_exit_code == 0
        assert manager.pid is None
        assert states == [
            EncoderState.STARTING,
            EncoderState.RUNNING,
            EncoderState.STOPPING,
            EncoderState.STOPPED,
        ]

    @pytest.mark.asyncio
    async def test_second_start_is_refused(self, small_params: EncoderParams) -> None:
        manager = EncoderProcessManager(command_factory=python_command(CONSUMER_SCRIPT))
        await manager.start("rtmp://ingest/KEY", small_params)

        result = await manager.start("rtmp://ingest/KEY", small_params)

        assert not result.ok
        assert "already running" in result.message
        assert manager.launches == 1
        await manager.stop()

    @pytest.mark.asyncio
    async def test_launch_failure_returns_to_stopped(self, small_params: EncoderParams) -> None:
        manager = EncoderProcessManager(
            command_factory=lambda target, params: ["/nonexistent/encoder-binary"]
        )

        result = await manager.start("rtmp://ingest/KEY", small_params)

        assert not result.ok
        assert "Failed to launch encoder" in result.message
        assert manager.state is EncoderState.STOPPED
        assert manager.launches == 0

    @pytest.mark.asyncio
    async def test_stop_during_startup_ends_stopped(self, small_params: EncoderParams) -> None:
        states: list[EncoderState] = []
        manager = EncoderProcessManager(
            command_factory=python_command(CONSUMER_SCRIPT),
            stop_grace=0.5,
            on_state_change=lambda state, message: states.append(state),
        )

        starting = asyncio.create_task(manager.start("rtmp://ingest/KEY", small_params))
        await asyncio.sleep(0)
        assert manager.state is EncoderState.STARTING

        stopped = await manager.stop()
        assert stopped.ok
        assert stopped.message == "Encoder start cancelled"
        assert manager.state is EncoderState.STOPPING

        started = await starting
        assert not started.ok
        assert manager.state is EncoderState.STOPPED
        assert manager.launches == 1
        assert manager.pid is None
        assert states == [EncoderState.STARTING, EncoderState.STOPPING, EncoderState.STOPPED]

    @pytest.mark.asyncio
    async def test_crash_is_detected_without_restart(self, small_params: EncoderParams) -> None:
        messages: list[str] = []
        manager = EncoderProcessManager(
            command_factory=python_command(CRASH_SCRIPT),
            on_state_change=lambda state, message: messages.append(message),
        )
        await manager.start("rtmp://ingest/KEY", small_params)

        await _wait_for_state(manager, EncoderState.CRASHED)
        await asyncio.sleep(0.2)

        assert manager.state is EncoderState.CRASHED
        assert manager.last_exit_code == 3
        assert manager.launches == 1
        assert "fatal: ingest refused" in manager.diagnostics
        assert messages[-1] == "Encoder exited unexpectedly with code 3"
        assert manager.feed(b"frame") is FeedResult.REJECTED

        result = await manager.stop()
        assert result.ok
        assert manager.state is EncoderState.STOPPED

    @pytest.mark.asyncio
    async def test_restart_after_crash(self, small_params: EncoderParams) -> None:
        scripts = iter([CRASH_SCRIPT, CONSUMER_SCRIPT])
        manager = EncoderProcessManager(
            command_factory=lambda target, params: python_command(next(scripts))(target, params)
        )
        await manager.start("rtmp://ingest/KEY", small_params)
        await _wait_for_state(manager, EncoderState.CRASHED)

        result = await manager.start("rtmp://ingest/KEY", small_params)

        assert result.ok
        assert manager.is_running
        assert manager.launches == 2
        await manager.stop()

    @pytest.mark.asyncio
    async def test_sigterm_when_input_close_is_ignored(self, small_params: EncoderParams) -> None:
        manager = EncoderProcessManager(
            command_factory=python_command(SLEEPER_SCRIPT), stop_grace=0.2, kill_grace=2.0
        )
        await manager.start("rtmp://ingest/KEY", small_params)

        await manager.stop()

        assert manager.state is EncoderState.STOPPED
        assert manager.last_exit_code == -signal.SIGTERM

    @pytest.mark.asyncio
    async def test_sigkill_when_sigterm_is_ignored(self, small_params: EncoderParams) -> None:
        manager = EncoderProcessManager(
            command_factory=python_command(STUBBORN_SCRIPT), stop_grace=0.2, kill_grace=0.2
        )
        await manager.start("rtmp://ingest/KEY", small_params)
        # Give the child time to install its SIGTERM handler
        await asyncio.sleep(0.5)

        await manager.stop()

        assert manager.state is EncoderState.STOPPED
        assert manager.last_exit_code == -signal.SIGKILL

    @pytest.mark.asyncio
    async def test_feed_drops_oldest_under_backpressure(self, small_params: EncoderParams) -> None:
        manager = EncoderProcessManager(
            command_factory=python_command(SLEEPER_SCRIPT), queue_size=3, stop_grace=0.1
        )
        await manager.start("rtmp://ingest/KEY", small_params)

        # No await between feeds, so the writer cannot drain the queue
        results = [manager.feed(bytes([i]) * 4) for i in range(5)]

        assert results == [FeedResult.ACCEPTED] * 3 + [FeedResult.BACKPRESSURE] * 2
        assert manager.dropped_frames == 2
        assert manager.queued_frames == 3
        await manager.stop()
        assert manager.queued_frames == 0

    @pytest.mark.asyncio
    async def test_feed_rejected_when_not_running(self) -> None:
        manager = EncoderProcessManager()
        assert manager.feed(b"frame") is FeedResult.REJECTED

    @pytest.mark.asyncio
    async def test_stop_without_encoder(self) -> None:
        manager = EncoderProcessManager()
        result = await manager.stop()
        assert not result.ok
        assert manager.state is EncoderState.STOPPED


class TestProbeEncoder:
    """Test the encoder availability probe."""

    @pytest.mark.asyncio
    async def test_probe_reports_first_line(self, tmp_path) -> None:
        script = tmp_path / "fake-ffmpeg"
        script.write_text("#!/bin/sh\necho 'ffmpeg version 6.1-test'\necho 'built with gcc'\n")
        script.chmod(script.stat().st_mode | stat.S_IEXEC)

        assert await probe_encoder(str(script)) == "ffmpeg version 6.1-test"

    @pytest.mark.asyncio
    async def test_probe_missing_executable(self) -> None:
        with pytest.raises(EncoderUnavailableError, match="Is it installed"):
            await probe_encoder("/nonexistent/ffmpeg")

    @pytest.mark.asyncio
    async def test_probe_failing_executable(self, tmp_path) -> None:
        script = tmp_path / "broken-ffmpeg"
        script.write_text("#!/bin/sh\necho 'missing libx264' >&2\nexit 1\n")
        script.chmod(script.stat().st_mode | stat.S_IEXEC)

        with pytest.raises(EncoderUnavailableError, match="missing libx264"):
            await probe_encoder(str(script))
