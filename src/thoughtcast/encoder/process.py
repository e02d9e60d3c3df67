"""Lifecycle management for the external encoder subprocess.

The encoder (ffmpeg by default) reads raw frames on stdin and pushes a
live stream to an ingest URL. The manager owns the single process handle
and guarantees:

- at most one live encoder at a time (enforced by the state machine)
- bounded frame queueing with a drop-oldest policy under backpressure
- crash detection without implicit restarts
- shutdown by closing stdin -> SIGTERM -> SIGKILL, always ending STOPPED
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections import deque
from collections.abc import Callable

from pydantic import BaseModel, ConfigDict, Field

from thoughtcast.domain.models import EncoderResult, EncoderState, FeedResult

logger = logging.getLogger(__name__)

_LINE_SPLIT = re.compile(r"[\r\n]+")


class EncoderParams(BaseModel):
    """Encoding parameters passed to the encoder at launch."""

    model_config = ConfigDict(frozen=True)

    width: int = Field(default=1280, gt=0)
    height: int = Field(default=720, gt=0)
    fps: int = Field(default=30, gt=0)
    video_bitrate: str = Field(default="3000k")
    bufsize: str = Field(default="6000k")
    audio_bitrate: str = Field(default="160k")
    preset: str = Field(default="veryfast")

    @property
    def frame_size(self) -> int:
        """Bytes in one rgb24 frame."""
        return self.width * self.height * 3


def build_ffmpeg_command(
    target: str, params: EncoderParams, executable: str = "ffmpeg"
) -> list[str]:
    """Build the ffmpeg argv for rgb24 frames on stdin -> FLV/RTMP."""
    return [
        executable,
        "-hide_banner",
        "-loglevel", "warning",
        "-f", "rawvideo",
        "-pix_fmt", "rgb24",
        "-s", f"{params.width}x{params.height}",
        "-r", str(params.fps),
        "-i", "pipe:0",
        "-f", "lavfi",
        "-i", "anullsrc=channel_layout=stereo:sample_rate=44100",
        "-c:v", "libx264",
        "-preset", params.preset,
        "-maxrate", params.video_bitrate,
        "-bufsize", params.bufsize,
        "-g", str(params.fps * 2),
        "-pix_fmt", "yuv420p",
        "-c:a", "aac",
        "-b:a", params.audio_bitrate,
        "-ar", "44100",
        "-shortest",
        "-f", "flv",
        target,
    ]


CommandFactory = Callable[[str, EncoderParams], list[str]]
StateCallback = Callable[[EncoderState, str], None]


class EncoderError(Exception):
    """Raised when the encoder cannot be operated."""


class EncoderUnavailableError(EncoderError):
    """Raised when the encoder executable cannot be run at all."""


async def probe_encoder(executable: str = "ffmpeg", timeout: float = 10.0) -> str:
    """Run ``<executable> -version`` and return the first line of its output.

    Raises:
        EncoderUnavailableError: If the executable cannot be spawned or fails.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            executable, "-version",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise EncoderUnavailableError(
            f"Failed to run {executable}: {e}. Is it installed and in PATH?"
        ) from e
    try:
        out, err = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise EncoderUnavailableError(f"{executable} -version timed out") from None
    if proc.returncode != 0:
        detail = err.decode("utf-8", errors="replace").strip().split("\n")[0]
        raise EncoderUnavailableError(
            f"{executable} -version failed with code {proc.returncode}: {detail}"
        )
    return out.decode("utf-8", errors="replace").strip().split("\n")[0]


class EncoderProcessManager:
    """Owns the encoder subprocess: start, feed, monitor, stop.

    Example:
        manager = EncoderProcessManager(on_state_change=notify)
        await manager.start("rtmp://a.rtmp.youtube.com/live2/KEY", EncoderParams())
        manager.feed(frame_bytes)
        ...
        await manager.stop()
    """

    def __init__(
        self,
        command_factory: CommandFactory = build_ffmpeg_command,
        queue_size: int = 60,
        stop_grace: float = 1.0,
        kill_grace: float = 5.0,
        on_state_change: StateCallback | None = None,
        stderr_tail: int = 50,
    ) -> None:
        self._command_factory = command_factory
        self._queue_size = queue_size
        self._stop_grace = stop_grace
        self._kill_grace = kill_grace
        self._on_state_change = on_state_change

        self._state = EncoderState.STOPPED
        self._process: asyncio.subprocess.Process | None = None
        self._launches = 0
        self._frames: deque[bytes] = deque(maxlen=queue_size)
        self._frames_ready = asyncio.Event()
        self._dropped = 0
        self._last_exit_code: int | None = None
        self._diagnostics: deque[str] = deque(maxlen=stderr_tail)
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def state(self) -> EncoderState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is EncoderState.RUNNING

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    @property
    def launches(self) -> int:
        """Number of encoder processes spawned by this manager."""
        return self._launches

    @property
    def dropped_frames(self) -> int:
        return self._dropped

    @property
    def queued_frames(self) -> int:
        return len(self._frames)

    @property
    def last_exit_code(self) -> int | None:
        return self._last_exit_code

    @property
    def diagnostics(self) -> list[str]:
        """Most recent lines of the encoder's diagnostic output."""
        return list(self._diagnostics)

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    async def start(self, target: str, params: EncoderParams) -> EncoderResult:
        """Launch the encoder unless one is already live."""
        if self._state in (EncoderState.RUNNING, EncoderState.STARTING):
            return EncoderResult(ok=False, message=f"Encoder already {self._state.value}")
        if self._state is EncoderState.STOPPING:
            return EncoderResult(ok=False, message="Encoder is still stopping")

        self._set_state(EncoderState.STARTING, "Launching encoder")
        command = self._command_factory(target, params)
        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except (OSError, ValueError) as e:
            message = f"Failed to launch encoder: {e}"
            logger.error(message)
            self._set_state(EncoderState.STOPPED, message)
            return EncoderResult(ok=False, message=message)

        self._launches += 1
        if self._state is not EncoderState.STARTING:
            # stop() arrived while the process was being spawned
            await self._terminate(proc)
            self._set_state(EncoderState.STOPPED, "Encoder start cancelled")
            return EncoderResult(ok=False, message="Encoder start cancelled")

        self._process = proc
        self._frames.clear()
        self._frames_ready.clear()
        self._dropped = 0
        self._diagnostics.clear()
        loop = asyncio.get_running_loop()
        self._tasks = [
            loop.create_task(self._drain_diagnostics(proc), name="encoder-stderr"),
            loop.create_task(self._write_frames(proc), name="encoder-stdin"),
            loop.create_task(self._watch_exit(proc), name="encoder-watch"),
        ]
        message = f"Encoder running (pid={proc.pid})"
        self._set_state(EncoderState.RUNNING, message)
        return EncoderResult(ok=True, message=message)

    # ------------------------------------------------------------------
    # Feed
    # ------------------------------------------------------------------

    def feed(self, frame: bytes) -> FeedResult:
        """Queue one frame for the encoder without blocking.

        When the queue is full the oldest queued frame is dropped and
        BACKPRESSURE is returned.
        """
        if self._state is not EncoderState.RUNNING:
            return FeedResult.REJECTED
        full = len(self._frames) >= self._queue_size
        if full:
            self._dropped += 1
        self._frames.append(frame)
        self._frames_ready.set()
        return FeedResult.BACKPRESSURE if full else FeedResult.ACCEPTED

    async def _write_frames(self, proc: asyncio.subprocess.Process) -> None:
        stdin = proc.stdin
        if stdin is None:
            return
        try:
            while True:
                while not self._frames:
                    self._frames_ready.clear()
                    await self._frames_ready.wait()
                stdin.write(self._frames.popleft())
                await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.warning("Encoder input closed: %s", e)

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    async def _drain_diagnostics(self, proc: asyncio.subprocess.Process) -> None:
        stream = proc.stderr
        if stream is None:
            return
        partial = ""
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                break
            partial += chunk.decode("utf-8", errors="replace")
            *lines, partial = _LINE_SPLIT.split(partial)
            for line in lines:
                if line.strip():
                    self._diagnostics.append(line)
                    logger.debug("encoder: %s", line)
        if partial.strip():
            self._diagnostics.append(partial)

    async def _watch_exit(self, proc: asyncio.subprocess.Process) -> None:
        code = await proc.wait()
        if self._process is not proc or self._state is not EncoderState.RUNNING:
            return
        # Let the stderr drain pick up the final diagnostics
        await asyncio.sleep(0)
        self._last_exit_code = code
        self._process = None
        self._cancel_tasks()
        self._frames.clear()
        message = f"Encoder exited unexpectedly with code {code}"
        logger.error("%s; last output: %s", message, " | ".join(self.diagnostics[-5:]))
        self._set_state(EncoderState.CRASHED, message)

    # ------------------------------------------------------------------
    # Stop
    # ------------------------------------------------------------------

    async def stop(self) -> EncoderResult:
        """Stop the encoder. The state changes to STOPPING before any await."""
        if self._state is EncoderState.STARTING:
            self._set_state(EncoderState.STOPPING, "Stop requested during startup")
            return EncoderResult(ok=True, message="Encoder start cancelled")
        if self._state is EncoderState.CRASHED:
            self._set_state(EncoderState.STOPPED, "Encoder crash acknowledged")
            return EncoderResult(ok=True, message="Encoder was not running")
        if self._state is not EncoderState.RUNNING or self._process is None:
            return EncoderResult(ok=False, message="No active encoder to stop")

        proc = self._process
        self._set_state(EncoderState.STOPPING, "Stopping encoder")
        code: int | None = None
        try:
            self._cancel_tasks()
            code = await self._terminate(proc)
        finally:
            self._last_exit_code = code
            self._process = None
            self._frames.clear()
            self._set_state(EncoderState.STOPPED, f"Encoder stopped (exit code {code})")
        return EncoderResult(ok=True, message=f"Encoder stopped (exit code {code})")

    async def _terminate(self, proc: asyncio.subprocess.Process) -> int:
        """Close stdin, then escalate SIGTERM -> SIGKILL. Always reaps the process."""
        if proc.stdin is not None and not proc.stdin.is_closing():
            proc.stdin.close()
        try:
            return await asyncio.wait_for(proc.wait(), timeout=self._stop_grace)
        except asyncio.TimeoutError:
            pass

        logger.info("Encoder still alive after closing input, sending SIGTERM")
        try:
            proc.terminate()
        except ProcessLookupError:
            pass
        try:
            return await asyncio.wait_for(proc.wait(), timeout=self._kill_grace)
        except asyncio.TimeoutError:
            pass

        logger.warning("Encoder ignored SIGTERM, sending SIGKILL")
        try:
            proc.kill()
        except ProcessLookupError:
            pass
        return await proc.wait()

    def _cancel_tasks(self) -> None:
        current = asyncio.current_task()
        for task in self._tasks:
            if task is not current and not task.done():
                task.cancel()
        self._tasks = []

    def _set_state(self, state: EncoderState, message: str) -> None:
        self._state = state
        logger.info("Encoder %s: %s", state.value, message)
        if self._on_state_change is not None:
            self._on_state_change(state, message)
