"""The live terminal broadcast engine.

Owns the shared state (scrollback, run configuration, encoder handle)
and wires the components together:

    ContentSource -> TypingScheduler -> FrameBuffer
        -> BroadcastHub (every viewer)
        -> FrameRenderer -> EncoderProcessManager (ingest endpoint)

Everything runs on one asyncio event loop, which is the single
coordination point for the shared state.
"""

from __future__ import annotations

import asyncio
import logging
from functools import partial

from pydantic import ValidationError

from thoughtcast.broadcast.hub import BroadcastHub, ViewerSession, ViewerTransport
from thoughtcast.config.settings import Settings
from thoughtcast.domain.models import (
    ConfigUpdate,
    ConfigUpdateEvent,
    CycleUpdateEvent,
    DebugEvent,
    EncoderState,
    Event,
    FeedResult,
    FrameUpdateEvent,
    LogEvent,
    RunConfig,
    StatusEvent,
    StreamStatusEvent,
    TerminalContentEvent,
)
from thoughtcast.encoder.frames import FrameRenderer
from thoughtcast.encoder.process import (
    CommandFactory,
    EncoderParams,
    EncoderProcessManager,
    EncoderUnavailableError,
    build_ffmpeg_command,
    probe_encoder,
)
from thoughtcast.generator.base import ContentSource, GenerationParams
from thoughtcast.terminal.buffer import FrameBuffer
from thoughtcast.terminal.scheduler import TypingScheduler

logger = logging.getLogger(__name__)

STREAM_STATUS = {
    EncoderState.STARTING: "Connecting...",
    EncoderState.RUNNING: "Live",
    EncoderState.STOPPING: "Stopping...",
    EncoderState.STOPPED: "Off",
    EncoderState.CRASHED: "Error",
}


class LiveTerminalEngine:
    """Coordinates typing, viewer fan-out, and the outbound stream.

    Implements the command handler the BroadcastHub routes viewer
    commands to.
    """

    def __init__(
        self,
        settings: Settings,
        source: ContentSource,
        command_factory: CommandFactory | None = None,
    ) -> None:
        self._settings = settings
        self._source = source
        self._config: RunConfig = settings.run

        self._buffer = FrameBuffer(self._config.terminal_width, self._config.max_lines)
        self._hub = BroadcastHub(
            replay=self.replay_events,
            handler=self,
            heartbeat_interval=settings.hub.heartbeat_interval,
            send_queue_size=settings.hub.send_queue_size,
            on_evict=self._on_viewer_evicted,
        )
        self._scheduler = TypingScheduler(
            buffer=self._buffer,
            source=source,
            publish=self._publish,
            config=self._config,
            initial_prompt=settings.generator.initial_prompt,
            params=GenerationParams(
                max_tokens=settings.generator.max_tokens,
                temperature=settings.generator.temperature,
            ),
            context_excerpt=settings.generator.context_excerpt,
        )

        enc = settings.encoder
        self._encoder_params = EncoderParams(
            width=enc.width,
            height=enc.height,
            fps=enc.fps,
            video_bitrate=enc.video_bitrate,
            bufsize=enc.bufsize,
            audio_bitrate=enc.audio_bitrate,
            preset=enc.preset,
        )
        self._encoder = EncoderProcessManager(
            command_factory=command_factory or partial(build_ffmpeg_command, executable=enc.executable),
            queue_size=enc.frame_queue_size,
            stop_grace=enc.stop_grace,
            kill_grace=enc.kill_grace,
            on_state_change=self._on_encoder_state,
        )
        self._renderer = FrameRenderer(enc.width, enc.height, font_size=self._config.font_size)
        self._frames_dirty = True
        self._pump_task: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None

    @property
    def hub(self) -> BroadcastHub:
        return self._hub

    @property
    def scheduler(self) -> TypingScheduler:
        return self._scheduler

    @property
    def encoder(self) -> EncoderProcessManager:
        return self._encoder

    @property
    def buffer(self) -> FrameBuffer:
        return self._buffer

    @property
    def config(self) -> RunConfig:
        return self._config

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Check the encoder and start the viewer heartbeat.

        Raises:
            EncoderUnavailableError: If ``encoder.required`` is set and the
                encoder executable cannot be run.
        """
        executable = self._settings.encoder.executable
        try:
            version = await probe_encoder(executable)
            logger.info("Encoder available: %s", version)
        except EncoderUnavailableError as e:
            if self._settings.encoder.required:
                raise
            logger.warning("Live streaming unavailable: %s", e)
        self._heartbeat_task = asyncio.get_running_loop().create_task(
            self._hub.run_heartbeat(), name="viewer-heartbeat"
        )

    async def close(self) -> None:
        """Stop everything: typing, the encoder, viewers, the content source."""
        self._scheduler.stop()
        await self._stop_pump()
        await self._encoder.stop()
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            await asyncio.gather(self._heartbeat_task, return_exceptions=True)
            self._heartbeat_task = None
        await self._hub.close_all()
        await self._source.aclose()
        logger.info("Engine closed")

    # ------------------------------------------------------------------
    # Viewers
    # ------------------------------------------------------------------

    def replay_events(self) -> list[Event]:
        """Full current state, as sent to a newly registered viewer."""
        return [
            StatusEvent(message="Active" if self._scheduler.is_active else "Ready"),
            StreamStatusEvent(message=STREAM_STATUS[self._encoder.state]),
            TerminalContentEvent(lines=self._buffer.snapshot()),
            FrameUpdateEvent(count=self._scheduler.frame),
            CycleUpdateEvent(count=self._scheduler.cycle),
            ConfigUpdateEvent(config=self._config),
        ]

    def connect_viewer(self, transport: ViewerTransport) -> ViewerSession:
        session = ViewerSession(transport=transport)
        self._hub.register(session)
        self._hub.publish(LogEvent(message="Client connected."))
        return session

    def disconnect_viewer(self, session: ViewerSession) -> None:
        if self._hub.unregister(session):
            self._hub.publish(LogEvent(message="Client disconnected."))

    def _on_viewer_evicted(self, session: ViewerSession) -> None:
        self._hub.publish(LogEvent(message="Client disconnected."))

    def _publish(self, event: Event) -> None:
        if isinstance(event, TerminalContentEvent):
            self._frames_dirty = True
        self._hub.publish(event)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def start(self) -> None:
        self._scheduler.start()

    async def stop(self) -> None:
        self._scheduler.stop()

    async def configure(self, update: ConfigUpdate) -> None:
        try:
            config = self._config.merged(update)
        except ValidationError as e:
            logger.warning("Rejected config update: %s", e)
            self._hub.publish(
                LogEvent(message=f"Config update rejected: {e.error_count()} invalid field(s).")
            )
            return

        self._config = config
        self._scheduler.apply_config(config)
        self._renderer.set_font_size(config.font_size)
        logger.info("Server config updated: %s", config.model_dump())
        self._hub.publish(LogEvent(message="Server config updated."))
        self._hub.publish(ConfigUpdateEvent(config=config))
        self._hub.publish(self.debug_event())

    async def start_stream(self) -> None:
        if not self._config.enable_streaming:
            self._hub.publish(LogEvent(message="Streaming disabled in config."))
            return
        if self._encoder.state in (EncoderState.RUNNING, EncoderState.STARTING):
            self._hub.publish(LogEvent(message="Stream already active."))
            return
        if self._encoder.state is EncoderState.STOPPING:
            self._hub.publish(LogEvent(message="Stream is still stopping."))
            return
        key = self._settings.encoder.stream_key.get_secret_value()
        if not key:
            logger.error("Stream key is not set")
            self._hub.publish(LogEvent(message="Stream key is not set!"))
            return

        template = self._settings.encoder.ingest_url
        target = template.format(key=key)
        self._hub.publish(
            LogEvent(message=f"Attempting to start stream to {template.format(key='****')}...")
        )
        result = await self._encoder.start(target, self._encoder_params)
        if not result.ok:
            # Already reported through the encoder state callback
            return
        self._frames_dirty = True
        self._pump_task = asyncio.get_running_loop().create_task(
            self._pump_frames(), name="encoder-frame-pump"
        )

    async def stop_stream(self) -> None:
        await self._stop_pump()
        result = await self._encoder.stop()
        if not result.ok:
            self._hub.publish(LogEvent(message=result.message))

    def debug_event(self) -> DebugEvent:
        if not self._config.debug_mode:
            return DebugEvent(debug={"ws": "-", "encoder": "-", "fps": "-", "buffer": "-"})
        return DebugEvent(
            debug={
                "ws": f"{len(self._hub)} viewer(s)",
                "encoder": self._encoder.state.value,
                "fps": str(self._encoder_params.fps),
                "buffer": f"{len(self._buffer)}/{self._buffer.max_lines} lines",
                "frames": str(self._scheduler.frame),
                "cycle": str(self._scheduler.cycle),
                "droppedFrames": str(self._encoder.dropped_frames),
            }
        )

    # ------------------------------------------------------------------
    # Encoder
    # ------------------------------------------------------------------

    def _on_encoder_state(self, state: EncoderState, message: str) -> None:
        self._hub.publish(StreamStatusEvent(message=STREAM_STATUS[state]))
        self._hub.publish(LogEvent(message=message))
        if state in (EncoderState.CRASHED, EncoderState.STOPPED) and self._pump_task is not None:
            self._pump_task.cancel()
            self._pump_task = None

    async def _pump_frames(self) -> None:
        """Feed the latest terminal frame to the encoder at its frame rate."""
        loop = asyncio.get_running_loop()
        interval = 1.0 / self._encoder_params.fps
        frame = b""
        next_tick = loop.time()
        while True:
            if self._frames_dirty or not frame:
                self._frames_dirty = False
                frame = await asyncio.to_thread(self._renderer.render, self._buffer.snapshot())
            result = self._encoder.feed(frame)
            if result is FeedResult.REJECTED:
                return
            if result is FeedResult.BACKPRESSURE:
                logger.debug("Encoder backpressure, %d frames dropped", self._encoder.dropped_frames)

            # Ticks are anchored to the clock, not to the end of the previous frame
            next_tick += interval
            delay = next_tick - loop.time()
            if delay < 0:
                # Overran a whole tick: re-anchor rather than burst to catch up
                next_tick = loop.time()
                delay = 0.0
            await asyncio.sleep(delay)

    async def _stop_pump(self) -> None:
        task, self._pump_task = self._pump_task, None
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
