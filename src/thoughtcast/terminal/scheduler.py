"""The typing scheduler that drives the live terminal.

Runs cycles of: request content -> type it out character by character
-> repeat, until stopped or a cycle/duration limit is reached. All state
is owned by the scheduler and mutated only from the event loop; none of
the mutating sections contain an ``await``, so each runs atomically with
respect to the other flows (viewer commands, encoder events, timers).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from thoughtcast.domain.models import (
    CycleUpdateEvent,
    Event,
    FrameUpdateEvent,
    RunConfig,
    SchedulerState,
    StatusEvent,
    TerminalContentEvent,
)
from thoughtcast.generator.base import ContentSource, GenerationParams
from thoughtcast.terminal.buffer import FrameBuffer

logger = logging.getLogger(__name__)

BOOT_BANNER = "Initializing AI consciousness simulation...\n"
CYCLE_BANNER = "\n[Cycle {index}/{limit}] Requesting new thoughts..."
THINKING_MARKER = "[THINKING...]"
COMPLETE_BANNER = "\n[SIMULATION COMPLETE. Shutting down neural pathways...]\n"
TIME_LIMIT_BANNER = "\n[SIMULATION TIME LIMIT ({duration:g} mins) REACHED. Shutting down...]\n"
ERROR_LINE = "[ERROR: content generation failed: {message}]"
EMPTY_RESPONSE_LINE = "[EMPTY RESPONSE]"
CONTINUATION_PROMPT = 'Continue the previous AI reflection, building on "{excerpt}..."'

DEFAULT_PARAMS = GenerationParams(max_tokens=300, temperature=0.8)


class TypingScheduler:
    """Drives generate-then-type cycles into a FrameBuffer.

    Every visible change is pushed through ``publish`` as an Event.

    Example:
        scheduler = TypingScheduler(buffer, source, hub.publish, RunConfig())
        scheduler.start()
        ...
        scheduler.stop()
    """

    def __init__(
        self,
        buffer: FrameBuffer,
        source: ContentSource,
        publish: Callable[[Event], None],
        config: RunConfig | None = None,
        initial_prompt: str = "Begin with a greeting to the observer.",
        params: GenerationParams = DEFAULT_PARAMS,
        context_excerpt: int = 100,
    ) -> None:
        self._buffer = buffer
        self._source = source
        self._publish = publish
        self._config = config or RunConfig()
        self._initial_prompt = initial_prompt
        self._params = params
        self._context_excerpt = context_excerpt

        self._state = SchedulerState.IDLE
        self._cycle = 0
        self._frame = 0
        self._prompt = initial_prompt
        self._pending = ""
        self._cursor = 0
        self._deadline: float | None = None
        self._run_task: asyncio.Task[None] | None = None
        self._deadline_task: asyncio.Task[None] | None = None
        self._retime = asyncio.Event()

        self._buffer.resize(self._config.terminal_width, self._config.max_lines)

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state in (SchedulerState.REQUESTING, SchedulerState.TYPING)

    @property
    def cycle(self) -> int:
        return self._cycle

    @property
    def frame(self) -> int:
        return self._frame

    @property
    def prompt(self) -> str:
        return self._prompt

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def config(self) -> RunConfig:
        return self._config

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def start(self) -> bool:
        """Begin a new run. Returns False if one is already active."""
        if self.is_active:
            logger.info("Typing scheduler already active, ignoring start")
            return False

        self._cycle = 0
        self._frame = 0
        self._prompt = self._initial_prompt
        self._pending = ""
        self._cursor = 0
        self._buffer.clear()
        self._buffer.append(BOOT_BANNER)
        self._state = SchedulerState.REQUESTING

        self._publish(StatusEvent(message="Generating..."))
        self._publish(TerminalContentEvent(lines=self._buffer.snapshot()))
        self._publish(CycleUpdateEvent(count=0))
        self._publish(FrameUpdateEvent(count=0))

        loop = asyncio.get_running_loop()
        seconds = self._config.duration_seconds
        if seconds is not None:
            self._deadline = loop.time() + seconds
            self._deadline_task = loop.create_task(
                self._watch_deadline(seconds), name="typing-deadline"
            )
        else:
            self._deadline = None
        self._run_task = loop.create_task(self._run(), name="typing-scheduler")
        logger.info(
            "Typing scheduler started (source=%s, cycles=%d, duration=%s min)",
            self._source.model, self._config.cycles, self._config.duration or "none",
        )
        return True

    def stop(self) -> bool:
        """Stop the active run. Returns False if nothing was running.

        Takes effect immediately: an outstanding generation request is
        cancelled and its result, should it still arrive, is never typed.
        """
        if not self.is_active:
            return False
        logger.info("Stopping typing scheduler at cycle %d", self._cycle)
        self._halt(SchedulerState.IDLE)
        self._publish(StatusEvent(message="Stopped"))
        return True

    def apply_config(self, config: RunConfig) -> None:
        """Replace the run configuration.

        A new typing speed applies from the next scheduled character;
        the cycle in progress keeps its content. The duration limit of
        an active run stays as armed at start.
        """
        self._config = config
        self._buffer.resize(config.terminal_width, config.max_lines)
        if self._state is SchedulerState.TYPING:
            self._retime.set()

    async def join(self) -> None:
        """Wait until the current run task has finished."""
        task = self._run_task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    # ------------------------------------------------------------------
    # Cycle loop
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        try:
            while True:
                if self._deadline_passed():
                    self._expire()
                    return
                limit = self._config.cycles
                if limit > 0 and self._cycle + 1 > limit:
                    self._complete()
                    return

                self._cycle += 1
                await self._request_cycle()

                self._state = SchedulerState.TYPING
                while self._cursor < len(self._pending):
                    await self._wait_tick()
                    if self._deadline_passed():
                        self._expire()
                        return
                    self._type_next()
                self._state = SchedulerState.REQUESTING
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Typing scheduler failed")
            self._halt(SchedulerState.STOPPED)
            self._publish(StatusEvent(message="Error"))

    async def _request_cycle(self) -> None:
        self._state = SchedulerState.REQUESTING
        limit = self._config.cycles or "unlimited"
        self._buffer.append(CYCLE_BANNER.format(index=self._cycle, limit=limit))
        if self._config.show_thinking:
            self._buffer.append(THINKING_MARKER)
        self._publish(TerminalContentEvent(lines=self._buffer.snapshot()))
        self._publish(CycleUpdateEvent(count=self._cycle))

        text = await self._generate()

        self._pending = text.replace("\r\n", "\n")
        self._cursor = 0
        self._buffer.start_line()
        self._publish(TerminalContentEvent(lines=self._buffer.snapshot()))

    async def _generate(self) -> str:
        try:
            text = await self._source.generate(self._prompt, self._params)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Content generation failed: %s", e)
            return ERROR_LINE.format(message=str(e)[:100])

        if not text.strip():
            return EMPTY_RESPONSE_LINE
        excerpt = text[: self._context_excerpt]
        self._prompt = CONTINUATION_PROMPT.format(excerpt=excerpt)
        return text

    async def _wait_tick(self) -> None:
        """Sleep one typing delay, restarting the wait if the speed changes."""
        while True:
            self._retime.clear()
            try:
                await asyncio.wait_for(self._retime.wait(), timeout=self._config.typing_speed)
            except asyncio.TimeoutError:
                return

    def _type_next(self) -> None:
        char = self._pending[self._cursor]
        self._cursor += 1
        self._buffer.type_char(char)
        self._frame += 1
        self._publish(TerminalContentEvent(lines=self._buffer.snapshot()))
        self._publish(FrameUpdateEvent(count=self._frame))

    # ------------------------------------------------------------------
    # Limits
    # ------------------------------------------------------------------

    async def _watch_deadline(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
        if self.is_active:
            self._expire()

    def _deadline_passed(self) -> bool:
        return self._deadline is not None and asyncio.get_running_loop().time() >= self._deadline

    def _expire(self) -> None:
        logger.info("Duration limit of %s min reached", self._config.duration)
        self._buffer.append(TIME_LIMIT_BANNER.format(duration=self._config.duration))
        self._publish(TerminalContentEvent(lines=self._buffer.snapshot()))
        self._halt(SchedulerState.STOPPED)
        self._publish(StatusEvent(message="Stopped"))

    def _complete(self) -> None:
        logger.info("Cycle limit of %d reached", self._config.cycles)
        self._buffer.append(COMPLETE_BANNER)
        self._publish(TerminalContentEvent(lines=self._buffer.snapshot()))
        self._halt(SchedulerState.STOPPED)
        self._publish(StatusEvent(message="Stopped"))

    def _halt(self, state: SchedulerState) -> None:
        self._state = state
        self._pending = ""
        self._cursor = 0
        self._deadline = None
        current = asyncio.current_task()
        for task in (self._run_task, self._deadline_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._deadline_task = None
        if self._run_task is not current:
            self._run_task = None
