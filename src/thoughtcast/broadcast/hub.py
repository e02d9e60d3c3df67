"""Fan-out hub for connected viewer sessions.

Each registered session gets its own bounded outbound queue drained by a
dedicated sender task, so a slow or broken viewer never delays typing
progress or delivery to the others. Events reach a given viewer in the
order they were published.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from thoughtcast.domain.models import (
    ConfigUpdate,
    ConfigureCommand,
    Event,
    HeartbeatAckEvent,
    HeartbeatCommand,
    LogEvent,
    PingEvent,
    StartCommand,
    StartStreamCommand,
    StopCommand,
    StopStreamCommand,
    parse_command,
)

logger = logging.getLogger(__name__)


class ViewerTransport(Protocol):
    """The subset of a WebSocket the hub needs."""

    async def send_json(self, data: Any) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


class CommandHandler(Protocol):
    """Receiver of the control commands viewers send."""

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def start_stream(self) -> None: ...

    async def stop_stream(self) -> None: ...

    async def configure(self, update: ConfigUpdate) -> None: ...


@dataclass(eq=False)
class ViewerSession:
    """One connected viewer."""

    transport: ViewerTransport
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    alive: bool = True
    last_activity: datetime = field(default_factory=datetime.now)

    def touch(self) -> None:
        """Record activity from the viewer, confirming it is alive."""
        self.alive = True
        self.last_activity = datetime.now()


@dataclass(eq=False)
class _Channel:
    queue: asyncio.Queue[dict[str, Any]]
    sender: asyncio.Task[None]


class BroadcastHub:
    """Tracks viewer sessions and pushes events to all of them.

    Args:
        replay: Returns the events that bring a new viewer up to date.
        handler: Receives the control commands parsed from viewer messages.
        heartbeat_interval: Seconds between liveness sweeps.
        send_queue_size: Per-viewer outbound backlog before the viewer is
            considered dead and dropped.
        on_evict: Called after the hub itself drops a viewer (failed
            liveness sweep, full backlog, or send failure).
    """

    def __init__(
        self,
        replay: Callable[[], Iterable[Event]] = tuple,
        handler: CommandHandler | None = None,
        heartbeat_interval: float = 30.0,
        send_queue_size: int = 256,
        on_evict: Callable[[ViewerSession], None] | None = None,
    ) -> None:
        self._replay = replay
        self._handler = handler
        self._on_evict = on_evict
        self._heartbeat_interval = heartbeat_interval
        self._send_queue_size = send_queue_size
        self._channels: dict[ViewerSession, _Channel] = {}
        self._background: set[asyncio.Task[None]] = set()

    @property
    def sessions(self) -> list[ViewerSession]:
        return list(self._channels)

    def __len__(self) -> int:
        return len(self._channels)

    def __contains__(self, session: object) -> bool:
        return session in self._channels

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def register(self, session: ViewerSession) -> None:
        """Add a viewer and queue the full current state for it alone."""
        if session in self._channels:
            return
        replay = [event.to_message() for event in self._replay()]
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(
            maxsize=max(self._send_queue_size, len(replay))
        )
        for message in replay:
            queue.put_nowait(message)
        sender = asyncio.get_running_loop().create_task(
            self._pump(session, queue), name=f"viewer-{session.session_id}"
        )
        self._channels[session] = _Channel(queue=queue, sender=sender)
        logger.info("Viewer %s registered (%d connected)", session.session_id, len(self))

    def unregister(self, session: ViewerSession) -> bool:
        """Remove a viewer. Safe to call more than once.

        Returns True if the viewer was registered.
        """
        channel = self._channels.pop(session, None)
        if channel is None:
            return False
        if channel.sender is not asyncio.current_task():
            channel.sender.cancel()
        logger.info("Viewer %s unregistered (%d connected)", session.session_id, len(self))
        return True

    async def disconnect(self, session: ViewerSession, code: int = 1000) -> None:
        """Unregister a viewer and close its connection."""
        self.unregister(session)
        await self._close_transport(session, code)

    async def _close_transport(self, session: ViewerSession, code: int) -> None:
        try:
            await session.transport.close(code=code)
        except Exception as e:
            logger.debug("Closing viewer %s failed: %s", session.session_id, e)

    def _evict(self, session: ViewerSession, code: int) -> None:
        """Unregister a viewer the hub gave up on and close it in the background."""
        if self.unregister(session):
            self._spawn(self._close_evicted(session, code))

    async def _close_evicted(self, session: ViewerSession, code: int) -> None:
        await self._close_transport(session, code)
        if self._on_evict is not None:
            self._on_evict(session)

    async def close_all(self) -> None:
        for session in self.sessions:
            await self.disconnect(session, code=1001)

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def publish(self, event: Event) -> None:
        """Queue an event for every registered viewer without blocking."""
        message = event.to_message()
        for session in self.sessions:
            self._enqueue(session, message)

    def send(self, session: ViewerSession, event: Event) -> None:
        """Queue an event for a single viewer."""
        if session in self._channels:
            self._enqueue(session, event.to_message())

    def _enqueue(self, session: ViewerSession, message: dict[str, Any]) -> None:
        try:
            self._channels[session].queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning("Viewer %s is not keeping up, dropping it", session.session_id)
            self._evict(session, 1008)

    async def _pump(self, session: ViewerSession, queue: asyncio.Queue[dict[str, Any]]) -> None:
        try:
            while True:
                message = await queue.get()
                await session.transport.send_json(message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.info("Dropping viewer %s after send failure: %s", session.session_id, e)
            if self.unregister(session):
                await self._close_evicted(session, 1011)

    def _spawn(self, coro: Any) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ------------------------------------------------------------------
    # Liveness
    # ------------------------------------------------------------------

    async def run_heartbeat(self) -> None:
        """Sweep viewer liveness every heartbeat interval, forever."""
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            await self.check_liveness()

    async def check_liveness(self) -> int:
        """Drop viewers silent since the last sweep, then probe the rest.

        Returns the number of viewers dropped.
        """
        dead = [session for session in self.sessions if not session.alive]
        for session in dead:
            logger.info("Terminating dead viewer connection %s", session.session_id)
            if self.unregister(session):
                await self._close_evicted(session, 1001)
        for session in self.sessions:
            session.alive = False
            self.send(session, PingEvent())
        return len(dead)

    # ------------------------------------------------------------------
    # Inbound commands
    # ------------------------------------------------------------------

    async def handle_message(self, session: ViewerSession, raw: str | bytes | dict[str, Any]) -> None:
        """Route one inbound viewer message.

        Malformed or unknown messages are logged and dropped; a failing
        command is reported to viewers but never propagates.
        """
        session.touch()
        try:
            command = parse_command(raw)
        except ValueError as e:
            logger.warning("Ignoring malformed message from %s: %s", session.session_id, e)
            return

        logger.debug("Received %s from %s", command.type, session.session_id)
        if isinstance(command, HeartbeatCommand):
            self.send(session, HeartbeatAckEvent())
            return
        if self._handler is None:
            logger.warning("No command handler bound, ignoring %s", command.type)
            return

        try:
            if isinstance(command, StartCommand):
                await self._handler.start()
            elif isinstance(command, StopCommand):
                await self._handler.stop()
            elif isinstance(command, StartStreamCommand):
                await self._handler.start_stream()
            elif isinstance(command, StopStreamCommand):
                await self._handler.stop_stream()
            elif isinstance(command, ConfigureCommand):
                await self._handler.configure(command.to_update())
        except Exception as e:
            logger.exception("Handling %s failed", command.type)
            self.publish(LogEvent(message=f"Server error handling {command.type}: {e}"))
