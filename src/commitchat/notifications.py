"""Notification Channel — typed chat events for the Display Sink.

Publishing never blocks: events go into a bounded queue and, when the sink
falls behind, the oldest queued event is dropped so the poll cadence stays
independent of the draw cadence. A single dispatcher delivers events in
publish order, so per-chat updates reach listeners in the order they
happened.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections import defaultdict
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any, Protocol, TypeAlias

from commitchat.logger import logger
from commitchat.types import ChatSnapshot, Message

# --- Event types ---


@dataclass
class ChatAddedEvent:
    """A chat joined the registry (bootstrap or startup scan)."""

    chat: ChatSnapshot


@dataclass
class ChatUpdatedEvent:
    """Counts, roster, last message or unread number changed."""

    chat: ChatSnapshot


@dataclass
class MessageEvent:
    """A message to show in the currently selected chat."""

    chat_name: str
    message: Message


@dataclass
class HistoryEvent:
    """The whole history of a chat that was just selected, oldest first."""

    chat: ChatSnapshot
    messages: tuple[Message, ...]


Event: TypeAlias = ChatAddedEvent | ChatUpdatedEvent | MessageEvent | HistoryEvent
Listener: TypeAlias = Callable[[Any], Coroutine[Any, Any, None]]

EVENT_TYPES: tuple[type, ...] = (ChatAddedEvent, ChatUpdatedEvent, MessageEvent, HistoryEvent)


class DisplaySink(Protocol):
    """Anything that renders chat events."""

    async def handle(self, event: Event) -> None: ...


class NotificationChannel:
    """Bounded, drop-oldest event queue with ordered dispatch."""

    def __init__(self, max_queued: int = 256) -> None:
        self._queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=max_queued)
        self._listeners: defaultdict[type, list[Listener]] = defaultdict(list)
        self.dropped = 0

    def subscribe(self, event_type: type, listener: Listener) -> Callable[[], None]:
        """Subscribe to an event type. Returns an unsubscribe function."""
        self._listeners[event_type].append(listener)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners[event_type].remove(listener)

        return _unsubscribe

    def attach(self, sink: DisplaySink) -> Callable[[], None]:
        """Route every event type to *sink*. Returns a detach function."""
        unsubscribers = [self.subscribe(t, sink.handle) for t in EVENT_TYPES]

        def _detach() -> None:
            for unsubscribe in unsubscribers:
                unsubscribe()

        return _detach

    def publish(self, event: Event) -> None:
        """Queue an event. Never blocks; drops the oldest event when full."""
        while True:
            try:
                self._queue.put_nowait(event)
                return
            except asyncio.QueueFull:
                with contextlib.suppress(asyncio.QueueEmpty):
                    stale = self._queue.get_nowait()
                    self._queue.task_done()
                    self.dropped += 1
                    logger.debug(
                        "Notification queue full, dropped oldest",
                        event_type=type(stale).__name__,
                    )

    def pending(self) -> int:
        return self._queue.qsize()

    async def dispatch_pending(self) -> int:
        """Deliver everything queued right now. Returns the number delivered."""
        delivered = 0
        while True:
            try:
                event = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return delivered
            await self._deliver(event)
            delivered += 1

    async def run(self) -> None:
        """Dispatch loop. Runs until cancelled."""
        while True:
            event = await self._queue.get()
            await self._deliver(event)

    async def _deliver(self, event: Event) -> None:
        try:
            for listener in list(self._listeners[type(event)]):
                await _safe_call(listener, event)
        finally:
            self._queue.task_done()


async def _safe_call(listener: Listener, event: Event) -> None:
    try:
        await listener(event)
    except Exception as exc:
        logger.warning("Notification listener error", event_type=type(event).__name__, err=str(exc))
