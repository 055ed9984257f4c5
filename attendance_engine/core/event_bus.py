from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable
from typing import Any

from attendance_engine.core.time_provider import TimeProvider, default_time_provider


logger = logging.getLogger(__name__)

SUBSTITUTE_ASSIGNED = 'substitute:assigned'
SUBSTITUTE_REASSIGNED = 'substitute:reassigned'
SESSION_STARTED = 'session:started'
SESSION_ENDED = 'session:ended'
TEACHER_CHECKIN = 'teacher:checkin'
TEACHER_CHECKOUT = 'teacher:checkout'

EVENT_NAMES = frozenset(
    {
        SUBSTITUTE_ASSIGNED,
        SUBSTITUTE_REASSIGNED,
        SESSION_STARTED,
        SESSION_ENDED,
        TEACHER_CHECKIN,
        TEACHER_CHECKOUT,
    }
)

EventHandler = Callable[[dict[str, Any]], None]


class EventStream:
    """Async view of the bus for one connected client."""

    def __init__(self, loop: asyncio.AbstractEventLoop, maxsize: int) -> None:
        self._loop = loop
        self._queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def deliver(self, envelope: dict[str, Any]) -> None:
        self._loop.call_soon_threadsafe(self._put, envelope)

    def _put(self, envelope: dict[str, Any]) -> None:
        try:
            self._queue.put_nowait(envelope)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning('event_stream_full event=%s dropped=%s', envelope.get('event'), self.dropped)

    async def get(self) -> dict[str, Any]:
        return await self._queue.get()


class SessionEventBus:
    def __init__(self, *, queue_size: int = 256, time_provider: TimeProvider = default_time_provider) -> None:
        self._handlers: list[EventHandler] = []
        self._lock = threading.Lock()
        self._queue_size = max(1, int(queue_size))
        self._time_provider = time_provider

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._handlers)

    def subscribe(self, handler: EventHandler) -> EventHandler:
        with self._lock:
            self._handlers.append(handler)
        return handler

    def unsubscribe(self, handler: EventHandler) -> None:
        with self._lock:
            try:
                self._handlers.remove(handler)
            except ValueError:
                pass

    def open_stream(self) -> EventStream:
        stream = EventStream(asyncio.get_running_loop(), self._queue_size)
        self.subscribe(stream.deliver)
        return stream

    def close_stream(self, stream: EventStream) -> None:
        self.unsubscribe(stream.deliver)

    def publish(self, event_name: str, payload: dict[str, Any]) -> int:
        if event_name not in EVENT_NAMES:
            raise ValueError(f'Unknown event {event_name}')
        envelope = {
            'event': event_name,
            'payload': dict(payload),
            'serverTimeMs': self._time_provider.now_ms(),
        }
        with self._lock:
            handlers = list(self._handlers)
        delivered = 0
        for handler in handlers:
            try:
                handler(envelope)
                delivered += 1
            except Exception:
                logger.exception('event_delivery_failed event=%s', event_name)
        logger.info('event_published event=%s subscribers=%s delivered=%s', event_name, len(handlers), delivered)
        return delivered
