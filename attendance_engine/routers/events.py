from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from attendance_engine.core.event_bus import EVENT_NAMES, EventStream


router = APIRouter(tags=['Events'])
logger = logging.getLogger(__name__)


def _parse_filter(raw: str | None) -> set[str] | None:
    if not raw:
        return None
    names = {item.strip() for item in raw.split(',') if item.strip()}
    return names & EVENT_NAMES or None


async def _forward(websocket: WebSocket, stream: EventStream, wanted: set[str] | None) -> None:
    while True:
        envelope = await stream.get()
        if wanted is not None and envelope['event'] not in wanted:
            continue
        await websocket.send_json(envelope)


async def _drain(websocket: WebSocket) -> None:
    while True:
        await websocket.receive_text()


@router.websocket('/ws/events')
async def event_stream(websocket: WebSocket, events: str | None = Query(default=None)):
    bus = websocket.app.state.event_bus
    wanted = _parse_filter(events)
    # Subscribe before accepting so nothing published after the handshake is missed.
    stream = bus.open_stream()
    try:
        await websocket.accept()
        logger.info('event_stream_connected subscribers=%s', bus.subscriber_count)
        tasks = [
            asyncio.create_task(_forward(websocket, stream, wanted)),
            asyncio.create_task(_drain(websocket)),
        ]
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.warning('event_stream_error error=%s', exc)
    finally:
        bus.close_stream(stream)
        logger.info('event_stream_closed subscribers=%s', bus.subscriber_count)
