from __future__ import annotations

from fastapi import Request

from attendance_engine.core.event_bus import SessionEventBus


def get_event_bus(request: Request) -> SessionEventBus:
    return request.app.state.event_bus
