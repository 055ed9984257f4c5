from datetime import date

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from attendance_engine.core.dependencies import get_event_bus
from attendance_engine.core.event_bus import SessionEventBus
from attendance_engine.core.router_guard import require_admin
from attendance_engine.db import get_db
from attendance_engine.observability import EndpointNameRoute
from attendance_engine.schemas import ReassignSubstituteRequest
from attendance_engine.services.availability_service import list_teacher_availability
from attendance_engine.services.session_store_service import get_session_snapshot, list_sessions_in_window
from attendance_engine.services.session_sweep_service import close_overdue_sessions
from attendance_engine.services.substitute_service import assign_substitute, reassign_substitute


router = APIRouter(prefix='/api/substitutes', tags=['Substitute Teachers'], route_class=EndpointNameRoute)


@router.get('/sessions')
def list_sessions(
    hours: float | None = Query(default=None),
    needs_substitute_only: bool = Query(default=False),
    db: Session = Depends(get_db),
):
    return list_sessions_in_window(db, lookahead_hours=hours, needs_substitute_only=needs_substitute_only)


@router.get('/sessions/{session_id}')
def get_one(session_id: int, db: Session = Depends(get_db)):
    return get_session_snapshot(db, session_id)


@router.get('/teachers')
def available_teachers(target_date: date | None = Query(default=None, alias='date'), db: Session = Depends(get_db)):
    return list_teacher_availability(db, target_date=target_date)


@router.put('/sessions/{session_id}/substitute/{teacher_id}')
def assign(
    session_id: int,
    teacher_id: int,
    request: Request,
    db: Session = Depends(get_db),
    bus: SessionEventBus = Depends(get_event_bus),
):
    require_admin(request)
    row = assign_substitute(db, session_id, teacher_id, bus=bus)
    return {'message': 'Substitute assigned', 'session': row}


@router.post('/sessions/{session_id}/reassign')
def reassign(
    session_id: int,
    payload: ReassignSubstituteRequest,
    request: Request,
    db: Session = Depends(get_db),
    bus: SessionEventBus = Depends(get_event_bus),
):
    require_admin(request)
    row = reassign_substitute(db, session_id, payload.expected_teacher_id, payload.teacher_id, bus=bus)
    return {'message': 'Substitute reassigned', 'session': row}


@router.post('/sweep')
def sweep(
    request: Request,
    grace_minutes: int | None = Query(default=None, ge=0, le=240),
    db: Session = Depends(get_db),
    bus: SessionEventBus = Depends(get_event_bus),
):
    require_admin(request)
    return close_overdue_sessions(db, bus=bus, grace_minutes=grace_minutes)
