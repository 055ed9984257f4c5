from datetime import date

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from attendance_engine.core.dependencies import get_event_bus
from attendance_engine.core.event_bus import SessionEventBus
from attendance_engine.core.router_guard import require_admin, require_auth_user
from attendance_engine.core.time_provider import default_time_provider
from attendance_engine.db import get_db
from attendance_engine.observability import EndpointNameRoute
from attendance_engine.models import Role
from attendance_engine.schemas import SessionCheckRequest
from attendance_engine.services.attendance_service import end_session, start_session
from attendance_engine.services.session_store_service import expand_schedule_for_date


router = APIRouter(prefix='/api/sessions', tags=['Class Sessions'], route_class=EndpointNameRoute)


def _acting_teacher_id(user: dict, requested_teacher_id: int) -> int:
    if user['role'] == Role.TEACHER.value:
        return int(user['user_id'])
    return int(requested_teacher_id)


@router.post('/expand')
def expand(
    request: Request,
    target_date: date | None = Query(default=None, alias='date'),
    db: Session = Depends(get_db),
):
    require_admin(request)
    return expand_schedule_for_date(db, target_date or default_time_provider.today())


@router.post('/{session_id}/start')
def start(
    session_id: int,
    payload: SessionCheckRequest,
    request: Request,
    db: Session = Depends(get_db),
    bus: SessionEventBus = Depends(get_event_bus),
):
    user = require_auth_user(request)
    return start_session(db, session_id, _acting_teacher_id(user, payload.teacher_id), bus=bus)


@router.post('/{session_id}/end')
def end(
    session_id: int,
    payload: SessionCheckRequest,
    request: Request,
    db: Session = Depends(get_db),
    bus: SessionEventBus = Depends(get_event_bus),
):
    user = require_auth_user(request)
    return end_session(db, session_id, _acting_teacher_id(user, payload.teacher_id), bus=bus)
