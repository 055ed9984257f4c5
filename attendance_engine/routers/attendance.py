from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from attendance_engine.core.dependencies import get_event_bus
from attendance_engine.core.event_bus import SessionEventBus
from attendance_engine.core.router_guard import require_auth_user
from attendance_engine.db import get_db
from attendance_engine.observability import EndpointNameRoute
from attendance_engine.models import Role
from attendance_engine.schemas import AttendanceCheckRequest
from attendance_engine.services.attendance_service import record_check_in, record_check_out


router = APIRouter(prefix='/api/attendance', tags=['Teacher Attendance'], route_class=EndpointNameRoute)


def _teacher_id_for(user: dict, payload: AttendanceCheckRequest) -> int:
    if user['role'] == Role.TEACHER.value:
        return int(user['user_id'])
    return int(payload.teacher_id)


@router.post('/check-in')
def check_in(
    payload: AttendanceCheckRequest,
    request: Request,
    db: Session = Depends(get_db),
    bus: SessionEventBus = Depends(get_event_bus),
):
    user = require_auth_user(request)
    return record_check_in(db, _teacher_id_for(user, payload), bus=bus)


@router.post('/check-out')
def check_out(
    payload: AttendanceCheckRequest,
    request: Request,
    db: Session = Depends(get_db),
    bus: SessionEventBus = Depends(get_event_bus),
):
    user = require_auth_user(request)
    return record_check_out(db, _teacher_id_for(user, payload), bus=bus)
