from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any

from sqlalchemy import or_
from sqlalchemy.orm import Session

from attendance_engine.core.time_provider import TimeProvider, default_time_provider, to_epoch_ms
from attendance_engine.core.time_window import Phase, effective_phase
from attendance_engine.models import ClassSession, SessionStatus, Teacher, TeacherAttendance
from attendance_engine.services.session_store_service import session_window


class Availability(str, Enum):
    FREE = 'free'
    BUSY = 'busy'
    CHECKED_OUT = 'checked-out'
    ABSENT = 'absent'


def teaching_sessions(
    db: Session,
    target_date: date,
    now: datetime,
    teacher_id: int | None = None,
) -> list[ClassSession]:
    """Sessions on ``target_date`` stored as ongoing whose window has not ended at ``now``.

    A stored ``ongoing`` status outlives the window until the overdue sweep
    runs, so the time check is what makes busy/free follow the clock.
    """
    query = db.query(ClassSession).filter(
        ClassSession.session_date == target_date,
        ClassSession.status == SessionStatus.ONGOING.value,
    )
    if teacher_id is not None:
        query = query.filter(
            or_(ClassSession.teacher_id == int(teacher_id), ClassSession.substitute_teacher_id == int(teacher_id))
        )
    return [
        row
        for row in query.all()
        if effective_phase(row.status, *session_window(row), now) == Phase.ONGOING
    ]


def busy_teacher_ids(db: Session, target_date: date, now: datetime) -> set[int]:
    busy: set[int] = set()
    for row in teaching_sessions(db, target_date, now):
        busy.add(int(row.teacher_id))
        if row.substitute_teacher_id:
            busy.add(int(row.substitute_teacher_id))
    return busy


def classify(attendance: TeacherAttendance | None, is_busy: bool) -> Availability:
    if attendance is None or attendance.check_in_at is None:
        return Availability.ABSENT
    if attendance.check_out_at is not None:
        return Availability.CHECKED_OUT
    if is_busy:
        return Availability.BUSY
    return Availability.FREE


def teacher_availability(
    db: Session,
    teacher_id: int,
    target_date: date,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> Availability:
    attendance = (
        db.query(TeacherAttendance)
        .filter(TeacherAttendance.teacher_id == int(teacher_id), TeacherAttendance.attendance_date == target_date)
        .first()
    )
    is_busy = bool(teaching_sessions(db, target_date, time_provider.now(), teacher_id=teacher_id))
    return classify(attendance, is_busy)


def _isoformat(value) -> str | None:
    return value.isoformat() if value else None


def list_teacher_availability(
    db: Session,
    *,
    target_date: date | None = None,
    time_provider: TimeProvider = default_time_provider,
) -> dict[str, Any]:
    now = time_provider.now()
    day = target_date or now.date()
    attendance_rows = (
        db.query(TeacherAttendance)
        .filter(TeacherAttendance.attendance_date == day, TeacherAttendance.check_in_at.isnot(None))
        .all()
    )
    attendance_by_teacher = {int(row.teacher_id): row for row in attendance_rows}
    busy = busy_teacher_ids(db, day, now)
    teachers = (
        db.query(Teacher)
        .filter(Teacher.id.in_(list(attendance_by_teacher)))
        .order_by(Teacher.name.asc(), Teacher.id.asc())
        .all()
        if attendance_by_teacher
        else []
    )

    entries = []
    groups: dict[str, list[dict[str, Any]]] = {'free': [], 'busy': [], 'checked_out': []}
    for teacher in teachers:
        attendance = attendance_by_teacher[int(teacher.id)]
        state = classify(attendance, int(teacher.id) in busy)
        entry = {
            'id': teacher.id,
            'name': teacher.name,
            'employeeId': teacher.employee_id,
            'state': state.value,
            'isCheckedIn': state in (Availability.FREE, Availability.BUSY),
            'hasCheckedOut': state == Availability.CHECKED_OUT,
            'isBusy': state == Availability.BUSY,
            'checkInAt': _isoformat(attendance.check_in_at),
            'checkOutAt': _isoformat(attendance.check_out_at),
        }
        entries.append(entry)
        groups['checked_out' if state == Availability.CHECKED_OUT else state.value].append(entry)

    return {
        'date': day.isoformat(),
        'teachers': entries,
        **groups,
        'serverTimeMs': to_epoch_ms(now),
    }
