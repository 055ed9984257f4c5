from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from attendance_engine.config import settings
from attendance_engine.core.errors import ConflictError, NotFoundError, UnavailableTeacherError, ValidationError
from attendance_engine.core.event_bus import (
    SESSION_ENDED,
    SESSION_STARTED,
    TEACHER_CHECKIN,
    TEACHER_CHECKOUT,
    SessionEventBus,
)
from attendance_engine.core.time_provider import TimeProvider, default_time_provider, to_wall_clock
from attendance_engine.core.time_window import Phase, check_in_window_open, effective_phase
from attendance_engine.models import (
    AttendanceStatus,
    ClassSession,
    SessionCheckIn,
    SessionStatus,
    Teacher,
    TeacherAttendance,
)
from attendance_engine.services.session_store_service import session_window


logger = logging.getLogger(__name__)


def _get_teacher(db: Session, teacher_id: int) -> Teacher:
    teacher = db.query(Teacher).filter(Teacher.id == int(teacher_id)).first()
    if not teacher:
        raise NotFoundError('Teacher not found', teacher_id=teacher_id)
    return teacher


def _get_session(db: Session, session_id: int) -> ClassSession:
    row = db.query(ClassSession).filter(ClassSession.id == int(session_id)).first()
    if not row:
        raise NotFoundError('Session not found', session_id=session_id)
    return row


def record_check_in(
    db: Session,
    teacher_id: int,
    *,
    bus: SessionEventBus,
    time_provider: TimeProvider = default_time_provider,
) -> dict[str, Any]:
    teacher = _get_teacher(db, teacher_id)
    now = time_provider.now()
    today = now.date()
    row = (
        db.query(TeacherAttendance)
        .filter(TeacherAttendance.teacher_id == teacher.id, TeacherAttendance.attendance_date == today)
        .first()
    )
    if row and row.check_out_at is not None:
        raise ConflictError('Teacher already checked out today', teacher_id=teacher.id)
    if row and row.check_in_at is not None:
        return {'teacherId': teacher.id, 'date': today.isoformat(), 'checkInAt': row.check_in_at.isoformat(), 'idempotent': True}

    check_in_at = to_wall_clock(now)
    try:
        if row is None:
            with db.begin_nested():
                db.add(
                    TeacherAttendance(
                        teacher_id=teacher.id,
                        attendance_date=today,
                        check_in_at=check_in_at,
                        status=AttendanceStatus.PRESENT.value,
                    )
                )
        else:
            row.check_in_at = check_in_at
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info('teacher_checkin_race teacher_id=%s date=%s', teacher.id, today.isoformat())
        return {'teacherId': teacher.id, 'date': today.isoformat(), 'idempotent': True}

    logger.info('teacher_checked_in teacher_id=%s date=%s', teacher.id, today.isoformat())
    bus.publish(
        TEACHER_CHECKIN,
        {'teacherId': teacher.id, 'teacherName': teacher.name, 'date': today.isoformat(), 'checkInAt': check_in_at.isoformat()},
    )
    return {'teacherId': teacher.id, 'date': today.isoformat(), 'checkInAt': check_in_at.isoformat(), 'idempotent': False}


def record_check_out(
    db: Session,
    teacher_id: int,
    *,
    bus: SessionEventBus,
    time_provider: TimeProvider = default_time_provider,
) -> dict[str, Any]:
    teacher = _get_teacher(db, teacher_id)
    now = time_provider.now()
    today = now.date()
    check_out_at = to_wall_clock(now)
    updated = (
        db.query(TeacherAttendance)
        .filter(
            TeacherAttendance.teacher_id == teacher.id,
            TeacherAttendance.attendance_date == today,
            TeacherAttendance.check_in_at.isnot(None),
            TeacherAttendance.check_out_at.is_(None),
        )
        .update({TeacherAttendance.check_out_at: check_out_at}, synchronize_session=False)
    )
    if updated != 1:
        db.rollback()
        raise ConflictError('Teacher is not checked in or already checked out', teacher_id=teacher.id)
    db.commit()

    logger.info('teacher_checked_out teacher_id=%s date=%s', teacher.id, today.isoformat())
    bus.publish(
        TEACHER_CHECKOUT,
        {'teacherId': teacher.id, 'teacherName': teacher.name, 'date': today.isoformat(), 'checkOutAt': check_out_at.isoformat()},
    )
    return {'teacherId': teacher.id, 'date': today.isoformat(), 'checkOutAt': check_out_at.isoformat()}


def _active_session_elsewhere(db: Session, teacher_id: int, session_id: int, now: datetime) -> ClassSession | None:
    candidates = (
        db.query(ClassSession)
        .join(SessionCheckIn, SessionCheckIn.session_id == ClassSession.id)
        .filter(
            SessionCheckIn.teacher_id == teacher_id,
            SessionCheckIn.check_out_at.is_(None),
            ClassSession.id != session_id,
            ClassSession.status == SessionStatus.ONGOING.value,
        )
        .all()
    )
    for row in candidates:
        if effective_phase(row.status, *session_window(row), now) == Phase.ONGOING:
            return row
    return None


def start_session(
    db: Session,
    session_id: int,
    teacher_id: int,
    *,
    bus: SessionEventBus,
    time_provider: TimeProvider = default_time_provider,
    lead_minutes: int | None = None,
) -> dict[str, Any]:
    session = _get_session(db, session_id)
    teacher = _get_teacher(db, teacher_id)
    is_substitute = session.substitute_teacher_id is not None and int(session.substitute_teacher_id) == int(teacher.id)
    if int(session.teacher_id) != int(teacher.id) and not is_substitute:
        raise ValidationError('Teacher is not assigned to this session', session_id=session.id, teacher_id=teacher.id)

    now = time_provider.now()
    start, end = session_window(session)
    if effective_phase(session.status, start, end, now) == Phase.COMPLETED:
        raise ConflictError('Session already completed', session_id=session.id)
    lead = settings.check_in_lead_minutes if lead_minutes is None else lead_minutes
    if not check_in_window_open(start, end, now, lead):
        raise ValidationError('Check-in window is not open yet', session_id=session.id, opens_minutes_before=lead)

    clash = _active_session_elsewhere(db, int(teacher.id), int(session.id), now)
    if clash is not None:
        raise UnavailableTeacherError('Teacher has another active session', teacher_id=teacher.id, session_id=int(clash.id))

    existing = (
        db.query(SessionCheckIn)
        .filter(SessionCheckIn.teacher_id == teacher.id, SessionCheckIn.session_id == session.id)
        .first()
    )
    if existing and existing.check_out_at is not None:
        raise ConflictError('Teacher already checked out of this session', session_id=session.id)

    wall_now = to_wall_clock(now)
    try:
        if existing is None:
            with db.begin_nested():
                db.add(SessionCheckIn(teacher_id=teacher.id, session_id=session.id, check_in_at=wall_now))
        transitioned = (
            db.query(ClassSession)
            .filter(ClassSession.id == session.id, ClassSession.status == SessionStatus.SCHEDULED.value)
            .update(
                {ClassSession.status: SessionStatus.ONGOING.value, ClassSession.started_at: wall_now},
                synchronize_session=False,
            )
        ) == 1
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info('session_checkin_race session_id=%s teacher_id=%s', session.id, teacher.id)
        transitioned = False

    if transitioned:
        logger.info('session_started session_id=%s teacher_id=%s substitute=%s', session.id, teacher.id, is_substitute)
        bus.publish(
            SESSION_STARTED,
            {
                'sessionId': session.id,
                'teacherId': teacher.id,
                'teacherName': teacher.name,
                'isSubstitute': is_substitute,
                'startedAt': wall_now.isoformat(),
            },
        )
    return {'sessionId': session.id, 'teacherId': teacher.id, 'status': SessionStatus.ONGOING.value, 'started': transitioned}


def end_session(
    db: Session,
    session_id: int,
    teacher_id: int,
    *,
    bus: SessionEventBus,
    time_provider: TimeProvider = default_time_provider,
) -> dict[str, Any]:
    session = _get_session(db, session_id)
    teacher = _get_teacher(db, teacher_id)
    wall_now = to_wall_clock(time_provider.now())

    checked_out = (
        db.query(SessionCheckIn)
        .filter(
            SessionCheckIn.teacher_id == teacher.id,
            SessionCheckIn.session_id == session.id,
            SessionCheckIn.check_out_at.is_(None),
        )
        .update({SessionCheckIn.check_out_at: wall_now}, synchronize_session=False)
    )
    if checked_out != 1:
        db.rollback()
        raise ConflictError('Teacher has no open check-in for this session', session_id=session.id, teacher_id=teacher.id)
    transitioned = (
        db.query(ClassSession)
        .filter(ClassSession.id == session.id, ClassSession.status == SessionStatus.ONGOING.value)
        .update(
            {ClassSession.status: SessionStatus.COMPLETED.value, ClassSession.ended_at: wall_now},
            synchronize_session=False,
        )
    ) == 1
    db.commit()

    logger.info('session_checked_out session_id=%s teacher_id=%s completed=%s', session.id, teacher.id, transitioned)
    if transitioned:
        bus.publish(
            SESSION_ENDED,
            {'sessionId': session.id, 'teacherId': teacher.id, 'autoClosed': False, 'endedAt': wall_now.isoformat()},
        )
    bus.publish(TEACHER_CHECKOUT, {'sessionId': session.id, 'teacherId': teacher.id, 'autoCheckout': False})
    return {'sessionId': session.id, 'teacherId': teacher.id, 'status': SessionStatus.COMPLETED.value, 'ended': transitioned}
