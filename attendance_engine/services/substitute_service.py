from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import or_
from sqlalchemy.orm import Session

from attendance_engine.core.errors import ConflictError, NotFoundError, UnavailableTeacherError, ValidationError
from attendance_engine.core.event_bus import SUBSTITUTE_ASSIGNED, SUBSTITUTE_REASSIGNED, SessionEventBus
from attendance_engine.core.time_provider import TimeProvider, default_time_provider, to_wall_clock
from attendance_engine.core.time_window import Phase, effective_phase
from attendance_engine.models import ClassSession, SessionStatus, Teacher
from attendance_engine.services.availability_service import Availability, teacher_availability
from attendance_engine.services.session_store_service import session_window


logger = logging.getLogger(__name__)


def _positive_id(value: Any, label: str) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f'{label} must be an integer', **{label: value}) from exc
    if isinstance(value, bool) or parsed <= 0:
        raise ValidationError(f'{label} must be positive', **{label: value})
    return parsed


def _load_session(db: Session, session_id: int) -> ClassSession:
    row = db.query(ClassSession).filter(ClassSession.id == session_id).first()
    if not row:
        raise NotFoundError('Session not found', session_id=session_id)
    return row


def _load_teacher(db: Session, teacher_id: int) -> Teacher:
    teacher = db.query(Teacher).filter(Teacher.id == teacher_id).first()
    if not teacher:
        raise NotFoundError('Teacher not found', teacher_id=teacher_id)
    return teacher


def _overlapping_commitment(db: Session, teacher_id: int, session: ClassSession) -> ClassSession | None:
    start, end = session_window(session)
    others = (
        db.query(ClassSession)
        .filter(
            ClassSession.session_date == session.session_date,
            ClassSession.id != session.id,
            ClassSession.status != SessionStatus.COMPLETED.value,
            or_(ClassSession.teacher_id == teacher_id, ClassSession.substitute_teacher_id == teacher_id),
        )
        .all()
    )
    for other in others:
        other_start, other_end = session_window(other)
        if other_end <= other_start:
            continue
        if other_start < end and start < other_end:
            return other
    return None


def ensure_teacher_available(
    db: Session,
    teacher: Teacher,
    session: ClassSession,
    time_provider: TimeProvider = default_time_provider,
) -> None:
    teacher_id = int(teacher.id)
    if not teacher.active:
        raise UnavailableTeacherError('Teacher is inactive', teacher_id=teacher_id)
    if teacher_id == int(session.teacher_id):
        raise UnavailableTeacherError('Teacher is already scheduled for this session', teacher_id=teacher_id)
    state = teacher_availability(db, teacher_id, session.session_date, time_provider=time_provider)
    if state == Availability.CHECKED_OUT:
        raise UnavailableTeacherError('Teacher has checked out for the day', teacher_id=teacher_id, state=state.value)
    if state == Availability.BUSY:
        raise UnavailableTeacherError('Teacher is teaching another session', teacher_id=teacher_id, state=state.value)
    clash = _overlapping_commitment(db, teacher_id, session)
    if clash is not None:
        raise UnavailableTeacherError(
            'Teacher already covers an overlapping session',
            teacher_id=teacher_id,
            session_id=int(clash.id),
        )


def _ensure_not_completed(session: ClassSession, time_provider: TimeProvider) -> None:
    start, end = session_window(session)
    if effective_phase(session.status, start, end, time_provider.now()) == Phase.COMPLETED:
        raise ConflictError('Session already completed', session_id=int(session.id))


def assign_substitute(
    db: Session,
    session_id: Any,
    teacher_id: Any,
    *,
    bus: SessionEventBus,
    time_provider: TimeProvider = default_time_provider,
) -> dict[str, Any]:
    session_id = _positive_id(session_id, 'session_id')
    teacher_id = _positive_id(teacher_id, 'teacher_id')
    try:
        session = _load_session(db, session_id)
        teacher = _load_teacher(db, teacher_id)
        if session.substitute_teacher_id is not None:
            raise ConflictError(
                'Session already has a substitute',
                session_id=session_id,
                substitute_teacher_id=int(session.substitute_teacher_id),
            )
        _ensure_not_completed(session, time_provider)
        ensure_teacher_available(db, teacher, session, time_provider)

        updated = (
            db.query(ClassSession)
            .filter(
                ClassSession.id == session_id,
                ClassSession.substitute_teacher_id.is_(None),
                ClassSession.status != SessionStatus.COMPLETED.value,
            )
            .update(
                {
                    ClassSession.substitute_teacher_id: teacher_id,
                    ClassSession.substitute_assigned_at: to_wall_clock(time_provider.now()),
                },
                synchronize_session=False,
            )
        )
        if updated != 1:
            raise ConflictError('Session already has a substitute', session_id=session_id)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info('substitute_assigned session_id=%s teacher_id=%s', session_id, teacher_id)
    bus.publish(
        SUBSTITUTE_ASSIGNED,
        {'sessionId': session_id, 'teacherId': teacher_id, 'teacherName': teacher.name},
    )
    return {
        'id': session_id,
        'substituteTeacherId': teacher_id,
        'substituteTeacherName': teacher.name,
    }


def reassign_substitute(
    db: Session,
    session_id: Any,
    expected_teacher_id: Any,
    teacher_id: Any,
    *,
    bus: SessionEventBus,
    time_provider: TimeProvider = default_time_provider,
) -> dict[str, Any]:
    """Replace the current substitute, only if it is still ``expected_teacher_id``.

    Allowed until the session starts; once anyone has checked in the
    assignment is final.
    """
    session_id = _positive_id(session_id, 'session_id')
    expected_teacher_id = _positive_id(expected_teacher_id, 'expected_teacher_id')
    teacher_id = _positive_id(teacher_id, 'teacher_id')
    if expected_teacher_id == teacher_id:
        raise ValidationError('New substitute must differ from the current one', teacher_id=teacher_id)
    try:
        session = _load_session(db, session_id)
        teacher = _load_teacher(db, teacher_id)
        current = int(session.substitute_teacher_id) if session.substitute_teacher_id else None
        if current != expected_teacher_id:
            raise ConflictError(
                'Substitute changed since last snapshot',
                session_id=session_id,
                substitute_teacher_id=current,
            )
        if session.status != SessionStatus.SCHEDULED.value:
            raise ConflictError('Session already started', session_id=session_id, status=session.status)
        _ensure_not_completed(session, time_provider)
        ensure_teacher_available(db, teacher, session, time_provider)

        updated = (
            db.query(ClassSession)
            .filter(
                ClassSession.id == session_id,
                ClassSession.substitute_teacher_id == expected_teacher_id,
                ClassSession.status == SessionStatus.SCHEDULED.value,
            )
            .update(
                {
                    ClassSession.substitute_teacher_id: teacher_id,
                    ClassSession.substitute_assigned_at: to_wall_clock(time_provider.now()),
                },
                synchronize_session=False,
            )
        )
        if updated != 1:
            raise ConflictError('Substitute changed since last snapshot', session_id=session_id)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        'substitute_reassigned session_id=%s previous_teacher_id=%s teacher_id=%s',
        session_id,
        expected_teacher_id,
        teacher_id,
    )
    bus.publish(
        SUBSTITUTE_REASSIGNED,
        {
            'sessionId': session_id,
            'teacherId': teacher_id,
            'teacherName': teacher.name,
            'previousTeacherId': expected_teacher_id,
        },
    )
    return {
        'id': session_id,
        'substituteTeacherId': teacher_id,
        'substituteTeacherName': teacher.name,
        'previousTeacherId': expected_teacher_id,
    }
