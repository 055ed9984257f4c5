from __future__ import annotations

import logging
import math
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from attendance_engine.config import settings
from attendance_engine.core.errors import NotFoundError, ValidationError
from attendance_engine.core.time_provider import TimeProvider, default_time_provider, session_instant, to_epoch_ms
from attendance_engine.core.time_window import Phase, effective_phase, is_warning
from attendance_engine.models import ClassSession, ScheduleSlot, SessionCheckIn, SessionStatus, TeacherAttendance


logger = logging.getLogger(__name__)

REASON_ABSENT = 'absent'
REASON_NOT_STARTED = 'not_started'


def session_window(row: ClassSession) -> tuple[datetime, datetime]:
    return session_instant(row.session_date, row.start_time), session_instant(row.session_date, row.end_time)


def resolve_lookahead_hours(value: Any = None) -> float:
    if value is None:
        value = settings.lookahead_default_hours
    if isinstance(value, bool):
        raise ValidationError('lookahead hours must be a number', hours=value)
    try:
        hours = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError('lookahead hours must be a number', hours=str(value)) from exc
    if not math.isfinite(hours) or hours <= 0:
        raise ValidationError('lookahead hours must be positive', hours=str(value))
    return min(hours, float(settings.lookahead_max_hours))


def present_teacher_ids(db: Session, dates: set[date]) -> dict[date, set[int]]:
    """Teachers at school (checked in, not checked out) per date."""
    if not dates:
        return {}
    rows = (
        db.query(TeacherAttendance)
        .filter(
            TeacherAttendance.attendance_date.in_(sorted(dates)),
            TeacherAttendance.check_in_at.isnot(None),
            TeacherAttendance.check_out_at.is_(None),
        )
        .all()
    )
    by_date: dict[date, set[int]] = defaultdict(set)
    for row in rows:
        by_date[row.attendance_date].add(int(row.teacher_id))
    return by_date


def checked_in_teacher_ids(db: Session, session_ids: list[int]) -> dict[int, set[int]]:
    if not session_ids:
        return {}
    rows = db.query(SessionCheckIn).filter(SessionCheckIn.session_id.in_(session_ids)).all()
    by_session: dict[int, set[int]] = defaultdict(set)
    for row in rows:
        by_session[int(row.session_id)].add(int(row.teacher_id))
    return by_session


def _needs_substitute_reason(row: ClassSession, phase: Phase, home_present: bool) -> str | None:
    if row.status != SessionStatus.SCHEDULED.value or phase == Phase.COMPLETED:
        return None
    if not home_present:
        return REASON_ABSENT
    if phase == Phase.ONGOING:
        return REASON_NOT_STARTED
    return None


def _ref(entity, *fields: str) -> dict | None:
    if entity is None:
        return None
    return {field: getattr(entity, field) for field in ('id', *fields)}


def serialize_session(
    row: ClassSession,
    *,
    now: datetime,
    present_ids: set[int],
    session_check_ins: set[int],
) -> dict[str, Any]:
    start, end = session_window(row)
    start_ms, end_ms, now_ms = to_epoch_ms(start), to_epoch_ms(end), to_epoch_ms(now)
    phase = effective_phase(row.status, start_ms, end_ms, now_ms)
    substitute_id = int(row.substitute_teacher_id) if row.substitute_teacher_id else None
    substitute_checked_in = substitute_id is not None and substitute_id in session_check_ins
    # Stored ongoing is only written by a session start.
    teacher_present = row.status == SessionStatus.ONGOING.value or bool(session_check_ins)
    reason = _needs_substitute_reason(row, phase, int(row.teacher_id) in present_ids)
    countdown_ms = start_ms - now_ms
    return {
        'id': row.id,
        'scheduleSlotId': row.schedule_slot_id,
        'date': row.session_date.isoformat(),
        'startTime': row.start_time.strftime('%H:%M:%S'),
        'endTime': row.end_time.strftime('%H:%M:%S'),
        'status': row.status,
        'sessionStatus': phase.value,
        'warning': is_warning(phase, substitute_id, substitute_checked_in, teacher_present=teacher_present),
        'startTimeMs': start_ms,
        'endTimeMs': end_ms,
        'serverTimeMs': now_ms,
        'countdownMs': max(0, countdown_ms),
        'countdownMins': round(countdown_ms / 60000),
        'substituteTeacherId': substitute_id,
        'substituteTeacher': _ref(row.substitute_teacher, 'name'),
        'substituteCheckedIn': substitute_checked_in,
        'teacherPresent': teacher_present,
        'needsSubstitute': reason is not None and substitute_id is None,
        'reason': reason,
        'class': _ref(row.school_class, 'name'),
        'subject': _ref(row.subject, 'name', 'code'),
        'teacher': _ref(row.teacher, 'name'),
    }


def _snapshot_query(db: Session):
    return db.query(ClassSession).options(
        joinedload(ClassSession.school_class),
        joinedload(ClassSession.subject),
        joinedload(ClassSession.teacher),
        joinedload(ClassSession.substitute_teacher),
    )


def _serialize_rows(db: Session, rows: list[ClassSession], now: datetime) -> list[dict[str, Any]]:
    present = present_teacher_ids(db, {row.session_date for row in rows})
    check_ins = checked_in_teacher_ids(db, [int(row.id) for row in rows])
    return [
        serialize_session(
            row,
            now=now,
            present_ids=present.get(row.session_date, set()),
            session_check_ins=check_ins.get(int(row.id), set()),
        )
        for row in rows
    ]


def list_sessions_in_window(
    db: Session,
    *,
    lookahead_hours: Any = None,
    needs_substitute_only: bool = False,
    time_provider: TimeProvider = default_time_provider,
) -> dict[str, Any]:
    hours = resolve_lookahead_hours(lookahead_hours)
    now = time_provider.now()
    window_end = now + timedelta(hours=hours)
    rows = (
        _snapshot_query(db)
        .filter(ClassSession.session_date >= now.date(), ClassSession.session_date <= window_end.date())
        .all()
    )
    in_window = []
    for row in rows:
        start, end = session_window(row)
        if start <= window_end and end >= now:
            in_window.append((start, int(row.id), row))
    in_window.sort(key=lambda item: (item[0], item[1]))

    sessions = _serialize_rows(db, [row for _, _, row in in_window], now)
    if needs_substitute_only:
        sessions = [item for item in sessions if item['needsSubstitute'] or item['substituteTeacherId']]
    return {
        'sessions': sessions,
        'count': len(sessions),
        'lookaheadHours': hours,
        'serverTimeMs': to_epoch_ms(now),
    }


def get_session_snapshot(
    db: Session,
    session_id: int,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> dict[str, Any]:
    row = _snapshot_query(db).filter(ClassSession.id == int(session_id)).first()
    if not row:
        raise NotFoundError('Session not found', session_id=session_id)
    return _serialize_rows(db, [row], time_provider.now())[0]


def expand_schedule_for_date(db: Session, target_date: date) -> dict[str, Any]:
    slots = (
        db.query(ScheduleSlot)
        .filter(ScheduleSlot.weekday == target_date.weekday(), ScheduleSlot.active.is_(True))
        .order_by(ScheduleSlot.start_time.asc(), ScheduleSlot.id.asc())
        .all()
    )
    existing_slot_ids = {
        int(slot_id)
        for (slot_id,) in db.query(ClassSession.schedule_slot_id)
        .filter(ClassSession.session_date == target_date, ClassSession.schedule_slot_id.isnot(None))
        .all()
    }
    created = 0
    for slot in slots:
        if int(slot.id) in existing_slot_ids:
            continue
        try:
            with db.begin_nested():
                db.add(
                    ClassSession(
                        schedule_slot_id=slot.id,
                        session_date=target_date,
                        start_time=slot.start_time,
                        end_time=slot.end_time,
                        class_id=slot.class_id,
                        subject_id=slot.subject_id,
                        teacher_id=slot.teacher_id,
                        status=SessionStatus.SCHEDULED.value,
                    )
                )
            created += 1
        except IntegrityError:
            # Another expansion run inserted the same slot/date first.
            logger.info('session_expand_race slot_id=%s date=%s', slot.id, target_date.isoformat())
    db.commit()
    logger.info('sessions_expanded date=%s slots=%s created=%s', target_date.isoformat(), len(slots), created)
    return {'date': target_date.isoformat(), 'slots': len(slots), 'created': created}
