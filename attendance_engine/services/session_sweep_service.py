from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from sqlalchemy.orm import Session

from attendance_engine.config import settings
from attendance_engine.core.event_bus import SESSION_ENDED, TEACHER_CHECKOUT, SessionEventBus
from attendance_engine.core.time_provider import TimeProvider, default_time_provider, to_wall_clock
from attendance_engine.models import ClassSession, SessionCheckIn, SessionStatus
from attendance_engine.services.session_store_service import session_window


logger = logging.getLogger(__name__)


def close_overdue_sessions(
    db: Session,
    *,
    bus: SessionEventBus,
    grace_minutes: int | None = None,
    time_provider: TimeProvider = default_time_provider,
) -> dict[str, Any]:
    """Complete ongoing sessions whose end plus grace has passed.

    Runs on demand (admin endpoint or script). Each session is closed with its
    own conditional update and commit, so a concurrent checkout simply wins.
    """
    grace = timedelta(minutes=settings.auto_close_grace_minutes if grace_minutes is None else max(0, grace_minutes))
    now = time_provider.now()
    candidates = (
        db.query(ClassSession)
        .filter(ClassSession.status == SessionStatus.ONGOING.value, ClassSession.session_date <= now.date())
        .order_by(ClassSession.session_date.asc(), ClassSession.start_time.asc(), ClassSession.id.asc())
        .all()
    )

    closed: list[int] = []
    for session in candidates:
        _, end = session_window(session)
        if now <= end + grace:
            continue
        end_wall = to_wall_clock(end)
        transitioned = (
            db.query(ClassSession)
            .filter(ClassSession.id == session.id, ClassSession.status == SessionStatus.ONGOING.value)
            .update(
                {
                    ClassSession.status: SessionStatus.COMPLETED.value,
                    ClassSession.ended_at: end_wall,
                    ClassSession.auto_closed: True,
                },
                synchronize_session=False,
            )
        ) == 1
        if not transitioned:
            db.rollback()
            continue
        open_check_ins = (
            db.query(SessionCheckIn)
            .filter(SessionCheckIn.session_id == session.id, SessionCheckIn.check_out_at.is_(None))
            .all()
        )
        teacher_ids = [int(row.teacher_id) for row in open_check_ins]
        for row in open_check_ins:
            row.check_out_at = end_wall
            row.auto_checkout = True
        db.commit()

        closed.append(int(session.id))
        logger.info('session_auto_closed session_id=%s auto_checkouts=%s', session.id, len(teacher_ids))
        bus.publish(
            SESSION_ENDED,
            {'sessionId': int(session.id), 'autoClosed': True, 'endedAt': end_wall.isoformat()},
        )
        if teacher_ids:
            bus.publish(
                TEACHER_CHECKOUT,
                {'sessionId': int(session.id), 'teacherIds': teacher_ids, 'autoCheckout': True},
            )

    return {'inspected': len(candidates), 'closed': len(closed), 'sessionIds': closed}
