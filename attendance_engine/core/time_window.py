"""Session lifecycle phases derived from absolute instants.

Everything here is pure: no database, no clock. Callers pass ``now``
explicitly so the same computation runs on the server (canonical snapshot)
and on a client correcting for clock drift with ``serverTimeMs``.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Mapping

from attendance_engine.core.time_provider import to_epoch_ms


class Phase(str, Enum):
    UPCOMING = 'upcoming'
    ONGOING = 'ongoing'
    COMPLETED = 'completed'


class StoredStatus(str, Enum):
    SCHEDULED = 'scheduled'
    ONGOING = 'ongoing'
    COMPLETED = 'completed'


MINUTE_MS = 60_000
CRITICAL_MINUTES = 15
SOON_MINUTES = 30
LATER_MINUTES = 60


def _as_ms(value: datetime | int | float) -> int:
    if isinstance(value, datetime):
        return to_epoch_ms(value)
    return int(value)


def evaluate_phase(start: datetime | int, end: datetime | int, now: datetime | int) -> Phase:
    start_ms, end_ms, now_ms = _as_ms(start), _as_ms(end), _as_ms(now)
    if end_ms <= start_ms:
        return Phase.COMPLETED
    if now_ms < start_ms:
        return Phase.UPCOMING
    if now_ms > end_ms:
        return Phase.COMPLETED
    return Phase.ONGOING


def effective_phase(
    stored_status: str | None,
    start: datetime | int,
    end: datetime | int,
    now: datetime | int,
) -> Phase:
    """Phase after folding in the stored status.

    A stored ``completed`` is final. A stored ``ongoing`` (teacher checked in
    during the lead window) pulls ``upcoming`` forward to ``ongoing``; the end
    of the window still completes it.
    """
    status = str(stored_status or StoredStatus.SCHEDULED.value)
    if status == StoredStatus.COMPLETED.value:
        return Phase.COMPLETED
    phase = evaluate_phase(start, end, now)
    if status == StoredStatus.ONGOING.value and phase == Phase.UPCOMING:
        return Phase.ONGOING
    return phase


def is_warning(
    phase: Phase | str,
    substitute_teacher_id: int | None,
    substitute_checked_in: bool | None,
    *,
    teacher_present: bool = False,
) -> bool:
    """Ongoing session with nobody teaching it and no substitute arranged."""
    return (
        Phase(phase) == Phase.ONGOING
        and not teacher_present
        and substitute_teacher_id is None
        and substitute_checked_in is not True
    )


def check_in_window_open(
    start: datetime,
    end: datetime,
    now: datetime,
    lead_minutes: int,
) -> bool:
    if end <= start:
        return False
    return start - timedelta(minutes=max(0, int(lead_minutes))) <= now <= end


def urgency_band(ms_until_start: int) -> str:
    minutes = max(0, ms_until_start) // MINUTE_MS
    if minutes <= CRITICAL_MINUTES:
        return 'critical'
    if minutes <= SOON_MINUTES:
        return 'soon'
    if minutes < LATER_MINUTES:
        return 'normal'
    return 'later'


@dataclass(frozen=True)
class SessionClock:
    start_ms: int
    end_ms: int
    server_time_ms: int
    stored_status: str = StoredStatus.SCHEDULED.value
    substitute_teacher_id: int | None = None
    substitute_checked_in: bool = False
    teacher_present: bool = False

    @classmethod
    def from_snapshot(cls, snapshot: Mapping[str, Any]) -> 'SessionClock':
        return cls(
            start_ms=int(snapshot['startTimeMs']),
            end_ms=int(snapshot['endTimeMs']),
            server_time_ms=int(snapshot['serverTimeMs']),
            stored_status=str(snapshot.get('status') or StoredStatus.SCHEDULED.value),
            substitute_teacher_id=snapshot.get('substituteTeacherId'),
            substitute_checked_in=bool(snapshot.get('substituteCheckedIn')),
            teacher_present=bool(snapshot.get('teacherPresent', snapshot.get('status') == StoredStatus.ONGOING.value)),
        )


@dataclass(frozen=True)
class Countdown:
    phase: Phase
    warning: bool
    remaining_ms: int
    band: str

    @property
    def minutes(self) -> int:
        return self.remaining_ms // MINUTE_MS

    @property
    def seconds(self) -> int:
        return (self.remaining_ms % MINUTE_MS) // 1000


def countdown(clock: SessionClock, client_now_ms: int, received_at_ms: int | None = None) -> Countdown:
    """Per-second countdown for a snapshot, corrected for client clock drift.

    ``received_at_ms`` is the client's wall clock when the snapshot arrived;
    the difference to ``server_time_ms`` is applied to every later tick.
    """
    reference_ms = client_now_ms if received_at_ms is None else received_at_ms
    offset_ms = clock.server_time_ms - int(reference_ms)
    now_ms = int(client_now_ms) + offset_ms

    phase = effective_phase(clock.stored_status, clock.start_ms, clock.end_ms, now_ms)
    warning = is_warning(
        phase,
        clock.substitute_teacher_id,
        clock.substitute_checked_in,
        teacher_present=clock.teacher_present,
    )
    if phase == Phase.UPCOMING:
        remaining = clock.start_ms - now_ms
        return Countdown(phase=phase, warning=warning, remaining_ms=max(0, remaining), band=urgency_band(remaining))
    if phase == Phase.ONGOING:
        remaining = clock.end_ms - now_ms
        return Countdown(phase=phase, warning=warning, remaining_ms=max(0, remaining), band='live')
    return Countdown(phase=phase, warning=False, remaining_ms=0, band='done')
