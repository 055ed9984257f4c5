from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

import httpx

from attendance_engine.core.time_window import Countdown, SessionClock, countdown


def _wall_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class AssignmentOutcome:
    ok: bool
    status_code: int
    code: str | None
    detail: str | None
    board: dict[str, Any] = field(default_factory=dict)

    @property
    def already_handled(self) -> bool:
        return self.code in ('conflict', 'teacher_unavailable')


class SubstituteBoardClient:
    """Client side of the substitute board.

    Every assignment attempt is followed by a full refetch; a conflict means
    somebody else already handled the session, not a hard failure.
    """

    def __init__(
        self,
        base_url: str,
        *,
        user_id: int,
        role: str = 'admin',
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.headers = {'x-user-id': str(user_id), 'x-user-role': role}
        self._transport = transport
        self._received_at_ms: int | None = None
        self._sessions: list[dict[str, Any]] = []

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=self.headers,
            transport=self._transport,
        )

    def fetch_board(self, hours: float = 24) -> dict[str, Any]:
        with self._client() as client:
            sessions = client.get('/api/substitutes/sessions', params={'hours': hours})
            sessions.raise_for_status()
            teachers = client.get('/api/substitutes/teachers')
            teachers.raise_for_status()
        self._received_at_ms = _wall_ms()
        body = sessions.json()
        self._sessions = list(body.get('sessions') or [])
        return {'sessions': self._sessions, 'teachers': teachers.json(), 'serverTimeMs': body.get('serverTimeMs')}

    def assign(self, session_id: int, teacher_id: int) -> AssignmentOutcome:
        with self._client() as client:
            res = client.put(f'/api/substitutes/sessions/{session_id}/substitute/{teacher_id}')
        payload = res.json() if res.content else {}
        board = self.fetch_board()
        if res.is_success:
            return AssignmentOutcome(ok=True, status_code=res.status_code, code=None, detail=None, board=board)
        return AssignmentOutcome(
            ok=False,
            status_code=res.status_code,
            code=payload.get('code'),
            detail=payload.get('detail'),
            board=board,
        )

    def countdowns(self, client_now_ms: int | None = None) -> dict[int, Countdown]:
        now_ms = _wall_ms() if client_now_ms is None else int(client_now_ms)
        return {
            int(item['id']): countdown(SessionClock.from_snapshot(item), now_ms, received_at_ms=self._received_at_ms)
            for item in self._sessions
        }
