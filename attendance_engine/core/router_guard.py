from __future__ import annotations

from typing import Iterable

from fastapi import HTTPException, Request

from attendance_engine.models import Role


USER_ID_HEADER = 'x-user-id'
USER_ROLE_HEADER = 'x-user-role'


def require_auth_user(request: Request) -> dict:
    """Identity forwarded by the authenticating gateway; nothing is verified here."""
    raw_user_id = (request.headers.get(USER_ID_HEADER) or '').strip()
    try:
        user_id = int(raw_user_id)
    except ValueError:
        user_id = 0
    if user_id <= 0:
        raise HTTPException(status_code=401, detail='Unauthorized')
    return {
        'user_id': user_id,
        'role': (request.headers.get(USER_ROLE_HEADER) or '').strip().lower(),
    }


def require_role(user: dict, allowed_roles: set[str] | Iterable[str]) -> None:
    normalized = {str(getattr(role, 'value', role)).strip().lower() for role in allowed_roles}
    if str(user.get('role') or '').strip().lower() not in normalized:
        raise HTTPException(status_code=403, detail='Forbidden')


def require_admin(request: Request) -> dict:
    user = require_auth_user(request)
    require_role(user, {Role.ADMIN})
    return user
