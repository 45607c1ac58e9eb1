"""Caller identity seam.

Authentication is handled upstream (gateway or auth proxy); the portal only
trusts the ``X-User-Id`` header it forwards.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

USER_ID_HEADER = 'x-user-id'


def get_requester_id(request: Request) -> str:
    """FastAPI dependency returning the caller's user id.

    Raises:
        HTTPException: 401 if the identity header is missing or blank.
    """
    user_id = request.headers.get(USER_ID_HEADER, '').strip()
    if not user_id:
        raise HTTPException(
            status_code=401,
            detail={
                'code': 'AUTH_REQUIRED',
                'message': 'Authentication required',
            },
            headers={'WWW-Authenticate': 'Bearer'},
        )
    return user_id
