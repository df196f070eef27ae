"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The `session` cookie is the only credential. It is resolved through
SessionManager.validate(), i.e. a server-side lookup -- the cookie value by
itself proves nothing.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.

This module may import from fastapi because it is part of the FastAPI
dependency injection system. The rest of auth/ is transport-free.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.actions import AuthActions
from auth.cookies import SESSION_COOKIE
from auth.models import User


def get_actions(request: Request) -> AuthActions:
    """Return the process-wide AuthActions built in the lifespan."""
    return request.app.state.auth


def try_get_current_user(request: Request) -> User | None:
    """Return the signed-in User for this request, or None. Never raises."""
    return get_actions(request).get_current_user(request.cookies.get(SESSION_COOKIE))


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user
