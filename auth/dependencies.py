"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The only credential is the session cookie set by sign-in or password reset.
The SessionManager lives on app.state (wired in the lifespan), so these
helpers need nothing but the Request.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.

Layer rule: no imports from api/ or web/. auth/dependencies.py may import
from fastapi because it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import Session, User
from auth.sessions import SessionManager


def try_get_session(request: Request) -> tuple[Session | None, User | None]:
    """Return the (session, user) pair for the request's session cookie."""
    sessions: SessionManager = request.app.state.sessions
    session_id = sessions.read_session_cookie(request)
    if not session_id:
        return None, None
    return sessions.validate_session(session_id)


def try_get_current_user(request: Request) -> User | None:
    """Return the authenticated User, or None. Never raises."""
    _session, user = try_get_session(request)
    return user


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
