"""
auth/sessions.py -- Server-side session lifecycle and the session cookie.

A session is a row in the sessions table; the cookie only carries its id.
Deleting the row is therefore enough to sign a browser out, and deleting all
rows of a user signs out every device at once (used by password reset).

Expiry is sliding: validate_session() pushes expires_at forward once less
than half of the lifetime remains, so active users are not logged out after
SESSION_EXPIRE_DAYS while idle sessions still lapse.

Cookie attributes:
  httponly=True   -- JS cannot read the cookie (XSS mitigation).
  samesite=strict -- never sent on cross-site requests (CSRF mitigation).
  secure          -- HTTPS only when SECURE_COOKIES=true (production).
  no max_age      -- a browser-session cookie; the server-side expiry is the
                     real limit.

Layer rule: no imports from api/, web/, or mail/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from auth.models import Session, User
from auth.store import UserStore, to_iso
from auth.tokens import generate_session_id
from core.config import get_settings

logger = logging.getLogger("gatehouse.sessions")


class SessionManager:
    """Create, validate and invalidate sessions; read and write the cookie.

    Usage:
        sessions = SessionManager(store)
        session = sessions.create_session(user.id)
        sessions.create_session_cookie(response, session.id)
    """

    def __init__(
        self,
        store: UserStore,
        expires_in: timedelta | None = None,
        cookie_name: str | None = None,
        secure: bool | None = None,
    ) -> None:
        settings = get_settings()
        self.store = store
        self.expires_in = expires_in or timedelta(days=settings.session_expire_days)
        self.cookie_name = cookie_name or settings.session_cookie_name
        self.secure = settings.secure_cookies if secure is None else secure

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create_session(self, user_id: str) -> Session:
        session = Session(
            id=generate_session_id(),
            user_id=user_id,
            expires_at=to_iso(datetime.now(timezone.utc) + self.expires_in),
        )
        self.store.create_session(session)
        return session

    def validate_session(self, session_id: str) -> tuple[Session | None, User | None]:
        """Resolve a cookie value to its (session, user) pair.

        Returns (None, None) when the session is unknown, expired, or its user
        no longer exists. Expired rows are deleted on the way out.
        """
        if not session_id:
            return None, None
        session = self.store.get_session(session_id)
        if session is None:
            return None, None

        now = datetime.now(timezone.utc)
        expires_at = datetime.fromisoformat(session.expires_at)
        if expires_at <= now:
            self.store.delete_session(session.id)
            return None, None

        user = self.store.get_by_id(session.user_id)
        if user is None:
            self.store.delete_session(session.id)
            return None, None

        if expires_at - now < self.expires_in / 2:
            session.expires_at = to_iso(now + self.expires_in)
            self.store.update_session_expiry(session.id, session.expires_at)
        return session, user

    def invalidate_session(self, session_id: str) -> None:
        self.store.delete_session(session_id)

    def invalidate_user_sessions(self, user_id: str) -> int:
        count = self.store.delete_user_sessions(user_id)
        logger.info("Invalidated %d session(s) for user %s", count, user_id)
        return count

    # ------------------------------------------------------------------
    # Cookie helpers
    # ------------------------------------------------------------------

    def read_session_cookie(self, request) -> str | None:
        return request.cookies.get(self.cookie_name)

    def create_session_cookie(self, response, session_id: str) -> None:
        """Write the session id as an httpOnly, SameSite=Strict cookie."""
        response.set_cookie(
            self.cookie_name,
            value=session_id,
            httponly=True,
            samesite="strict",
            secure=self.secure,
            path="/",
        )

    def create_blank_session_cookie(self, response) -> None:
        """Expire the session cookie in the browser."""
        response.delete_cookie(
            self.cookie_name,
            httponly=True,
            samesite="strict",
            secure=self.secure,
            path="/",
        )
