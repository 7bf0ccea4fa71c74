"""
tests/conftest.py -- Shared test fixtures for Gatehouse tests.

This module provides:
  - RecordingEmailClient: in-memory stand-in for Postmark (records or fails)
  - store / sessions: isolated in-memory UserStore + SessionManager
  - make_user: factory that inserts a user with a known password
  - app_client: TestClient over the full ASGI app (api + web) with a patched
    lifespan wiring the test store, session manager and email client

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process. Each
fixture instance uses a fresh name so tests never see each other's rows.

DEBUG must be set before any app import so get_settings() accepts a missing
Postmark configuration instead of raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
import re
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager

os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from asgi import app
from auth.models import User
from auth.sessions import SessionManager
from auth.store import UserStore
from auth.tokens import hash_password
from core.limiter import limiter
from mail.client import EmailClient, EmailSendError

PASSWORD = "correct-horse-battery"
# Hash the shared test password once; bcrypt is slow.
PASSWORD_HASH = hash_password(PASSWORD)

_RESET_LINK_RE = re.compile(r'href="([^"]*/reset-password/([A-Za-z0-9_\-]+))"')


class RecordingEmailClient(EmailClient):
    """Collects sent messages. Set fail=True to simulate a provider outage."""

    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.fail = False

    def send_email(self, to: str, subject: str, html_body: str) -> None:
        if self.fail:
            raise EmailSendError("simulated provider outage")
        self.sent.append({"to": to, "subject": subject, "html_body": html_body})

    def last_reset_link(self) -> tuple[str, str]:
        """Return (link, token) from the most recent message."""
        match = _RESET_LINK_RE.search(self.sent[-1]["html_body"])
        assert match, "no reset link in the last email"
        return match.group(1), match.group(2)


def _memory_db_url() -> str:
    return f"sqlite:///file:gatehouse_test_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


# ---------------------------------------------------------------------------
# Store-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore(_memory_db_url())
    yield s
    s.close()


@pytest.fixture
def sessions(store: UserStore) -> SessionManager:
    return SessionManager(store, secure=False)


@pytest.fixture
def mailer() -> RecordingEmailClient:
    return RecordingEmailClient()


@pytest.fixture
def password() -> str:
    """Plain-text password of every make_user() account."""
    return PASSWORD


@pytest.fixture
def make_user(store: UserStore) -> Callable[..., User]:
    """Insert a user whose password is PASSWORD and return the stored record."""

    def _make(email: str = "ada@example.com", verified: bool = True, **fields) -> User:
        uid = store.create_user(
            User(
                email=email,
                email_verified=verified,
                hashed_password=fields.pop("hashed_password", PASSWORD_HASH),
                **fields,
            )
        )
        return store.get_by_id(uid)

    return _make


# ---------------------------------------------------------------------------
# App fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(store: UserStore, sessions: SessionManager, mailer: EmailClient):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine so shutdown can cancel a
    real asyncio.Task, as the production lifespan does.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = store
        app.state.sessions = sessions
        app.state.email_client = mailer
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture
def app_client(
    store: UserStore, sessions: SessionManager, mailer: RecordingEmailClient
) -> Generator[TestClient, None, None]:
    """TestClient over the real app, isolated store, recording mailer.

    follow_redirects=False: tests assert on redirect Location
    and Set-Cookie headers, which are invisible once the client follows the
    redirect. base_url uses localhost so TrustedHostMiddleware accepts it.
    """
    app.router.lifespan_context = _patch_lifespan(store, sessions, mailer)
    limiter.enabled = False
    with TestClient(
        app,
        base_url="http://localhost",
        follow_redirects=False,
        raise_server_exceptions=True,
    ) as client:
        yield client
    limiter.enabled = True
