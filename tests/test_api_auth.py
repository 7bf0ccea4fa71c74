"""
tests/test_api_auth.py -- Integration tests for the /api/v1/auth JSON routes.

Covers:
  - login: cookie on success, one 401 for unknown email and wrong password
  - me: 401 without a session, identity with one
  - logout: session row deleted, cookie expired
  - forgot-password / reset-password: status mapping of every error code
  - validation errors use the shared error envelope
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from auth.models import PasswordResetToken
from auth.store import to_iso
from core.limiter import limiter

NEW_PASSWORD = "brand-new-password"


@pytest.fixture
def signed_in(app_client, make_user, password):
    """Log the default user in through the API; return the User."""
    user = make_user(username="ada")
    resp = app_client.post("/api/v1/auth/login", json={"email": user.email, "password": password})
    assert resp.status_code == 200
    return user


class TestLogin:
    def test_success(self, app_client, make_user, password):
        user = make_user()
        resp = app_client.post("/api/v1/auth/login", json={"email": "ADA@example.com", "password": password})

        assert resp.status_code == 200
        assert resp.json() == {"user_id": user.id, "email": "ada@example.com"}
        assert resp.headers["cache-control"] == "no-store"
        assert resp.headers["set-cookie"].startswith("session=")

    @pytest.mark.parametrize(
        ("email", "pw"),
        [("ada@example.com", "wrong-password"), ("nobody@example.com", "correct-horse-battery")],
    )
    def test_bad_credentials(self, app_client, make_user, email, pw):
        make_user()
        resp = app_client.post("/api/v1/auth/login", json={"email": email, "password": pw})

        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials"
        assert "set-cookie" not in resp.headers

    def test_missing_field_is_validation_error(self, app_client):
        resp = app_client.post("/api/v1/auth/login", json={"email": "ada@example.com"})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_rate_limit_keeps_json_envelope(self, app_client, make_user):
        make_user()
        limiter.reset()
        limiter.enabled = True
        try:
            responses = [
                app_client.post("/api/v1/auth/login", json={"email": "ada@example.com", "password": "wrong-password"})
                for _ in range(11)
            ]
        finally:
            limiter.enabled = False
            limiter.reset()

        assert [r.status_code for r in responses[:10]] == [401] * 10
        assert responses[10].status_code == 429
        assert responses[10].json()["error"]["code"] == "rate_limited"
        assert "retry-after" in responses[10].headers


class TestMeAndLogout:
    def test_me_requires_session(self, app_client):
        resp = app_client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert "error" in resp.json()

    def test_me_returns_identity(self, app_client, signed_in):
        resp = app_client.get("/api/v1/auth/me")
        assert resp.status_code == 200
        body = resp.json()
        assert body["user_id"] == signed_in.id
        assert body["email"] == "ada@example.com"
        assert body["email_verified"] is True
        assert body["username"] == "ada"

    def test_logout(self, app_client, store, signed_in):
        resp = app_client.post("/api/v1/auth/logout")

        assert resp.status_code == 200
        assert "max-age=0" in resp.headers["set-cookie"].lower()
        assert store.get_user_sessions(signed_in.id) == []
        assert app_client.get("/api/v1/auth/me").status_code == 401


class TestPasswordReset:
    def test_forgot_password_success(self, app_client, mailer, make_user):
        make_user()
        resp = app_client.post("/api/v1/auth/forgot-password", json={"email": "ada@example.com"})

        assert resp.status_code == 200
        assert resp.json() == {"message": "An email has been sent to 'ada@example.com'"}
        assert len(mailer.sent) == 1

    def test_forgot_password_invalid_email(self, app_client, make_user):
        make_user("fresh@example.com", verified=False)
        for email in ("fresh@example.com", "nobody@example.com", ""):
            resp = app_client.post("/api/v1/auth/forgot-password", json={"email": email})
            assert resp.status_code == 400
            assert resp.json()["error"] == {"code": "invalid_email", "message": "Invalid email", "detail": None}

    def test_forgot_password_send_failure_is_503(self, app_client, mailer, make_user):
        make_user()
        mailer.fail = True
        resp = app_client.post("/api/v1/auth/forgot-password", json={"email": "ada@example.com"})
        assert resp.status_code == 503
        assert resp.json()["error"]["code"] == "send_failed"

    def test_reset_password_success(self, app_client, store, sessions, mailer, make_user):
        user = make_user()
        old = sessions.create_session(user.id)
        app_client.post("/api/v1/auth/forgot-password", json={"email": "ada@example.com"})
        _, token = mailer.last_reset_link()

        resp = app_client.post(
            f"/api/v1/auth/reset-password/{token}",
            json={"password": NEW_PASSWORD, "password_confirm": NEW_PASSWORD},
        )

        assert resp.status_code == 200
        assert resp.json() == {"redirect": "/"}
        assert resp.headers["cache-control"] == "no-store"
        assert store.get_session(old.id) is None
        assert app_client.get("/api/v1/auth/me").json()["user_id"] == user.id

    @pytest.mark.parametrize(
        ("token", "body", "status", "code"),
        [
            ("t", {"password": NEW_PASSWORD, "password_confirm": "nope-nope"}, 400, "password_mismatch"),
            ("t", {"password": "short", "password_confirm": "short"}, 400, "password_too_short"),
            ("t", {"password": "x" * 300, "password_confirm": "x" * 300}, 400, "password_too_long"),
            ("nope", {"password": NEW_PASSWORD, "password_confirm": NEW_PASSWORD}, 404, "token_not_found"),
        ],
    )
    def test_reset_password_errors(self, app_client, token, body, status, code):
        resp = app_client.post(f"/api/v1/auth/reset-password/{token}", json=body)
        assert resp.status_code == status
        assert resp.json()["error"]["code"] == code

    def test_reset_password_expired_is_410(self, app_client, store, make_user):
        user = make_user()
        past = to_iso(datetime.now(timezone.utc) - timedelta(minutes=5))
        store.create_reset_token(PasswordResetToken(id="old", user_id=user.id, expires_at=past))

        resp = app_client.post(
            "/api/v1/auth/reset-password/old",
            json={"password": NEW_PASSWORD, "password_confirm": NEW_PASSWORD},
        )
        assert resp.status_code == 410
        assert resp.json()["error"]["detail"] == "expired"
