"""
tests/test_web_password_reset.py -- Forgot / reset password through the HTML forms.

End-to-end through the ASGI app with the RecordingEmailClient standing in for
Postmark: request a link, pull the token out of the recorded email, and post
the new password to the link. Jinja2 autoescapes the quotes in the success
message, so assertions match on the unquoted prefix.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from auth.models import PasswordResetToken
from auth.store import to_iso
from auth.tokens import verify_password
from core.limiter import limiter

NEW_PASSWORD = "brand-new-password"


def _request_link(client, mailer, email="ada@example.com") -> str:
    resp = client.post("/forgot-password", data={"email": email})
    assert resp.status_code == 200
    assert "An email has been sent to" in resp.text
    _, token = mailer.last_reset_link()
    return token


def _reset(client, token, password=NEW_PASSWORD, confirm=NEW_PASSWORD):
    return client.post(f"/reset-password/{token}", data={"password": password, "password-confirm": confirm})


# ---------------------------------------------------------------------------
# Forgot password
# ---------------------------------------------------------------------------


class TestForgotPassword:
    def test_form_renders(self, app_client):
        resp = app_client.get("/forgot-password")
        assert resp.status_code == 200
        assert "Send Link" in resp.text
        assert "Back to Sign In" in resp.text

    def test_verified_user_gets_link_built_from_request_host(self, app_client, mailer, make_user):
        make_user()
        resp = app_client.post("/forgot-password", data={"email": "ada@example.com"})

        assert resp.status_code == 200
        assert "An email has been sent to" in resp.text
        assert "ada@example.com" in resp.text
        link, token = mailer.last_reset_link()
        assert link == f"http://localhost/reset-password/{token}"
        assert mailer.sent[-1]["to"] == "ada@example.com"

    def test_unknown_and_unverified_get_the_same_field_error(self, app_client, mailer, make_user):
        make_user("fresh@example.com", verified=False)
        unknown = app_client.post("/forgot-password", data={"email": "nobody@example.com"})
        unverified = app_client.post("/forgot-password", data={"email": "fresh@example.com"})

        for resp in (unknown, unverified):
            assert resp.status_code == 200
            assert '<em class="error">Invalid email</em>' in resp.text
        assert mailer.sent == []

    def test_send_failure_shows_retry_message_and_leaves_no_token(self, app_client, store, mailer, make_user):
        user = make_user()
        mailer.fail = True

        resp = app_client.post("/forgot-password", data={"email": "ada@example.com"})

        assert resp.status_code == 200
        assert "unexpected error, please retry in a few moment" in resp.text
        assert store.get_user_reset_tokens(user.id) == []

    def test_sixth_request_in_a_minute_rerenders_form_with_429(self, app_client, mailer, make_user):
        make_user()
        limiter.reset()
        limiter.enabled = True
        try:
            responses = [app_client.post("/forgot-password", data={"email": "ada@example.com"}) for _ in range(6)]
        finally:
            limiter.enabled = False
            limiter.reset()

        assert [r.status_code for r in responses[:5]] == [200] * 5
        throttled = responses[5]
        assert throttled.status_code == 429
        assert throttled.headers["content-type"].startswith("text/html")
        assert '<em class="error">Too many requests, please try again later.</em>' in throttled.text
        assert len(mailer.sent) == 5


# ---------------------------------------------------------------------------
# Reset password
# ---------------------------------------------------------------------------


class TestResetPassword:
    def test_form_posts_back_to_token_url(self, app_client):
        resp = app_client.get("/reset-password/abc123")
        assert resp.status_code == 200
        assert 'action="/reset-password/abc123"' in resp.text
        assert 'name="password-confirm"' in resp.text

    def test_full_flow_signs_user_in_and_revokes_old_sessions(
        self, app_client, store, sessions, mailer, make_user, password
    ):
        user = make_user()
        # A session opened elsewhere before the reset.
        stolen = sessions.create_session(user.id)
        token = _request_link(app_client, mailer)

        resp = _reset(app_client, token)

        assert resp.status_code == 302
        assert resp.headers["location"] == "/"
        assert resp.headers["cache-control"] == "no-store"
        assert resp.headers["set-cookie"].startswith("session=")
        assert store.get_session(stolen.id) is None
        assert verify_password(NEW_PASSWORD, store.get_by_id(user.id).hashed_password)

        # The cookie from the redirect is a working session.
        home = app_client.get("/")
        assert home.status_code == 200
        assert "ada@example.com" in home.text

        # The old password no longer signs in.
        app_client.cookies.clear()
        resp = app_client.post("/signin", data={"email": "ada@example.com", "password": password})
        assert "Invalid email or password." in resp.text

    def test_token_is_single_use(self, app_client, mailer, make_user):
        make_user()
        token = _request_link(app_client, mailer)
        assert _reset(app_client, token).status_code == 302
        app_client.cookies.clear()

        resp = _reset(app_client, token, "another-password", "another-password")
        assert resp.status_code == 200
        assert "Token not found, please double check the link url sent by email." in resp.text

    def test_mismatch_rerenders_with_token(self, app_client, mailer, make_user):
        make_user()
        token = _request_link(app_client, mailer)

        resp = _reset(app_client, token, NEW_PASSWORD, "something-else")

        assert resp.status_code == 200
        assert "Confirmation password mismatch." in resp.text
        assert f'action="/reset-password/{token}"' in resp.text
        assert "set-cookie" not in resp.headers

    def test_short_password(self, app_client, mailer, make_user):
        make_user()
        token = _request_link(app_client, mailer)
        resp = _reset(app_client, token, "short", "short")
        assert "Password must be at least 8 characters." in resp.text

    def test_expired_token_offers_new_request(self, app_client, store, make_user):
        user = make_user()
        past = to_iso(datetime.now(timezone.utc) - timedelta(seconds=1))
        store.create_reset_token(PasswordResetToken(id="old-token", user_id=user.id, expires_at=past))

        resp = _reset(app_client, "old-token")

        assert "Token expired, please submit a new request." in resp.text
        assert '<a href="/forgot-password">Go back to password reset page</a>' in resp.text
        assert store.get_reset_token("old-token") is None

    def test_unknown_token_has_no_expired_link(self, app_client):
        resp = _reset(app_client, "never-issued")
        assert "Token not found" in resp.text
        assert "Go back to password reset page" not in resp.text

    def test_missing_token_route(self, app_client):
        resp = app_client.post("/reset-password", data={"password": NEW_PASSWORD, "password-confirm": NEW_PASSWORD})
        assert resp.status_code == 200
        assert "Missing token, please double check the link url sent by email." in resp.text
        assert 'action="/reset-password"' in resp.text
