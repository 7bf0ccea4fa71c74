"""
auth/password_reset.py -- Password reset: token issuance and consumption.

Token lifecycle: absent -> issued -> consumed | expired.

  request_password_reset() issues a token for a verified user and emails a
      link containing it. If the email cannot be sent the token is deleted
      again, so a failed request never leaves a usable token behind.

  reset_password() validates the token, then deletes it, sets the new
      password and signs the user out everywhere in one transaction. Only then
      is a new session opened for the browser that completed the reset, so no
      session created while the password was being hashed survives.

Both functions report every user-facing failure by raising
PasswordResetError. The web layer renders error.message next to the form;
the API layer maps error.code to an HTTP status.

Enumeration: unknown and unverified emails produce the same error, so the
forgot-password form cannot be used to discover which addresses have accounts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from auth.models import PasswordResetToken, Session
from auth.sessions import SessionManager
from auth.store import UserStore, normalize_email, to_iso
from auth.tokens import MAX_PASSWORD_BYTES, MIN_PASSWORD_LENGTH, generate_reset_token, hash_password
from core.config import get_settings
from mail.client import EmailClient, EmailSendError, render_reset_password_email

logger = logging.getLogger("gatehouse.password_reset")

RESET_EMAIL_SUBJECT = "Password reset"

# User-facing messages, keyed by error code.
MESSAGES: dict[str, str] = {
    "invalid_email": "Invalid email",
    "send_failed": "unexpected error, please retry in a few moment",
    "missing_token": "Missing token, please double check the link url sent by email.",
    "password_mismatch": "Confirmation password mismatch.",
    "password_too_short": f"Password must be at least {MIN_PASSWORD_LENGTH} characters.",
    "password_too_long": f"Password must be at most {MAX_PASSWORD_BYTES} bytes.",
    "token_not_found": "Token not found, please double check the link url sent by email.",
    "token_expired": "Token expired, please submit a new request.",
}


class PasswordResetError(Exception):
    """A password reset step failed in a way the user should be told about.

    code is stable and machine-readable; message is the text shown to the
    user. expired is set when the user should be sent back to request a new
    link.
    """

    def __init__(self, code: str, expired: bool = False) -> None:
        self.code = code
        self.message = MESSAGES[code]
        self.expired = expired
        super().__init__(self.message)


@dataclass
class ResetRequestResult:
    email: str
    message: str


# ---------------------------------------------------------------------------
# Issuance
# ---------------------------------------------------------------------------


def build_reset_link(base_url: str, token: str) -> str:
    return f"{base_url.rstrip('/')}/reset-password/{token}"


def create_password_reset_token(store: UserStore, user_id: str, expires_seconds: int | None = None) -> str:
    """Persist a new reset token for user_id and return its value.

    Earlier tokens for the same user are deleted by the store.
    """
    if expires_seconds is None:
        expires_seconds = get_settings().reset_token_expire_seconds
    token = PasswordResetToken(
        id=generate_reset_token(),
        user_id=user_id,
        expires_at=to_iso(datetime.now(timezone.utc) + timedelta(seconds=expires_seconds)),
    )
    store.create_reset_token(token)
    return token.id


def request_password_reset(store: UserStore, mailer: EmailClient, email: str, base_url: str) -> ResetRequestResult:
    """Issue a reset token for email and send the link.

    Raises PasswordResetError("invalid_email") for unknown or unverified
    addresses and PasswordResetError("send_failed") when delivery fails.
    """
    user = store.get_by_email(normalize_email(email)) if email else None
    if user is None or not user.email_verified:
        raise PasswordResetError("invalid_email")

    expires_seconds = get_settings().reset_token_expire_seconds
    token = create_password_reset_token(store, user.id, expires_seconds)
    link = build_reset_link(base_url, token)
    try:
        mailer.send_email(
            to=user.email,
            subject=RESET_EMAIL_SUBJECT,
            html_body=render_reset_password_email(link, expires_seconds),
        )
    except EmailSendError:
        logger.exception("Cannot send reset password link to user %s", user.id)
        store.delete_reset_token(token)
        raise PasswordResetError("send_failed") from None

    logger.info("Password reset link issued for user %s", user.id)
    return ResetRequestResult(email=user.email, message=f"An email has been sent to '{user.email}'")


# ---------------------------------------------------------------------------
# Consumption
# ---------------------------------------------------------------------------


def reset_password(
    store: UserStore,
    sessions: SessionManager,
    token: str | None,
    password: str,
    password_confirm: str,
) -> Session:
    """Consume token, set password, and return a new session for its owner.

    Checks run in a fixed order so the user sees the most actionable problem
    first: missing token, confirmation mismatch, password length, unknown
    token, expired token.
    """
    if not token:
        raise PasswordResetError("missing_token")
    if password != password_confirm:
        raise PasswordResetError("password_mismatch")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise PasswordResetError("password_too_short")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise PasswordResetError("password_too_long")

    reset_token = store.get_reset_token(token)
    if reset_token is None:
        raise PasswordResetError("token_not_found")

    if datetime.fromisoformat(reset_token.expires_at) <= datetime.now(timezone.utc):
        store.delete_reset_token(reset_token.id)
        raise PasswordResetError("token_expired", expired=True)

    hashed = hash_password(password)
    revoked = store.consume_reset_token(reset_token, hashed)
    if revoked is None:
        # Consumed by a concurrent request between the lookup and now.
        raise PasswordResetError("token_not_found")

    logger.info("Password reset completed for user %s; %d session(s) revoked", reset_token.user_id, revoked)
    return sessions.create_session(reset_token.user_id)
