"""
auth/tokens.py -- Password hashing, credential checks, and random identifiers.

Security design decisions:
  Passwords: bcrypt, used directly. Bcrypt's cost factor makes brute-force
       of low-entropy secrets expensive. The _DUMMY_HASH constant enables
       timing equalization in authenticate_user() so response time does not
       reveal whether an email is registered.

  Session ids: secrets.token_hex(20) -- 160 bits of entropy, 40 hex chars.
       Stored as-is; the value only authorizes requests while the matching
       row exists and has not expired.

  Reset tokens: secrets.token_urlsafe(32) -- 256 bits, safe to embed in a
       URL path segment without escaping.

Layer rule: no imports from api/, web/, or mail/.
"""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING

import bcrypt

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_BYTES = 72

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt refuses passwords longer than MAX_PASSWORD_BYTES; callers
    validate the length first (see auth.password_reset).
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in the DB or a password bcrypt refuses.
        return False


# Computed once at module load so the first sign-in attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("gatehouse_timing_dummy")


# ---------------------------------------------------------------------------
# User authentication (constant-time)
# ---------------------------------------------------------------------------


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Authenticate an email/password sign-in with timing equalization.

    Always runs bcrypt whether or not the user exists:
    - Unknown email or no password set: bcrypt runs against _DUMMY_HASH
    - Wrong password: bcrypt runs against the real hash

    Returns the User on success, None on any failure.
    """
    user = store.get_by_email(email)
    if user is None or user.hashed_password is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user


# ---------------------------------------------------------------------------
# Random identifiers
# ---------------------------------------------------------------------------


def generate_session_id() -> str:
    return secrets.token_hex(20)


def generate_reset_token() -> str:
    return secrets.token_urlsafe(32)
