"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these classes only own the domain shape.

Layer rule: no imports from api/, web/, core/, or mail/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """An account that can sign in.

    email is stored lower-cased and is unique. hashed_password is None for
    accounts that were created without a password (they can only get one via
    the reset flow). Only verified accounts may request a password reset.
    """

    email: str
    id: str | None = None  # UUID4 string, assigned by the store
    email_verified: bool = False
    hashed_password: str | None = None
    username: str | None = None
    avatar_url: str | None = None
    created_at: str | None = None


@dataclass
class Session:
    """A server-side session. id is the value carried by the session cookie."""

    id: str
    user_id: str
    expires_at: str  # ISO 8601 UTC


@dataclass
class PasswordResetToken:
    """A single-use, time-limited permission to set a new password.

    id is the opaque token emailed to the user inside the reset link. The row
    is deleted when the token is consumed, replaced, or found expired.
    """

    id: str
    user_id: str
    expires_at: str  # ISO 8601 UTC
