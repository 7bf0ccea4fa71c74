"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. UserStore is the repository;
_row_to_user / _row_to_session / _row_to_reset_token are the mappers.
Route, service and dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Sessions and reset tokens reference users with ON DELETE CASCADE. SQLite
  only honours that when PRAGMA foreign_keys=ON is set, which has to happen
  per connection (see _set_sqlite_pragmas).

Timestamps are ISO 8601 UTC strings with fixed microsecond precision, so
string comparison in SQL orders them the same way datetime comparison does.
purge_expired() relies on that.

Layer rule: no imports from api/, web/, or mail/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, ForeignKey, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine

from auth.models import PasswordResetToken, Session, User
from core.config import get_settings

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),  # UUID4
    Column("email", String(255), nullable=False, unique=True),  # lower-cased
    Column("email_verified", Integer, nullable=False, server_default="0"),
    Column("hashed_password", Text),  # NULL until a password is set
    Column("username", String(255)),
    Column("avatar_url", Text),
    Column("created_at", String(32), nullable=False),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", String(64), primary_key=True),  # cookie value
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("expires_at", String(32), nullable=False),
)

_reset_tokens = Table(
    "password_reset_tokens",
    _metadata,
    Column("id", String(64), primary_key=True),  # token emailed in the link
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("expires_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# SQLite pragmas
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def to_iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User, Session and PasswordResetToken entities.

    Usage:
        store = UserStore()
        uid = store.create_user(User(email="a@example.com", email_verified=True))
        user = store.get_by_email("a@example.com")
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query. Used by /health."""
        with self.engine.connect() as conn:
            return conn.execute(select(1)).scalar() == 1

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> str:
        """Insert a new user and return its id.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        user_id = user.id or str(uuid.uuid4())
        with self.engine.begin() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    email=normalize_email(user.email),
                    email_verified=1 if user.email_verified else 0,
                    hashed_password=user.hashed_password,
                    username=user.username,
                    avatar_url=user.avatar_url,
                    created_at=now_iso(),
                )
            )
        return user_id

    def get_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email. The lookup is case-insensitive because
        emails are normalized on both write and read."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_user(self, user_id: str, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: email_verified, hashed_password, username, avatar_url.
        Returns True if a row was updated, False if user_id was not found.
        """
        if "email_verified" in fields:
            fields["email_verified"] = 1 if fields["email_verified"] else 0
        with self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, session: Session) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                _sessions.insert().values(id=session.id, user_id=session.user_id, expires_at=session.expires_at)
            )

    def get_session(self, session_id: str) -> Session | None:
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def get_user_sessions(self, user_id: str) -> list[Session]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _sessions.select().where(_sessions.c.user_id == user_id).order_by(_sessions.c.expires_at)
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def update_session_expiry(self, session_id: str, expires_at: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(_sessions.update().where(_sessions.c.id == session_id).values(expires_at=expires_at))

    def delete_session(self, session_id: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.id == session_id))
        return result.rowcount > 0

    def delete_user_sessions(self, user_id: str) -> int:
        """Delete every session owned by user_id. Returns the number removed."""
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
        return result.rowcount

    # ------------------------------------------------------------------
    # Password reset tokens
    # ------------------------------------------------------------------

    def create_reset_token(self, token: PasswordResetToken) -> None:
        """Store a new reset token, replacing any earlier tokens of the same user.

        Both statements run in one transaction so a user never ends up with
        zero tokens because of a failed insert, nor with two live ones.
        """
        with self.engine.begin() as conn:
            conn.execute(_reset_tokens.delete().where(_reset_tokens.c.user_id == token.user_id))
            conn.execute(
                _reset_tokens.insert().values(id=token.id, user_id=token.user_id, expires_at=token.expires_at)
            )

    def get_reset_token(self, token_id: str) -> PasswordResetToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(_reset_tokens.select().where(_reset_tokens.c.id == token_id)).fetchone()
        return _row_to_reset_token(row) if row is not None else None

    def get_user_reset_tokens(self, user_id: str) -> list[PasswordResetToken]:
        with self.engine.connect() as conn:
            rows = conn.execute(_reset_tokens.select().where(_reset_tokens.c.user_id == user_id)).fetchall()
        return [_row_to_reset_token(r) for r in rows]

    def delete_reset_token(self, token_id: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(_reset_tokens.delete().where(_reset_tokens.c.id == token_id))
        return result.rowcount > 0

    def consume_reset_token(self, token: PasswordResetToken, hashed_password: str) -> int | None:
        """Atomically delete the token, set the new password hash, and revoke sessions.

        The token row is deleted first. If no row was deleted, another request
        consumed it in the meantime: nothing else is written and None is
        returned. Otherwise the password update and the deletion of every
        session of the owner run in the same transaction, so a sign-in with
        the old password cannot slip in between them. Returns the number of
        sessions revoked.
        """
        with self.engine.begin() as conn:
            deleted = conn.execute(
                _reset_tokens.delete().where(
                    (_reset_tokens.c.id == token.id) & (_reset_tokens.c.user_id == token.user_id)
                )
            )
            if deleted.rowcount == 0:
                return None
            conn.execute(_users.update().where(_users.c.id == token.user_id).values(hashed_password=hashed_password))
            revoked = conn.execute(_sessions.delete().where(_sessions.c.user_id == token.user_id))
        return revoked.rowcount

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def purge_expired(self) -> dict[str, int]:
        """Delete sessions and reset tokens whose expiry is in the past.

        Returns {"sessions": n, "reset_tokens": m} for logging.
        """
        cutoff = now_iso()
        with self.engine.begin() as conn:
            sessions = conn.execute(_sessions.delete().where(_sessions.c.expires_at < cutoff))
            tokens = conn.execute(_reset_tokens.delete().where(_reset_tokens.c.expires_at < cutoff))
        return {"sessions": sessions.rowcount, "reset_tokens": tokens.rowcount}

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return result or 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        email_verified=bool(row.email_verified),
        hashed_password=row.hashed_password,
        username=row.username,
        avatar_url=row.avatar_url,
        created_at=row.created_at,
    )


def _row_to_session(row) -> Session:
    return Session(id=row.id, user_id=row.user_id, expires_at=row.expires_at)


def _row_to_reset_token(row) -> PasswordResetToken:
    return PasswordResetToken(id=row.id, user_id=row.user_id, expires_at=row.expires_at)
