#!/usr/bin/env python3
"""
Gatehouse -- database maintenance from the command line.

Usage:
  python main.py init-db
  python main.py create-user --email admin@example.com
  python main.py create-user --email admin@example.com --password 's3cret-pass' --username admin
  python main.py create-user --email someone@example.com --unverified
  python main.py purge

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the database (default: sqlite file next to the code).
  DEBUG         Set to true to run without Postmark credentials. Otherwise
                POSTMARK_API_TOKEN and POSTMARK_DEFAULT_FROM must be set, even
                though the CLI sends no email, unless --database-url is given.
"""

import argparse
import getpass
import sys
from typing import Optional

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError

from auth.models import User
from auth.store import UserStore
from auth.tokens import MAX_PASSWORD_BYTES, MIN_PASSWORD_LENGTH, hash_password


def _read_password(given: Optional[str]) -> Optional[str]:
    """Return the password from --password or an interactive prompt.

    Returns None (after printing why) when the password is unusable.
    """
    password = given
    if password is None:
        password = getpass.getpass("Password: ")
        if getpass.getpass("Confirm password: ") != password:
            print("  [!] Passwords do not match.")
            return None
    if len(password) < MIN_PASSWORD_LENGTH:
        print(f"  [!] Password must be at least {MIN_PASSWORD_LENGTH} characters.")
        return None
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        print(f"  [!] Password must be at most {MAX_PASSWORD_BYTES} bytes.")
        return None
    return password


def cmd_init_db(store: UserStore, args: argparse.Namespace) -> int:
    # UserStore() already ran create_all; report what is there.
    print(f"Database ready ({store.count_users()} user(s)).")
    return 0


def cmd_create_user(store: UserStore, args: argparse.Namespace) -> int:
    if store.get_by_email(args.email) is not None:
        # Seeding is idempotent: an existing account is left untouched.
        print(f"User {args.email.strip().lower()} already exists, nothing to do.")
        return 0

    password = _read_password(args.password)
    if password is None:
        return 1

    user = User(
        email=args.email,
        email_verified=not args.unverified,
        hashed_password=hash_password(password),
        username=args.username,
    )
    try:
        user_id = store.create_user(user)
    except IntegrityError:
        # Created concurrently between the lookup and the insert.
        print(f"User {args.email.strip().lower()} already exists, nothing to do.")
        return 0
    print(f"Created user {args.email.strip().lower()} (id={user_id}, verified={user.email_verified}).")
    return 0


def cmd_purge(store: UserStore, args: argparse.Namespace) -> int:
    counts = store.purge_expired()
    print(f"Purged {counts['sessions']} expired session(s) and {counts['reset_tokens']} reset token(s).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gatehouse",
        description="Gatehouse database maintenance.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--database-url",
        metavar="URL",
        default=None,
        help="SQLAlchemy database URL (default: DATABASE_URL setting)",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p_init = sub.add_parser("init-db", help="Create the database schema")
    p_init.set_defaults(func=cmd_init_db)

    p_user = sub.add_parser("create-user", help="Create a user account (no-op if the email exists)")
    p_user.add_argument("--email", required=True, help="Email address, also the sign-in name")
    p_user.add_argument("--password", default=None, help="Password (prompted for when omitted)")
    p_user.add_argument("--username", default=None, help="Optional display name")
    p_user.add_argument(
        "--unverified",
        action="store_true",
        help="Create the account with an unverified email (cannot request password resets)",
    )
    p_user.set_defaults(func=cmd_create_user)

    p_purge = sub.add_parser("purge", help="Delete expired sessions and reset tokens")
    p_purge.set_defaults(func=cmd_purge)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0

    try:
        store = UserStore(args.database_url)
    except ValidationError as exc:
        # Raised by get_settings() when no --database-url is given.
        for err in exc.errors():
            print(f"  [!] Invalid configuration: {err['msg']}")
        return 2
    try:
        return args.func(store, args)
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
