#!/usr/bin/env python3
"""
TokenAuth -- command-line entry point.

Users are created out-of-band; the API only logs them in and out.

Usage:
  python main.py create-user alice
  python main.py create-user alice --password 's3cret-pass'
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8080 --reload

Environment variables (see core/config.py):
  SECRET_KEY    Signing key for tokens, 32+ characters. Required unless DEBUG=true.
  DATABASE_URL  SQLAlchemy URL. Defaults to SQLite next to the auth package.
"""

import argparse
import getpass
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.models import User
from auth.store import CredentialStore, open_engine
from auth.tokens import hash_password

_MAX_PASSWORD_LENGTH = 72  # bcrypt input limit, in bytes


def create_user(username: str, password: str, db_url: str) -> int:
    """Create a local user and return its ID.

    Raises ValueError for an empty username or an unusable password and
    sqlalchemy.exc.IntegrityError if the username is taken.
    """
    username = username.strip()
    if not username:
        raise ValueError("Username must not be empty.")
    if not password:
        raise ValueError("Password must not be empty.")
    if len(password.encode("utf-8")) > _MAX_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at most {_MAX_PASSWORD_LENGTH} bytes.")

    engine = open_engine(db_url)
    try:
        store = CredentialStore(engine)
        return store.create_user(User(username=username, password_hash=hash_password(password)))
    finally:
        engine.dispose()


def _prompt_password() -> str:
    password = getpass.getpass("Password: ")
    if password != getpass.getpass("Repeat password: "):
        raise ValueError("Passwords do not match.")
    return password


def _cmd_create_user(args: argparse.Namespace) -> int:
    from core.config import get_settings

    db_url = args.database_url or get_settings().database_url
    try:
        password = args.password or _prompt_password()
        user_id = create_user(args.username, password, db_url)
    except ValueError as e:
        print(f"  [!] {e}", file=sys.stderr)
        return 1
    except IntegrityError:
        print(f"  [!] User '{args.username}' already exists.", file=sys.stderr)
        return 1
    print(f"  Created user '{args.username.strip()}' (id={user_id}).")
    return 0


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="tokenauth",
        description="TokenAuth: username/password login with access and refresh tokens.",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p_create = sub.add_parser("create-user", help="Create a local user account")
    p_create.add_argument("username", help="Unique login name")
    p_create.add_argument(
        "--password",
        default=None,
        help="Password for the new account (prompted for when omitted)",
    )
    p_create.add_argument(
        "--database-url",
        default=None,
        metavar="URL",
        help="SQLAlchemy database URL (default: DATABASE_URL setting)",
    )
    p_create.set_defaults(func=_cmd_create_user)

    p_serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    p_serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    p_serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    p_serve.add_argument("--reload", action="store_true", help="Reload on code changes (development only)")
    p_serve.set_defaults(func=_cmd_serve)

    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 2
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
