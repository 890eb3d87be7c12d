"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
CredentialStore, TokenStore and AuditLogStore are the repositories; the
_row_to_* functions are the mappers. Service and route code never touches
SQL directly.

All three repositories share one Engine built by open_engine(). The engine is
owned by the caller (the app lifespan or a test fixture) and disposed there.

Security:
  All queries use bound parameters. No f-strings in SQL. The only dynamic
  piece, the lookup column in TokenStore.exists(), is checked against a
  whitelist before any SQL is built.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import traceback
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import ApiAccessError
from auth.models import AuditLogEntry, RefreshTokenRecord, User
from auth.tokens import verify_password as _verify_password

logger = logging.getLogger("tokenauth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),
    Column("last_logout", String(32)),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    # UNIQUE(username) is the single-slot invariant: one token on file per user.
    Column("username", String(255), nullable=False, unique=True),
    Column("token", String(2048), nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_auth_logs = Table(
    "auth_logs",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("accessed_url_path", String(2048), nullable=False),
    Column("message", Text, nullable=False),
    Column("code", Integer, nullable=False),
    Column("file", Text),
    Column("line", Integer),
    Column("trace", Text),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked by the token writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def open_engine(db_url: str) -> Engine:
    """Create an Engine for db_url and make sure every auth table exists."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    _metadata.create_all(engine)
    return engine


def ping(engine: Engine) -> bool:
    """Return True if the database answers a trivial query."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Database ping failed")
        return False
    return True


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Credential store
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for User records.

    Usage:
        store = CredentialStore(open_engine("sqlite:///:memory:"))
        uid = store.create_user(User(username="alice", password_hash=hash_password("secret")))
        user = store.find_user("alice")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the username already exists.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=user.username,
                    password_hash=user.password_hash,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def find_user(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def verify_password(self, plain: str, password_hash: str) -> bool:
        return _verify_password(plain, password_hash)

    def update_last_login(self, user_id: int) -> bool:
        """Stamp last_login. Best-effort: a DB failure is logged, never raised."""
        return self._stamp(user_id, "last_login")

    def update_last_logout(self, user_id: int) -> bool:
        """Stamp last_logout. Best-effort: a DB failure is logged, never raised."""
        return self._stamp(user_id, "last_logout")

    def _stamp(self, user_id: int, column: str) -> bool:
        try:
            with self.engine.connect() as conn:
                result = conn.execute(_users.update().where(_users.c.id == user_id).values({column: _now_iso()}))
                conn.commit()
        except SQLAlchemyError:
            logger.warning("Could not update %s for user id=%s", column, user_id, exc_info=True)
            return False
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Token store
# ---------------------------------------------------------------------------


class TokenStore:
    """Repository for the single refresh token on file per username."""

    # Columns exists() may filter on. Checked before any SQL is built.
    _LOOKUP_FIELDS: frozenset = frozenset({"username", "token"})

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def exists(self, field: str, value: str) -> bool:
        """Return True if a record matches value on field ("username" or "token")."""
        if field not in self._LOOKUP_FIELDS:
            raise ValueError(f"Unknown token lookup field: {field!r}")
        column = _refresh_tokens.c[field]
        with self.engine.connect() as conn:
            row = conn.execute(select(_refresh_tokens.c.id).where(column == value)).first()
        return row is not None

    def get(self, username: str) -> RefreshTokenRecord | None:
        with self.engine.connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.username == username)).fetchone()
        return _row_to_token(row) if row is not None else None

    def create(self, username: str, token: str) -> bool:
        """Insert the first record for username.

        Returns False when the username already has a record. That happens
        when a concurrent login inserted first; the caller should update.
        """
        now = _now_iso()
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _refresh_tokens.insert().values(username=username, token=token, created_at=now, updated_at=now)
                )
                conn.commit()
        except IntegrityError:
            logger.info("Refresh token for %s already on file; insert skipped", username)
            return False
        return True

    def update(self, username: str, token: str) -> bool:
        """Overwrite the token on file for username. False if there is no record."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where(_refresh_tokens.c.username == username)
                .values(token=token, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def delete(self, username: str) -> bool:
        """Remove the record for username. False if there was none."""
        with self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.username == username))
            conn.commit()
        return result.rowcount > 0

    def count(self, username: str | None = None) -> int:
        query = "SELECT COUNT(*) FROM refresh_tokens"
        params: dict = {}
        if username is not None:
            query += " WHERE username = :username"
            params["username"] = username
        with self.engine.connect() as conn:
            result = conn.execute(text(query), params).scalar()
        return result or 0


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------


def entry_from_exception(exc: BaseException, path: str, code: int | None = None) -> AuditLogEntry:
    """Build an audit entry from an exception caught at the HTTP boundary.

    file and line point at the innermost frame of the traceback, i.e. where
    the error was raised.
    """
    if code is None:
        code = exc.status_code if isinstance(exc, ApiAccessError) else 500
    frames = traceback.extract_tb(exc.__traceback__) if exc.__traceback__ is not None else []
    file, line = (frames[-1].filename, frames[-1].lineno or 0) if frames else ("", 0)
    trace = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return AuditLogEntry(
        accessed_url_path=path,
        message=str(exc) or exc.__class__.__name__,
        code=code,
        file=file,
        line=line,
        trace=trace,
    )


class AuditLogStore:
    """Append-only repository for endpoint errors."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def add(self, entry: AuditLogEntry) -> int | None:
        """Persist entry and return its ID, or None if the write failed.

        The error response must still go out when the audit write fails, so a
        DB failure is logged here and not raised.
        """
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _auth_logs.insert().values(
                        accessed_url_path=entry.accessed_url_path,
                        message=entry.message,
                        code=entry.code,
                        file=entry.file,
                        line=entry.line,
                        trace=entry.trace,
                        created_at=_now_iso(),
                    )
                )
                conn.commit()
        except SQLAlchemyError:
            logger.exception("Could not write audit log entry for %s", entry.accessed_url_path)
            return None
        return result.inserted_primary_key[0]

    def list_recent(self, limit: int = 50) -> list[AuditLogEntry]:
        """Return up to limit entries, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(_auth_logs.select().order_by(_auth_logs.c.id.desc()).limit(limit)).fetchall()
        return [_row_to_audit(r) for r in rows]


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        password_hash=row.password_hash,
        created_at=row.created_at,
        last_login=row.last_login,
        last_logout=row.last_logout,
    )


def _row_to_token(row) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        id=row.id,
        username=row.username,
        token=row.token,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_audit(row) -> AuditLogEntry:
    return AuditLogEntry(
        id=row.id,
        accessed_url_path=row.accessed_url_path,
        message=row.message,
        code=row.code,
        file=row.file or "",
        line=row.line or 0,
        trace=row.trace or "",
        created_at=row.created_at,
    )
