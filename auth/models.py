"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Repositories and the
auth service do the work; these types only carry shape between layers.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """A local account that can log in with a username and password.

    Users are created out-of-band (main.py create-user). The API only reads
    them and stamps last_login / last_logout.
    """

    username: str
    password_hash: str
    id: int | None = None
    last_login: str | None = None  # ISO 8601, UTC
    last_logout: str | None = None  # ISO 8601, UTC
    created_at: str | None = None


@dataclass
class RefreshTokenRecord:
    """The single refresh token on file for a username.

    One row per username. A new login overwrites token in place; logout
    deletes the row. There is no revocation history.
    """

    username: str
    token: str
    id: int | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class AuditLogEntry:
    """One error returned by an endpoint, kept for later inspection."""

    accessed_url_path: str
    message: str
    code: int
    file: str = ""
    line: int = 0
    trace: str = ""
    id: int | None = None
    created_at: str | None = None


@dataclass
class TokenPair:
    """Tokens handed back to the client.

    refresh_token is None on renew unless refresh rotation is enabled.
    """

    access_token: str
    refresh_token: str | None = None


@dataclass(frozen=True)
class RequestContext:
    """Per-call context passed explicitly into every AuthService operation."""

    path: str
    client_host: str | None = None
