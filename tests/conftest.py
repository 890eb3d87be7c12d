"""
tests/conftest.py -- Shared test fixtures for TokenAuth tests.

This module provides:
  - make_engine(): isolated named shared-memory SQLite engine per caller
  - _patch_lifespan(): wires test components into app.state, bypassing real startup
  - auth_app: an AuthHarness (TestClient + stores + issuer) with one seeded user
  - stores: repositories over a fresh engine, for unit tests without HTTP

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. Each fixture gets a unique name so tests never see each other's rows.

The DEBUG env var must be set before any api/core import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: Set DEBUG before any core/api import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.main import app
from auth.models import User
from auth.service import AuthService
from auth.store import AuditLogStore, CredentialStore, TokenStore, open_engine
from auth.tokens import TokenIssuer, hash_password
from core.config import get_settings

TEST_USERNAME = "alice"
TEST_PASSWORD = "correct-horse-battery"


def make_engine(prefix: str = "auth") -> Engine:
    """Open an engine on a uniquely named shared-memory SQLite database."""
    name = f"test_{prefix}_{uuid.uuid4().hex}"
    return open_engine(f"sqlite:///file:{name}?mode=memory&cache=shared&uri=true")


def make_issuer(**overrides) -> TokenIssuer:
    """A TokenIssuer signing with the same key as the app under test."""
    settings = get_settings()
    kwargs = {
        "secret_key": settings.secret_key,
        "algorithm": settings.jwt_algorithm,
        "access_expire_seconds": settings.access_token_expire_seconds,
        "refresh_expire_seconds": settings.refresh_token_expire_seconds,
    }
    kwargs.update(overrides)
    return TokenIssuer(**kwargs)


@dataclass
class AuthHarness:
    client: TestClient
    credentials: CredentialStore
    tokens: TokenStore
    audit_log: AuditLogStore
    issuer: TokenIssuer
    service: AuthService
    user_id: int
    username: str = TEST_USERNAME
    password: str = TEST_PASSWORD

    def issuer_with(self, **overrides) -> TokenIssuer:
        """A second issuer sharing the app key unless overridden (expired or forged tokens)."""
        return make_issuer(**overrides)


@dataclass
class Stores:
    engine: Engine
    credentials: CredentialStore
    tokens: TokenStore
    audit_log: AuditLogStore


def _patch_lifespan(engine: Engine, service: AuthService, audit_log: AuditLogStore):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test components into app.state so TestClient routes see
    the isolated test DB rather than the configured database.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.engine = engine
        app.state.credential_store = service.credentials
        app.state.token_store = service.tokens
        app.state.audit_log = audit_log
        app.state.token_issuer = service.issuer
        app.state.auth_service = service
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def stores() -> Generator[Stores, None, None]:
    engine = make_engine("store")
    yield Stores(
        engine=engine,
        credentials=CredentialStore(engine),
        tokens=TokenStore(engine),
        audit_log=AuditLogStore(engine),
    )
    engine.dispose()


@pytest.fixture
def seeded_user(stores: Stores) -> User:
    """The test user, created in the stores fixture's database."""
    uid = stores.credentials.create_user(User(username=TEST_USERNAME, password_hash=hash_password(TEST_PASSWORD)))
    return stores.credentials.get_by_id(uid)


def _start_harness(rotate: bool, raise_server_exceptions: bool) -> Generator[AuthHarness, None, None]:
    engine = make_engine("api")
    credentials = CredentialStore(engine)
    tokens = TokenStore(engine)
    audit_log = AuditLogStore(engine)
    issuer = make_issuer()
    service = AuthService(credentials, tokens, issuer, rotate_refresh_on_renew=rotate)

    uid = credentials.create_user(User(username=TEST_USERNAME, password_hash=hash_password(TEST_PASSWORD)))

    app.router.lifespan_context = _patch_lifespan(engine, service, audit_log)

    with TestClient(app, raise_server_exceptions=raise_server_exceptions) as client:
        yield AuthHarness(
            client=client,
            credentials=credentials,
            tokens=tokens,
            audit_log=audit_log,
            issuer=issuer,
            service=service,
            user_id=uid,
        )

    engine.dispose()


@pytest.fixture
def auth_app() -> Generator[AuthHarness, None, None]:
    """Yield an AuthHarness around the real app with an isolated database.

    The seeded user is TEST_USERNAME / TEST_PASSWORD.
    """
    yield from _start_harness(rotate=False, raise_server_exceptions=True)


@pytest.fixture
def rotating_auth_app() -> Generator[AuthHarness, None, None]:
    """Same as auth_app, with refresh-token rotation on renew enabled."""
    yield from _start_harness(rotate=True, raise_server_exceptions=True)


@pytest.fixture
def lenient_auth_app() -> Generator[AuthHarness, None, None]:
    """Same as auth_app, but unhandled exceptions become 500 responses.

    Starlette re-raises unexpected exceptions after the catch-all handler
    runs; raise_server_exceptions=False lets tests assert on the response.
    """
    yield from _start_harness(rotate=False, raise_server_exceptions=False)
