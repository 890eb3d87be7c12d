"""
api/main.py -- FastAPI application entry point for TokenAuth.

Run with:      python main.py serve
               uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. log_requests          -- one log line per request with latency

Lifespan opens the database engine, builds the repositories, the token
issuer and the auth service, and stores them on app.state. Shutdown disposes
the engine.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware

from api.errors import register_error_handlers
from api.models import HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.service import AuthService
from auth.store import AuditLogStore, CredentialStore, TokenStore, open_engine, ping
from auth.tokens import TokenIssuer
from core.config import get_settings

API_VERSION = "1.0.0"

_settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=_settings.log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("tokenauth.api")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage the engine and the auth components across the server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.
    """
    logger.info("TokenAuth API starting up")
    engine = open_engine(_settings.database_url)
    app.state.engine = engine
    app.state.credential_store = CredentialStore(engine)
    app.state.token_store = TokenStore(engine)
    app.state.audit_log = AuditLogStore(engine)
    app.state.token_issuer = TokenIssuer.from_settings(_settings)
    app.state.auth_service = AuthService(
        app.state.credential_store,
        app.state.token_store,
        app.state.token_issuer,
        rotate_refresh_on_renew=_settings.rotate_refresh_on_renew,
    )
    logger.info(
        "Auth initialized (access_ttl=%ss, refresh_ttl=%ss, rotate_on_renew=%s)",
        _settings.access_token_expire_seconds,
        _settings.refresh_token_expire_seconds,
        _settings.rotate_refresh_on_renew,
    )

    yield

    engine.dispose()
    logger.info("TokenAuth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="TokenAuth API",
    description="Username/password login with access and refresh tokens.",
    version=API_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        ms = (time.perf_counter() - start) * 1000
        logger.info(
            "%s %s %d %.1fms %s",
            request.method,
            request.url.path,
            status_code,
            ms,
            request.client.host if request.client else "unknown",
        )


# ---------------------------------------------------------------------------
# Routers and exception handlers
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
register_error_handlers(app)


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database reachability."""
    engine = getattr(request.app.state, "engine", None)
    database = "ok" if engine is not None and ping(engine) else "error"
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=API_VERSION,
        components={"app": "ok", "database": database},
    )
