"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Access tokens arrive in the Authorization: Bearer <token> header. There is no
cookie or API key fallback.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises a 401 ApiAccessError if
unauthenticated, so the error goes through the same envelope and audit path
as every other endpoint error.

Layer rule: no imports from api/ or core/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.errors import ApiAccessError, InvalidTokenError
from auth.models import RequestContext, User
from auth.store import CredentialStore
from auth.tokens import TokenIssuer


def request_context(request: Request) -> RequestContext:
    """Build the explicit per-call context handed to AuthService."""
    return RequestContext(
        path=request.url.path,
        client_host=request.client.host if request.client else None,
    )


def try_get_current_user(request: Request) -> User | None:
    """Return the user named by a valid Bearer access token, or None."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    token = auth_header[7:].strip()
    if not token:
        return None

    issuer: TokenIssuer = request.app.state.token_issuer
    try:
        payload = issuer.decode_access_token(token)
    except InvalidTokenError:
        return None

    credential_store: CredentialStore = request.app.state.credential_store
    user = credential_store.get_by_id(payload["user_id"])
    if user is None or user.username != payload["username"]:
        return None
    return user


def get_current_user(request: Request) -> User:
    """Require a valid access token.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise ApiAccessError("Authentication required.", 401)
    return user
