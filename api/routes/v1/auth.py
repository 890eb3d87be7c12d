"""
api/routes/v1/auth.py -- Token lifecycle REST endpoints.

Routes:
  POST /api/v1/auth/login   -- username/password; returns access + refresh token
  POST /api/v1/auth/renew   -- refresh token; returns a new access token
  POST /api/v1/auth/logout  -- refresh token; deletes it; 204
  GET  /api/v1/auth/me      -- current user info (Bearer access token)

Handlers are thin: build the RequestContext, call AuthService, map the result
to a response model. Errors raised by the service reach the handlers in
api/errors.py and come back as the {status, message, errors} envelope.

Security:
  [C1] AuthService.login() equalises timing for unknown usernames.
  [M5] Cache-Control: no-store on every response that carries a token.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from api.models import LoginRequest, LoginResponse, MeResponse, RenewResponse, TokenRequest
from auth.dependencies import get_current_user, request_context
from auth.models import User
from auth.service import AuthService

# Auth policy:
# - POST /api/v1/auth/login:  public -- login endpoint must be unauthenticated
# - POST /api/v1/auth/renew:  public -- the refresh token is the credential
# - POST /api/v1/auth/logout: public -- the refresh token is the credential
# - GET  /api/v1/auth/me:     requires a Bearer access token (get_current_user)
router = APIRouter()


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password; return both tokens."""
    service = _service(request)
    pair = service.login(request_context(request), body.username, body.password)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            expires_in=service.issuer.access_expire_seconds,
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/renew", response_model=RenewResponse, response_model_exclude_none=True)
def renew(request: Request, body: TokenRequest) -> JSONResponse:
    """Exchange a refresh token that is still on file for a new access token."""
    service = _service(request)
    pair = service.renew(request_context(request), body.token)
    resp = JSONResponse(
        status_code=200,
        content=RenewResponse(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            expires_in=service.issuer.access_expire_seconds,
        ).model_dump(exclude_none=True),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/logout", status_code=204)
def logout(request: Request, body: TokenRequest) -> Response:
    """Delete the refresh token on file. Access tokens expire on their own."""
    _service(request).logout(request_context(request), body.token)
    return Response(status_code=204)


@router.get("/auth/me", response_model=MeResponse)
def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return identity information for the holder of the access token."""
    return MeResponse(
        user_id=current_user.id,
        username=current_user.username,
        last_login=current_user.last_login,
        last_logout=current_user.last_logout,
    )
