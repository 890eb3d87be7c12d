"""
auth/service.py -- Token lifecycle: login, renew, logout.

The flow is deliberately sequential: validate, look up, sign, persist. Every
expected failure is raised as ApiAccessError with the HTTP status the
boundary should return. Anything else (SigningError, SQLAlchemyError) is left
to propagate to the generic 500 handler.

Repositories are declared as Protocols so the service does not depend on
the SQLAlchemy implementations in auth/store.py.

Refresh token state per username:
  absent --login--> active --renew--> active --logout--> absent

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from typing import Protocol

from auth.errors import ApiAccessError, InvalidTokenError
from auth.models import RequestContext, TokenPair, User
from auth.tokens import TokenIssuer, user_claims, verify_dummy_password

logger = logging.getLogger("tokenauth.auth")

_BAD_CREDENTIALS = "Invalid username or password."
_STORE_FAILURE = "Could not complete the request."


class CredentialRepository(Protocol):
    def find_user(self, username: str) -> User | None: ...

    def verify_password(self, plain: str, password_hash: str) -> bool: ...

    def update_last_login(self, user_id: int) -> bool: ...

    def update_last_logout(self, user_id: int) -> bool: ...


class TokenRepository(Protocol):
    def exists(self, field: str, value: str) -> bool: ...

    def create(self, username: str, token: str) -> bool: ...

    def update(self, username: str, token: str) -> bool: ...

    def delete(self, username: str) -> bool: ...


class AuthService:
    """Issue, renew and invalidate tokens for local users.

    Usage:
        service = AuthService(CredentialStore(engine), TokenStore(engine), TokenIssuer(key))
        pair = service.login(RequestContext(path="/login"), "alice", "secret")
        renewed = service.renew(ctx, pair.refresh_token)
        service.logout(ctx, pair.refresh_token)
    """

    def __init__(
        self,
        credentials: CredentialRepository,
        tokens: TokenRepository,
        issuer: TokenIssuer,
        rotate_refresh_on_renew: bool = False,
    ) -> None:
        self.credentials = credentials
        self.tokens = tokens
        self.issuer = issuer
        self.rotate_refresh_on_renew = rotate_refresh_on_renew

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def login(self, ctx: RequestContext, username: str, password: str) -> TokenPair:
        """Verify credentials and hand out an access + refresh token pair.

        Unknown username and wrong password return the same 401 so the
        response does not reveal which usernames exist. bcrypt runs in both
        cases [C1].
        """
        user = self.credentials.find_user(username)
        if user is None:
            verify_dummy_password(password)
            logger.warning("Failed login for unknown username=%s from %s", username, ctx.client_host)
            raise ApiAccessError(_BAD_CREDENTIALS, 401)
        if not self.credentials.verify_password(password, user.password_hash):
            logger.warning("Failed login for username=%s from %s", username, ctx.client_host)
            raise ApiAccessError(_BAD_CREDENTIALS, 401)

        access_token = self.issuer.issue_access_token(user_claims(user))
        refresh_token = self.issuer.issue_refresh_token({"username": user.username})
        self._store_refresh_token(user.username, refresh_token)

        if user.id is not None:
            self.credentials.update_last_login(user.id)
        logger.info("User %s logged in from %s", user.username, ctx.client_host)
        return TokenPair(access_token=access_token, refresh_token=refresh_token)

    def renew(self, ctx: RequestContext, token: str) -> TokenPair:
        """Exchange a refresh token that is still on file for a new access token."""
        username = self._validate(token)
        if not self.tokens.exists("token", token):
            raise ApiAccessError("Token doesn't exist.", 404)

        user = self.credentials.find_user(username)
        if user is None:
            raise ApiAccessError("User not found.", 404)

        pair = TokenPair(access_token=self.issuer.issue_access_token(user_claims(user)))
        if self.rotate_refresh_on_renew:
            pair.refresh_token = self.issuer.issue_refresh_token({"username": user.username})
            self._store_refresh_token(user.username, pair.refresh_token)
        logger.info("Access token renewed for %s via %s", user.username, ctx.path)
        return pair

    def logout(self, ctx: RequestContext, token: str) -> None:
        """Delete the refresh token on file. The access token simply expires."""
        username = self._validate(token)
        if not self.tokens.exists("token", token):
            raise ApiAccessError("Token doesn't exist.", 404)

        if not self.tokens.delete(username):
            logger.error("Refresh token for %s vanished before delete", username)
            raise ApiAccessError(_STORE_FAILURE, 500)

        user = self.credentials.find_user(username)
        if user is not None and user.id is not None:
            self.credentials.update_last_logout(user.id)
        logger.info("User %s logged out from %s", username, ctx.client_host)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _validate(self, token: str) -> str:
        try:
            return self.issuer.validate_refresh_token(token)
        except InvalidTokenError as exc:
            raise ApiAccessError("Invalid or expired refresh token.", 401) from exc

    def _store_refresh_token(self, username: str, token: str) -> None:
        """Put token in the single slot for username (last write wins).

        A create that loses the insert race to a concurrent login falls back
        to update, so exactly one record remains either way.
        """
        if self.tokens.exists("username", username):
            stored = self.tokens.update(username, token)
        else:
            stored = self.tokens.create(username, token) or self.tokens.update(username, token)
        if not stored:
            logger.error("Could not persist refresh token for %s", username)
            raise ApiAccessError(_STORE_FAILURE, 500)
