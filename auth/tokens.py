"""
auth/tokens.py -- JWT issuing/validation and password hashing.

Security design decisions:
  JWT: python-jose with HS256 by default. Access tokens carry user_id and
       username; refresh tokens carry the username and a random jti.
       Both carry a "type" claim so a refresh token cannot be replayed as an
       access token and vice versa. Validation raises InvalidTokenError on
       any failure -- the service layer turns that into a 401.

  Passwords: bcrypt directly (no passlib wrapper). The _DUMMY_HASH constant
       lets the login flow always run one bcrypt check, so response time does
       not reveal whether a username exists [C1].

  TokenIssuer holds no mutable state. It is built once from Settings in the
  app lifespan and shared by every request.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

import bcrypt
from jose import JWTError, jwt

from auth.errors import InvalidTokenError, SigningError

if TYPE_CHECKING:
    from auth.models import User
    from core.config import Settings

logger = logging.getLogger("tokenauth.auth")

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"  # nosec B105 -- claim value, not a password

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt only reads the first 72 bytes and recent releases raise ValueError
    on longer input. The CLI refuses such passwords when creating users.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed or foreign hash yields False instead of an exception.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Timing equalization dummy hash [C1].
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("tokenauth_timing_dummy")


def verify_dummy_password(plain: str) -> None:
    """Burn one bcrypt check for a username that does not exist [C1]."""
    verify_password(plain, _DUMMY_HASH)


def user_claims(user: User) -> dict[str, Any]:
    """Claims embedded in an access token. The password hash never leaves the store."""
    return {"user_id": user.id, "username": user.username}


# ---------------------------------------------------------------------------
# Token issuer
# ---------------------------------------------------------------------------


class TokenIssuer:
    """Sign and validate access and refresh tokens.

    Usage:
        issuer = TokenIssuer.from_settings(get_settings())
        access = issuer.issue_access_token({"user_id": 1, "username": "alice"})
        refresh = issuer.issue_refresh_token({"username": "alice"})
        username = issuer.validate_refresh_token(refresh)
    """

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        access_expire_seconds: int = 900,
        refresh_expire_seconds: int = 7 * 24 * 3600,
    ) -> None:
        self._secret_key = secret_key
        self.algorithm = algorithm
        self.access_expire_seconds = access_expire_seconds
        self.refresh_expire_seconds = refresh_expire_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenIssuer:
        return cls(
            secret_key=settings.secret_key,
            algorithm=settings.jwt_algorithm,
            access_expire_seconds=settings.access_token_expire_seconds,
            refresh_expire_seconds=settings.refresh_token_expire_seconds,
        )

    # ------------------------------------------------------------------
    # Issuing
    # ------------------------------------------------------------------

    def issue_access_token(self, claims: dict[str, Any]) -> str:
        """Sign an access token carrying the given user claims.

        Any "password_hash" key is dropped before signing.
        """
        payload = {k: v for k, v in claims.items() if k != "password_hash"}
        return self._sign(payload, ACCESS_TOKEN_TYPE, self.access_expire_seconds)

    def issue_refresh_token(self, claims: dict[str, Any]) -> str:
        """Sign a refresh token carrying the username and a random jti.

        The jti makes every refresh token unique, even two issued to the same
        user within one second.
        """
        username = claims.get("username")
        if not username:
            raise SigningError("Refresh token claims must include a username.")
        payload = {"username": username, "jti": uuid.uuid4().hex}
        return self._sign(payload, REFRESH_TOKEN_TYPE, self.refresh_expire_seconds)

    def _sign(self, payload: dict[str, Any], token_type: str, expire_seconds: int) -> str:
        if not self._secret_key:
            raise SigningError("Signing key is not configured.")
        now = datetime.now(timezone.utc)
        payload = {
            **payload,
            "type": token_type,
            "iat": now,
            "exp": now + timedelta(seconds=expire_seconds),
        }
        try:
            return jwt.encode(payload, self._secret_key, algorithm=self.algorithm)
        except JWTError as exc:
            raise SigningError(f"Could not sign {token_type} token.") from exc

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_refresh_token(self, token: str) -> str:
        """Verify a refresh token and return the username it was issued to."""
        payload = self._decode(token, REFRESH_TOKEN_TYPE)
        username = payload.get("username")
        if not isinstance(username, str) or not username:
            raise InvalidTokenError("Refresh token has no username claim.")
        return username

    def decode_access_token(self, token: str) -> dict[str, Any]:
        """Verify an access token and return its payload."""
        payload = self._decode(token, ACCESS_TOKEN_TYPE)
        if "user_id" not in payload or "username" not in payload:
            raise InvalidTokenError("Access token is missing identity claims.")
        return payload

    def _decode(self, token: str, expected_type: str) -> dict[str, Any]:
        if not self._secret_key:
            raise InvalidTokenError("Signing key is not configured.")
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self.algorithm])
        except JWTError as exc:
            # ExpiredSignatureError and JWTClaimsError are JWTError subclasses.
            logger.debug("Rejected %s token: %s", expected_type, exc)
            raise InvalidTokenError(str(exc)) from exc
        if payload.get("type") != expected_type:
            raise InvalidTokenError(f"Expected a {expected_type} token.")
        return payload
