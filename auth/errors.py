"""
auth/errors.py -- Typed errors raised by the auth layer.

ApiAccessError is the only error the HTTP boundary turns into a non-500
response. Token-layer errors (InvalidTokenError, SigningError) are raised by
auth/tokens.py; the service converts InvalidTokenError into a 401
ApiAccessError and lets SigningError reach the generic 500 handler.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for every error raised from the auth package."""


class ApiAccessError(AuthError):
    """An expected failure with an HTTP status and optional field errors.

    errors maps a request field name to a human-readable message, e.g.
    {"username": "username is required"}.
    """

    def __init__(self, message: str, status_code: int, errors: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.errors = errors or {}

    def __repr__(self) -> str:
        return f"ApiAccessError(status_code={self.status_code}, message={self.message!r})"


class InvalidTokenError(AuthError):
    """A token failed signature, expiry, type or claim checks."""


class SigningError(AuthError):
    """A token could not be signed (missing key or encoder failure)."""
