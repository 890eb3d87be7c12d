"""
API request and response models for TokenAuth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.
"""

from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator
from pydantic_core import PydanticCustomError

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    The username is stripped; the password is kept byte-for-byte but may not
    be blank. Blank fields are reported as "<field> is required".
    """

    username: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]
    password: str = Field(min_length=1, max_length=128)

    @field_validator("password")
    @classmethod
    def password_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise PydanticCustomError("blank", "Value must not be blank")
        return value


class TokenRequest(BaseModel):
    """Request body for POST /api/v1/auth/renew and /api/v1/auth/logout."""

    model_config = ConfigDict(str_strip_whitespace=True)

    token: str = Field(min_length=1, max_length=2048)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class RenewResponse(BaseModel):
    """Response for POST /api/v1/auth/renew.

    refresh_token is only present when refresh rotation is enabled.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    refresh_token: Optional[str] = None


class MeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: int
    username: str
    last_login: Optional[str] = None
    last_logout: Optional[str] = None


class ErrorResponse(BaseModel):
    """Error envelope returned on every 4xx/5xx response.

    errors maps request field names to messages on validation failures and
    is empty otherwise.
    """

    model_config = ConfigDict(frozen=True)

    status: int
    message: str
    errors: dict[str, str] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
