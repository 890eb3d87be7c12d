"""
api/errors.py -- Exception handlers that turn errors into the error envelope.

Every handler returns {status, message, errors}. Handlers for expected
failures (ApiAccessError, request validation) and unexpected ones (any other
Exception) also write an audit row with the path, message, code, file, line
and trace of the error. A failing audit write never replaces the response.

Register with register_error_handlers(app) once, after the app is created.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.models import ErrorResponse
from auth.errors import ApiAccessError
from auth.store import AuditLogStore, entry_from_exception

logger = logging.getLogger("tokenauth.api")

_VALIDATION_MESSAGE = "Validation error."
_REQUIRED_ERROR_TYPES = {"missing", "string_too_short", "blank"}


def error_response(status: int, message: str, errors: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content=ErrorResponse(status=status, message=message, errors=errors or {}).model_dump(),
    )


def validation_errors(exc: RequestValidationError) -> dict[str, str]:
    """Flatten pydantic errors into {field: message}, first error per field wins.

    Missing and blank fields read "<field> is required". A missing or
    malformed body is reported under "body".
    """
    errors: dict[str, str] = {}
    for err in exc.errors():
        if err.get("type") == "json_invalid":
            # loc holds a character offset, not a field name
            errors.setdefault("body", err.get("msg", "Invalid JSON"))
            continue
        loc = [str(part) for part in err.get("loc", ()) if part != "body"]
        field = ".".join(loc) or "body"
        if field in errors:
            continue
        if err.get("type") in _REQUIRED_ERROR_TYPES:
            errors[field] = f"{field} is required"
        else:
            errors[field] = err.get("msg", "Invalid value")
    return errors


def _audit(request: Request, exc: BaseException, code: int) -> None:
    audit_log: AuditLogStore | None = getattr(request.app.state, "audit_log", None)
    if audit_log is None:
        return
    audit_log.add(entry_from_exception(exc, request.url.path, code))


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApiAccessError)
    async def api_access_error_handler(request: Request, exc: ApiAccessError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        _audit(request, exc, exc.status_code)
        return error_response(exc.status_code, exc.message, exc.errors)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Return 400 with per-field messages when the request body fails validation."""
        errors = validation_errors(exc)
        _audit(request, exc, 400)
        return error_response(400, _VALIDATION_MESSAGE, errors)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Routing-level errors (unknown path, wrong method). Not audited."""
        return error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all handler for unexpected server errors.

        The raw exception goes to the log and the audit store only, never to
        the response body.
        """
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        _audit(request, exc, 500)
        return error_response(500, "An unexpected error occurred.")
