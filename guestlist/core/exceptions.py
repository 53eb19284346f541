"""
Domain exceptions and their HTTP translation
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from guestlist.schemas.common import ErrorResponse

logger = logging.getLogger(__name__)


class GuestListError(Exception):
    """Base exception for the guest list backend.

    Raised from services and route handlers; translated to the JSON error
    envelope by the handlers registered in ``register_exception_handlers``.
    """

    status_code: int = 400
    default_code: Optional[str] = None

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Any = None,
    ) -> None:
        self.message = message
        self.code = code if code is not None else self.default_code
        self.details = details
        super().__init__(message)


class AuthenticationError(GuestListError):
    """No valid session."""

    status_code = 401
    default_code = "not_authenticated"


class AuthorizationError(GuestListError):
    """Authenticated but not a member, or not an admin."""

    status_code = 403
    default_code = "access_denied"


class ValidationError(GuestListError):
    status_code = 400
    default_code = "validation_error"


class NotFoundError(GuestListError):
    status_code = 404
    default_code = "not_found"


class ConflictError(GuestListError):
    status_code = 409
    default_code = "conflict"


def _error_json(status_code: int, error: str, code: Optional[str] = None, details: Any = None) -> JSONResponse:
    payload = ErrorResponse(error=error, error_code=code, details=details)
    return JSONResponse(status_code=status_code, content=payload.model_dump(mode="json"))


def register_exception_handlers(app: FastAPI) -> None:
    """Map domain, validation and HTTP errors to ``{"error": ...}`` responses"""

    @app.exception_handler(GuestListError)
    async def _guestlist_error_handler(_request: Request, exc: GuestListError) -> JSONResponse:
        return _error_json(exc.status_code, exc.message, exc.code, exc.details)

    @app.exception_handler(RequestValidationError)
    async def _validation_error_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        details = [
            {"field": ".".join(str(part) for part in err.get("loc", ())), "message": err.get("msg")}
            for err in exc.errors()
        ]
        return _error_json(400, "Invalid input", "validation_error", details)

    @app.exception_handler(StarletteHTTPException)
    async def _http_error_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        detail = exc.detail
        if isinstance(detail, str):
            return _error_json(exc.status_code, detail, "http_exception")
        return _error_json(exc.status_code, "Request failed", "http_exception", detail)

    @app.exception_handler(Exception)
    async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return _error_json(500, "Internal server error", "internal_error")
