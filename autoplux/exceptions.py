"""
API error taxonomy and FastAPI exception handlers.

Every error response has the shape ``{"error": <kind>, "message": <text>,
"details": <structured, optional>}``.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class APIException(HTTPException):
    """Base class for errors rendered as ``{error, message, details}``."""

    error = "Error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.message = message
        self.details = details
        super().__init__(status_code=self.status_code, detail=message, headers=headers)


class Unauthorized(APIException):
    error = "Unauthorized"
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Could not validate credentials"):
        super().__init__(message, headers={"WWW-Authenticate": "Bearer"})


class Forbidden(APIException):
    error = "Forbidden"
    status_code = status.HTTP_403_FORBIDDEN


class ValidationError(APIException):
    error = "ValidationError"
    status_code = status.HTTP_400_BAD_REQUEST


class NotFound(APIException):
    error = "NotFound"
    status_code = status.HTTP_404_NOT_FOUND


class Conflict(APIException):
    error = "Conflict"
    status_code = status.HTTP_409_CONFLICT


class InsufficientStock(APIException):
    """Raised by the best-effort stock pre-check before any mutation."""
    error = "InsufficientStock"
    status_code = status.HTTP_400_BAD_REQUEST


class StockConflict(Conflict):
    """Raised when the in-transaction stock re-check fails."""
    error = "StockConflict"


class InvalidTransition(APIException):
    error = "InvalidTransition"
    status_code = status.HTTP_400_BAD_REQUEST


class PaymentNotConfirmed(Forbidden):
    error = "PaymentNotConfirmed"


class RateLimited(APIException):
    error = "RateLimited"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS


class InternalError(APIException):
    error = "InternalError"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


_ERROR_KINDS = {
    400: "ValidationError",
    401: "Unauthorized",
    403: "Forbidden",
    404: "NotFound",
    405: "MethodNotAllowed",
    409: "Conflict",
    429: "RateLimited",
}


def error_body(error: str, message: str, details: Optional[Any] = None) -> Dict[str, Any]:
    body = {"error": error, "message": message}
    if details is not None:
        body["details"] = details
    return body


async def api_exception_handler(request: Request, exc: APIException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.error, exc.message, exc.details),
        headers=exc.headers,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render plain HTTP exceptions (routing 404s, 405s) in the same shape."""
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(_ERROR_KINDS.get(exc.status_code, "Error"), str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = {}
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"][1:]) or str(error["loc"][0])
        errors[field] = error["msg"]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body("ValidationError", "Request validation failed", {"fields": errors}),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("InternalError", "An unexpected error occurred"),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(APIException, api_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
