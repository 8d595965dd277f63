"""
Error taxonomy and response envelope for the MealMart orders service.

Every handler answers with ``{status, statusCode, message, data}``; errors
carry ``status: false`` and ``data: null``.
"""
import logging
from typing import Any, Optional
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base error with a stable HTTP status code and a human-readable message."""
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT


class OutOfStockError(ConflictError):
    pass


class ForbiddenError(AppError):
    status_code = status.HTTP_403_FORBIDDEN


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST


class UpstreamFailureError(AppError):
    """Payment gateway unreachable or returned an unexpected shape."""
    status_code = status.HTTP_502_BAD_GATEWAY


def send_response(
    status_code: int,
    message: str,
    data: Any = None,
    meta: Optional[dict] = None,
) -> JSONResponse:
    """
    Build the standard success envelope.

    Args:
        status_code: HTTP status code
        message: Human-readable message
        data: Payload (JSON-encodable)
        meta: Pagination metadata for list endpoints (optional)

    Returns:
        JSONResponse with ``{status, statusCode, message, data[, meta]}``
    """
    body = {
        "status": True,
        "statusCode": status_code,
        "message": message,
        "data": data,
    }
    if meta is not None:
        body["meta"] = meta
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "status": False,
            "statusCode": status_code,
            "message": message,
            "data": None,
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install handlers that render every error in the response envelope."""

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return _error_response(exc.status_code, exc.message)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        response = _error_response(exc.status_code, str(exc.detail))
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        if errors:
            first = errors[0]
            location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
            message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
        else:
            message = "Invalid request"
        return _error_response(status.HTTP_400_BAD_REQUEST, message)
