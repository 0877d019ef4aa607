"""Map the token error taxonomy onto HTTP responses."""

from datetime import datetime, timezone
from typing import Any, Dict, Optional
import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from tokenkeeper.core.exceptions import (
    AuthenticationError,
    BaseAPIException,
    RateLimitedError,
    TokenReuseDetectedError,
)
from tokenkeeper.core.metrics import AUTH_FAILURES

logger = logging.getLogger(__name__)


def _error_response(
    request: Request,
    status_code: int,
    error: str,
    details: Any = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    content: Dict[str, Any] = {
        "success": False,
        "error": error,
        "path": request.url.path,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if details is not None:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def _auth_headers(exc: BaseAPIException) -> Optional[Dict[str, str]]:
    if isinstance(exc, RateLimitedError):
        return {"Retry-After": str(exc.retry_after)}
    if isinstance(exc, TokenReuseDetectedError):
        return {"WWW-Authenticate": 'Bearer error="invalid_token", error_description="token reuse"'}
    if isinstance(exc, AuthenticationError):
        return {"WWW-Authenticate": 'Bearer error="invalid_token"'}
    return None


async def api_exception_handler(request: Request, exc: BaseAPIException):
    """Render BaseAPIException subclasses"""
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.__class__.__name__, request.method, request.url.path, exc.message)
    else:
        AUTH_FAILURES.labels(exc.__class__.__name__).inc()
        logger.info("%s on %s %s", exc.__class__.__name__, request.method, request.url.path)

    return _error_response(request, exc.status_code, exc.message, exc.details, _auth_headers(exc))


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors"""
    errors = [
        {
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    logger.warning("Validation error on %s: %d field(s)", request.url.path, len(errors))
    return _error_response(request, status.HTTP_422_UNPROCESSABLE_ENTITY, "Validation failed", errors)


async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    """A store failure that escaped the services is still a 503, never a retry"""
    logger.error("Database error on %s: %s", request.url.path, exc.__class__.__name__)
    return _error_response(
        request,
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "A database error occurred. Please try again later.",
    )


async def general_exception_handler(request: Request, exc: Exception):
    logger.critical("Unhandled exception on %s", request.url.path, exc_info=exc)
    return _error_response(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "An unexpected error occurred.")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BaseAPIException, api_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, database_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
