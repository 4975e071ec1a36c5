"""Exception handlers that turn every failure into the response envelope.

Internal detail (exception text, stack) only reaches the client in debug mode
outside production.
"""
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from healthportal.api.responses import error_envelope
from healthportal.core.exceptions import AuthError, InternalFailure, ValidationFailed
from healthportal.core.logging import get_logger

logger = get_logger(__name__)

_HTTP_MESSAGES = {
    404: "Route not found",
    405: "Method not allowed",
    413: "Request entity too large",
}


def validation_errors(exc: RequestValidationError) -> Dict[str, str]:
    """Flatten pydantic errors into ``{field: message}``.

    >>> # loc ("body", "email") -> "email"; ("query", "page") -> "query.page"
    """
    errors: Dict[str, str] = {}
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ())]
        if loc and loc[0] == "body":
            loc = loc[1:]
        field = ".".join(loc) or "body"
        if error.get("type") == "json_invalid":
            field, message = "body", "Invalid JSON format"
        else:
            message = error.get("msg", "Invalid value")
        errors.setdefault(field, message)
    return errors


def unhandled_error_response(
    request: Request,
    exc: Exception,
    expose_errors: bool = False,
    log=logger,
    extra: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
):
    """Log an unexpected exception and render it as an ``InternalFailure`` envelope.

    Shared by the request middleware and the catch-all handler so every 500
    is logged once and rendered the same way.
    """
    log.error(
        f"Unhandled error: {request.method} {request.url.path}",
        extra={"method": request.method, "endpoint": request.url.path,
               "error_type": type(exc).__name__, **(extra or {})},
        exc_info=exc
    )
    failure = InternalFailure()
    message = str(exc) if expose_errors else failure.message
    return error_envelope(message, failure.status_code, headers=headers)


def register_exception_handlers(app: FastAPI, expose_errors: bool = False) -> None:
    """Attach the envelope handlers to ``app``.

    Args:
        app: Application
        expose_errors: Include unexpected exception text in 500 responses
    """

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError):
        headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
        return error_envelope(exc.message, exc.status_code, errors=exc.errors, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = validation_errors(exc)
        logger.info(
            f"Validation failed: {request.method} {request.url.path}",
            extra={"fields": sorted(errors)}
        )
        failure = ValidationFailed(errors=errors)
        return error_envelope(failure.message, failure.status_code, errors=failure.errors)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        message = _HTTP_MESSAGES.get(exc.status_code)
        if message is None:
            message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return error_envelope(message, exc.status_code, headers=getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        return unhandled_error_response(request, exc, expose_errors=expose_errors)
