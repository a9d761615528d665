"""
Error handling for the portal API.

Domain errors raised by the services are mapped to status codes by the
exception handlers registered here; anything that escapes them is caught by
``ErrorHandlingMiddleware``. Every error body is ``{"error": <message>}``.
"""

import logging
import traceback
from typing import Callable, Dict, Optional, Tuple, Type

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from devportal.domain.errors import (
    AuthenticationError,
    AuthorizationError,
    ConfigurationError,
    FieldValidationError,
    InvalidRequestError,
    NotFoundError,
    PortalError,
)
from devportal.schemas.errors import ErrorResponse

logger = logging.getLogger(__name__)

AUTHENTICATION_MESSAGE = "Authentication required"
CONFIGURATION_MESSAGE = "No AI Core credentials configured for your team"

# Status and fixed message (None keeps the error's own message); first match wins
ERROR_STATUS: Tuple[Tuple[Type[PortalError], int, Optional[str]], ...] = (
    (InvalidRequestError, 400, None),
    (FieldValidationError, 400, None),
    (AuthenticationError, 401, AUTHENTICATION_MESSAGE),
    (AuthorizationError, 403, None),
    (ConfigurationError, 403, CONFIGURATION_MESSAGE),
    (NotFoundError, 404, None),
)


def error_response(status_code: int, message: str, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=message).model_dump(), headers=headers)


def status_for(error: PortalError) -> Tuple[int, str]:
    for kind, status_code, fixed_message in ERROR_STATUS:
        if isinstance(error, kind):
            return status_code, fixed_message or error.message
    return 500, error.message


async def portal_error_handler(request: Request, exc: PortalError) -> JSONResponse:
    status_code, message = status_for(exc)
    log = logger.error if status_code >= 500 else logger.warning
    log(f"{request.method} {request.url.path} -> {status_code}: {exc.message}")
    return error_response(status_code, message)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    logger.warning(f"HTTP {exc.status_code} error for {request.method} {request.url.path}: {exc.detail}")
    return error_response(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    message = "; ".join(messages) or "invalid request"
    logger.warning(f"Request validation failed for {request.method} {request.url.path}: {message}")
    return error_response(400, message)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PortalError, portal_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """
    Last-resort handler for exceptions no registered handler claimed.

    Logs the traceback and answers 500 with the raw message.
    """

    def __init__(self, app, enable_error_logging: bool = True):
        super().__init__(app)
        self.enable_error_logging = enable_error_logging

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as e:
            logger.error(f"Unexpected error for {request.method} {request.url.path}: {e}")
            if self.enable_error_logging:
                logger.error(f"Full traceback:\n{traceback.format_exc()}")
            return error_response(500, str(e) or type(e).__name__)
