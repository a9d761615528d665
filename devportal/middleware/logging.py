"""
Request logging middleware.

Logs every request and response with timing, and adds an ``X-Process-Time``
header.
"""

import json
import logging
import time
from typing import Any, Callable, Dict

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

SENSITIVE_HEADERS = {"authorization", "cookie", "x-api-key", "x-auth-token"}


class LoggingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, enable_detailed_logging: bool = False):
        """
        Args:
            app: FastAPI application instance
            enable_detailed_logging: Also log request headers at DEBUG level
        """
        super().__init__(app)
        self.enable_detailed_logging = enable_detailed_logging

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        client_ip = request.client.host if request.client else None

        logger.info(f"{request.method} {request.url.path} - {client_ip}")
        if self.enable_detailed_logging:
            logger.debug(f"Request details: {json.dumps(self._request_info(request), indent=2)}")

        try:
            response = await call_next(request)
        except Exception as e:
            process_time = time.time() - start_time
            logger.error(f"{request.method} {request.url.path} - ERROR - {process_time:.3f}s - {e}")
            raise

        process_time = time.time() - start_time
        logger.info(f"{request.method} {request.url.path} - {response.status_code} - {process_time:.3f}s")
        response.headers["X-Process-Time"] = str(process_time)
        return response

    @staticmethod
    def _request_info(request: Request) -> Dict[str, Any]:
        return {
            "method": request.method,
            "path": str(request.url.path),
            "query_params": dict(request.query_params),
            "user_agent": request.headers.get("user-agent"),
            "content_type": request.headers.get("content-type"),
            "headers": {k: v for k, v in request.headers.items() if k.lower() not in SENSITIVE_HEADERS},
        }
