"""Middleware for HTTP request logging."""

import logging
import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with its outcome.

    - 2xx/3xx responses: logged at INFO level
    - 4xx responses: logged at WARN level
    - 5xx responses: logged at ERROR level
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()

        response = await call_next(request)

        duration_ms = (time.time() - start_time) * 1000
        extra = {
            "http_status": response.status_code,
            "method": request.method,
            "path": request.url.path,
            "duration_ms": round(duration_ms, 2),
        }

        if response.status_code >= 500:
            logger.error("Server error response", extra=extra)
        elif response.status_code >= 400:
            logger.warning("Client error response", extra=extra)
        else:
            logger.info("Request handled", extra=extra)

        return response
