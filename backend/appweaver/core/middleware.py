"""
AppWeaver - HTTP Middleware
Request logging, timing, and context management
"""

import time
from typing import Callable, Optional, Set
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from appweaver.core.logging_config import (
    logger,
    set_request_id,
    set_message_id,
    generate_request_id,
)


# Paths that should skip detailed logging
SKIP_LOGGING_PATHS: Set[str] = {
    "/",
    "/api/v1/health",
    "/docs",
    "/redoc",
    "/openapi.json",
}


def should_skip_logging(path: str) -> bool:
    return path in SKIP_LOGGING_PATHS


def is_streaming_path(path: str) -> bool:
    """SSE progress relays stay open; their duration is not a latency"""
    return path.endswith("/progress")


def message_id_from_path(path: str) -> Optional[str]:
    """'/api/v1/messages/<id>/...' -> '<id>'"""
    if "/messages/" not in path:
        return None
    message_id = path.split("/messages/", 1)[1].split("/")[0]
    return message_id or None


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs every request with its duration and sets the request/message
    context variables for downstream logging. Adds X-Request-ID and
    X-Response-Time headers.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or generate_request_id()
        set_request_id(request_id)

        path = request.url.path
        message_id = message_id_from_path(path)
        if message_id:
            set_message_id(message_id)

        skip_logging = should_skip_logging(path)
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
            duration_ms = (time.perf_counter() - start_time) * 1000

            response.headers["X-Request-ID"] = request_id
            response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"

            if not skip_logging:
                logger.log_request(
                    request.method, path, response.status_code, duration_ms,
                    is_streaming=is_streaming_path(path),
                )
                if duration_ms > 1000 and not is_streaming_path(path):
                    logger.log_performance(f"{request.method} {path}", duration_ms)

            return response

        except Exception as exc:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                f"✗ {request.method} {path} - Exception ({duration_ms:.2f}ms): {type(exc).__name__}",
                exc_info=True,
                extra={
                    "event_type": "http_request_error",
                    "http_method": request.method,
                    "http_path": path,
                    "duration_ms": duration_ms,
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                }
            )
            raise

        finally:
            set_request_id("")
            set_message_id("")
