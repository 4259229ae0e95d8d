"""
Middleware configuration for the application.
Includes Correlation ID setup and request logging middleware.
"""

import time
import structlog
from typing import Callable
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit
from fastapi import Request, Response
from asgi_correlation_id import CorrelationIdMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

logger = structlog.get_logger(__name__)

# Never written to the logs; they carry key material
REDACTED_QUERY_PARAMS = {"key", "key_salt", "salt", "hash"}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log each request once it finished, with status and timing."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()
        log = logger.bind(
            method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else "unknown",
        )

        try:
            response = await call_next(request)
        except Exception:
            log.exception(
                "Request failed",
                process_time_ms=round((time.perf_counter() - start_time) * 1000, 2),
            )
            raise

        location = response.headers.get("location")
        log.info(
            "Request completed",
            status_code=response.status_code,
            redirect=_redact(location) if location else None,
            process_time_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        return response


def _redact(url: str) -> str:
    parts = urlsplit(url)
    if not parts.query:
        return url
    params = [
        (name, "***" if name in REDACTED_QUERY_PARAMS else value)
        for name, value in parse_qsl(parts.query, keep_blank_values=True)
    ]
    return urlunsplit(parts._replace(query=urlencode(params, safe="*:")))


def setup_middleware(app):
    """Setup all middleware for the application."""

    # Starlette runs the last added middleware first; correlation id must wrap logging
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CorrelationIdMiddleware,
        header_name="X-Request-ID",
        update_request_header=True,
    )
