"""
Access logging with a correlation id per request.

The id comes from the caller's ``X-Request-ID`` header when present and
is echoed back on the response, next to ``X-Process-Time``.
"""

import contextvars
import logging
import time
from typing import Iterable, Optional
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar('request_id', default='no-request-id')

SLOW_REQUEST_SECONDS = 2.0
QUIET_PATHS = frozenset({"/", "/health", "/metrics", "/docs", "/redoc", "/openapi.json"})
MASKED_HEADERS = frozenset({"authorization", "cookie", "x-api-key", "x-payment-signature"})


def client_ip(request: Request) -> str:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs each request and its outcome under a request id."""

    def __init__(self, app, masked_headers: Optional[Iterable[str]] = None):
        super().__init__(app)
        self.masked_headers = frozenset(h.lower() for h in masked_headers) if masked_headers else MASKED_HEADERS

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid4())
        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        started = time.perf_counter()
        path = request.url.path

        level = logging.DEBUG if path in QUIET_PATHS else logging.INFO
        logger.log(level, f"{request.method} {path}", extra={
            "query_params": dict(request.query_params),
            "client_ip": client_ip(request),
            "headers": {
                name: "***MASKED***" if name.lower() in self.masked_headers else value
                for name, value in request.headers.items()
            },
        })

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                f"{request.method} {path} raised {type(exc).__name__}",
                extra={"elapsed": time.perf_counter() - started},
                exc_info=True
            )
            raise
        finally:
            request_id_var.reset(token)

        elapsed = time.perf_counter() - started
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{elapsed:.4f}"

        status = response.status_code
        if status >= 500:
            level = logging.ERROR
        elif status >= 400:
            level = logging.WARNING
        logger.log(level, f"{request.method} {path} -> {status} ({elapsed:.4f}s)",
                   extra={"status_code": status, "elapsed": elapsed, "request_id": request_id})

        if elapsed > SLOW_REQUEST_SECONDS:
            logger.warning(f"Slow request: {request.method} {path} took {elapsed:.4f}s",
                           extra={"slow_request": True, "request_id": request_id})

        return response
