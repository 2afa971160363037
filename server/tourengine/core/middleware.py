"""Request id propagation and access logging for the API."""

import time
import uuid
import logging
from typing import Callable, Iterable, Optional
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
import structlog

from .config import settings
from .observability import metrics_collector


logger = logging.getLogger(__name__)

QUIET_PATHS = ("/health", "/ready", "/metrics", "/favicon.ico")
UNLOGGED_BODY_PATHS = ("/v1/payments/webhook",)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Tags every call with a request id.

    The id comes from the X-Request-ID header when the caller sent one,
    otherwise a fresh UUID; it is echoed on the response and bound into
    the structlog context so every log line of the call carries it.
    """

    def __init__(self, app: ASGIApp, header_name: str = "X-Request-ID"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request and add request ID."""
        request_id = request.headers.get(self.header_name) or str(uuid.uuid4())
        request.state.request_id = request_id

        structlog.contextvars.bind_contextvars(request_id=request_id)
        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("request_id")

        response.headers[self.header_name] = request_id
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs one line per API call and feeds the HTTP counters and latency
    histogram exposed at /metrics.

    Probe and scrape paths are passed through untouched.
    """

    def __init__(
        self,
        app: ASGIApp,
        log_request_body: bool = False,
        skip_paths: Optional[Iterable[str]] = None,
    ):
        super().__init__(app)
        self.log_request_body = log_request_body
        self.skip_paths = frozenset(skip_paths or QUIET_PATHS)

    @staticmethod
    def _client_ip(request: Request) -> str:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()
        return request.client.host if request.client else "unknown"

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if path in self.skip_paths:
            return await call_next(request)

        started = time.perf_counter()
        call = {
            "request_id": getattr(request.state, "request_id", None),
            "method": request.method,
            "path": path,
            "client_ip": self._client_ip(request),
            "idempotency_key": request.headers.get("Idempotency-Key"),
        }

        # Webhook bodies carry signed payment data and are never logged
        if self.log_request_body and request.method == "POST" and path not in UNLOGGED_BODY_PATHS:
            body = await request.body()
            if body:
                call["request_body"] = body.decode("utf-8", errors="replace")[:1000]

        try:
            response = await call_next(request)
        except Exception:
            metrics_collector.record_http_request(request.method, path, 500, time.perf_counter() - started)
            logger.exception("API call crashed", extra=call)
            raise

        elapsed = time.perf_counter() - started
        metrics_collector.record_http_request(request.method, path, response.status_code, elapsed)
        call.update({"status_code": response.status_code, "duration_ms": round(elapsed * 1000, 2)})

        if response.status_code >= 500:
            logger.error("API call failed", extra=call)
        elif response.status_code >= 400:
            logger.warning("API call rejected", extra=call)
        else:
            logger.info("API call served", extra=call)
        return response


def setup_middleware(app, enable_logging: bool = True) -> None:
    """
    Install request id and access logging middleware.

    Starlette runs the most recently added middleware first, so the request
    id is bound before the access log line is written.
    """
    if enable_logging:
        app.add_middleware(LoggingMiddleware, log_request_body=settings.debug)
    app.add_middleware(RequestIDMiddleware)
