"""HTTP middleware: request correlation, request metrics and JSON error bodies.

``/sync`` answers every authentication, filter and dispatch outcome itself,
so only routing errors and crashes reach the handlers here.
"""

import time
import uuid
from typing import Callable

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import Counter, Histogram
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = structlog.get_logger()

REQUEST_COUNT = Counter(
    "sitesync_http_requests_total",
    "HTTP requests by route and status",
    ["method", "route", "status"],
)

REQUEST_DURATION = Histogram(
    "sitesync_http_request_duration_seconds",
    "HTTP request latency by route",
    ["method", "route"],
)

UNMATCHED_ROUTE = "<unmatched>"


def _route_label(request: Request) -> str:
    """Label metrics by route template so probing random paths cannot grow the series."""
    route = request.scope.get("route")
    return getattr(route, "path", UNMATCHED_ROUTE)


def setup_error_handling(app: FastAPI) -> None:
    """Answer routing errors and crashes with a JSON body instead of HTML or a traceback."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Unknown paths and wrong methods, e.g. ``GET /sync``."""
        return JSONResponse(
            status_code=exc.status_code,
            content={"status": "error", "reason": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        """Never leak internals to the caller; the log has the traceback."""
        logger.exception("Unhandled error while serving request", exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"status": "error", "reason": "internal error"},
        )


def setup_logging_middleware(app: FastAPI) -> None:
    """Bind a request id to every log line of a request and echo it back in ``X-Request-ID``."""

    @app.middleware("http")
    async def log_requests(request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-GitHub-Delivery") or uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id, path=request.url.path)
        started = time.monotonic()

        response = await call_next(request)

        logger.info(
            "Request handled",
            method=request.method,
            status_code=response.status_code,
            duration_ms=round((time.monotonic() - started) * 1000, 1),
        )
        response.headers["X-Request-ID"] = request_id
        return response


def setup_metrics_middleware(app: FastAPI) -> None:
    """Count and time requests per route template."""

    @app.middleware("http")
    async def collect_metrics(request: Request, call_next: Callable) -> Response:
        started = time.monotonic()
        response = await call_next(request)
        route = _route_label(request)
        REQUEST_COUNT.labels(method=request.method, route=route, status=response.status_code).inc()
        REQUEST_DURATION.labels(method=request.method, route=route).observe(time.monotonic() - started)
        return response
