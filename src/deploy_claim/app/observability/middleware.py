"""HTTP middleware: request correlation, Prometheus metrics, access log.

Register in reverse order so ``RequestIdMiddleware`` runs first::

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIdMiddleware)

``/health`` and ``/metrics`` are polled by the platform and are left out of
both the metrics and the access log.
"""

from __future__ import annotations

import re
import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from .logging import get_logger, request_id_ctx
from .metrics import (
    HTTP_REQUEST_DURATION_SECONDS,
    HTTP_REQUESTS_IN_FLIGHT,
    HTTP_REQUESTS_TOTAL,
)

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
PROBE_PATHS = frozenset({"/health", "/metrics"})

_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9\-]{8,128}$")

# Deployment ids and URLs in the path would explode label cardinality.
_DEPLOYMENT_PATH = re.compile(r"^(/api/(?:wait-for-deploy|cancel-deployment))/.+$")


def _normalize_path(path: str) -> str:
    return _DEPLOYMENT_PATH.sub(r"\1/{deployment}", path)


def _is_probe(request: Request) -> bool:
    return request.url.path in PROBE_PATHS


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Accept a well-formed ``X-Request-ID`` or mint one, and echo it back."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        incoming = request.headers.get(REQUEST_ID_HEADER, "")
        rid = incoming if _VALID_REQUEST_ID.match(incoming) else str(uuid.uuid4())

        token = request_id_ctx.set(rid)
        structlog.contextvars.clear_contextvars()
        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.clear_contextvars()
            request_id_ctx.reset(token)

        response.headers[REQUEST_ID_HEADER] = rid
        return response


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        if _is_probe(request):
            return await call_next(request)

        labels = {"method": request.method, "path": _normalize_path(request.url.path)}
        status = "500"
        HTTP_REQUESTS_IN_FLIGHT.inc()
        started = time.perf_counter()
        try:
            response = await call_next(request)
            status = str(response.status_code)
            return response
        finally:
            # Streamed progress responses are timed to their first byte.
            HTTP_REQUESTS_IN_FLIGHT.dec()
            HTTP_REQUEST_DURATION_SECONDS.labels(**labels).observe(
                time.perf_counter() - started,
            )
            HTTP_REQUESTS_TOTAL.labels(status=status, **labels).inc()


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One ``request_completed`` line per request.

    Provisioning calls carry ``projectName`` or ``template`` in the query
    string. When present they are added to the line so a failed provision
    can be traced back to the temporary project it left behind.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        if _is_probe(request):
            return await call_next(request)

        started = time.perf_counter()
        response = await call_next(request)

        fields = {
            "method": request.method,
            "path": _normalize_path(request.url.path),
            "status": response.status_code,
            "duration_ms": round((time.perf_counter() - started) * 1000, 2),
        }
        for param, key in (("projectName", "project_name"), ("template", "template")):
            value = request.query_params.get(param)
            if value:
                fields[key] = value
        if response.headers.get("content-type", "").startswith("application/x-ndjson"):
            fields["streamed"] = True

        log = logger.warning if response.status_code >= 500 else logger.info
        log("request_completed", **fields)
        return response
