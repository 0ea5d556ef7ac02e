"""HTTP middleware: request correlation, Prometheus metrics and access logs.

Invite tokens and access codes travel in URL paths, so every path is reduced
to its route template before it becomes a metric label or a log field.
"""

from __future__ import annotations

import re
import time
import uuid

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

_REQUEST_ID_SHAPE = re.compile(r"^[A-Za-z0-9\-]{8,128}$")

# Applied in order; later templates see the output of earlier ones.
_ROUTE_TEMPLATES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"^/api/v1/invites/[^/]+"), "/api/v1/invites/{token}"),
    (re.compile(r"^/api/v1/access/[^/]+"), "/api/v1/access/{code}"),
    (re.compile(r"^/api/v1/cases/[^/]+"), "/api/v1/cases/{case_id}"),
    (re.compile(r"(/cases/\{case_id\}/(?:shares|invites))/[^/]+$"), r"\1/{id}"),
)


def normalize_path(path: str) -> str:
    """Replace secrets and ids in ``path`` with route placeholders."""
    for pattern, template in _ROUTE_TEMPLATES:
        path = pattern.sub(template, path)
    return path


def _incoming_request_id(request: Request) -> str:
    candidate = request.headers.get(REQUEST_ID_HEADER, "")
    if _REQUEST_ID_SHAPE.match(candidate):
        return candidate
    return str(uuid.uuid4())


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Adopt a well-formed X-Request-ID or mint one, and echo it back.

    The id lives in ``request_id_ctx`` for the duration of the request, where
    log lines and audit events pick it up.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        rid = _incoming_request_id(request)
        reset_token = request_id_ctx.set(rid)
        try:
            response = await call_next(request)
        finally:
            request_id_ctx.reset(reset_token)
        response.headers[REQUEST_ID_HEADER] = rid
        return response


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Count, time and log every request under its route template.

    An exception escaping the app is recorded as status 500 and re-raised.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        route = normalize_path(request.url.path)
        method = request.method
        status = 500
        started = time.perf_counter()
        HTTP_REQUESTS_IN_FLIGHT.inc()
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        finally:
            elapsed = time.perf_counter() - started
            HTTP_REQUESTS_IN_FLIGHT.dec()
            HTTP_REQUEST_DURATION_SECONDS.labels(method=method, path=route).observe(elapsed)
            HTTP_REQUESTS_TOTAL.labels(method=method, path=route, status=str(status)).inc()
            log = logger.warning if status >= 500 else logger.info
            log(
                "request_completed",
                method=method,
                path=route,
                status=status,
                duration_ms=round(elapsed * 1000, 2),
            )
