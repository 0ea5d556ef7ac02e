"""Structured logging, Prometheus metrics and request correlation.

Quick start::

    from case_share.observability import configure_logging, get_logger
    from case_share.observability.middleware import AccessLogMiddleware, RequestIdMiddleware

    configure_logging()
    app.add_middleware(AccessLogMiddleware)
    app.add_middleware(RequestIdMiddleware)
"""

from .logging import configure_logging, get_logger, request_id_ctx
from .metrics import metrics_text

__all__ = [
    "configure_logging",
    "get_logger",
    "metrics_text",
    "request_id_ctx",
]
