"""structlog configuration for the sharing service.

One renderer (JSON lines or console) serves both structlog loggers and
stdlib loggers such as uvicorn's. Every event carries the current request
id. Values under credential-like keys are cut to a short prefix before
rendering, so a stray ``token=...`` never reaches the log sink in full.

Usage::

    from case_share.observability import configure_logging, get_logger

    configure_logging()  # once, at app startup
    logger = get_logger(__name__)
    logger.info("invite_created", case_id=case_id)
"""

from __future__ import annotations

import logging
import os
import sys
from contextvars import ContextVar
from typing import Any

import structlog

# Set per request by RequestIdMiddleware.
request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)

_CREDENTIAL_KEYS = frozenset({"token", "code", "authorization", "apikey", "service_role_key"})
_CREDENTIAL_PREFIX = 3

# httpx logs full PostgREST URLs at INFO, and those carry token hashes and
# emails in their query strings.
_QUIETED_LOGGERS = ("httpx", "httpcore", "uvicorn.access")

_configured = False


def _bind_request_id(_logger: Any, _method: str, event_dict: dict) -> dict:
    rid = request_id_ctx.get()
    if rid is not None:
        event_dict.setdefault("request_id", rid)
    return event_dict


def _truncate_credentials(_logger: Any, _method: str, event_dict: dict) -> dict:
    for key in _CREDENTIAL_KEYS & event_dict.keys():
        value = event_dict[key]
        if isinstance(value, str) and not value.endswith("...") and value != "<redacted>":
            event_dict[key] = f"{value[:_CREDENTIAL_PREFIX]}..." if value else value
    return event_dict


def _pre_chain() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        _bind_request_id,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _truncate_credentials,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def configure_logging(
    *,
    level: str | None = None,
    json_output: bool | None = None,
) -> None:
    """Install the structlog pipeline on the root logger. Idempotent.

    Args:
        level: Level name; falls back to LOG_LEVEL, then INFO.
        json_output: JSON lines when True, console when False; falls back
            to LOG_FORMAT == "json".
    """
    global _configured
    if _configured:
        return
    _configured = True

    level_name = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    if json_output is None:
        json_output = os.environ.get("LOG_FORMAT", "json") == "json"
    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )

    pre_chain = _pre_chain()
    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    ))

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(getattr(logging, level_name, logging.INFO))
    for name in _QUIETED_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
