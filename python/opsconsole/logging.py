"""Structured logging configuration using structlog.

Every entry carries the request context bound by the request-id middleware
and the session registry:
- request_id: Correlation ID echoed in X-Request-ID
- path / method: The HTTP request (path only, never the query string)
- session_id: Browsing session the entry belongs to, once resolved

Usage:
    from opsconsole.logging import get_logger

    logger = get_logger(__name__)
    logger.info("page_fetched", item_count=25)

Operator queries can contain payload fragments (order numbers, e-mail
addresses). Pass them through hash_query() before logging; as a backstop,
any raw "query", "q" or "search_value" key on an entry is replaced by its
hash.
"""

import hashlib
import logging
import sys
from contextvars import ContextVar
from typing import Any

import structlog

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
path_var: ContextVar[str | None] = ContextVar("path", default=None)
method_var: ContextVar[str | None] = ContextVar("method", default=None)
session_id_var: ContextVar[str | None] = ContextVar("session_id", default=None)

_CONTEXT_FIELDS: dict[str, ContextVar[str | None]] = {
    "request_id": request_id_var,
    "path": path_var,
    "method": method_var,
    "session_id": session_id_var,
}

_RAW_QUERY_KEYS = ("query", "q", "search_value")

# SDK loggers that are chatty at INFO (HTTP round trips, AMQP frames)
_QUIET_LOGGERS = ("azure", "uamqp", "httpx", "uvicorn.access")


def hash_query(q: str | None) -> str | None:
    """Short, stable digest of a normalized query. None stays None."""
    if q is None:
        return None
    return hashlib.sha256(q.strip().lower().encode("utf-8")).hexdigest()[:16]


def add_request_context(logger: logging.Logger, method_name: str, event_dict: dict) -> dict:
    """Copy bound context fields onto the entry without overwriting explicit ones."""
    for key, var in _CONTEXT_FIELDS.items():
        value = var.get()
        if value:
            event_dict.setdefault(key, value)
    return event_dict


def redact_queries(logger: logging.Logger, method_name: str, event_dict: dict) -> dict:
    for key in _RAW_QUERY_KEYS:
        value = event_dict.pop(key, None)
        if isinstance(value, str):
            event_dict[f"{key}_hash"] = hash_query(value)
    return event_dict


def configure_logging(json_format: bool = True, level: int = logging.INFO) -> None:
    """Route structlog and stdlib logging through one renderer on stdout.

    Args:
        json_format: JSON lines when True, coloured console output otherwise.
        level: Root log level.
    """
    shared_processors: list[Any] = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        add_request_context,
        redact_queries,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    renderer = (
        structlog.processors.JSONRenderer()
        if json_format
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def set_request_context(
    request_id: str | None,
    path: str | None = None,
    method: str | None = None,
) -> None:
    """Bind the request's correlation id, path and method.

    Called by RequestIDMiddleware before the request is dispatched.
    """
    request_id_var.set(request_id)
    if path is not None:
        path_var.set(path)
    if method is not None:
        method_var.set(method)


def set_session_id(session_id: str | None) -> None:
    """Bind the browsing session id for the rest of the current request."""
    session_id_var.set(session_id)


def clear_request_context() -> None:
    for var in _CONTEXT_FIELDS.values():
        var.set(None)


def get_request_id() -> str | None:
    return request_id_var.get()
