"""Logging for windowguard.

Limiter records carry the policy, the Redis key and the request id, so a 429
can be traced back to the window that denied it. ``LOG_FORMAT=json`` emits
one JSON object per line for log aggregation.
"""

import json
import logging
import logging.config
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from windowguard.app.core.config import settings

# Request correlation id for the request currently being handled
_request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Attributes the limiter attaches to records via extra=
CONTEXT_FIELDS = ("request_id", "client_ip", "user_id", "path", "policy", "rate_limit_key")

TEXT_FORMAT = (
    "%(asctime)s %(levelname)s %(name)s [%(request_id)s] %(message)s"
    " policy=%(policy)s key=%(rate_limit_key)s"
)


def set_request_id(request_id: Optional[str]) -> None:
    """Bind a request id to the current async context."""
    _request_id_var.set(request_id)


def get_current_request_id() -> Optional[str]:
    return _request_id_var.get()


class ContextFilter(logging.Filter):
    """Give every record the context fields, defaulting to None.

    ``request_id`` falls back to the id bound by RequestIdMiddleware, so
    modules deep in the limiter need not pass it along.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        for field in CONTEXT_FIELDS:
            if not hasattr(record, field):
                setattr(record, field, None)
        if record.request_id is None:
            record.request_id = get_current_request_id()
        return True


class JSONFormatter(logging.Formatter):
    """Format a record as a JSON line holding only the context fields that are set."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


def get_logging_config() -> Dict[str, Any]:
    """Build the dictConfig for the ``windowguard`` logger tree."""
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "text": {"format": TEXT_FORMAT},
            "json": {"()": JSONFormatter},
        },
        "filters": {
            "context": {"()": ContextFilter},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
                "formatter": "json" if settings.log_format == "json" else "text",
                "filters": ["context"],
            },
        },
        "loggers": {
            "windowguard": {
                "level": settings.log_level.upper(),
                "handlers": ["console"],
                "propagate": False,
            },
        },
    }


def setup_logging() -> None:
    logging.config.dictConfig(get_logging_config())
    logging.getLogger("redis").setLevel(logging.WARNING)


def get_logger(name: str = "windowguard") -> logging.Logger:
    return logging.getLogger(name)


def get_log_context(**fields: Any) -> Dict[str, Any]:
    """Build an ``extra=`` dict from context fields, dropping unset ones.

    Example:
        >>> logger.warning(
        ...     "Rate limit exceeded",
        ...     extra=get_log_context(policy="auth", rate_limit_key="ratelimit:auth:10.0.0.1"),
        ... )
    """
    return {key: value for key, value in fields.items() if value is not None}
