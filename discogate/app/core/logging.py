"""Logging setup for discogate.

Records go through the standard library ``logging`` package configured with
``dictConfig``. ``LOG_FORMAT=json`` emits one JSON object per line for log
shippers; ``text`` and ``structured`` are meant for a terminal.
"""

import json
import logging
import logging.config
import sys
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from discogate.app.core.config import settings

# Per-request fields lifted to the top level of JSON output.
REQUEST_FIELDS = (
    "request_id",
    "user_id",
    "endpoint",
    "method",
    "status_code",
    "duration_ms",
)

# Attributes every LogRecord carries; anything else came in via ``extra=``.
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime"}

_TEXT_FORMATS = {
    "standard": "%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    "structured": (
        "%(asctime)s %(levelname)-7s %(name)s: %(message)s "
        "[request_id=%(request_id)s user_id=%(user_id)s endpoint=%(endpoint)s]"
    ),
}


class JSONFormatter(logging.Formatter):
    """Render a record as a single-line JSON object.

    Request fields set through ``extra=`` appear at the top level; any other
    extra attributes are grouped under ``"extra"``.
    """

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()

        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
            "source": {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            },
        }

        extra: Dict[str, Any] = {}
        for key, value in record.__dict__.items():
            if key in REQUEST_FIELDS:
                if value is not None:
                    payload[key] = value
            elif key not in _RECORD_ATTRS:
                extra[key] = value
        if extra:
            payload["extra"] = extra

        if record.exc_info and record.exc_info[0] is not None:
            payload["exception"] = traceback.format_exception(*record.exc_info)

        return json.dumps(payload, default=str, ensure_ascii=False)


class ContextFilter(logging.Filter):
    """Give every record the request fields so text formats never KeyError."""

    def filter(self, record: logging.LogRecord) -> bool:
        for field in REQUEST_FIELDS:
            if not hasattr(record, field):
                setattr(record, field, None)
        return True


def _stream_handler(stream: Any, level: str, formatter: str) -> Dict[str, Any]:
    return {
        "class": "logging.StreamHandler",
        "stream": stream,
        "level": level,
        "formatter": formatter,
        "filters": ["context"],
    }


def get_logging_config() -> Dict[str, Any]:
    """Build the ``dictConfig`` mapping from the current settings.

    Application loggers write INFO and above to stdout and duplicate errors
    to stderr; third-party loggers only reach stdout through the root.
    """
    log_format = settings.log_format.lower()
    log_level = settings.log_level.upper()

    formatters: Dict[str, Any] = {
        name: {"format": fmt} for name, fmt in _TEXT_FORMATS.items()
    }
    if log_format == "json":
        formatters["json"] = {"()": JSONFormatter}
        formatter = "json"
    elif log_format == "structured":
        formatter = "structured"
    else:
        formatter = "standard"

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"context": {"()": ContextFilter}},
        "formatters": formatters,
        "handlers": {
            "console": _stream_handler(sys.stdout, log_level, formatter),
            "error_console": _stream_handler(sys.stderr, "ERROR", formatter),
        },
        "loggers": {
            "discogate": {
                "level": log_level,
                "handlers": ["console", "error_console"],
                "propagate": False,
            },
            "uvicorn": {
                "level": log_level,
                "handlers": ["console"],
                "propagate": False,
            },
        },
        "root": {"level": log_level, "handlers": ["console"]},
    }


def setup_logging() -> None:
    """Apply ``get_logging_config()`` and quiet chatty libraries."""
    logging.config.dictConfig(get_logging_config())

    for noisy in ("uvicorn.access", "sqlalchemy.engine", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str = "discogate") -> logging.Logger:
    return logging.getLogger(name)


def get_log_context(
    request_id: Optional[str] = None,
    user_id: Optional[str] = None,
    endpoint: Optional[str] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """Build an ``extra=`` mapping, leaving out fields that are None.

    Example:
        >>> logger.warning(
        ...     "Discogs tokens expired",
        ...     extra=get_log_context(user_id="user-1", endpoint="/oauth/identity"),
        ... )
    """
    context = {"request_id": request_id, "user_id": user_id, "endpoint": endpoint, **extra}
    return {key: value for key, value in context.items() if value is not None}
