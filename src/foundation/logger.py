"""Structured JSON logging for the operator process.

Every log line is a single JSON object. Values passed through `extra=` become
top-level keys, so reconcile logs can be filtered on `key`, `job_id` or
`circuit_breaker` without parsing messages. The HTTP middleware attaches
`request` / `response` dicts, which are flattened, and `error` dicts, which
are kept nested together with the traceback.

`LOGGING_CONFIG` is applied once with `logging.config.dictConfig` by the app
factory and handed to uvicorn. The level of the `operator` loggers comes from
`LOG_LEVEL` (default `INFO`).
"""

import json
import logging
import os
from datetime import UTC, datetime
from typing import Any

# Attributes every LogRecord carries; anything else was passed via extra=
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
    "taskName",
}
_NESTED_EXTRAS = ("request", "response", "error")
_FLATTENED_FIELDS = {
    "request": ("path", "method", "remoteAddr"),
    "response": ("path", "method", "statuscode", "since", "remoteAddr"),
}


class CustomJSONFormatter(logging.Formatter):
    """Formats records as one-line JSON with ISO-8601 UTC timestamps."""

    def __init__(self, fmt: str = "%(asctime)s") -> None:
        super().__init__(fmt)

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:  # noqa: N802
        return datetime.fromtimestamp(record.created, tz=UTC).isoformat(timespec="milliseconds")

    def format(self, record: logging.LogRecord) -> str:
        super().format(record)
        return json.dumps(self.get_log(record), default=str)

    def get_log(self, record: logging.LogRecord) -> dict[str, Any]:
        """Build the JSON document of an already formatted record.

        Args:
            record: Record on which `format()` has set `message` and `asctime`.

        Returns:
            Standard fields, flattened HTTP fields, error details and extras.
        """
        log: dict[str, Any] = {
            "time": record.asctime,
            "level": record.levelname,
            "logger_name": record.name,
            "thread_name": record.threadName,
            "process_id": record.process,
            "pathname": record.pathname,
            "line": record.lineno,
            "message": record.message,
        }

        for attr, fields in _FLATTENED_FIELDS.items():
            data = getattr(record, attr, None)
            if isinstance(data, dict):
                log.update({field: data[field] for field in fields if data.get(field) is not None})

        trace = self.formatException(record.exc_info) if record.exc_info else None
        error = getattr(record, "error", None)
        if isinstance(error, dict):
            log["error"] = {**error, "trace": trace} if trace else dict(error)
        elif error is not None:
            log["error"] = error
        elif trace:
            log["trace"] = trace

        for name, value in vars(record).items():
            if name not in _RECORD_ATTRS and name not in _NESTED_EXTRAS:
                log[name] = value
        return log


def _logger(level: str) -> dict[str, Any]:
    return {"handlers": ["default"], "level": level, "propagate": False}


def build_logging_config(level: str = "INFO") -> dict[str, Any]:
    """Return the `dictConfig` mapping for the operator.

    Args:
        level: Level of the `operator.*` loggers and the root logger.

    Returns:
        Logging configuration dictionary. Kubernetes and urllib3 client
        chatter is kept at WARNING; uvicorn's own access log is replaced by
        `operator.access` (see `api.middleware.LoggerMiddleware`).
    """
    level = level.upper()
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {"()": lambda: CustomJSONFormatter(fmt="%(asctime)s")},
        },
        "handlers": {
            "default": {
                "formatter": "standard",
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {
            "uvicorn": _logger("INFO"),
            "uvicorn.access": _logger("WARNING"),
            "uvicorn.error": _logger("INFO"),
            "operator": _logger(level),
            "operator.access": _logger("INFO"),
            "foundation": _logger(level),
            "kubernetes": _logger("WARNING"),
            "urllib3": _logger("WARNING"),
        },
        "root": {"handlers": ["default"], "level": level},
    }


LOGGING_CONFIG = build_logging_config(os.getenv("LOG_LEVEL", "INFO"))
