"""Structured JSON logging utilities.

- JSON format for log aggregation
- Includes request_id / user_id / credential_id from context variables
- Standard fields: timestamp, level, message, logger, module, func, line
- Every message and extra is passed through the sanitizer
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any

from forkforge_api.context import credential_id_var, request_id_var, user_id_var
from forkforge_api.utils.sanitize import sanitize_exc, sanitize_obj, sanitize_str

# LogRecord attributes that are not user-supplied extras
_RESERVED_ATTRS = frozenset({
    "name",
    "msg",
    "args",
    "created",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "message",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "thread",
    "threadName",
    "taskName",
    "exc_info",
    "exc_text",
    "stack_info",
})


# Fields written by the formatter itself; extras cannot replace them
_BASE_FIELDS = frozenset({"timestamp", "level", "logger", "func", "line"})


class JSONFormatter(logging.Formatter):
    """JSON log formatter with request context.

    Formats log records as JSON with standard fields:
    - timestamp: ISO 8601 UTC
    - level: log level (INFO, ERROR, etc.)
    - message: log message (sanitized)
    - logger: logger name
    - module / func / line: call site
    - request_id, user_id, credential_id: from context variables (when set)
    - any extra={...} fields (sanitized)
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON string."""
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "message": sanitize_str(record.getMessage()),
            "logger": record.name,
            "module": record.module,
            "func": record.funcName,
            "line": record.lineno,
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        user_id = user_id_var.get()
        if user_id:
            log_data["user_id"] = user_id

        credential_id = credential_id_var.get()
        if credential_id:
            log_data["credential_id"] = credential_id

        if record.exc_info:
            log_data["exc_info"] = sanitize_exc(record.exc_info)

        # Explicit extras win over context fields of the same name
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and key not in _BASE_FIELDS:
                log_data[key] = sanitize_obj(value)

        return json.dumps(log_data, default=str)


def configure_json_logging(log_level: str = "INFO") -> None:
    """Configure root logger with JSON formatter.

    Args:
        log_level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)
