"""Log formatters for CLI output.

Two formats are supported:

- JSONFormatter: one JSON object per line for log shipping / CI parsing
- TextFormatter: human-oriented single line with context appended

Example JSON output:
    {
        "timestamp": "2026-10-19T10:30:00.000Z",
        "level": "WARNING",
        "service": "strongbox",
        "invocation_id": "4f1c2a9be03d",
        "message": "Decryption under kms failed: ...",
        "context": {"secret_name": "db_password", "region": "us-west-1"}
    }
"""

import json
import logging
import traceback
from datetime import UTC, datetime
from typing import Any

_RESERVED_FIELDS = frozenset(
    {
        "args",
        "asctime",
        "context",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "invocation_id",
        "levelname",
        "levelno",
        "lineno",
        "message",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
    }
)


def extract_context(record: logging.LogRecord) -> dict[str, Any] | None:
    """Context fields of a record.

    Uses extra={"context": {...}} when given, otherwise any non-standard
    attributes passed through `extra`.
    """
    context = getattr(record, "context", None)
    if isinstance(context, dict):
        return dict(context) or None
    extra = {key: value for key, value in record.__dict__.items() if key not in _RESERVED_FIELDS}
    return extra or None


class JSONFormatter(logging.Formatter):
    """Formats records as single-line JSON objects.

    Attributes:
        service_name: Value of the "service" field
        include_context: Whether to include the context dict
    """

    def __init__(self, service_name: str, include_context: bool = True) -> None:
        super().__init__()
        self.service_name = service_name
        self.include_context = include_context

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": self._format_timestamp(record.created),
            "level": record.levelname,
            "service": self.service_name,
            "invocation_id": getattr(record, "invocation_id", None),
            "logger": record.name,
            "message": record.getMessage(),
        }

        if self.include_context:
            context = extract_context(record)
            if context:
                entry["context"] = context

        if record.exc_info:
            exc_type, exc_value, exc_tb = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value) if exc_value else None,
                "traceback": "".join(traceback.format_exception(exc_type, exc_value, exc_tb)),
            }

        entry["source"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
        }
        return json.dumps(entry, default=str)

    @staticmethod
    def _format_timestamp(created: float) -> str:
        """ISO 8601 UTC with millisecond precision."""
        dt = datetime.fromtimestamp(created, tz=UTC)
        return dt.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


class TextFormatter(logging.Formatter):
    """`LEVEL message key=value ...` lines for interactive use."""

    def __init__(self, include_context: bool = True) -> None:
        super().__init__("%(levelname)s %(message)s")
        self.include_context = include_context

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        if self.include_context:
            context = extract_context(record)
            if context:
                line += " " + " ".join(f"{key}={value}" for key, value in context.items())
        return line
