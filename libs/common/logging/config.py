"""Logging configuration for strongbox commands.

Logs always go to stderr: stdout carries command output (decrypted secrets,
YAML reports) and must stay clean for piping.

Example:
    >>> from libs.common.logging.config import configure_logging
    >>> logger = configure_logging(service_name="strongbox", log_level="INFO")
    >>> logger.info("Command started", extra={"context": {"command": "get"}})
"""

import logging
import sys
from typing import IO

from libs.common.logging.context import get_invocation_id
from libs.common.logging.formatter import JSONFormatter, TextFormatter

LOG_FORMATS = ("text", "json")


class InvocationIDFilter(logging.Filter):
    """Stamps the current invocation ID on every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.invocation_id = get_invocation_id()
        return True


def configure_logging(
    service_name: str,
    log_level: str = "WARNING",
    log_format: str = "text",
    include_context: bool = True,
    stream: IO[str] | None = None,
) -> logging.Logger:
    """Configure the root logger for one command invocation.

    Args:
        service_name: Value of the "service" field in JSON output
        log_level: Minimum level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: "text" or "json"
        include_context: Whether to render context fields
        stream: Destination, defaults to sys.stderr

    Returns:
        The configured root logger

    Raises:
        ValueError: If log_level or log_format is invalid
    """
    numeric_level = getattr(logging, log_level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {log_level}")
    if log_format not in LOG_FORMATS:
        raise ValueError(f"Invalid log format: {log_format} (choose from {', '.join(LOG_FORMATS)})")

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(numeric_level)
    if log_format == "json":
        handler.setFormatter(
            JSONFormatter(service_name=service_name, include_context=include_context)
        )
    else:
        handler.setFormatter(TextFormatter(include_context=include_context))
    handler.addFilter(InvocationIDFilter())
    root_logger.addHandler(handler)

    # boto's own DEBUG output can include request bodies
    for noisy in ("botocore", "boto3", "urllib3"):
        logging.getLogger(noisy).setLevel(max(numeric_level, logging.WARNING))

    return root_logger

