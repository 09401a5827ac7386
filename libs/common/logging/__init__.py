"""Structured logging for strongbox commands.

Usage:
    # At command startup
    from libs.common.logging import InvocationContext, configure_logging
    configure_logging(service_name="strongbox", log_level="INFO", log_format="json")
    with InvocationContext():
        ...

    # In library code
    logger = logging.getLogger(__name__)
    logger.info("Key policy updated", extra={"context": {"region": "us-west-2"}})
"""

from libs.common.logging.config import InvocationIDFilter, configure_logging
from libs.common.logging.context import InvocationContext, get_invocation_id
from libs.common.logging.formatter import JSONFormatter, TextFormatter

__all__ = [
    # Configuration
    "configure_logging",
    "InvocationIDFilter",
    # Invocation ID management
    "get_invocation_id",
    "InvocationContext",
    # Formatters
    "JSONFormatter",
    "TextFormatter",
]
