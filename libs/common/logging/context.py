"""Invocation ID tracking for log correlation.

Every CLI invocation gets a short random ID stored in a context variable. The
logging filter stamps it on every record, and fan-out workers inherit it
because fan_out() runs each task in a copy of the caller's context, so all
per-region log lines of one command can be grouped together.

Example:
    >>> with InvocationContext() as invocation_id:
    ...     get_invocation_id() == invocation_id
    True
"""

import contextvars
import uuid
from types import TracebackType

_invocation_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "invocation_id", default=None
)


def generate_invocation_id() -> str:
    """Return a new 12-character hex invocation ID."""
    return uuid.uuid4().hex[:12]


def get_invocation_id() -> str | None:
    return _invocation_id_var.get()


class InvocationContext:
    """Context manager that sets an invocation ID and restores the previous one."""

    def __init__(self, invocation_id: str | None = None) -> None:
        self.invocation_id = invocation_id or generate_invocation_id()
        self._token: contextvars.Token[str | None] | None = None

    def __enter__(self) -> str:
        self._token = _invocation_id_var.set(self.invocation_id)
        return self.invocation_id

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._token is not None:
            _invocation_id_var.reset(self._token)
            self._token = None
