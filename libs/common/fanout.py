"""Run one callable per partition concurrently and collect every outcome.

Used wherever an operation has to touch every region (or every key) at once:
the put path encrypts under each configured key in parallel, and the KMS
orchestrator resolves, provisions, edits and deprovisions per region.

Every task runs to completion; a failure in one partition never cancels the
others. Results and errors are gathered by the calling thread from completed
futures, so there is a single writer and no shared mutable state between
workers.

Example:
    >>> result = fan_out({"us-east-1": lambda: 1, "us-west-2": lambda: 2})
    >>> result.results
    {'us-east-1': 1, 'us-west-2': 2}
    >>> result.ok
    True
"""

from __future__ import annotations

import concurrent.futures
import contextvars
import logging
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from libs.secrets.exceptions import OperationCancelledError, PartialFailureError

logger = logging.getLogger(__name__)

_T = TypeVar("_T")


class Deadline:
    """Overall deadline and cancellation flag for one command invocation.

    Long-running external calls check the deadline before they are dispatched.
    A deadline of None never expires but can still be cancelled.

    Example:
        >>> deadline = Deadline(timeout_seconds=30)
        >>> deadline.check("DescribeStacks")  # raises once 30s have passed
    """

    def __init__(self, timeout_seconds: float | None = None) -> None:
        self._expires_at = (
            time.monotonic() + timeout_seconds if timeout_seconds is not None else None
        )
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def remaining(self) -> float | None:
        """Seconds left before expiry, None when unbounded."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    def expired(self) -> bool:
        remaining = self.remaining()
        return self.cancelled or (remaining is not None and remaining <= 0)

    def check(self, operation: str = "operation") -> None:
        """Raise OperationCancelledError if cancelled or past the deadline."""
        if self.cancelled:
            raise OperationCancelledError(f"{operation} cancelled")
        if self.expired():
            raise OperationCancelledError(f"{operation} aborted: command deadline exceeded")

    def bound(self, limit_seconds: float) -> float:
        """Clamp a wait to both limit_seconds and the time left."""
        remaining = self.remaining()
        if remaining is None:
            return limit_seconds
        return min(limit_seconds, remaining)


@dataclass
class FanOutResult(Generic[_T]):
    """Outcome of fan_out(), keyed by partition in sorted order."""

    results: dict[str, _T] = field(default_factory=dict)
    errors: dict[str, BaseException] = field(default_factory=dict)
    first_error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return not self.errors

    def _log_errors(self, operation: str) -> None:
        for partition, error in self.errors.items():
            logger.error(
                "%s failed for %s: %s",
                operation,
                partition,
                error,
                extra={"context": {"operation": operation, "partition": partition}},
            )

    def raise_first(self, operation: str) -> None:
        """Log every failure, then re-raise the first one observed."""
        if self.first_error is None:
            return
        self._log_errors(operation)
        raise self.first_error

    def raise_partial_failure(self, operation: str) -> None:
        """Log every failure, then raise PartialFailureError naming all of them."""
        if not self.errors:
            return
        self._log_errors(operation)
        raise PartialFailureError(operation, self.errors)


def fan_out(
    tasks: Mapping[str, Callable[[], _T]],
    *,
    deadline: Deadline | None = None,
    max_workers: int | None = None,
) -> FanOutResult[_T]:
    """Run each task concurrently and wait for all of them.

    Args:
        tasks: Partition name (region, key id, ...) -> zero-argument callable
        deadline: Optional command deadline; tasks not yet started when it
            expires fail with OperationCancelledError
        max_workers: Thread pool size, defaults to one thread per partition

    Returns:
        FanOutResult with every partition present in exactly one of
        results/errors. Both dicts are ordered by partition name regardless
        of completion order.
    """
    if not tasks:
        return FanOutResult()

    def _guarded(partition: str, task: Callable[[], _T]) -> _T:
        if deadline is not None:
            deadline.check(partition)
        return task()

    results: dict[str, _T] = {}
    errors: dict[str, BaseException] = {}
    first_error: BaseException | None = None

    workers = max_workers or len(tasks)
    with concurrent.futures.ThreadPoolExecutor(
        max_workers=workers, thread_name_prefix="fanout"
    ) as pool:
        futures = {
            pool.submit(contextvars.copy_context().run, _guarded, partition, task): partition
            for partition, task in tasks.items()
        }
        for future in concurrent.futures.as_completed(futures):
            partition = futures[future]
            error = future.exception()
            if error is None:
                results[partition] = future.result()
                continue
            errors[partition] = error
            if first_error is None:
                first_error = error

    return FanOutResult(
        results={key: results[key] for key in sorted(results)},
        errors={key: errors[key] for key in sorted(errors)},
        first_error=first_error,
    )


__all__ = ["Deadline", "FanOutResult", "fan_out"]
