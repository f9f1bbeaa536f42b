"""Bounded execution of driver calls."""

import asyncio
import inspect
import logging
import time
from typing import Awaitable, Callable, Optional, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)


class OperationTimeoutError(TimeoutError):
    """Raised by ``run_with_timeout`` when an operation exceeds its budget."""

    def __init__(self, operation_name: str, timeout_seconds: Optional[float]) -> None:
        """Keep the operation and its budget for reporting."""
        self.operation_name = operation_name
        self.timeout_seconds = timeout_seconds
        budget = "unknown"
        if isinstance(timeout_seconds, (int, float)):
            budget = f"{float(timeout_seconds):g}"
        super().__init__(f"{operation_name} timed out after {budget}s.")


class Deadline:
    """An absolute point on the monotonic clock; ``None`` seconds means unbounded."""

    def __init__(self, seconds: Optional[float]) -> None:
        self._expires_at = time.monotonic() + seconds if seconds else None

    @property
    def bounded(self) -> bool:
        return self._expires_at is not None

    def remaining(self) -> Optional[float]:
        if self._expires_at is None:
            return None
        return self._expires_at - time.monotonic()

    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def cap(self, timeout_seconds: Optional[float]) -> Optional[float]:
        """Return the tighter of ``timeout_seconds`` and the time left."""
        remaining = self.remaining()
        if remaining is None:
            return timeout_seconds or None
        if not timeout_seconds:
            return remaining
        return min(timeout_seconds, remaining)


async def run_with_timeout(
    operation: Callable[[], Awaitable[T]],
    timeout_seconds: Optional[float],
    cancel: Optional[Callable[[], object]] = None,
    *,
    operation_name: str = "operation",
) -> T:
    """Await ``operation()``; on timeout call ``cancel`` and raise ``OperationTimeoutError``.

    A missing or non-positive budget runs the operation unbounded. ``cancel`` may be a plain
    callable or return an awaitable; its own failure is logged and does not mask the timeout.
    """
    if not timeout_seconds or timeout_seconds <= 0:
        return await operation()
    try:
        return await asyncio.wait_for(operation(), timeout=timeout_seconds)
    except asyncio.TimeoutError as exc:
        if cancel is not None:
            try:
                outcome = cancel()
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as cancel_exc:
                logger.warning("Cancelling %s failed: %s", operation_name, cancel_exc)
        raise OperationTimeoutError(operation_name, timeout_seconds) from exc
