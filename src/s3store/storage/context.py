"""Operation context for storage calls.

Every contract operation accepts an optional OperationContext that carries a
cancellation flag and an optional deadline. Implementations check it at the
start of each operation and at I/O boundaries, and fail fast with
OperationCancelledError or DeadlineExceededError once it is done.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

from s3store.storage.errors import DeadlineExceededError, OperationCancelledError


class OperationContext:
    """Cancellable, optionally deadline-bearing execution context.

    Thread-safe: cancel() may be called from any thread while an operation
    using the context runs on another.
    """

    def __init__(
        self,
        timeout_seconds: float | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the context.

        Args:
            timeout_seconds: Seconds from now until the deadline. None means
                no deadline.
            clock: Monotonic clock, injectable for tests.
        """
        if timeout_seconds is not None and timeout_seconds < 0:
            raise ValueError("timeout_seconds must be non-negative")
        self._clock = clock
        self._cancelled = threading.Event()
        self._deadline = None if timeout_seconds is None else clock() + timeout_seconds

    def cancel(self) -> None:
        """Cancel the context. Idempotent."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        """True once cancel() has been called."""
        return self._cancelled.is_set()

    @property
    def has_deadline(self) -> bool:
        return self._deadline is not None

    @property
    def deadline_exceeded(self) -> bool:
        """True once the deadline (if any) has passed."""
        return self._deadline is not None and self._clock() >= self._deadline

    def remaining(self) -> float | None:
        """Seconds left until the deadline, clamped at zero. None if unbounded."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def raise_if_done(self, *, operation: str | None = None, key: str | None = None) -> None:
        """Raise if the context is cancelled or past its deadline.

        Cancellation takes precedence over the deadline.

        Raises:
            OperationCancelledError: If cancel() was called.
            DeadlineExceededError: If the deadline has passed.
        """
        if self.cancelled:
            raise OperationCancelledError(operation=operation, key=key)
        if self.deadline_exceeded:
            raise DeadlineExceededError(operation=operation, key=key)


def resolve_context(ctx: OperationContext | None) -> OperationContext:
    """Return ctx, or a fresh unbounded context when None."""
    return ctx if ctx is not None else OperationContext()
