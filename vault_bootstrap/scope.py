"""
Cancellable execution scope.

A Scope is passed to every operation that may block. It carries a
cancellation flag, shared by a scope and every child derived from it, and an
optional deadline on a monotonic clock.
"""

import copy
import threading
import time
from typing import Callable, Optional

from .errors import CancelledError, DeadlineExceeded


class Scope:
    """Cancellation token with an optional deadline."""

    def __init__(
        self,
        deadline: Optional[float] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        event: Optional[threading.Event] = None,
    ):
        """
        Create a scope.

        Args:
            deadline: Absolute deadline on ``clock``, or None for no deadline
            clock: Monotonic clock used for deadlines
            event: Cancellation flag to share with another scope
        """
        self._deadline = deadline
        self._clock = clock
        self._event = event or threading.Event()

    def with_timeout(self, seconds: float) -> "Scope":
        """
        Derive a child scope that expires ``seconds`` from now.

        The child never outlives its parent's deadline and observes the
        parent's cancellation.
        """
        deadline = self._clock() + seconds
        if self._deadline is not None:
            deadline = min(deadline, self._deadline)
        child = copy.copy(self)
        child._deadline = deadline
        return child

    def now(self) -> float:
        return self._clock()

    @property
    def deadline(self) -> Optional[float]:
        return self._deadline

    def cancel(self) -> None:
        """Cancel this scope along with every scope sharing its flag."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None without a deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    @property
    def expired(self) -> bool:
        return self._deadline is not None and self._clock() >= self._deadline

    @property
    def done(self) -> bool:
        return self.cancelled or self.expired

    def check(self) -> None:
        """
        Raise if the scope is no longer live.

        Raises:
            CancelledError: If the scope was cancelled
            DeadlineExceeded: If the deadline has elapsed
        """
        if self.cancelled:
            raise CancelledError()
        if self.expired:
            raise DeadlineExceeded()

    def wait(self, timeout: float) -> None:
        """
        Block for ``timeout`` seconds unless the scope ends first.

        Returns as soon as cancellation is signalled or the deadline
        elapses, raising the corresponding error.
        """
        self.check()
        remaining = self.remaining()
        if remaining is not None and remaining <= timeout:
            self._wait(remaining)
            if self.cancelled:
                raise CancelledError()
            raise DeadlineExceeded()
        self._wait(max(0.0, timeout))
        self.check()

    def _wait(self, timeout: float) -> bool:
        return self._event.wait(timeout)
