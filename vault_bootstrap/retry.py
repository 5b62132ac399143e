"""
Fixed-interval retry helper driven by a cancellable scope.
"""

from typing import Callable

from .scope import Scope


def wait_until(scope: Scope, interval: float, predicate: Callable[[], bool]) -> None:
    """
    Call ``predicate`` until it returns True.

    The first call happens immediately. Later calls start at least
    ``interval`` seconds after the previous one started. Calls never overlap.

    Args:
        scope: Scope bounding the wait
        interval: Seconds between the start of consecutive calls
        predicate: Check to repeat; exceptions it raises propagate unchanged

    Raises:
        CancelledError: If the scope is cancelled before the predicate succeeds
        DeadlineExceeded: If the scope's deadline elapses first
    """
    scope.check()
    started = scope.now()
    if predicate():
        return

    while True:
        scope.wait(started + interval - scope.now())
        started = scope.now()
        if predicate():
            return
