"""
Concurrency gate.

Counter-based admission control bounding simultaneous job executions.
Only touched from the event loop, so no lock is needed.
"""

import logging


logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT_RUNS = 1


class ConcurrencyGate:
    """
    Tracks in-flight runs against max_concurrent_runs.

    Jobs denied admission are not queued; the dispatcher re-evaluates them
    on its next tick.
    """

    def __init__(self, max_concurrent_runs: int = DEFAULT_MAX_CONCURRENT_RUNS):
        if max_concurrent_runs < 1:
            raise ValueError(f"max_concurrent_runs must be >= 1, got {max_concurrent_runs}")
        self.max_concurrent_runs = max_concurrent_runs
        self._in_flight = 0

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def available(self) -> int:
        return self.max_concurrent_runs - self._in_flight

    def try_acquire(self) -> bool:
        """Take a slot if one is free."""
        if self._in_flight >= self.max_concurrent_runs:
            return False
        self._in_flight += 1
        return True

    def release(self) -> None:
        """Give a slot back."""
        if self._in_flight == 0:
            logger.warning("ConcurrencyGate.release() called with no runs in flight")
            return
        self._in_flight -= 1
