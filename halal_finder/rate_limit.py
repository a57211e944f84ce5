"""Wall-clock throttle for repeated actions."""
from __future__ import annotations

import time
from typing import Callable, Optional


class RateLimiter:
    """Allows an action only if `min_interval_s` elapsed since the last one.

    Not thread-safe: one instance per throttled stream, driven by a single
    caller. Callers needing process-wide throttling add their own lock.
    """

    def __init__(self, min_interval_s: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.min_interval_s = float(min_interval_s)
        self.clock = clock
        self.last_execution_at: Optional[float] = None

    def can_execute(self) -> bool:
        if self.last_execution_at is None:
            return True
        return self.clock() - self.last_execution_at >= self.min_interval_s

    def mark_executed(self) -> None:
        self.last_execution_at = self.clock()

    def try_execute(self, action: Callable[[], object]) -> bool:
        if not self.can_execute():
            return False
        self.mark_executed()
        action()
        return True

    def reset(self) -> None:
        self.last_execution_at = None
