"""
auth/ratelimit.py -- Fixed-window rate limiter for sensitive operations.

One counter and one window-start timestamp per key. The window opens on the
first attempt and lasts window seconds; an attempt at or after
window_start + window opens a fresh window with count 1.

A throttled attempt still counts and does NOT reset the window, so hammering
a refused key keeps it refused until the window rolls over naturally.

Trade-off: a fixed window admits a burst of up to 2x threshold straddling a
window edge. That is accepted for coarse login throttling in exchange for
O(1) state per key.

The reset-or-increment step is delegated to the WindowStore, whose hit() is
atomic, so two concurrent attempts can never both observe the pre-increment
count.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from auth.models import RateDecision
from core.clock import SystemClock

if TYPE_CHECKING:
    from auth.ports import Clock, WindowStore
    from core.config import Settings

logger = logging.getLogger("authcore.ratelimit")


class RateLimiter:
    """Usage:
    limiter = RateLimiter(MemoryWindowStore(), threshold=5, window=timedelta(seconds=60))
    if limiter.check_and_record("alice") is RateDecision.THROTTLED: ...
    """

    def __init__(
        self,
        store: WindowStore,
        threshold: int = 5,
        window: timedelta = timedelta(seconds=60),
        clock: Clock | None = None,
    ) -> None:
        if threshold < 1:
            raise ValueError("threshold must be at least 1")
        if window.total_seconds() <= 0:
            raise ValueError("window must be positive")
        self._store = store
        self._clock = clock or SystemClock()
        self.threshold = threshold
        self.window = window

    @classmethod
    def from_settings(cls, settings: Settings, store: WindowStore, clock: Clock | None = None) -> RateLimiter:
        return cls(
            store,
            threshold=settings.login_attempt_threshold,
            window=timedelta(seconds=settings.login_window_seconds),
            clock=clock,
        )

    def check_and_record(self, key: str) -> RateDecision:
        """Record one attempt for ``key`` and say whether it is admitted."""
        window = self._store.hit(key, self._clock.now(), self.window)
        if window.count > self.threshold:
            logger.warning("Throttled %s (%d attempts since %s)", key, window.count, window.window_start.isoformat())
            return RateDecision.THROTTLED
        return RateDecision.ALLOWED
