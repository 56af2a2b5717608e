"""Per-client request rate limiting."""

from __future__ import annotations

import time
from typing import Callable, Dict, Tuple

from errors import RateLimitExceeded

# Keys whose window expired are pruned once the table grows past this size.
_MAX_TRACKED_KEYS = 10_000


class RateLimiter:
    """
    Fixed-window limiter keyed by client address.

    `per_minute=0` disables limiting. One instance per app.
    """

    def __init__(
        self,
        per_minute: int,
        window_s: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.per_minute = max(0, per_minute)
        self.window_s = window_s
        self._clock = clock
        self._windows: Dict[str, Tuple[float, int]] = {}

    def _prune(self, now: float) -> None:
        expired = [k for k, (start, _) in self._windows.items() if now - start >= self.window_s]
        for k in expired:
            del self._windows[k]

    def check(self, key: str) -> None:
        """Count one request for `key`; raise RateLimitExceeded when over the limit."""
        if self.per_minute == 0:
            return
        now = self._clock()
        if len(self._windows) > _MAX_TRACKED_KEYS:
            self._prune(now)

        start, count = self._windows.get(key, (now, 0))
        if now - start >= self.window_s:
            start, count = now, 0
        if count >= self.per_minute:
            raise RateLimitExceeded(retry_after_s=self.window_s - (now - start))
        self._windows[key] = (start, count + 1)
