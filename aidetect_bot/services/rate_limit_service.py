"""Sliding request budget for outbound Twitter calls."""

import logging
import time
from typing import Callable

logger = logging.getLogger(__name__)


class RateLimitService:
    """Fixed-window request budget shared by every outbound signed call.

    The window resets once ``window_seconds`` have elapsed since it started.
    Concurrent callers may race on the counter; the worst case is a slight
    over- or under-count.

    Args:
        max_requests: Requests allowed per window.
        window_seconds: Window duration.
        clock: Monotonic time source in seconds.
    """

    def __init__(
        self,
        max_requests: int = 60,
        window_seconds: float = 15 * 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self.window_start = clock()
        self.count = 0

    def _roll_window(self) -> None:
        now = self._clock()
        if now - self.window_start >= self.window_seconds:
            logger.debug("Rate limit window reset after %d request(s)", self.count)
            self.window_start = now
            self.count = 0

    def can_send(self) -> bool:
        """Check if another request fits in the current window."""
        self._roll_window()
        return self.count < self.max_requests

    def record_send(self) -> None:
        """Count a request against the current window."""
        self._roll_window()
        self.count += 1

    def remaining(self) -> int:
        """Requests left in the current window."""
        self._roll_window()
        return max(0, self.max_requests - self.count)

    def seconds_until_reset(self) -> float:
        return max(0.0, self.window_seconds - (self._clock() - self.window_start))
