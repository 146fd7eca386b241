"""
Sliding-window request tracker with priority tiers.
"""

import math
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, Tuple, Union

from shared.logging import get_logger

from ..models import Priority


WINDOW_SECONDS = 60.0


class RateTracker:
    """Per-endpoint request counter over a trailing 60 second window.

    ``can_proceed`` is a synchronous check-and-record: it never awaits, so
    concurrently running tasks cannot interleave between the count and the
    append and double-count a slot.
    """

    def __init__(self,
                 max_requests_per_minute: int = 100,
                 burst_allowance: int = 20,
                 low_priority_fraction: float = 0.7,
                 clock: Callable[[], float] = time.monotonic,
                 window_seconds: float = WINDOW_SECONDS):
        self.max_requests_per_minute = max_requests_per_minute
        self.burst_allowance = burst_allowance
        self.low_priority_fraction = low_priority_fraction
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: Dict[Tuple[str, Priority], Deque[float]] = {}
        self.logger = get_logger("market_data.rate_tracker")

    def effective_limit(self, priority: Union[Priority, str]) -> int:
        """Requests allowed per window for the given priority tier."""
        priority = Priority(priority)
        if priority is Priority.HIGH:
            return self.max_requests_per_minute + self.burst_allowance
        if priority is Priority.LOW:
            return math.floor(self.max_requests_per_minute * self.low_priority_fraction)
        return self.max_requests_per_minute

    def can_proceed(self, endpoint: str, priority: Union[Priority, str] = Priority.NORMAL) -> bool:
        """Admit and record the request if the window has room."""
        priority = Priority(priority)
        now = self._clock()
        window = self._windows.setdefault((endpoint, priority), deque())
        self._prune(window, now)

        limit = self.effective_limit(priority)
        if len(window) >= limit:
            self.logger.warning(
                "Rate limit reached",
                endpoint=endpoint,
                priority=priority.value,
                current=len(window),
                limit=limit
            )
            return False

        window.append(now)
        return True

    def usage_stats(self) -> Dict[str, Dict[str, Any]]:
        """Current window usage per endpoint and priority."""
        now = self._clock()
        stats: Dict[str, Dict[str, Any]] = {}
        for (endpoint, priority), window in self._windows.items():
            self._prune(window, now)
            limit = self.effective_limit(priority)
            stats[f"{endpoint}|{priority.value}"] = {
                "endpoint": endpoint,
                "priority": priority.value,
                "current": len(window),
                "limit": limit,
                "utilization_pct": round(len(window) / limit * 100) if limit else 100,
            }
        return stats

    def reset_endpoint(self, endpoint: str) -> None:
        """Forget every window recorded for an endpoint."""
        for key in [key for key in self._windows if key[0] == endpoint]:
            del self._windows[key]
        self.logger.info("Rate limit reset", endpoint=endpoint, trigger="customer_service")

    def reset(self) -> None:
        self._windows.clear()
        self.logger.info("All rate limits reset", trigger="customer_service")

    def _prune(self, window: Deque[float], now: float) -> None:
        while window and now - window[0] >= self.window_seconds:
            window.popleft()
