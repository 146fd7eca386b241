"""
Adaptive polling of the aggregator.

The interval is recomputed from API health after every cycle. At most one
timer is pending and at most one cycle runs at a time.
"""

import asyncio
import time
from typing import Any, Callable, Dict, Optional

from shared.errors import MarketDataException
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..models import HealthStatus, MarketDataState
from .aggregator import MarketDataAggregator
from .health import (
    EXCELLENT_INTERVAL,
    HEALTH_GAUGE_VALUES,
    RECOMMENDATIONS,
    compute_health_status,
    compute_polling_interval,
)


STALE_AFTER_SECONDS = 300.0
REFRESH_FAILED_MESSAGE = "Unable to refresh market data. Showing last known prices."


class AdaptiveScheduler:
    """Keeps a ``MarketDataState`` current on a health-driven cadence."""

    def __init__(self,
                 aggregator: MarketDataAggregator,
                 *,
                 metrics: Optional[MetricsCollector] = None,
                 initial_interval: float = EXCELLENT_INTERVAL,
                 clock: Callable[[], float] = time.time):
        self.aggregator = aggregator
        self.metrics = metrics
        self.state = MarketDataState()
        self.health = HealthStatus.EXCELLENT
        self._interval = initial_interval
        self._clock = clock
        self._lock = asyncio.Lock()
        self._timer: Optional[asyncio.TimerHandle] = None
        self._cycle: Optional["asyncio.Task[MarketDataState]"] = None
        self._running = False
        self.logger = get_logger("market_data.scheduler")

    @property
    def running(self) -> bool:
        return self._running

    def next_interval(self) -> float:
        return self._interval

    async def start(self) -> None:
        """Schedule the first cycle right away and keep polling.

        Returns without waiting for that cycle to finish.
        """
        if self._running:
            return
        self._running = True
        self.logger.info("Market data scheduler started")
        self._cycle = asyncio.ensure_future(self.refresh())

    async def stop(self) -> None:
        self._running = False
        self._cancel_timer()
        cycle, self._cycle = self._cycle, None
        if cycle is not None and not cycle.done():
            cycle.cancel()
            await asyncio.gather(cycle, return_exceptions=True)
        self.logger.info("Market data scheduler stopped")

    async def refresh(self, force: bool = False) -> MarketDataState:
        """Run one fetch cycle.

        A scheduled cycle that finds another one running is skipped; a
        forced one waits for it and then bypasses the cache.
        """
        if self._lock.locked() and not force:
            self.logger.debug("Refresh already in progress, skipping cycle")
            return self.state

        async with self._lock:
            self._cancel_timer()
            self.state.is_loading = True
            try:
                snapshot = await self.aggregator.get_market_data(force_refresh=force)
                self.state.crypto_prices = snapshot.cryptos
                self.state.metal_prices = snapshot.metals
                self.state.error = snapshot.performance.get("customer_message")
                self.state.last_fetch = self._clock()
                self.state.performance_metrics.update(snapshot.performance)
            except MarketDataException as exc:
                self.logger.warning("Market data refresh rejected", code=exc.code)
                self.state.error = exc.message
            except Exception as exc:
                self.logger.error("Market data refresh failed", error_type=type(exc).__name__, exc_info=True)
                self.state.error = REFRESH_FAILED_MESSAGE
            finally:
                self.state.is_loading = False
                self._adapt()

        return self.state

    async def force_refresh(self) -> MarketDataState:
        """Fetch now, ignoring both the timer and the response caches."""
        return await self.refresh(force=True)

    def performance_status(self) -> Dict[str, Any]:
        metrics = self.aggregator.get_metrics()["combined"]
        return {
            "status": self.health.value,
            "interval_seconds": self._interval,
            "details": {
                "response_time_ms": round(metrics["average_response_time_ms"]),
                "cache_efficiency_pct": round(metrics["cache_hit_rate_pct"]),
                "reliability_pct": round(100 - metrics["error_rate_pct"]),
                "recommendations": list(RECOMMENDATIONS[self.health]),
            },
        }

    def cache_status(self) -> Dict[str, Any]:
        last_fetch = self.state.last_fetch
        age = self._clock() - last_fetch if last_fetch is not None else None
        return {
            "age_seconds": round(age, 3) if age is not None else None,
            "hit_rate_pct": round(self.aggregator.cache_hit_rate(), 2),
            "size": len(self.state.crypto_prices) + len(self.state.metal_prices),
            "is_stale": age is None or age > STALE_AFTER_SECONDS,
        }

    def _adapt(self) -> None:
        combined = self.aggregator.get_metrics()["combined"]
        self.health = compute_health_status(combined["average_response_time_ms"], combined["error_rate_pct"])
        self._interval = compute_polling_interval(self.health, combined["cache_hit_rate_pct"])

        self.state.performance_metrics.update({
            "average_response_time_ms": combined["average_response_time_ms"],
            "error_rate_pct": combined["error_rate_pct"],
            "cache_hit_rate_pct": combined["cache_hit_rate_pct"],
            "api_health": self.health.value,
            "polling_interval_seconds": self._interval,
        })

        if self.metrics:
            self.metrics.set_gauge("api_health_status", HEALTH_GAUGE_VALUES[self.health])
            self.metrics.set_gauge("polling_interval_seconds", self._interval)

        self.logger.debug("Polling interval adapted", health=self.health.value, interval=self._interval)
        self._schedule_next()

    def _schedule_next(self) -> None:
        if not self._running:
            return
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._interval, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        if self._running:
            self._cycle = asyncio.ensure_future(self.refresh())

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
