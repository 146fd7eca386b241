"""
Unit tests for health classification and the adaptive scheduler.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from service_market_data.app.models import AssetDomain, HealthStatus, MarketDataSnapshot
from service_market_data.app.services import AdaptiveScheduler, compute_health_status, compute_polling_interval
from service_market_data.app.services.reference_data import fallback_crypto_quotes, fallback_metal_quote


@pytest.mark.parametrize("average_ms,error_pct,expected", [
    (100, 0, HealthStatus.EXCELLENT),
    (600, 0, HealthStatus.GOOD),
    (100, 5, HealthStatus.GOOD),
    (2000, 30, HealthStatus.DEGRADED),
    (1500, 0, HealthStatus.DEGRADED),
    (100, 50, HealthStatus.CRITICAL),
    (5000, 0, HealthStatus.CRITICAL),
])
def test_compute_health_status(average_ms, error_pct, expected):
    assert compute_health_status(average_ms, error_pct) is expected


@pytest.mark.parametrize("health,cache_hit_rate,expected", [
    (HealthStatus.EXCELLENT, 85, 60),
    (HealthStatus.EXCELLENT, 80, 30),
    (HealthStatus.GOOD, 99, 45),
    (HealthStatus.DEGRADED, 0, 90),
    (HealthStatus.CRITICAL, 0, 180),
])
def test_compute_polling_interval(health, cache_hit_rate, expected):
    assert compute_polling_interval(health, cache_hit_rate) == expected


def test_degraded_scenario_slows_polling():
    health = compute_health_status(2000, 30)

    assert compute_polling_interval(health, 0) == 90


def snapshot():
    return MarketDataSnapshot(
        cryptos=fallback_crypto_quotes(["bitcoin"]),
        metals=[fallback_metal_quote(AssetDomain.GOLD)],
        performance={"crypto_from_cache": False, "metals_from_cache": False, "response_time_ms": 12.0},
    )


def fake_aggregator(average_ms=100.0, error_pct=0.0, cache_hit_rate=0.0):
    aggregator = MagicMock()
    aggregator.get_market_data = AsyncMock(return_value=snapshot())
    aggregator.get_metrics.return_value = {
        "combined": {
            "average_response_time_ms": average_ms,
            "error_rate_pct": error_pct,
            "cache_hit_rate_pct": cache_hit_rate,
        }
    }
    aggregator.cache_hit_rate.return_value = cache_hit_rate
    return aggregator


class TestAdaptiveScheduler:
    """Test cases for AdaptiveScheduler."""

    @pytest.mark.asyncio
    async def test_refresh_populates_state(self, clock):
        scheduler = AdaptiveScheduler(fake_aggregator(2000, 30), clock=clock)

        state = await scheduler.refresh()

        assert [q.id for q in state.crypto_prices] == ["bitcoin"]
        assert [q.id for q in state.metal_prices] == ["gold"]
        assert state.error is None
        assert state.is_loading is False
        assert state.last_fetch == clock.now
        assert state.performance_metrics["api_health"] == "degraded"
        assert scheduler.next_interval() == 90

    @pytest.mark.asyncio
    async def test_failed_cycle_keeps_last_known_good(self, clock):
        aggregator = fake_aggregator()
        scheduler = AdaptiveScheduler(aggregator, clock=clock)
        await scheduler.refresh()

        aggregator.get_market_data.side_effect = RuntimeError("upstream exploded")
        state = await scheduler.refresh()

        assert [q.id for q in state.crypto_prices] == ["bitcoin"]
        assert state.error == "Unable to refresh market data. Showing last known prices."
        assert "exploded" not in state.error

    @pytest.mark.asyncio
    async def test_force_refresh_bypasses_cache(self):
        aggregator = fake_aggregator()
        scheduler = AdaptiveScheduler(aggregator)

        await scheduler.force_refresh()

        aggregator.get_market_data.assert_awaited_once_with(force_refresh=True)

    @pytest.mark.asyncio
    async def test_cycles_do_not_overlap(self):
        aggregator = fake_aggregator()
        release = asyncio.Event()

        async def slow_fetch(force_refresh=False):
            await release.wait()
            return snapshot()

        aggregator.get_market_data = AsyncMock(side_effect=slow_fetch)
        scheduler = AdaptiveScheduler(aggregator)

        first = asyncio.ensure_future(scheduler.refresh())
        await asyncio.sleep(0)
        await scheduler.refresh()
        release.set()
        await first

        assert aggregator.get_market_data.await_count == 1

    @pytest.mark.asyncio
    async def test_timer_is_rescheduled_not_stacked(self):
        scheduler = AdaptiveScheduler(fake_aggregator(cache_hit_rate=90))

        await scheduler.start()
        await scheduler._cycle
        first_timer = scheduler._timer
        await scheduler.refresh()

        assert first_timer.cancelled()
        assert scheduler._timer is not None
        assert scheduler._timer is not first_timer
        assert scheduler.next_interval() == 60

        await scheduler.stop()
        assert scheduler._timer is None
        assert scheduler.running is False

    @pytest.mark.asyncio
    async def test_stopped_scheduler_does_not_schedule(self):
        scheduler = AdaptiveScheduler(fake_aggregator())

        await scheduler.refresh()

        assert scheduler._timer is None

    @pytest.mark.asyncio
    async def test_status_reports(self, clock):
        scheduler = AdaptiveScheduler(fake_aggregator(100, 60), clock=clock)

        assert scheduler.cache_status()["is_stale"] is True

        await scheduler.refresh()
        clock.advance(10)
        cache = scheduler.cache_status()
        performance = scheduler.performance_status()

        assert cache["is_stale"] is False
        assert cache["age_seconds"] == 10
        assert cache["size"] == 2
        assert performance["status"] == "critical"
        assert performance["interval_seconds"] == 180
        assert "Use fallback data sources" in performance["details"]["recommendations"]

    @pytest.mark.asyncio
    async def test_start_does_not_wait_for_first_cycle(self):
        aggregator = fake_aggregator()
        release = asyncio.Event()

        async def hanging_fetch(force_refresh=False):
            await release.wait()
            return snapshot()

        aggregator.get_market_data = AsyncMock(side_effect=hanging_fetch)
        scheduler = AdaptiveScheduler(aggregator)

        await asyncio.wait_for(scheduler.start(), timeout=1)
        await asyncio.sleep(0)

        assert scheduler.running is True
        assert scheduler.state.is_loading is True
        assert scheduler.state.crypto_prices == []

        release.set()
        state = await scheduler._cycle
        assert [q.id for q in state.crypto_prices] == ["bitcoin"]

        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_timer_fires_follow_up_cycles(self, monkeypatch):
        monkeypatch.setattr(
            "service_market_data.app.services.scheduler.compute_polling_interval",
            lambda health, cache_hit_rate: 0.01
        )
        aggregator = fake_aggregator()
        scheduler = AdaptiveScheduler(aggregator)

        await scheduler.start()
        for _ in range(100):
            if aggregator.get_market_data.await_count >= 3:
                break
            await asyncio.sleep(0.01)
        await scheduler.stop()

        assert aggregator.get_market_data.await_count >= 3
        assert scheduler._timer is None

    @pytest.mark.asyncio
    async def test_fallback_message_is_surfaced_in_state(self):
        aggregator = fake_aggregator()
        fallback = snapshot()
        fallback.performance.update({
            "crypto_fallback": True,
            "customer_message": "Service temporarily busy. Please try again in a moment.",
            "errors": ["Service temporarily busy. Please try again in a moment."],
        })
        aggregator.get_market_data = AsyncMock(return_value=fallback)
        scheduler = AdaptiveScheduler(aggregator)

        state = await scheduler.refresh()

        assert state.error == "Service temporarily busy. Please try again in a moment."
        assert state.performance_metrics["crypto_fallback"] is True
        assert [q.id for q in state.crypto_prices] == ["bitcoin"]
