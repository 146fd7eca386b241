"""
Shared fixtures for market data tests.
"""

from typing import Any, Callable, List

import httpx
import pytest

from service_market_data.app.caching import ResponseCache
from service_market_data.app.transport import TransportClient


COINGECKO_URL = "https://api.coingecko.com/api/v3"
METALS_URL = "https://api.metals.live/v1"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Stands in for asyncio.sleep and records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeper():
    return RecordingSleep()


@pytest.fixture
def make_client(clock, sleeper):
    """Factory for transport clients wired to an httpx.MockTransport handler."""
    def factory(handler: Callable[[httpx.Request], Any], base_url: str = COINGECKO_URL, **kwargs) -> TransportClient:
        kwargs.setdefault("name", "test")
        kwargs.setdefault("retries", 2)
        kwargs.setdefault("cache", ResponseCache(clock=clock, name="test"))
        kwargs.setdefault("stale_cache", ResponseCache(clock=clock, name="test.stale"))
        client = TransportClient(
            base_url,
            transport=httpx.MockTransport(handler),
            sleep=sleeper,
            **kwargs
        )
        return client

    return factory


def coin(coin_id: str, price: float, **extra) -> dict:
    record = {
        "id": coin_id,
        "name": coin_id.title(),
        "symbol": coin_id[:3],
        "current_price": price,
        "price_change_percentage_24h": 1.5,
        "market_cap": price * 1000,
        "total_volume": price * 10,
        "image": f"https://assets.example.com/{coin_id}.png",
    }
    record.update(extra)
    return record
