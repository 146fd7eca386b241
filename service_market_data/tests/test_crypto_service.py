"""
Unit tests for the crypto price service.
"""

import asyncio

import httpx
import pytest

from service_market_data.app.models import Provenance
from service_market_data.app.services import CryptoPriceService
from service_market_data.app.services.reference_data import CRYPTO_REFERENCE
from shared.errors import SecurityError

from conftest import coin


def coin_detail(coin_id: str, price: float) -> dict:
    return {
        "id": coin_id,
        "name": coin_id.title(),
        "symbol": coin_id[:3],
        "image": {"large": f"https://assets.example.com/{coin_id}.png"},
        "market_data": {
            "current_price": {"usd": price},
            "price_change_percentage_24h": -2.5,
            "market_cap": {"usd": price * 1000},
            "total_volume": {"usd": price * 10},
        },
    }


class Router:
    """Routes mock requests by path suffix to (status, payload) pairs."""

    def __init__(self, routes):
        self.routes = routes
        self.paths = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.paths.append(request.url.path)
        for suffix, response in self.routes.items():
            if request.url.path.endswith(suffix):
                status, payload = response
                return httpx.Response(status, json=payload)
        return httpx.Response(404, json={})


class TestCryptoPriceService:
    """Test cases for CryptoPriceService."""

    @pytest.fixture
    def build(self, make_client):
        def factory(handler, **kwargs):
            client = make_client(handler, name="coingecko", **kwargs)
            return CryptoPriceService(client, ["bitcoin", "ethereum"])
        return factory

    @pytest.mark.asyncio
    async def test_live_then_cached_quotes(self, build):
        router = Router({"/coins/markets": (200, [coin("bitcoin", 67000), coin("ethereum", 3500)])})
        service = build(router)

        live = await service.fetch_quotes()
        cached = await service.fetch_quotes()

        assert [q.id for q in live.quotes] == ["bitcoin", "ethereum"]
        assert all(q.provenance is Provenance.LIVE for q in live.quotes)
        assert live.from_cache is False and live.is_fallback is False
        assert cached.from_cache is True
        assert all(q.provenance is Provenance.CACHE for q in cached.quotes)
        assert len(router.paths) == 1

    @pytest.mark.asyncio
    async def test_requests_tracked_coins(self, build):
        captured = []

        def handler(request):
            captured.append(request)
            return httpx.Response(200, json=[coin("bitcoin", 67000)])

        service = build(handler)
        await service.fetch_quotes()

        params = captured[0].url.params
        assert params["ids"] == "bitcoin,ethereum"
        assert params["vs_currency"] == "usd"

    @pytest.mark.asyncio
    async def test_transport_failure_returns_reference_prices(self, build):
        service = build(Router({"/coins/markets": (503, {})}), retries=1)

        result = await service.fetch_quotes()

        assert result.is_fallback is True
        assert [q.id for q in result.quotes] == ["bitcoin", "ethereum"]
        assert result.quotes[0].price_usd == CRYPTO_REFERENCE["bitcoin"][2]
        assert all(q.provenance is Provenance.FALLBACK for q in result.quotes)
        assert result.customer_message == "Service under maintenance. Please try again shortly."

    @pytest.mark.asyncio
    async def test_invalid_payload_returns_reference_prices(self, build):
        service = build(Router({"/coins/markets": (200, {"status": "maintenance"})}))

        result = await service.fetch_quotes()

        assert result.is_fallback is True
        assert result.errors == ["Invalid data format received"]

    @pytest.mark.asyncio
    async def test_unknown_coins_fall_back_to_full_table(self, build):
        service = build(Router({}), retries=0)

        result = await service.fetch_quotes(ids=["not-a-real-coin"])

        assert {q.id for q in result.quotes} == set(CRYPTO_REFERENCE)

    @pytest.mark.asyncio
    async def test_ids_are_normalised_before_filtering(self, build):
        captured = []

        def handler(request):
            captured.append(request)
            return httpx.Response(200, json=[coin("bitcoin", 67000)])

        service = build(handler)
        await service.fetch_quotes(ids=["Bitcoin", " SOLANA ", "bad id!"])
        await service.fetch_quotes(ids=["!!!", "Not A Coin"], force_refresh=True)

        assert captured[0].url.params["ids"] == "bitcoin,solana"
        assert captured[1].url.params["ids"] == "bitcoin,ethereum"

    @pytest.mark.asyncio
    async def test_hung_upstream_falls_back_to_reference_prices(self, build):
        async def hanging_handler(request):
            await asyncio.sleep(5)
            return httpx.Response(200, json=[coin("bitcoin", 67000)])

        service = build(hanging_handler, retries=1, timeout_seconds=0.05)

        result = await asyncio.wait_for(service.fetch_quotes(), timeout=2)

        assert result.is_fallback is True
        assert [q.id for q in result.quotes] == ["bitcoin", "ethereum"]
        assert all(q.provenance is Provenance.FALLBACK for q in result.quotes)
        assert result.customer_message == "Unable to connect to service. Please check your connection and try again."
        assert service.get_metrics()["failed_requests"] == 2

    @pytest.mark.asyncio
    async def test_security_errors_propagate(self, make_client):
        client = make_client(Router({}), base_url="https://evil.example.com", trusted_domains=["api.coingecko.com"])
        service = CryptoPriceService(client, ["bitcoin"])

        with pytest.raises(SecurityError):
            await service.fetch_quotes()

    @pytest.mark.asyncio
    async def test_fetch_quote_flattens_detail(self, build):
        service = build(Router({"/coins/bitcoin": (200, coin_detail("bitcoin", 67000))}))

        quote = await service.fetch_quote("Bitcoin")

        assert quote.id == "bitcoin"
        assert quote.price_usd == 67000
        assert quote.change_24h_pct == -2.5
        assert quote.icon == "https://assets.example.com/bitcoin.png"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("coin_id", ["", "bad id", "../admin"])
    async def test_fetch_quote_rejects_bad_ids(self, build, coin_id):
        router = Router({})
        service = build(router)

        assert await service.fetch_quote(coin_id) is None
        assert router.paths == []

    @pytest.mark.asyncio
    async def test_fetch_quote_returns_none_on_failure(self, build):
        service = build(Router({"/coins/bitcoin": (200, {"id": "bitcoin"})}))

        assert await service.fetch_quote("bitcoin") is None

    @pytest.mark.asyncio
    async def test_search_resolves_ids_then_prices(self, build):
        router = Router({
            "/search": (200, {"coins": [{"id": "bitcoin"}, {"id": "bitcoin-cash"}, {"id": "<bad>"}]}),
            "/coins/markets": (200, [coin("bitcoin", 67000), coin("bitcoin-cash", 400)]),
        })
        service = build(router)

        results = await service.search("bitcoin")

        assert [q.id for q in results] == ["bitcoin", "bitcoin-cash"]
        assert router.paths[-1].endswith("/coins/markets")

    @pytest.mark.asyncio
    async def test_search_returns_empty_on_failure(self, build):
        service = build(Router({"/search": (500, {})}), retries=0)

        assert await service.search("bitcoin") == []
        assert await service.search("   ") == []

    @pytest.mark.asyncio
    async def test_admin_operations_delegate_to_client(self, build):
        service = build(Router({"/coins/markets": (200, [coin("bitcoin", 67000)])}))
        await service.fetch_quotes()

        service.clear_cache()
        service.reset_metrics()
        service.reset_rate_limits()

        metrics = service.get_metrics()
        assert metrics["total_requests"] == 0
        assert metrics["cache_stats"]["size"] == 0
        await service.close()
