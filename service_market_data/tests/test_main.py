"""
Tests for the market data HTTP routes.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from service_market_data.app.main import create_app
from service_market_data.app.models import AssetDomain, MarketDataSnapshot, MarketDataState
from service_market_data.app.services.reference_data import fallback_crypto_quotes, fallback_metal_quote
from shared.config import get_config
from shared.errors import RateLimitedError, SecurityError


@pytest.fixture
def client():
    config = get_config("market-data", 8010, scheduler_enabled=False)
    return TestClient(create_app(config))


@pytest.fixture
def service(client):
    return client.app.state.market_data_service


def _snapshot():
    return MarketDataSnapshot(
        cryptos=fallback_crypto_quotes(["bitcoin"]),
        metals=[fallback_metal_quote(AssetDomain.GOLD)],
        performance={"crypto_from_cache": True, "metals_from_cache": False, "response_time_ms": 3.2},
    )


def test_market_data_returns_snapshot(client, service):
    service.aggregator.get_market_data = AsyncMock(return_value=_snapshot())

    response = client.get("/api/v1/market-data", params={"force_refresh": "true"})

    assert response.status_code == 200
    body = response.json()
    assert body["cryptos"][0]["id"] == "bitcoin"
    assert body["metals"][0]["symbol"] == "XAU"
    assert body["performance"]["crypto_from_cache"] is True
    service.aggregator.get_market_data.assert_awaited_once_with(force_refresh=True)
    assert "X-Request-ID" in response.headers


def test_security_error_maps_to_400(client, service):
    service.aggregator.get_market_data = AsyncMock(side_effect=SecurityError("Unauthorized domain"))

    response = client.get("/api/v1/market-data")

    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "SECURITY_ERROR"
    assert body["message"] == "Unauthorized domain"


def test_rate_limited_maps_to_429(client, service):
    service.crypto_service.search = AsyncMock(side_effect=RateLimitedError())

    response = client.get("/api/v1/crypto/search", params={"q": "bit"})

    assert response.status_code == 429
    assert response.json()["code"] == "RATE_LIMITED"


def test_state_and_refresh(client, service):
    state = MarketDataState(crypto_prices=fallback_crypto_quotes(["ethereum"]))
    service.scheduler.force_refresh = AsyncMock(return_value=state)

    refreshed = client.post("/api/v1/market-data/refresh")
    current = client.get("/api/v1/market-data/state")

    assert refreshed.status_code == 200
    assert refreshed.json()["crypto_prices"][0]["id"] == "ethereum"
    assert current.status_code == 200
    assert current.json()["cache_status"]["is_stale"] is True
    assert current.json()["performance_status"]["status"] == "excellent"


def test_health_and_business_metrics(client):
    health = client.get("/api/v1/market-data/health")
    metrics = client.get("/api/v1/market-data/metrics")

    assert health.status_code == 200
    assert health.json()["business_status"] == "optimal"
    assert health.json()["api_health"] == "excellent"
    assert metrics.json()["customer_experience"]["reliability_score"] == 100.0


def test_search_route_is_not_treated_as_coin_id(client, service):
    service.crypto_service.search = AsyncMock(return_value=fallback_crypto_quotes(["bitcoin"]))
    service.crypto_service.fetch_quote = AsyncMock()

    response = client.get("/api/v1/crypto/search", params={"q": "bit"})

    assert response.status_code == 200
    assert response.json()["results"][0]["symbol"] == "BTC"
    service.crypto_service.fetch_quote.assert_not_awaited()


def test_unknown_coin_is_404(client, service):
    service.crypto_service.fetch_quote = AsyncMock(return_value=None)

    response = client.get("/api/v1/crypto/not-a-coin")

    assert response.status_code == 404


def test_metal_routes(client, service):
    service.metals_service.fetch_quote = AsyncMock(return_value=fallback_metal_quote(AssetDomain.SILVER))
    service.metals_service.fetch_history = AsyncMock(return_value=[{"date": "2024-07-01", "price": 30.1, "volume": 0}])

    quote = client.get("/api/v1/metals/Silver")
    history = client.get("/api/v1/metals/silver/history", params={"days": 7})
    unsupported = client.get("/api/v1/metals/copper")

    assert quote.json()["price_usd"] == 31.5
    assert history.json()["points"][0]["price"] == 30.1
    service.metals_service.fetch_history.assert_awaited_once_with(AssetDomain.SILVER, 7)
    assert unsupported.status_code == 400


def test_admin_routes(client, service):
    service.aggregator.clear_caches = MagicMock()
    service.aggregator.reset_rate_limits = MagicMock()
    service.aggregator.reset_metrics = MagicMock()

    assert client.post("/api/v1/admin/cache/clear").json()["action"] == "cache_cleared"
    assert client.post("/api/v1/admin/rate-limits/reset").json()["action"] == "rate_limits_reset"
    assert client.post("/api/v1/admin/metrics/reset").json()["action"] == "metrics_reset"

    service.aggregator.clear_caches.assert_called_once()
    service.aggregator.reset_rate_limits.assert_called_once()
    service.aggregator.reset_metrics.assert_called_once()


def test_liveness_and_prometheus(client):
    health = client.get("/health")
    metrics = client.get("/metrics")

    assert health.status_code == 200
    assert health.json()["dependencies"] == {"coingecko": "ok", "metals": "ok"}
    assert metrics.status_code == 200
    assert "upstream_requests_total" in metrics.text


@pytest.mark.parametrize("requested,used", [(0, 30), (7, 7), (-3, 1), (9999, 365)])
def test_history_reports_days_actually_used(client, service, requested, used):
    service.metals_service.fetch_history = AsyncMock(return_value=[])

    response = client.get("/api/v1/metals/gold/history", params={"days": requested})

    assert response.json()["days"] == used
    service.metals_service.fetch_history.assert_awaited_once_with(AssetDomain.GOLD, used)
