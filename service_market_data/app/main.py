"""
Market data service for TimeVault.

Serves validated crypto and precious metal prices over HTTP and keeps a
polled snapshot warm for the calculator UI.
"""

from typing import Optional

from fastapi import HTTPException, Query

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config

from .models import AssetDomain
from .services import AdaptiveScheduler, CryptoPriceService, MarketDataAggregator, MetalsPriceService
from .services.metals_service import METAL_SYMBOLS, clamp_history_days


SERVICE_NAME = "market-data"
DEFAULT_PORT = 8010


class MarketDataService(BaseService):
    """HTTP surface over the aggregator and scheduler."""

    def __init__(self, config: Optional[ServiceConfig] = None):
        super().__init__(SERVICE_NAME, DEFAULT_PORT, config=config)
        self.crypto_service = CryptoPriceService.from_config(self.config, metrics=self.metrics)
        self.metals_service = MetalsPriceService.from_config(self.config, metrics=self.metrics)
        self.aggregator = MarketDataAggregator(self.crypto_service, self.metals_service, metrics=self.metrics)
        self.scheduler = AdaptiveScheduler(self.aggregator, metrics=self.metrics)

        @self.app.on_event("startup")
        async def _startup():
            if self.config.scheduler_enabled:
                await self.scheduler.start()

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.scheduler.stop()
            await self.aggregator.close()

        self._setup_market_data_routes()
        self._setup_admin_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.market_data_service = self

    async def _check_dependencies(self):
        health = self.aggregator.health_check()
        return {name: "ok" if healthy else "degraded" for name, healthy in health["apis"].items()}

    def _setup_market_data_routes(self):
        """Set up market data routes."""

        @self.app.get("/api/v1/market-data")
        async def get_market_data(force_refresh: bool = Query(False)):
            """Return the merged crypto and metal snapshot."""
            snapshot = await self.aggregator.get_market_data(force_refresh=force_refresh)
            return snapshot.to_dict()

        @self.app.get("/api/v1/market-data/state")
        async def get_state():
            """Last-known-good data as polled by the scheduler."""
            payload = self.scheduler.state.to_dict()
            payload["cache_status"] = self.scheduler.cache_status()
            payload["performance_status"] = self.scheduler.performance_status()
            return payload

        @self.app.post("/api/v1/market-data/refresh")
        async def refresh_market_data():
            state = await self.scheduler.force_refresh()
            return state.to_dict()

        @self.app.get("/api/v1/market-data/health")
        async def get_health():
            health = self.aggregator.health_check()
            health["api_health"] = self.aggregator.current_health().value
            health["polling_interval_seconds"] = self.scheduler.next_interval()
            return health

        @self.app.get("/api/v1/market-data/metrics")
        async def get_business_metrics():
            return self.aggregator.get_business_metrics()

        # Declared before /crypto/{coin_id} so "search" is not read as an id
        @self.app.get("/api/v1/crypto/search")
        async def search_crypto(q: str = Query(..., min_length=1, max_length=100)):
            results = await self.crypto_service.search(q)
            return {"query": q, "results": [quote.to_dict() for quote in results]}

        @self.app.get("/api/v1/crypto/{coin_id}")
        async def get_crypto(coin_id: str):
            quote = await self.crypto_service.fetch_quote(coin_id)
            if quote is None:
                raise HTTPException(status_code=404, detail="The requested information is not available.")
            return quote.to_dict()

        @self.app.get("/api/v1/metals/{metal}")
        async def get_metal(metal: str):
            domain = self._parse_metal(metal)
            quote = await self.metals_service.fetch_quote(domain)
            if quote is None:
                raise HTTPException(status_code=404, detail="The requested information is not available.")
            return quote.to_dict()

        @self.app.get("/api/v1/metals/{metal}/history")
        async def get_metal_history(metal: str, days: int = Query(30)):
            domain = self._parse_metal(metal)
            valid_days = clamp_history_days(days)
            points = await self.metals_service.fetch_history(domain, valid_days)
            return {"metal": domain.value, "days": valid_days, "points": points}

    def _setup_admin_routes(self):
        """Set up customer-service and administrative routes."""

        @self.app.post("/api/v1/admin/cache/clear")
        async def clear_cache():
            self.aggregator.clear_caches()
            return {"status": "ok", "action": "cache_cleared"}

        @self.app.post("/api/v1/admin/rate-limits/reset")
        async def reset_rate_limits():
            self.aggregator.reset_rate_limits()
            return {"status": "ok", "action": "rate_limits_reset"}

        @self.app.post("/api/v1/admin/metrics/reset")
        async def reset_metrics():
            self.aggregator.reset_metrics()
            return {"status": "ok", "action": "metrics_reset"}

    @staticmethod
    def _parse_metal(metal: str) -> AssetDomain:
        try:
            domain = AssetDomain(metal.lower())
        except ValueError:
            domain = None
        if domain not in METAL_SYMBOLS:
            supported = ", ".join(m.value for m in METAL_SYMBOLS)
            raise HTTPException(status_code=400, detail=f"Unsupported metal. Choose one of: {supported}")
        return domain


def create_app(config: Optional[ServiceConfig] = None):
    """Create FastAPI application."""
    service = MarketDataService(config)
    return service.app


if __name__ == "__main__":
    service = MarketDataService(get_config(SERVICE_NAME, DEFAULT_PORT))
    service.run()
