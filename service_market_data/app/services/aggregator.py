"""
Aggregates crypto and metal quotes into one market snapshot.
"""

import asyncio
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from shared.errors import SecurityError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..models import HealthStatus, MarketDataSnapshot, PriceQuote, QuoteResult
from .crypto_service import CryptoPriceService
from .events import log_customer_service_event
from .health import compute_health_status
from .metals_service import MetalsPriceService
from .reference_data import emergency_crypto_quotes, emergency_metal_quotes


SERVICE_NAME = "MarketDataAggregator"

UNHEALTHY_ERROR_RATE_PCT = 50.0
SLOW_RESPONSE_MS = 5000.0
EMERGENCY_MESSAGE = "Live prices are temporarily unavailable. Showing reference prices."


def _fresh_stats() -> Dict[str, float]:
    return {
        "total_requests": 0,
        "successful_requests": 0,
        "average_response_time_ms": 0.0,
        "customer_satisfaction_events": 0,
    }


class MarketDataAggregator:
    """Fans out to both domain services and always returns a usable snapshot."""

    def __init__(self,
                 crypto_service: CryptoPriceService,
                 metals_service: MetalsPriceService,
                 *,
                 metrics: Optional[MetricsCollector] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.crypto_service = crypto_service
        self.metals_service = metals_service
        self.metrics = metrics
        self._clock = clock
        self._stats = _fresh_stats()
        self.logger = get_logger("market_data.aggregator")

    async def get_market_data(self, force_refresh: bool = False) -> MarketDataSnapshot:
        """Fetch crypto and metal quotes concurrently.

        An unexpected failure in either service is replaced by the emergency
        price set. ``SecurityError`` is re-raised.
        """
        start = self._clock()
        self._stats["total_requests"] += 1

        crypto_outcome, metals_outcome = await asyncio.gather(
            self.crypto_service.fetch_quotes(force_refresh=force_refresh),
            self.metals_service.fetch_quotes(force_refresh=force_refresh),
            return_exceptions=True
        )

        cryptos, crypto_ok = self._settle(crypto_outcome, "crypto", emergency_crypto_quotes)
        metals, metals_ok = self._settle(metals_outcome, "metals", emergency_metal_quotes)

        response_time_ms = (self._clock() - start) * 1000
        self._record_response_time(response_time_ms)
        if crypto_ok and metals_ok:
            self._stats["successful_requests"] += 1

        performance = {
            "crypto_from_cache": crypto_ok and crypto_outcome.from_cache,
            "metals_from_cache": metals_ok and metals_outcome.from_cache,
            "crypto_fallback": not crypto_ok or crypto_outcome.is_fallback,
            "metals_fallback": not metals_ok or metals_outcome.is_fallback,
            "response_time_ms": round(response_time_ms, 2),
        }
        performance.update(self._describe_fallbacks(
            (crypto_outcome, crypto_ok), (metals_outcome, metals_ok)
        ))

        self._log_event("market_data_success" if crypto_ok and metals_ok else "market_data_error", {
            "response_time_ms": performance["response_time_ms"],
            "crypto_count": len(cryptos),
            "metals_count": len(metals),
        })
        return MarketDataSnapshot(cryptos=cryptos, metals=metals, performance=performance)

    def health_check(self) -> Dict[str, Any]:
        """Per-API health plus customer impact, read from running metrics only."""
        crypto = self.crypto_service.get_metrics()
        metals = self.metals_service.get_metrics()

        apis = {
            "coingecko": crypto["error_rate_pct"] < UNHEALTHY_ERROR_RATE_PCT,
            "metals": metals["error_rate_pct"] < UNHEALTHY_ERROR_RATE_PCT,
        }

        if not apis["coingecko"] and not apis["metals"]:
            customer_impact, business_status = "high", "critical"
        elif not apis["coingecko"] or not apis["metals"]:
            customer_impact, business_status = "medium", "degraded"
        elif max(crypto["average_response_time_ms"], metals["average_response_time_ms"]) > SLOW_RESPONSE_MS:
            customer_impact, business_status = "low", "degraded"
        else:
            customer_impact, business_status = "none", "optimal"

        result = {"apis": apis, "customer_impact": customer_impact, "business_status": business_status}
        self._log_event("health_check", result)
        return result

    def current_health(self) -> HealthStatus:
        """Combined health across both transports, weighted by request count."""
        average_ms, error_rate = self._combined_rates()
        return compute_health_status(average_ms, error_rate)

    def cache_hit_rate(self) -> float:
        crypto = self.crypto_service.get_metrics()
        metals = self.metals_service.get_metrics()
        lookups = crypto["cache_lookups"] + metals["cache_lookups"]
        if not lookups:
            return 0.0
        return (crypto["cache_hits"] + metals["cache_hits"]) / lookups * 100

    def get_metrics(self) -> Dict[str, Any]:
        average_ms, error_rate = self._combined_rates()
        return {
            "overall": dict(self._stats),
            "crypto": self.crypto_service.get_metrics(),
            "metals": self.metals_service.get_metrics(),
            "combined": {
                "average_response_time_ms": round(average_ms, 2),
                "error_rate_pct": round(error_rate, 2),
                "cache_hit_rate_pct": round(self.cache_hit_rate(), 2),
            },
        }

    def get_business_metrics(self) -> Dict[str, Any]:
        """Customer experience and cost efficiency figures."""
        crypto = self.crypto_service.get_metrics()
        metals = self.metals_service.get_metrics()
        total = self._stats["total_requests"]
        reliability = self._stats["successful_requests"] / total * 100 if total else 100.0
        average_ms = self._stats["average_response_time_ms"]

        return {
            "overall": dict(self._stats),
            "crypto": crypto,
            "metals": metals,
            "customer_experience": {
                "average_response_time_ms": round(average_ms, 2),
                "reliability_score": round(reliability, 2),
                "cache_efficiency": round((crypto["cache_hit_rate_pct"] + metals["cache_hit_rate_pct"]) / 2, 2),
            },
            "business_efficiency": {
                # Crypto dominates upstream usage, hence the weighting
                "api_cost_optimization": round(
                    crypto["cache_hit_rate_pct"] * 0.7 + metals["cache_hit_rate_pct"] * 0.3, 2
                ),
                "error_reduction": round(100 - (crypto["error_rate_pct"] + metals["error_rate_pct"]) / 2, 2),
                "performance_optimization": round(max(0.0, 100 - average_ms / 100), 2),
            },
        }

    def clear_caches(self) -> None:
        self.crypto_service.clear_cache()
        self.metals_service.clear_cache()
        self._log_event("caches_cleared", {"trigger": "customer_service"})

    def reset_rate_limits(self) -> None:
        self.crypto_service.reset_rate_limits()
        self.metals_service.reset_rate_limits()

    def reset_metrics(self) -> None:
        self._stats = _fresh_stats()
        self.crypto_service.reset_metrics()
        self.metals_service.reset_metrics()
        self._log_event("metrics_reset", {"trigger": "admin"})

    async def close(self) -> None:
        await asyncio.gather(self.crypto_service.close(), self.metals_service.close())

    def _settle(self,
                outcome: Any,
                label: str,
                emergency: Callable[[], List[PriceQuote]]) -> Tuple[List[PriceQuote], bool]:
        if isinstance(outcome, QuoteResult):
            return outcome.quotes, True
        if isinstance(outcome, SecurityError):
            raise outcome
        if not isinstance(outcome, Exception):
            # Cancellation and other BaseExceptions are not ours to absorb
            raise outcome

        self.logger.error(
            "Domain service failed unexpectedly, serving emergency prices",
            domain=label,
            error_type=type(outcome).__name__,
            customer_impact="high",
            business_impact="high"
        )
        if self.metrics:
            self.metrics.increment_counter("fallback_events_total", service=SERVICE_NAME, event=f"{label}_emergency")
        return emergency(), False

    @staticmethod
    def _describe_fallbacks(*outcomes: Tuple[Any, bool]) -> Dict[str, Any]:
        """Customer message and error list for whichever domains fell back."""
        errors: List[str] = []
        messages: List[str] = []
        for outcome, ok in outcomes:
            if not ok:
                errors.append(EMERGENCY_MESSAGE)
                messages.append(EMERGENCY_MESSAGE)
                continue
            errors.extend(outcome.errors)
            if outcome.customer_message:
                messages.append(outcome.customer_message)
        return {
            "customer_message": messages[0] if messages else None,
            "errors": errors,
        }

    def _combined_rates(self) -> Tuple[float, float]:
        crypto = self.crypto_service.get_metrics()
        metals = self.metals_service.get_metrics()
        total = crypto["total_requests"] + metals["total_requests"]
        if not total:
            return 0.0, 0.0
        average_ms = (
            crypto["average_response_time_ms"] * crypto["total_requests"]
            + metals["average_response_time_ms"] * metals["total_requests"]
        ) / total
        error_rate = (crypto["failed_requests"] + metals["failed_requests"]) / total * 100
        return average_ms, error_rate

    def _record_response_time(self, response_time_ms: float) -> None:
        n = self._stats["total_requests"]
        self._stats["average_response_time_ms"] = (
            self._stats["average_response_time_ms"] * (n - 1) + response_time_ms
        ) / n

    def _log_event(self, event: str, data: Any) -> None:
        if "error" in event or "critical" in event:
            customer_impact = "high"
        elif "degraded" in event or "slow" in event:
            customer_impact = "medium"
        else:
            customer_impact = "low"

        if "cache" in event:
            business_impact = "cost_saving"
        elif "error" in event or "fallback" in event:
            business_impact = "revenue_protecting"
        else:
            business_impact = "experience_enhancing"

        self._stats["customer_satisfaction_events"] += 1
        log_customer_service_event(
            self.logger,
            SERVICE_NAME,
            event,
            data,
            customer_impact=customer_impact,
            business_impact=business_impact,
            metrics=self.metrics
        )
