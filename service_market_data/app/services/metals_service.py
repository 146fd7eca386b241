"""
Precious metals price service backed by the metals.live API.
"""

import asyncio
import functools
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional, Union

import httpx

from shared.config import BaseConfig
from shared.errors import MarketDataException, SecurityError, ValidationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig

from ..caching import ResponseCache
from ..models import AssetDomain, PriceQuote, Provenance, QuoteResult, utc_now
from ..ratelimit import RateTracker
from ..transport import TransportClient, TransportResponse
from ..validation import validate_metal_history, validate_metals_data
from .events import log_customer_service_event
from .reference_data import fallback_metal_quote


SERVICE_NAME = "MetalsPriceService"

METAL_SYMBOLS: Dict[AssetDomain, str] = {
    AssetDomain.GOLD: "XAU",
    AssetDomain.SILVER: "XAG",
    AssetDomain.PLATINUM: "XPT",
    AssetDomain.PALLADIUM: "XPD",
}

DEFAULT_HISTORY_DAYS = 30
MAX_HISTORY_DAYS = 365


def clamp_history_days(days: Any) -> int:
    """Coerce a requested history span to 1..365, defaulting to 30 days."""
    try:
        valid_days = int(days)
    except (TypeError, ValueError):
        return DEFAULT_HISTORY_DAYS
    return max(1, min(valid_days or DEFAULT_HISTORY_DAYS, MAX_HISTORY_DAYS))


def _as_metal(metal: Union[AssetDomain, str]) -> Optional[AssetDomain]:
    try:
        domain = AssetDomain(metal)
    except ValueError:
        return None
    return domain if domain in METAL_SYMBOLS else None


def to_metal_quote(record: Dict[str, Any], metal: AssetDomain, provenance: Provenance) -> PriceQuote:
    return PriceQuote(
        id=metal.value,
        display_name=metal.value.title(),
        symbol=METAL_SYMBOLS[metal],
        price_usd=record["price"],
        change_24h_pct=record.get("change_24h", 0.0),
        last_updated=record["last_updated"],
        provenance=provenance,
        kind="metal",
        unit=record.get("unit", "oz"),
    )


class MetalsPriceService:
    """Fetches validated spot prices, falling back per metal."""

    def __init__(self,
                 client: TransportClient,
                 tracked_metals: Iterable[str] = ("gold", "silver"),
                 *,
                 metrics: Optional[MetricsCollector] = None):
        self.client = client
        self.tracked_metals = [metal for metal in map(_as_metal, tracked_metals) if metal is not None]
        self.metrics = metrics
        self.logger = get_logger("market_data.metals")

    @classmethod
    def from_config(cls,
                    config: BaseConfig,
                    *,
                    metrics: Optional[MetricsCollector] = None,
                    transport: Optional[httpx.AsyncBaseTransport] = None,
                    sleep=asyncio.sleep) -> "MetalsPriceService":
        """Build the service with a long-TTL, normal-priority client."""
        client = TransportClient(
            config.metals_api_url,
            name="metals",
            timeout_seconds=config.metals_timeout_seconds,
            cache_ttl_seconds=config.metals_cache_ttl_seconds,
            priority=config.metals_priority,
            customer_facing=config.customer_facing,
            trusted_domains=config.trusted_domains,
            cache=ResponseCache(max_entries=config.cache_max_entries, name="metals"),
            stale_cache=ResponseCache(max_entries=config.cache_max_entries, name="metals.stale"),
            stale_ttl_seconds=config.stale_ttl_seconds,
            rate_tracker=RateTracker(config.rate_limit_per_minute, config.rate_limit_burst),
            retry_config=RetryConfig(
                max_attempts=config.metals_retries + 1,
                base_delay=config.retry_base_delay_seconds,
                max_delay=config.retry_max_delay_seconds,
                jitter=False
            ),
            max_request_bytes=config.max_request_bytes,
            max_response_bytes=config.max_response_bytes,
            metrics=metrics,
            transport=transport,
            sleep=sleep,
        )
        return cls(client, config.tracked_metals, metrics=metrics)

    async def fetch_quotes(self,
                           metals: Optional[Iterable[str]] = None,
                           force_refresh: bool = False) -> QuoteResult:
        """Spot prices for ``metals``, fetched concurrently.

        A metal whose fetch or validation fails is replaced by its
        reference price; the others are unaffected.
        """
        requested = self.tracked_metals if metals is None else [
            metal for metal in map(_as_metal, metals) if metal is not None
        ]
        results = await asyncio.gather(
            *(self._fetch_metal(metal, force_refresh) for metal in requested)
        )

        merged = QuoteResult(quotes=[], from_cache=bool(results))
        for result in results:
            merged.quotes.extend(result.quotes)
            merged.from_cache = merged.from_cache and result.from_cache
            merged.is_fallback = merged.is_fallback or result.is_fallback
            merged.errors.extend(result.errors)
            merged.customer_message = merged.customer_message or result.customer_message
        return merged

    async def fetch_quote(self, metal: Union[AssetDomain, str]) -> Optional[PriceQuote]:
        """Validated spot price for one metal, or ``None`` when unavailable."""
        domain = _as_metal(metal)
        if domain is None:
            return None

        try:
            response = await self._get_latest(domain)
        except SecurityError:
            raise
        except ValidationError as exc:
            self._log_event("single_metal_validation_failed", {"metal": domain.value, "errors": exc.errors})
            return None
        except MarketDataException as exc:
            self._log_event("single_metal_error", {"metal": domain.value, "code": exc.code})
            return None

        provenance = Provenance.CACHE if response.from_cache else Provenance.LIVE
        return to_metal_quote(response.data, domain, provenance)

    async def fetch_history(self, metal: Union[AssetDomain, str], days: Any = DEFAULT_HISTORY_DAYS) -> List[Dict[str, Any]]:
        """Daily history for charting; empty on any handled failure.

        Unknown metals default to gold and ``days`` is clamped to 1..365.
        """
        domain = _as_metal(metal) or AssetDomain.GOLD
        valid_days = clamp_history_days(days)

        end_date = utc_now().date()
        start_date = end_date - timedelta(days=valid_days)

        try:
            response = await self.client.get(
                f"/historical/{METAL_SYMBOLS[domain]}",
                {"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
                validator=functools.partial(validate_metal_history, metal=domain)
            )
        except SecurityError:
            raise
        except ValidationError:
            self._log_event("invalid_historical_data", {"metal": domain.value, "days": valid_days})
            return []
        except MarketDataException as exc:
            self._log_event("historical_data_error", {"metal": domain.value, "days": valid_days, "code": exc.code})
            return []

        return list(response.data)

    def get_metrics(self) -> Dict[str, Any]:
        return self.client.get_metrics()

    def clear_cache(self) -> None:
        self.client.clear_cache()

    def reset_rate_limits(self) -> None:
        self.client.reset_rate_limits()

    def reset_metrics(self) -> None:
        self.client.reset_metrics()

    async def close(self) -> None:
        await self.client.close()

    async def _get_latest(self, metal: AssetDomain, force_refresh: bool = False) -> TransportResponse:
        return await self.client.get(
            f"/latest/{METAL_SYMBOLS[metal]}",
            validator=functools.partial(validate_metals_data, metal=metal),
            force_refresh=force_refresh
        )

    async def _fetch_metal(self, metal: AssetDomain, force_refresh: bool) -> QuoteResult:
        try:
            response = await self._get_latest(metal, force_refresh)
        except SecurityError:
            raise
        except ValidationError as exc:
            self._log_event(f"{metal.value}_validation_failed", {"errors": exc.errors})
            return self._fallback(metal, exc)
        except MarketDataException as exc:
            self._log_event(f"{metal.value}_api_failed", {"code": exc.code, "message": exc.message})
            return self._fallback(metal, exc)

        provenance = Provenance.CACHE if response.from_cache else Provenance.LIVE
        return QuoteResult(
            quotes=[to_metal_quote(response.data, metal, provenance)],
            from_cache=response.from_cache
        )

    def _fallback(self, metal: AssetDomain, exc: MarketDataException) -> QuoteResult:
        if self.metrics:
            self.metrics.increment_counter("fallback_events_total", service=SERVICE_NAME, event=exc.code.lower())
        errors = getattr(exc, "errors", None) or [exc.message]
        return QuoteResult(
            quotes=[fallback_metal_quote(metal)],
            is_fallback=True,
            errors=list(errors),
            customer_message=exc.message
        )

    def _log_event(self, event: str, data: Any) -> None:
        log_customer_service_event(
            self.logger,
            SERVICE_NAME,
            event,
            data,
            customer_impact="low" if "validation" in event else "medium",
            business_impact="medium" if "error" in event or "failed" in event else "low",
            metrics=self.metrics
        )
