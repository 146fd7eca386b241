"""
Cryptocurrency price service backed by the CoinGecko API.
"""

import asyncio
import re
from collections.abc import Mapping
from typing import Any, Dict, Iterable, List, Optional

import httpx

from shared.config import BaseConfig
from shared.errors import MarketDataException, SecurityError, ValidationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig

from ..caching import ResponseCache
from ..models import PriceQuote, Provenance, QuoteResult, ValidationResult
from ..ratelimit import RateTracker
from ..transport import TransportClient
from ..validation import validate_crypto_data, validate_user_input
from .events import log_customer_service_event
from .reference_data import fallback_crypto_quotes


SERVICE_NAME = "CryptoPriceService"

_COIN_ID_PATTERN = re.compile(r"^[a-z0-9-]{1,50}$")

SEARCH_RESULT_LIMIT = 10


def _usd(section: Mapping, key: str) -> Any:
    value = section.get(key)
    return value.get("usd") if isinstance(value, Mapping) else None


def validate_coin_detail(data: Any) -> ValidationResult:
    """Flatten a ``/coins/{id}`` document and validate it as one market record."""
    if not isinstance(data, Mapping):
        return ValidationResult(
            errors=["Invalid coin detail format"],
            customer_message="Cryptocurrency details temporarily unavailable."
        )

    market = data.get("market_data")
    market = market if isinstance(market, Mapping) else {}
    image = data.get("image")
    record = {
        "id": data.get("id"),
        "name": data.get("name"),
        "symbol": data.get("symbol") or "",
        "current_price": _usd(market, "current_price"),
        "price_change_percentage_24h": market.get("price_change_percentage_24h"),
        "market_cap": _usd(market, "market_cap"),
        "total_volume": _usd(market, "total_volume"),
        "image": image.get("large") if isinstance(image, Mapping) else None,
    }

    result = validate_crypto_data([record])
    if result.is_valid:
        result.sanitized_data = result.sanitized_data[0]
    return result


def validate_search_results(data: Any) -> ValidationResult:
    """Reduce a ``/search`` document to a list of well-formed coin ids."""
    coins = data.get("coins") if isinstance(data, Mapping) else None
    if not isinstance(coins, list):
        return ValidationResult(
            errors=["Invalid search response format"],
            customer_message="Search temporarily unavailable. Please try again."
        )

    ids = []
    for coin in coins:
        coin_id = coin.get("id") if isinstance(coin, Mapping) else None
        if isinstance(coin_id, str) and _COIN_ID_PATTERN.match(coin_id):
            ids.append(coin_id)
        if len(ids) >= SEARCH_RESULT_LIMIT:
            break
    return ValidationResult(is_valid=True, sanitized_data=ids)


def to_crypto_quote(asset: Dict[str, Any], provenance: Provenance) -> PriceQuote:
    return PriceQuote(
        id=asset["id"],
        display_name=asset["name"],
        symbol=asset["symbol"],
        price_usd=asset["price"],
        change_24h_pct=asset["price_change_24h"],
        last_updated=asset["last_updated"],
        provenance=provenance,
        kind="crypto",
        market_cap=asset["market_cap"],
        volume_24h=asset["volume_24h"],
        icon=asset["icon"],
    )


class CryptoPriceService:
    """Fetches validated crypto quotes and falls back to reference prices."""

    def __init__(self,
                 client: TransportClient,
                 tracked_coins: Iterable[str],
                 *,
                 metrics: Optional[MetricsCollector] = None):
        self.client = client
        self.tracked_coins = list(tracked_coins)
        self.metrics = metrics
        self.logger = get_logger("market_data.crypto")

    @classmethod
    def from_config(cls,
                    config: BaseConfig,
                    *,
                    metrics: Optional[MetricsCollector] = None,
                    transport: Optional[httpx.AsyncBaseTransport] = None,
                    sleep=asyncio.sleep) -> "CryptoPriceService":
        """Build the service with a short-TTL, high-priority client."""
        client = TransportClient(
            config.crypto_api_url,
            name="coingecko",
            timeout_seconds=config.crypto_timeout_seconds,
            cache_ttl_seconds=config.crypto_cache_ttl_seconds,
            priority=config.crypto_priority,
            customer_facing=config.customer_facing,
            trusted_domains=config.trusted_domains,
            cache=ResponseCache(max_entries=config.cache_max_entries, name="coingecko"),
            stale_cache=ResponseCache(max_entries=config.cache_max_entries, name="coingecko.stale"),
            stale_ttl_seconds=config.stale_ttl_seconds,
            rate_tracker=RateTracker(config.rate_limit_per_minute, config.rate_limit_burst),
            retry_config=RetryConfig(
                max_attempts=config.crypto_retries + 1,
                base_delay=config.retry_base_delay_seconds,
                max_delay=config.retry_max_delay_seconds,
                jitter=False
            ),
            max_request_bytes=config.max_request_bytes,
            max_response_bytes=config.max_response_bytes,
            api_key=config.coingecko_api_key,
            metrics=metrics,
            transport=transport,
            sleep=sleep,
        )
        return cls(client, config.tracked_coins, metrics=metrics)

    async def fetch_quotes(self, ids: Optional[Iterable[str]] = None, force_refresh: bool = False) -> QuoteResult:
        """Current quotes for ``ids`` (defaults to the tracked coins).

        Validation, transport and rate-limit failures yield the reference
        table; ``SecurityError`` propagates.
        """
        coin_ids = [coin_id.strip().lower() for coin_id in (ids or ())]
        coin_ids = [coin_id for coin_id in coin_ids if _COIN_ID_PATTERN.match(coin_id)]
        if not coin_ids:
            coin_ids = list(self.tracked_coins)
        params = {
            "vs_currency": "usd",
            "ids": ",".join(coin_ids),
            "order": "market_cap_desc",
            "per_page": max(20, len(coin_ids)),
            "page": 1,
            "sparkline": "false",
            "price_change_percentage": "24h",
        }

        try:
            response = await self.client.get(
                "/coins/markets",
                params,
                validator=validate_crypto_data,
                force_refresh=force_refresh
            )
        except SecurityError:
            raise
        except ValidationError as exc:
            self._log_event("crypto_api_validation_failed", {"errors": exc.errors})
            return self._fallback(coin_ids, exc)
        except MarketDataException as exc:
            self._log_event("crypto_api_error", {"code": exc.code, "message": exc.message})
            return self._fallback(coin_ids, exc)

        provenance = Provenance.CACHE if response.from_cache else Provenance.LIVE
        return QuoteResult(
            quotes=[to_crypto_quote(asset, provenance) for asset in response.data],
            from_cache=response.from_cache
        )

    async def fetch_quote(self, coin_id: str) -> Optional[PriceQuote]:
        """Detailed quote for one coin, or ``None`` when unavailable."""
        validation = validate_user_input(coin_id, "search")
        if not validation.is_valid:
            return None

        sanitized_id = validation.sanitized_data.lower()
        if not _COIN_ID_PATTERN.match(sanitized_id):
            return None

        try:
            response = await self.client.get(
                f"/coins/{sanitized_id}",
                {
                    "localization": "false",
                    "tickers": "false",
                    "market_data": "true",
                    "community_data": "false",
                    "developer_data": "false",
                    "sparkline": "false",
                },
                validator=validate_coin_detail
            )
        except SecurityError:
            raise
        except ValidationError:
            self._log_event("invalid_crypto_detail", {"id": sanitized_id}, business_impact="low")
            return None
        except MarketDataException as exc:
            self._log_event("crypto_detail_error", {"id": sanitized_id, "code": exc.code})
            return None

        provenance = Provenance.CACHE if response.from_cache else Provenance.LIVE
        return to_crypto_quote(response.data, provenance)

    async def search(self, query: str) -> List[PriceQuote]:
        """Search coins by name; returns an empty list on any handled failure."""
        validation = validate_user_input(query, "search")
        if not validation.is_valid:
            return []

        try:
            found = await self.client.get(
                "/search",
                {"query": validation.sanitized_data},
                validator=validate_search_results
            )
            if not found.data:
                return []

            response = await self.client.get(
                "/coins/markets",
                {
                    "vs_currency": "usd",
                    "ids": ",".join(found.data),
                    "order": "market_cap_desc",
                    "per_page": SEARCH_RESULT_LIMIT,
                    "page": 1,
                    "sparkline": "false",
                    "price_change_percentage": "24h",
                },
                validator=validate_crypto_data
            )
        except SecurityError:
            raise
        except MarketDataException as exc:
            self._log_event("crypto_search_error", {"query": validation.sanitized_data, "code": exc.code})
            return []

        provenance = Provenance.CACHE if response.from_cache else Provenance.LIVE
        return [to_crypto_quote(asset, provenance) for asset in response.data]

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

    def _fallback(self, coin_ids: List[str], exc: MarketDataException) -> QuoteResult:
        if self.metrics:
            self.metrics.increment_counter("fallback_events_total", service=SERVICE_NAME, event=exc.code.lower())
        errors = getattr(exc, "errors", None) or [exc.message]
        return QuoteResult(
            quotes=fallback_crypto_quotes(coin_ids),
            is_fallback=True,
            errors=list(errors),
            customer_message=exc.message
        )

    def _log_event(self, event: str, data: Any, business_impact: Optional[str] = None) -> None:
        log_customer_service_event(
            self.logger,
            SERVICE_NAME,
            event,
            data,
            customer_impact="medium",
            business_impact=business_impact,
            metrics=self.metrics
        )
