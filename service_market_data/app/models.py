"""
Data model shared by the acquisition layer.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class AssetDomain(str, Enum):
    """Domain tag accepted by the validator."""
    CRYPTO = "crypto"
    GOLD = "gold"
    SILVER = "silver"
    PLATINUM = "platinum"
    PALLADIUM = "palladium"


class Provenance(str, Enum):
    """Where a quote came from."""
    CACHE = "cache"
    LIVE = "live"
    FALLBACK = "fallback"


class Priority(str, Enum):
    """Rate limiting priority tiers."""
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


class HealthStatus(str, Enum):
    """Coarse API health tier driving the polling interval."""
    EXCELLENT = "excellent"
    GOOD = "good"
    DEGRADED = "degraded"
    CRITICAL = "critical"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_iso(dt: datetime) -> str:
    """Format datetime as ISO-8601 with millisecond precision."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    else:
        dt = dt.astimezone(timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class ValidationResult:
    """Outcome of validating one upstream payload."""

    is_valid: bool = False
    errors: List[str] = field(default_factory=list)
    sanitized_data: Any = None
    customer_message: Optional[str] = None


@dataclass(frozen=True)
class PriceQuote:
    """Validated price for a single crypto asset or metal."""

    id: str
    display_name: str
    symbol: str
    price_usd: float
    change_24h_pct: float
    last_updated: str
    provenance: Provenance
    kind: str = "crypto"
    unit: Optional[str] = None
    market_cap: Optional[float] = None
    volume_24h: Optional[float] = None
    icon: Optional[str] = None

    def with_provenance(self, provenance: Provenance) -> "PriceQuote":
        return replace(self, provenance=provenance)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the quote to a JSON-friendly dictionary."""
        payload: Dict[str, Any] = {
            "id": self.id,
            "display_name": self.display_name,
            "symbol": self.symbol,
            "price_usd": self.price_usd,
            "change_24h_pct": self.change_24h_pct,
            "last_updated": self.last_updated,
            "provenance": self.provenance.value,
            "kind": self.kind,
        }
        if self.unit is not None:
            payload["unit"] = self.unit
        if self.market_cap is not None:
            payload["market_cap"] = self.market_cap
        if self.volume_24h is not None:
            payload["volume_24h"] = self.volume_24h
        if self.icon is not None:
            payload["icon"] = self.icon
        return payload


@dataclass
class QuoteResult:
    """What a domain service returns. Never carries an exception."""

    quotes: List[PriceQuote]
    from_cache: bool = False
    is_fallback: bool = False
    errors: List[str] = field(default_factory=list)
    customer_message: Optional[str] = None


@dataclass
class ServiceMetrics:
    """Running request counters for one transport client."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    average_response_time_ms: float = 0.0
    error_rate_pct: float = 0.0
    cache_hit_rate_pct: float = 0.0
    cache_hits: int = 0
    cache_lookups: int = 0
    last_error_time: Optional[float] = None

    def record_request(self, duration_ms: float, success: bool, now: Optional[float] = None) -> None:
        self.total_requests += 1
        if success:
            self.successful_requests += 1
        else:
            self.failed_requests += 1
            self.last_error_time = now

        # Incremental mean: avg' = (avg * (n - 1) + sample) / n
        n = self.total_requests
        self.average_response_time_ms = (self.average_response_time_ms * (n - 1) + duration_ms) / n
        self.error_rate_pct = self.failed_requests / n * 100

    def record_cache_lookup(self, hit: bool) -> None:
        self.cache_lookups += 1
        if hit:
            self.cache_hits += 1
        self.cache_hit_rate_pct = self.cache_hits / self.cache_lookups * 100

    def reset(self) -> None:
        fresh = ServiceMetrics()
        for name in self.__dataclass_fields__:
            setattr(self, name, getattr(fresh, name))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "average_response_time_ms": round(self.average_response_time_ms, 2),
            "error_rate_pct": round(self.error_rate_pct, 2),
            "cache_hit_rate_pct": round(self.cache_hit_rate_pct, 2),
            "cache_hits": self.cache_hits,
            "cache_lookups": self.cache_lookups,
            "last_error_time": self.last_error_time,
        }


@dataclass
class MarketDataSnapshot:
    """Merged crypto and metal quotes plus fetch provenance."""

    cryptos: List[PriceQuote]
    metals: List[PriceQuote]
    performance: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cryptos": [quote.to_dict() for quote in self.cryptos],
            "metals": [quote.to_dict() for quote in self.metals],
            "performance": dict(self.performance),
        }


@dataclass
class MarketDataState:
    """Last-known-good data handed to the UI layer."""

    crypto_prices: List[PriceQuote] = field(default_factory=list)
    metal_prices: List[PriceQuote] = field(default_factory=list)
    is_loading: bool = False
    error: Optional[str] = None
    performance_metrics: Dict[str, Any] = field(default_factory=dict)
    last_fetch: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "crypto_prices": [quote.to_dict() for quote in self.crypto_prices],
            "metal_prices": [quote.to_dict() for quote in self.metal_prices],
            "is_loading": self.is_loading,
            "error": self.error,
            "performance_metrics": dict(self.performance_metrics),
            "last_fetch": self.last_fetch,
        }
