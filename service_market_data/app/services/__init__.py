"""
Domain services and orchestration.

``CryptoPriceService`` and ``MetalsPriceService`` each own a transport
client and turn every handled failure into reference prices.
``MarketDataAggregator`` fans out to both; ``AdaptiveScheduler`` polls the
aggregator on a health-driven interval.
"""

from .aggregator import MarketDataAggregator
from .crypto_service import CryptoPriceService
from .metals_service import METAL_SYMBOLS, MetalsPriceService
from .reference_data import emergency_crypto_quotes, emergency_metal_quotes, fallback_crypto_quotes, fallback_metal_quote
from .health import compute_health_status, compute_polling_interval
from .scheduler import AdaptiveScheduler

__all__ = [
    "AdaptiveScheduler",
    "CryptoPriceService",
    "MarketDataAggregator",
    "METAL_SYMBOLS",
    "MetalsPriceService",
    "compute_health_status",
    "compute_polling_interval",
    "emergency_crypto_quotes",
    "emergency_metal_quotes",
    "fallback_crypto_quotes",
    "fallback_metal_quote",
]
