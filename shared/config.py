"""
Shared configuration management for the market-data service.
"""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings.

    Every field can be overridden through a ``MARKET_``-prefixed environment
    variable (``MARKET_CRYPTO_CACHE_TTL_SECONDS=60``) or a ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="MARKET_",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = "local"
    log_level: str = "info"

    # Upstream providers
    crypto_api_url: str = "https://api.coingecko.com/api/v3"
    metals_api_url: str = "https://api.metals.live/v1"
    coingecko_api_key: Optional[str] = None
    trusted_domains: List[str] = Field(default_factory=lambda: [
        "api.coingecko.com",
        "api.metals.live",
        "timevaultai.com",
    ])

    # Crypto transport: volatile prices, short cache, high priority
    crypto_timeout_seconds: float = 12.0
    crypto_retries: int = 3
    crypto_cache_ttl_seconds: float = 120.0
    crypto_priority: str = "high"
    tracked_coins: List[str] = Field(default_factory=lambda: [
        "bitcoin", "ethereum", "binancecoin", "cardano", "solana",
        "polkadot", "dogecoin", "avalanche-2", "polygon", "chainlink",
    ])

    # Metals transport: slower moving spot prices, longer cache
    metals_timeout_seconds: float = 10.0
    metals_retries: int = 2
    metals_cache_ttl_seconds: float = 600.0
    metals_priority: str = "normal"
    tracked_metals: List[str] = Field(default_factory=lambda: ["gold", "silver"])

    # Shared transport behaviour
    cache_max_entries: int = 100
    stale_ttl_seconds: float = 86400.0
    rate_limit_per_minute: int = 100
    rate_limit_burst: int = 20
    retry_base_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 5.0
    max_request_bytes: int = 1048576
    max_response_bytes: int = 1048576
    customer_facing: bool = True

    # Scheduler
    scheduler_enabled: bool = True


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
