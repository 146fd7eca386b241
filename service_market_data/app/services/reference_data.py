"""
Built-in reference prices served when upstream data cannot be trusted.

Every builder stamps quotes with the current time and ``fallback``
provenance, so the tables can be served at any moment.
"""

from typing import Dict, Iterable, List, Optional, Tuple

from ..models import AssetDomain, PriceQuote, Provenance, format_iso, utc_now


# id -> (name, symbol, price, change_24h_pct, market_cap, volume_24h)
CRYPTO_REFERENCE: Dict[str, Tuple[str, str, float, float, float, float]] = {
    "bitcoin": ("Bitcoin", "BTC", 67500.0, 1.8, 1_330_000_000_000.0, 28_000_000_000.0),
    "ethereum": ("Ethereum", "ETH", 3750.0, -0.5, 450_000_000_000.0, 18_000_000_000.0),
    "binancecoin": ("BNB", "BNB", 615.0, 2.1, 89_000_000_000.0, 2_100_000_000.0),
    "solana": ("Solana", "SOL", 180.0, 3.2, 84_000_000_000.0, 2_800_000_000.0),
    "cardano": ("Cardano", "ADA", 0.52, -1.1, 18_000_000_000.0, 450_000_000.0),
}

METAL_REFERENCE: Dict[AssetDomain, Tuple[str, float]] = {
    AssetDomain.GOLD: ("XAU", 2385.0),
    AssetDomain.SILVER: ("XAG", 31.5),
    AssetDomain.PLATINUM: ("XPT", 980.0),
    AssetDomain.PALLADIUM: ("XPD", 1020.0),
}

EMERGENCY_CRYPTO_IDS = ("bitcoin", "ethereum")
EMERGENCY_METALS = (AssetDomain.GOLD, AssetDomain.SILVER)


def _crypto_quote(coin_id: str, *, flat_change: bool = False) -> PriceQuote:
    name, symbol, price, change, market_cap, volume = CRYPTO_REFERENCE[coin_id]
    return PriceQuote(
        id=coin_id,
        display_name=name,
        symbol=symbol,
        price_usd=price,
        change_24h_pct=0.0 if flat_change else change,
        last_updated=format_iso(utc_now()),
        provenance=Provenance.FALLBACK,
        kind="crypto",
        market_cap=market_cap,
        volume_24h=volume,
    )


def fallback_crypto_quotes(ids: Optional[Iterable[str]] = None) -> List[PriceQuote]:
    """Reference quotes for the requested coins.

    Unknown ids are skipped; if none of the requested ids are known the
    whole table is returned so callers never receive an empty list.
    """
    known = [coin_id for coin_id in (ids or ()) if coin_id in CRYPTO_REFERENCE]
    return [_crypto_quote(coin_id) for coin_id in (known or CRYPTO_REFERENCE)]


def fallback_metal_quote(metal: AssetDomain) -> PriceQuote:
    symbol, price = METAL_REFERENCE[metal]
    return PriceQuote(
        id=metal.value,
        display_name=metal.value.title(),
        symbol=symbol,
        price_usd=price,
        change_24h_pct=0.0,
        last_updated=format_iso(utc_now()),
        provenance=Provenance.FALLBACK,
        kind="metal",
        unit="oz",
    )


def emergency_crypto_quotes() -> List[PriceQuote]:
    """Minimal crypto set used when a domain service fails unexpectedly."""
    return [_crypto_quote(coin_id, flat_change=True) for coin_id in EMERGENCY_CRYPTO_IDS]


def emergency_metal_quotes() -> List[PriceQuote]:
    return [fallback_metal_quote(metal) for metal in EMERGENCY_METALS]
