"""
Structural and plausibility validation of upstream payloads.

Every public function returns a :class:`ValidationResult` and never raises.
``sanitized_data`` is the only form of a payload allowed to reach the cache
or a caller.
"""

import math
import re
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from shared.logging import get_logger

from ..models import AssetDomain, ValidationResult, format_iso, utc_now
from .payloads import CryptoRawPayload, MetalHistoryPoint, MetalRawPayload


logger = get_logger("market_data.validator")

# Plausible USD/oz spot ranges; anything outside is treated as bad data
METAL_PRICE_BANDS: Dict[AssetDomain, Tuple[float, float]] = {
    AssetDomain.GOLD: (1000.0, 5000.0),
    AssetDomain.SILVER: (10.0, 100.0),
    AssetDomain.PLATINUM: (500.0, 2000.0),
    AssetDomain.PALLADIUM: (1000.0, 4000.0),
}

MAX_HISTORY_POINTS = 1000

_DANGEROUS_PATTERN = re.compile(
    r"<script|<iframe|<object|<embed|<link|<meta|<style|javascript:|vbscript:|data:",
    re.IGNORECASE,
)
_MARKUP_CHARS = re.compile(r"[<>\"'&]")
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def sanitize_text(value: Any, max_length: int) -> str:
    """Strip script-injection patterns and markup characters, then truncate."""
    if value is None:
        return ""
    text = str(value)
    text = _DANGEROUS_PATTERN.sub("", text)
    text = _MARKUP_CHARS.sub("", text)
    text = _CONTROL_CHARS.sub("", text)
    return text.strip()[:max_length]


def _sanitize_icon(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    url = value.strip()
    if not url.lower().startswith(("https://", "http://")):
        return None
    if _DANGEROUS_PATTERN.search(url) or _MARKUP_CHARS.search(url):
        return None
    return url[:500]


def _normalize_timestamp(value: Any) -> str:
    """Best-effort conversion of upstream timestamps to ISO-8601."""
    if value is None or value == "":
        return format_iso(utc_now())

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = float(value)
        # Epoch values above 1e12 are milliseconds
        if seconds > 1e12:
            seconds /= 1000.0
        try:
            return format_iso(datetime.fromtimestamp(seconds, tz=timezone.utc))
        except (OverflowError, OSError, ValueError):
            return format_iso(utc_now())

    text = sanitize_text(value, 40).replace(" ", "T")
    try:
        return format_iso(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        return format_iso(utc_now())


def _sanitize_crypto_asset(coin: CryptoRawPayload) -> Dict[str, Any]:
    return {
        "id": sanitize_text(coin.id, 50).lower(),
        "name": sanitize_text(coin.name, 100),
        "symbol": sanitize_text(coin.symbol, 10).upper(),
        "price": max(0.0, coin.current_price),
        "price_change_24h": coin.price_change_percentage_24h or 0.0,
        "market_cap": max(0.0, coin.market_cap or 0.0),
        "volume_24h": max(0.0, coin.total_volume or 0.0),
        "icon": _sanitize_icon(coin.image),
        "last_updated": format_iso(utc_now()),
    }


def validate_crypto_data(data: Any) -> ValidationResult:
    """Validate a list of coin records, dropping malformed elements."""
    result = ValidationResult()

    if not isinstance(data, list):
        result.errors.append("Invalid data format received")
        result.customer_message = "Unable to load cryptocurrency prices. Using cached data."
        return result

    validated: List[Dict[str, Any]] = []
    for index, item in enumerate(data):
        if not isinstance(item, Mapping):
            result.errors.append(f"Record {index} is not an object")
            continue
        try:
            coin = CryptoRawPayload.model_validate(dict(item))
        except PydanticValidationError as exc:
            result.errors.append(f"Record {index} rejected: {exc.error_count()} invalid field(s)")
            continue

        asset = _sanitize_crypto_asset(coin)
        if asset["price"] <= 0 or not asset["id"] or not asset["name"]:
            result.errors.append(f"Record {index} rejected: missing id, name or positive price")
            continue
        validated.append(asset)

    if not validated:
        result.errors.append("No valid cryptocurrency data found")
        result.customer_message = "Cryptocurrency data temporarily unavailable. Please try again."
        return result

    result.is_valid = True
    result.sanitized_data = validated
    return result


def validate_metals_data(data: Any, metal: Union[AssetDomain, str]) -> ValidationResult:
    """Validate a single-metal spot record against its plausibility band."""
    result = ValidationResult()

    try:
        domain = AssetDomain(metal)
    except ValueError:
        result.errors.append(f"Unknown metal: {sanitize_text(metal, 20)}")
        result.customer_message = "Metal prices temporarily unavailable. Using last known prices."
        return result

    label = domain.value
    if not isinstance(data, Mapping):
        result.errors.append(f"Invalid {label} data format")
        result.customer_message = f"{label.title()} prices temporarily unavailable. Using last known prices."
        return result

    try:
        record = MetalRawPayload.model_validate(dict(data))
    except PydanticValidationError:
        record = None

    if record is None or not math.isfinite(record.price) or record.price <= 0:
        result.errors.append(f"Invalid {label} price value")
        result.customer_message = f"{label.title()} price data issue detected. Using reliable fallback."
        return result

    band = METAL_PRICE_BANDS.get(domain)
    if band and not band[0] <= record.price <= band[1]:
        result.errors.append(f"{label} price outside expected range: ${record.price}")
        result.customer_message = f"{label.title()} price appears unusual. Verifying data quality."
        return result

    result.is_valid = True
    result.sanitized_data = {
        "metal": label,
        "price": round(record.price, 2),
        "unit": "oz",
        "last_updated": _normalize_timestamp(record.timestamp),
        "change_24h": record.change24h or 0.0,
    }
    return result


def validate_metal_history(data: Any, metal: Union[AssetDomain, str]) -> ValidationResult:
    """Validate a historical price series for charting."""
    result = ValidationResult()

    if not isinstance(data, list):
        result.errors.append(f"Invalid {sanitize_text(metal, 20)} history format")
        result.customer_message = "Historical prices temporarily unavailable."
        return result

    points: List[Dict[str, Any]] = []
    for item in data:
        if not isinstance(item, Mapping):
            continue
        try:
            point = MetalHistoryPoint.model_validate(dict(item))
        except PydanticValidationError:
            continue
        if not point.price or point.price <= 0:
            continue
        points.append({
            "date": _normalize_timestamp(point.date),
            "price": point.price,
            "volume": max(0.0, point.volume or 0.0),
        })
        if len(points) >= MAX_HISTORY_POINTS:
            break

    result.is_valid = True
    result.sanitized_data = points
    return result


def validate_payload(data: Any, domain: Union[AssetDomain, str]) -> ValidationResult:
    """Dispatch on the domain tag."""
    try:
        tag = AssetDomain(domain)
    except ValueError:
        return ValidationResult(
            errors=[f"Unknown domain: {sanitize_text(domain, 20)}"],
            customer_message="Price data temporarily unavailable.",
        )

    if tag is AssetDomain.CRYPTO:
        return validate_crypto_data(data)
    return validate_metals_data(data, tag)


def validate_user_input(value: Any, kind: str) -> ValidationResult:
    """Validate calculator and search input with customer-friendly feedback."""
    if kind == "amount":
        return _validate_amount(value)
    if kind == "hourly_wage":
        return _validate_hourly_wage(value)
    if kind == "search":
        return _validate_search_query(value)

    logger.warning("Unknown input validation type", kind=kind)
    return ValidationResult(
        errors=["Unknown validation type"],
        customer_message="Input validation error. Please try again.",
    )


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _validate_amount(amount: Any) -> ValidationResult:
    number = _as_number(amount)
    if number is None:
        return ValidationResult(errors=["Amount must be a number"],
                                customer_message="Please enter a valid number.")
    if number < 0:
        return ValidationResult(errors=["Amount cannot be negative"],
                                customer_message="Amount must be positive.")
    if number > 1_000_000_000:
        return ValidationResult(errors=["Amount too large"],
                                customer_message="Please enter a smaller amount.")
    return ValidationResult(is_valid=True, sanitized_data=round(number, 8))


def _validate_hourly_wage(wage: Any) -> ValidationResult:
    number = _as_number(wage)
    if number is None:
        return ValidationResult(errors=["Hourly wage must be a number"],
                                customer_message="Please enter a valid hourly wage.")
    if number <= 0:
        return ValidationResult(errors=["Hourly wage must be positive"],
                                customer_message="Hourly wage must be greater than $0.")
    if number > 10_000:
        return ValidationResult(errors=["Hourly wage seems unusually high"],
                                customer_message="Please verify your hourly wage amount.")
    return ValidationResult(is_valid=True, sanitized_data=round(number, 2))


def _validate_search_query(query: Any) -> ValidationResult:
    if not isinstance(query, str):
        return ValidationResult(errors=["Search query must be text"],
                                customer_message="Please enter a search term.")

    trimmed = query.strip()
    if len(trimmed) < 1:
        return ValidationResult(errors=["Search query too short"],
                                customer_message="Please enter at least one character.")
    if len(trimmed) > 100:
        return ValidationResult(errors=["Search query too long"],
                                customer_message="Search term is too long. Please shorten it.")

    sanitized = sanitize_text(trimmed, 100)
    if not sanitized:
        return ValidationResult(errors=["Search query empty after sanitisation"],
                                customer_message="Please enter a search term.")
    return ValidationResult(is_valid=True, sanitized_data=sanitized)
