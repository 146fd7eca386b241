"""
Boundary models for untrusted upstream payloads.
"""

import math
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, field_validator


def _lenient_float(value: Any) -> Optional[float]:
    """Best-effort numeric coercion; junk becomes None instead of an error."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


class CryptoRawPayload(BaseModel):
    """One coin record from the market-data provider."""

    model_config = ConfigDict(extra="ignore")

    kind: Literal["crypto"] = "crypto"
    id: str
    name: str
    symbol: str = ""
    current_price: float
    price_change_percentage_24h: Optional[float] = None
    market_cap: Optional[float] = None
    total_volume: Optional[float] = None
    image: Optional[Any] = None

    @field_validator("id", "name", "symbol", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("current_price")
    @classmethod
    def _finite_price(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("price must be finite")
        return value

    @field_validator("price_change_percentage_24h", "market_cap", "total_volume", mode="before")
    @classmethod
    def _optional_number(cls, value: Any) -> Optional[float]:
        return _lenient_float(value)


class MetalRawPayload(BaseModel):
    """Single-metal spot record from the metals provider."""

    model_config = ConfigDict(extra="ignore")

    kind: Literal["metal"] = "metal"
    price: float
    change24h: Optional[float] = None
    timestamp: Optional[Union[float, str]] = None

    @field_validator("change24h", mode="before")
    @classmethod
    def _optional_change(cls, value: Any) -> Optional[float]:
        return _lenient_float(value)


class MetalHistoryPoint(BaseModel):
    """One point of a historical metal price series."""

    model_config = ConfigDict(extra="ignore")

    date: Optional[str] = None
    price: Optional[float] = None
    volume: Optional[float] = None

    @field_validator("price", "volume", mode="before")
    @classmethod
    def _optional_number(cls, value: Any) -> Optional[float]:
        return _lenient_float(value)

    @field_validator("date", mode="before")
    @classmethod
    def _date_text(cls, value: Any) -> Optional[str]:
        return None if value is None else str(value)
