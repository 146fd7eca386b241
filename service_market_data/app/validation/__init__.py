"""
Validation package.

Everything an upstream API returns passes through here before it can be
cached or shown. Raw shapes are parsed into tagged boundary models and
turned into sanitised records; validators report problems as values and
never raise.
"""

from .payloads import CryptoRawPayload, MetalHistoryPoint, MetalRawPayload
from .validator import (
    METAL_PRICE_BANDS,
    sanitize_text,
    validate_crypto_data,
    validate_metal_history,
    validate_metals_data,
    validate_payload,
    validate_user_input,
)

__all__ = [
    "CryptoRawPayload",
    "MetalHistoryPoint",
    "MetalRawPayload",
    "METAL_PRICE_BANDS",
    "sanitize_text",
    "validate_crypto_data",
    "validate_metal_history",
    "validate_metals_data",
    "validate_payload",
    "validate_user_input",
]
