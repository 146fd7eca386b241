"""
Upstream transport package.

Provides the HTTP client each domain service owns. It composes the
response cache, rate tracker and retry policy, coalesces duplicate GETs
and translates failures into customer-safe errors.
"""

from .client import TransportClient, TransportResponse, customer_message_for

__all__ = ["TransportClient", "TransportResponse", "customer_message_for"]
