"""
Response caching package.

Holds the in-process TTL cache owned by each transport client. Entries are
either valid or expired; there is no partial expiry.
"""

from .response_cache import CacheEntry, ResponseCache

__all__ = ["CacheEntry", "ResponseCache"]
