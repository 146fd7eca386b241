"""
Rate limiting package.

Holds the sliding-window request tracker that keeps each transport client
inside its upstream's per-minute budget, with priority tiers.
"""

from .rate_tracker import RateTracker

__all__ = ["RateTracker"]
