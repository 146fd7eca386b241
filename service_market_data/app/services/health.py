"""
Health classification and polling cadence.
"""

from typing import Dict, List

from ..models import HealthStatus


# (error rate %, average response ms) lower bounds, checked worst first
HEALTH_THRESHOLDS = (
    (HealthStatus.CRITICAL, 50.0, 5000.0),
    (HealthStatus.DEGRADED, 10.0, 1500.0),
    (HealthStatus.GOOD, 2.0, 500.0),
)

POLLING_INTERVALS: Dict[HealthStatus, float] = {
    HealthStatus.GOOD: 45.0,
    HealthStatus.DEGRADED: 90.0,
    HealthStatus.CRITICAL: 180.0,
}
EXCELLENT_INTERVAL = 30.0
EXCELLENT_CACHED_INTERVAL = 60.0
CACHE_HIT_RATE_THRESHOLD = 80.0

RECOMMENDATIONS: Dict[HealthStatus, List[str]] = {
    HealthStatus.CRITICAL: [
        "Enable offline mode",
        "Increase cache duration",
        "Use fallback data sources",
    ],
    HealthStatus.DEGRADED: [
        "Reduce API call frequency",
        "Implement request batching",
        "Check network connectivity",
    ],
    HealthStatus.GOOD: [
        "Consider CDN implementation",
        "Optimize cache strategies",
    ],
    HealthStatus.EXCELLENT: ["Performance is optimal"],
}

HEALTH_GAUGE_VALUES = {
    HealthStatus.EXCELLENT: 0,
    HealthStatus.GOOD: 1,
    HealthStatus.DEGRADED: 2,
    HealthStatus.CRITICAL: 3,
}


def compute_health_status(average_response_time_ms: float, error_rate_pct: float) -> HealthStatus:
    """Classify API health from latency and error rate."""
    for status, error_floor, latency_floor in HEALTH_THRESHOLDS:
        if error_rate_pct >= error_floor or average_response_time_ms >= latency_floor:
            return status
    return HealthStatus.EXCELLENT


def compute_polling_interval(health: HealthStatus, cache_hit_rate_pct: float) -> float:
    """Seconds until the next poll.

    Healthy APIs with a warm cache are polled less often since most polls
    would be served from cache anyway.
    """
    if health is HealthStatus.EXCELLENT:
        if cache_hit_rate_pct > CACHE_HIT_RATE_THRESHOLD:
            return EXCELLENT_CACHED_INTERVAL
        return EXCELLENT_INTERVAL
    return POLLING_INTERVALS[health]
