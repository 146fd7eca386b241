"""
Structured customer-service events.
"""

from typing import Any, Optional

from shared.metrics import MetricsCollector


def log_customer_service_event(logger,
                               service: str,
                               event_type: str,
                               data: Any = None,
                               *,
                               customer_impact: str = "medium",
                               business_impact: Optional[str] = None,
                               metrics: Optional[MetricsCollector] = None) -> None:
    """Log an event tagged with its customer and business impact.

    ``business_impact`` defaults to ``high`` for error events and ``low``
    otherwise.
    """
    if business_impact is None:
        business_impact = "high" if "error" in event_type else "low"

    logger.info(
        "Customer service event",
        service=service,
        event_type=event_type,
        data=data,
        customer_impact=customer_impact,
        business_impact=business_impact
    )

    if metrics:
        metrics.record_business_event(event_type, service=service)
