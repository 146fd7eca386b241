"""
Shared utilities for the TimeVault market-data service.

This package aggregates common building blocks consumed by the service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry configuration and backoff state
- base_service: FastAPI application scaffolding

Any cross-cutting logic should live here to avoid import cycles. Do not
import from service_* packages into shared/.
"""
