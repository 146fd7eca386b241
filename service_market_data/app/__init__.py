"""
Market data acquisition service for TimeVault.

Fetches live cryptocurrency and precious-metal prices from third-party
APIs and always hands back validated data, falling back to reference
prices when an upstream misbehaves.

Structure:
- app.main: FastAPI app, routes, and scheduler wiring.
- app.caching: Per-client TTL/LRU response cache.
- app.ratelimit: Sliding-window request tracker with priority tiers.
- app.validation: Boundary models and payload validation/sanitisation.
- app.transport: HTTP client composing cache, tracker, retries, coalescing.
- app.services: Crypto and metals price services, reference data, the
  aggregator (parallel fan-out and health classification) and the
  health-driven adaptive scheduler.
"""
