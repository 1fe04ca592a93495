"""
Business licence map service.

Fronts a municipal open-data business licence dataset, enforcing:
- Caching: shared Redis store with an in-process fallback
- Privacy: public whitelist projection vs. authenticated staff projection
- Geography: bounding-box and point+radius queries

Structure:
- app.main: FastAPI app, routes, and middleware wiring.
- app.geo: Pure distance and bounding-box helpers.
- app.caching: CacheStore and its backends.
- app.adapters: Upstream data source contract and implementations.
- app.transformers: Public and staff projections.
- app.domain: Query orchestration and caller identity.
- app.ratelimit: Per-client fixed-window limiter.
"""
