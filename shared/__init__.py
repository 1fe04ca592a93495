"""
Shared utilities for the business licence map services.

This package aggregates common building blocks consumed by the service
packages:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry decorators with exponential backoff
- circuit_breaker: Readiness tracking for flaky dependencies
- base_service: FastAPI application scaffolding
- test_helpers: Record factories, fake adapters and token minting for tests

Runtime modules never import from service packages; only test_helpers does.
"""
