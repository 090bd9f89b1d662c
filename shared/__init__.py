"""
Shared utilities for the JWT proxy sidecar.

- config: Base settings via pydantic-settings and config file loading
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- base_service: FastAPI service shell (health, metrics, error handlers)
"""
