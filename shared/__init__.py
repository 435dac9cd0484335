"""
Shared utilities for the encrypted session layer.

This package aggregates common building blocks consumed by the services:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- base_service: FastAPI service scaffolding with health and metrics

Any cross-service logic should live here to avoid import cycles across
service packages. Do not import from service packages into shared/.
"""
