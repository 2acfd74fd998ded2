"""
Shared utilities for the self-hosted cache gateway.

This package aggregates common building blocks consumed by the gateway:

- config: Gateway configuration via pydantic-settings
- logging: Structured logging with session/request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses

Do not import from service packages into shared/.
"""
