"""
Shared utilities for the network gateway.

This package aggregates common building blocks used across the gateway:

- config: Gateway configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical exception types and responses
- retry: Caller-side retry driven by classified failures
- test_helpers: Manual clock and scripted transport for tests

Do not import from network_gateway into shared/, except from retry and
test_helpers which operate on gateway result values.
"""
