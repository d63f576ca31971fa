"""
Shared utilities for the metrics federation service.

This package aggregates common building blocks consumed by the service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with trace and cycle correlation
- metrics: Prometheus self-instrumentation
- tracing: OpenTelemetry tracing config
- errors: Canonical error types and responses
- retry: Retry with backoff for platform calls
- base_service: FastAPI service skeleton

Do not import from service_* packages into shared/.
"""
