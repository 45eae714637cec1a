"""Observability: Prometheus metrics and optional Sentry error tracking."""
