"""
Sentry integration for error tracking.

Provides:
- Automatic exception capture with stacktrace
- FastAPI request context
- Fixture context tagging for digest workflows

Security:
- Credential headers are scrubbed before sending
- Query strings with keys/tokens are redacted
- Request bodies are NOT captured
"""

import logging
import os
import re
from contextlib import contextmanager
from typing import Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

logger = logging.getLogger(__name__)

_sentry_initialized = False

SENSITIVE_HEADERS = ("authorization", "x-api-key", "x-goog-api-key", "cookie", "set-cookie")


def scrub_sensitive_data(event: dict, hint: dict) -> Optional[dict]:
    """Scrub credentials from Sentry events before sending."""
    try:
        request = event.get("request") or {}

        headers = request.get("headers") or {}
        for key in list(headers.keys()):
            if key.lower() in SENSITIVE_HEADERS:
                headers[key] = "[REDACTED]"
        request["headers"] = headers

        query_string = request.get("query_string")
        if isinstance(query_string, str) and query_string:
            request["query_string"] = re.sub(
                r"(?i)(token|api_key|key|secret)=([^&]*)",
                r"\1=[REDACTED]",
                query_string,
            )

        if "data" in request:
            request["data"] = "[SCRUBBED]"

        event["request"] = request

    except Exception as e:
        logger.warning(f"Sentry scrubbing error (continuing): {e}")

    return event


def init_sentry() -> bool:
    """
    Initialize Sentry SDK if SENTRY_DSN is configured.

    Environment variables:
    - SENTRY_DSN: Required. Sentry DSN from project settings.
    - SENTRY_TRACES_SAMPLE_RATE: Optional. Default 0.05 (5%).
    - SENTRY_ENABLED: Optional. Set to 'false' to disable even with DSN.
    - SENTRY_ENVIRONMENT: Optional. Default 'development'.
    """
    global _sentry_initialized

    if _sentry_initialized:
        return True

    if os.getenv("SENTRY_ENABLED", "true").lower() == "false":
        logger.info("Sentry disabled via SENTRY_ENABLED=false")
        return False

    dsn = os.getenv("SENTRY_DSN")
    if not dsn:
        logger.info("Sentry not configured (SENTRY_DSN not set)")
        return False

    environment = os.getenv("SENTRY_ENVIRONMENT", "development")
    traces_sample_rate = float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.05"))

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            LoggingIntegration(level=logging.ERROR, event_level=logging.ERROR),
        ],
        traces_sample_rate=traces_sample_rate,
        send_default_pii=False,
        before_send=scrub_sensitive_data,
    )

    _sentry_initialized = True
    logger.info(f"Sentry initialized: env={environment}, traces_sample_rate={traces_sample_rate}")
    return True


def is_sentry_enabled() -> bool:
    return _sentry_initialized


@contextmanager
def sentry_fixture_context(fixture_id: str, **extra_tags):
    """
    Tag Sentry events raised inside the block with the fixture being digested.

    Exceptions are captured with full context and re-raised.
    """
    if not _sentry_initialized:
        yield
        return

    with sentry_sdk.new_scope() as scope:
        scope.set_context("fixture", {"fixture_id": fixture_id, **extra_tags})
        for key, value in extra_tags.items():
            if value is not None:
                scope.set_tag(key, str(value))
        try:
            yield scope
        except Exception as e:
            sentry_sdk.capture_exception(e)
            raise
