"""
Prometheus metrics for the digest relay.

Labels are restricted to low-cardinality values:
- stream:    "partial_match", "match_frames"
- entity:    "player", "club"
- provider:  "openai", "gemini"
- kind:      "text", "image"
- status / result / error_code: small fixed sets

Fixture ids, player ids, names and URLs are never used as labels. Use logs
for per-fixture debugging.
"""

import logging

from prometheus_client import (
    Counter,
    Histogram,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY,
)

logger = logging.getLogger(__name__)

# =============================================================================
# REQUEST METRICS
# =============================================================================

digest_requests_total = Counter(
    "digest_requests_total",
    "Digest requests by terminal outcome",
    ["status"],
)

digest_duration_seconds = Histogram(
    "digest_duration_seconds",
    "End-to-end digest workflow duration",
    buckets=[0.5, 1, 2.5, 5, 10, 20, 30, 60, 120],
)

# =============================================================================
# STREAM METRICS
# =============================================================================

stream_messages_total = Counter(
    "stream_messages_total",
    "Messages received from match event streams",
    ["stream", "result"],  # result: accepted | skipped
)

stream_errors_total = Counter(
    "stream_errors_total",
    "Match event stream failures",
    ["stream", "error_code"],
)

# =============================================================================
# IDENTITY METRICS
# =============================================================================

identity_lookups_total = Counter(
    "identity_lookups_total",
    "Identity lookups by outcome",
    ["entity", "result"],  # result: cache_hit | resolved | not_found | error
)

# =============================================================================
# COMPLETION METRICS
# =============================================================================

completion_requests_total = Counter(
    "completion_requests_total",
    "Requests to generative completion providers",
    ["provider", "kind", "status"],
)

completion_latency_ms = Histogram(
    "completion_latency_ms",
    "Completion request latency in milliseconds",
    ["provider", "kind"],
    buckets=[100, 250, 500, 1000, 2500, 5000, 10000, 30000, 60000],
)


def record_digest(status: str, duration_seconds: float) -> None:
    """Record a finished digest workflow."""
    try:
        digest_requests_total.labels(status=status).inc()
        digest_duration_seconds.observe(duration_seconds)
    except Exception as e:
        logger.warning(f"Failed to record digest metric: {e}")


def record_stream_message(stream: str, accepted: bool) -> None:
    try:
        stream_messages_total.labels(
            stream=stream,
            result="accepted" if accepted else "skipped",
        ).inc()
    except Exception as e:
        logger.warning(f"Failed to record stream message metric: {e}")


def record_stream_error(stream: str, error_code: str) -> None:
    try:
        stream_errors_total.labels(stream=stream, error_code=error_code).inc()
    except Exception as e:
        logger.warning(f"Failed to record stream error metric: {e}")


def record_identity_lookup(entity: str, result: str) -> None:
    try:
        identity_lookups_total.labels(entity=entity, result=result).inc()
    except Exception as e:
        logger.warning(f"Failed to record identity lookup metric: {e}")


def record_completion(provider: str, kind: str, status: str, latency_ms: float) -> None:
    """Record a completion/image request with its latency."""
    try:
        completion_requests_total.labels(provider=provider, kind=kind, status=status).inc()
        completion_latency_ms.labels(provider=provider, kind=kind).observe(latency_ms)
    except Exception as e:
        logger.warning(f"Failed to record completion metric: {e}")


def get_metrics_text() -> tuple[str, str]:
    """
    Generate Prometheus metrics text output.

    Returns:
        Tuple of (content, content_type)
    """
    return generate_latest(REGISTRY).decode("utf-8"), CONTENT_TYPE_LATEST
