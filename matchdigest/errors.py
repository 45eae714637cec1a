"""
Error taxonomy for the digest workflow.

Every error that can end a request derives from DigestError and carries the
HTTP status and the public error string. IdentityLookupError is the only one
that is recovered locally (the raw id is shown instead of a name).
"""

from typing import Optional


class DigestError(Exception):
    """Base class for errors that terminate a digest request."""

    status_code: int = 500
    error: str = "Internal Server Error"
    error_code: str = "internal_error"

    def __init__(self, details: Optional[str] = None, error: Optional[str] = None):
        self.details = details
        if error is not None:
            self.error = error
        super().__init__(details or self.error)

    def to_payload(self) -> dict:
        payload = {"error": self.error}
        if self.details:
            payload["details"] = self.details
        return payload


class FixtureValidationError(DigestError):
    """Missing or malformed fixture id."""

    status_code = 400
    error = "Match ID is required."
    error_code = "validation_error"


class UpstreamStreamError(DigestError):
    """Subscription transport failure; no retry is attempted."""

    status_code = 500
    error = "Error reading match event stream"
    error_code = "upstream_stream_error"


class StreamTimeoutError(UpstreamStreamError):
    """No qualifying message arrived before the stream timeout."""

    status_code = 504
    error = "Timed out waiting for match event stream"
    error_code = "stream_timeout"


class MalformedPayloadError(UpstreamStreamError):
    """A stream payload is missing fields the workflow depends on."""

    error = "Malformed match event payload"
    error_code = "malformed_payload"


class IdentityLookupError(DigestError):
    """Per-id GraphQL lookup failure. Recovered locally."""

    error = "Identity lookup failed"
    error_code = "identity_lookup_error"


class CompletionError(DigestError):
    """Text completion failed (after the configured retry budget)."""

    status_code = 500
    error = "Error querying completion API"
    error_code = "completion_error"


class ImageGenerationError(CompletionError):
    """Image generation failed. Fatal only when IMAGE_FAILURE_FATAL is set."""

    error = "Error querying image generation API"
    error_code = "image_generation_error"


class EmptyNarrativeError(DigestError):
    """The possession frames rendered to no text; no completion is requested."""

    status_code = 504
    error = "No possession frames available to narrate"
    error_code = "empty_narrative"
