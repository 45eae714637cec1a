"""
Shared result types and retry policy for completion providers.

Providers never raise on API failures: they return a result with status
ERROR or TIMEOUT, and complete_with_retries decides whether to try again.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol

from matchdigest.errors import CompletionError

logger = logging.getLogger(__name__)

STATUS_COMPLETED = "COMPLETED"
STATUS_ERROR = "ERROR"
STATUS_TIMEOUT = "TIMEOUT"

# Backoff between attempts; the last delay repeats for larger budgets
BACKOFF_DELAYS = [2, 6]


@dataclass
class CompletionResult:
    """Result from a text completion call."""

    status: str  # COMPLETED, ERROR, TIMEOUT
    text: str
    tokens_in: int = 0
    tokens_out: int = 0
    exec_ms: int = 0
    model_version: str = ""
    raw_output: dict = field(default_factory=dict)
    error: Optional[str] = None
    finish_reason: Optional[str] = None
    retryable: bool = False  # 5xx / timeout / connection errors


@dataclass
class ImageResult:
    """Result from an image generation call."""

    status: str
    url: Optional[str] = None
    exec_ms: int = 0
    revised_prompt: Optional[str] = None
    error: Optional[str] = None


class CompletionProvider(Protocol):
    """Single-turn text completion collaborator."""

    name: str

    async def complete(self, prompt: str) -> CompletionResult:
        ...


class ImageProvider(Protocol):
    """Text-to-image collaborator."""

    name: str

    async def generate_image(self, prompt: str) -> ImageResult:
        ...


async def complete_with_retries(
    provider: CompletionProvider,
    prompt: str,
    max_retries: int = 0,
) -> CompletionResult:
    """
    Run a completion, retrying retryable failures up to max_retries times.

    Raises:
        CompletionError: the final attempt did not complete with text.
    """
    last: Optional[CompletionResult] = None

    for attempt in range(max_retries + 1):
        result = await provider.complete(prompt)
        if result.status == STATUS_COMPLETED and result.text.strip():
            if attempt:
                logger.info(f"[LLM] {provider.name} completed on attempt {attempt + 1}")
            return result

        last = result
        if result.status == STATUS_COMPLETED:
            # Empty output is not a transport problem; retrying will not help
            break
        if not result.retryable or attempt >= max_retries:
            break

        delay = BACKOFF_DELAYS[min(attempt, len(BACKOFF_DELAYS) - 1)]
        logger.warning(
            f"[LLM] {provider.name} {result.status.lower()}: {result.error}, "
            f"retrying in {delay}s (attempt {attempt + 1}/{max_retries + 1})"
        )
        await asyncio.sleep(delay)

    if last is not None and last.status == STATUS_COMPLETED:
        raise CompletionError(f"{provider.name} returned empty output")
    raise CompletionError(f"{provider.name} {last.status.lower()}: {last.error}")
