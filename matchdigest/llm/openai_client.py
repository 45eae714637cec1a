"""
OpenAI API client for digest text and illustration images.

- Chat completions: single-turn, prompt sent as the system message
- Image generations: DALL-E, returns a hosted image URL
"""

import logging
import time
from typing import Optional

import httpx

from matchdigest.config import Settings, get_settings
from matchdigest.errors import CompletionError, ImageGenerationError
from matchdigest.llm.base import (
    STATUS_COMPLETED,
    STATUS_ERROR,
    STATUS_TIMEOUT,
    CompletionResult,
    ImageResult,
)
from matchdigest.telemetry.metrics import record_completion

logger = logging.getLogger(__name__)


class OpenAIClient:
    """Async client for the OpenAI REST API."""

    name = "openai"

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = settings or get_settings()
        self.api_key = (settings.OPENAI_API_KEY or "").strip()
        self.base_url = settings.OPENAI_BASE_URL.strip().rstrip("/")
        self.model = settings.OPENAI_MODEL
        self.image_model = settings.OPENAI_IMAGE_MODEL
        self.image_size = settings.OPENAI_IMAGE_SIZE
        self.timeout = settings.COMPLETION_TIMEOUT_SECONDS
        self.temperature = settings.COMPLETION_TEMPERATURE
        self.max_tokens = settings.COMPLETION_MAX_TOKENS
        self._transport = transport

        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def complete(self, prompt: str) -> CompletionResult:
        """
        Generate digest text for a prompt.

        Returns:
            CompletionResult; API failures are reported in status/error.

        Raises:
            CompletionError: OPENAI_API_KEY not configured.
        """
        if not self.api_key:
            raise CompletionError("OPENAI_API_KEY not configured")

        client = await self._get_client()
        payload = {
            "model": self.model,
            "messages": [{"role": "system", "content": prompt}],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }

        start_time = time.time()
        try:
            response = await client.post(f"{self.base_url}/chat/completions", json=payload)
            elapsed_ms = int((time.time() - start_time) * 1000)

            if response.status_code != 200:
                error_text = response.text[:500]
                logger.error(f"OpenAI API error {response.status_code}: {error_text}")
                record_completion(self.name, "text", STATUS_ERROR, elapsed_ms)
                return CompletionResult(
                    status=STATUS_ERROR,
                    text="",
                    exec_ms=elapsed_ms,
                    model_version=self.model,
                    error=f"HTTP {response.status_code}: {error_text}",
                    retryable=response.status_code >= 500 or response.status_code == 429,
                )

            try:
                data = response.json()
                choice = (data.get("choices") or [{}])[0]
                text = (choice.get("message") or {}).get("content") or ""
                usage = data.get("usage") or {}
                tokens_in = usage.get("prompt_tokens", 0)
                tokens_out = usage.get("completion_tokens", 0)
                if not isinstance(text, str):
                    raise TypeError(f"content is {type(text).__name__}")
            except (ValueError, KeyError, TypeError, AttributeError, IndexError) as e:
                logger.error(f"OpenAI API returned an invalid body: {e}")
                record_completion(self.name, "text", STATUS_ERROR, elapsed_ms)
                return CompletionResult(
                    status=STATUS_ERROR,
                    text="",
                    exec_ms=elapsed_ms,
                    model_version=self.model,
                    error=f"invalid response body: {e}",
                )

            record_completion(self.name, "text", STATUS_COMPLETED, elapsed_ms)
            return CompletionResult(
                status=STATUS_COMPLETED,
                text=text,
                tokens_in=tokens_in,
                tokens_out=tokens_out,
                exec_ms=elapsed_ms,
                model_version=data.get("model", self.model),
                raw_output=data,
                finish_reason=choice.get("finish_reason"),
            )

        except httpx.TimeoutException:
            elapsed_ms = int((time.time() - start_time) * 1000)
            logger.error(f"OpenAI API timeout after {elapsed_ms}ms")
            record_completion(self.name, "text", STATUS_TIMEOUT, elapsed_ms)
            return CompletionResult(
                status=STATUS_TIMEOUT,
                text="",
                exec_ms=elapsed_ms,
                model_version=self.model,
                error="Request timed out",
                retryable=True,
            )
        except httpx.HTTPError as e:
            elapsed_ms = int((time.time() - start_time) * 1000)
            logger.error(f"OpenAI API transport error: {e}")
            record_completion(self.name, "text", STATUS_ERROR, elapsed_ms)
            return CompletionResult(
                status=STATUS_ERROR,
                text="",
                exec_ms=elapsed_ms,
                model_version=self.model,
                error=str(e),
                retryable=True,
            )

    async def generate_image(self, prompt: str) -> ImageResult:
        """
        Generate an illustration and return its hosted URL.

        Raises:
            ImageGenerationError: OPENAI_API_KEY not configured.
        """
        if not self.api_key:
            raise ImageGenerationError("OPENAI_API_KEY not configured")

        client = await self._get_client()
        start_time = time.time()

        try:
            response = await client.post(
                f"{self.base_url}/images/generations",
                json={
                    "model": self.image_model,
                    "prompt": prompt,
                    "n": 1,
                    "size": self.image_size,
                    "response_format": "url",
                },
            )
            elapsed_ms = int((time.time() - start_time) * 1000)

            if response.status_code != 200:
                try:
                    error = response.json().get("error", {}).get("message", "Unknown")
                except (ValueError, AttributeError):
                    error = response.text[:500]
                logger.error(f"DALL-E API error {response.status_code}: {error}")
                record_completion(self.name, "image", STATUS_ERROR, elapsed_ms)
                return ImageResult(status=STATUS_ERROR, exec_ms=elapsed_ms, error=f"HTTP {response.status_code}: {error}")

            try:
                item = (response.json().get("data") or [{}])[0]
                url = item.get("url")
            except (ValueError, KeyError, TypeError, AttributeError, IndexError) as e:
                logger.error(f"DALL-E API returned an invalid body: {e}")
                record_completion(self.name, "image", STATUS_ERROR, elapsed_ms)
                return ImageResult(status=STATUS_ERROR, exec_ms=elapsed_ms, error=f"invalid response body: {e}")

            if not url or not isinstance(url, str):
                record_completion(self.name, "image", STATUS_ERROR, elapsed_ms)
                return ImageResult(status=STATUS_ERROR, exec_ms=elapsed_ms, error="No image URL in response")

            logger.info(f"DALL-E generated image in {elapsed_ms}ms")
            record_completion(self.name, "image", STATUS_COMPLETED, elapsed_ms)
            return ImageResult(
                status=STATUS_COMPLETED,
                url=url,
                exec_ms=elapsed_ms,
                revised_prompt=item.get("revised_prompt"),
            )

        except httpx.TimeoutException:
            elapsed_ms = int((time.time() - start_time) * 1000)
            logger.error(f"DALL-E API timeout after {elapsed_ms}ms")
            record_completion(self.name, "image", STATUS_TIMEOUT, elapsed_ms)
            return ImageResult(status=STATUS_TIMEOUT, exec_ms=elapsed_ms, error="Request timed out")
        except httpx.HTTPError as e:
            elapsed_ms = int((time.time() - start_time) * 1000)
            logger.error(f"DALL-E API transport error: {e}")
            record_completion(self.name, "image", STATUS_ERROR, elapsed_ms)
            return ImageResult(status=STATUS_ERROR, exec_ms=elapsed_ms, error=str(e))
