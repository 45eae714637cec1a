"""
Google Gemini API client for digest generation.

Same interface as OpenAIClient.complete so COMPLETION_PROVIDER can switch
between them. Text only; image generation always goes through OpenAI.
"""

import logging
import time
from typing import Optional

import httpx

from matchdigest.config import Settings, get_settings
from matchdigest.errors import CompletionError
from matchdigest.llm.base import STATUS_COMPLETED, STATUS_ERROR, STATUS_TIMEOUT, CompletionResult
from matchdigest.telemetry.metrics import record_completion

logger = logging.getLogger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"


class GeminiClient:
    """Async client for Google Gemini API."""

    name = "gemini"

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = settings or get_settings()
        self.api_key = (settings.GEMINI_API_KEY or "").strip()
        self.model = settings.GEMINI_MODEL
        self.timeout = settings.COMPLETION_TIMEOUT_SECONDS
        self.max_tokens = settings.COMPLETION_MAX_TOKENS
        self.temperature = settings.COMPLETION_TEMPERATURE
        self._transport = transport

        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers={"Content-Type": "application/json"},
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
        Generate text using Gemini API.

        Returns:
            CompletionResult with generated text and metadata.

        Raises:
            CompletionError: GEMINI_API_KEY not configured.
        """
        if not self.api_key:
            raise CompletionError("GEMINI_API_KEY not configured")

        client = await self._get_client()
        url = f"{GEMINI_BASE_URL}/{self.model}:generateContent"

        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "maxOutputTokens": self.max_tokens,
                "temperature": self.temperature,
            },
        }

        start_time = time.time()

        try:
            response = await client.post(url, json=payload, headers={"x-goog-api-key": self.api_key})
            elapsed_ms = int((time.time() - start_time) * 1000)

            if response.status_code != 200:
                error_text = response.text[:500]
                logger.error(f"Gemini API error {response.status_code}: {error_text}")
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
                text, finish_reason = self._extract_text_and_reason(data)
                usage = data.get("usageMetadata") or {}
                tokens_in = usage.get("promptTokenCount", 0)
                tokens_out = usage.get("candidatesTokenCount", 0)
            except (ValueError, KeyError, TypeError, AttributeError, IndexError) as e:
                logger.error(f"Gemini API returned an invalid body: {e}")
                record_completion(self.name, "text", STATUS_ERROR, elapsed_ms)
                return CompletionResult(
                    status=STATUS_ERROR,
                    text="",
                    exec_ms=elapsed_ms,
                    model_version=self.model,
                    error=f"invalid response body: {e}",
                )

            if finish_reason and finish_reason != "STOP":
                logger.warning(
                    f"Gemini finishReason={finish_reason} "
                    f"(tokens_out={tokens_out}, text_len={len(text)})"
                )

            record_completion(self.name, "text", STATUS_COMPLETED, elapsed_ms)
            return CompletionResult(
                status=STATUS_COMPLETED,
                text=text,
                tokens_in=tokens_in,
                tokens_out=tokens_out,
                exec_ms=elapsed_ms,
                model_version=data.get("modelVersion", self.model),
                raw_output=data,
                finish_reason=finish_reason,
            )

        except httpx.TimeoutException:
            elapsed_ms = int((time.time() - start_time) * 1000)
            logger.error(f"Gemini API timeout after {elapsed_ms}ms")
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
            logger.error(f"Gemini API transport error: {e}")
            record_completion(self.name, "text", STATUS_ERROR, elapsed_ms)
            return CompletionResult(
                status=STATUS_ERROR,
                text="",
                exec_ms=elapsed_ms,
                model_version=self.model,
                error=str(e),
                retryable=True,
            )

    def _extract_text_and_reason(self, response: dict) -> tuple[str, Optional[str]]:
        """Extract text and finishReason from Gemini response."""
        candidates = response.get("candidates", [])
        if not candidates:
            return "", None

        candidate = candidates[0]
        finish_reason = candidate.get("finishReason")

        parts = candidate.get("content", {}).get("parts", [])
        if not parts:
            return "", finish_reason

        return "".join(part.get("text") or "" for part in parts), finish_reason
