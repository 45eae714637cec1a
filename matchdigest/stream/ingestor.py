"""
StreamIngestor: single-shot consumption of Footium server-push streams.

The live API exposes two SSE endpoints per fixture:
- {base}/partial_match/{fixture_id}: full match-state snapshots
- {base}/match_frames/{fixture_id}: batches of possession frames

Neither is consumed as a continuous feed. The workflow awaits the first
qualifying message (non-empty JSON payload) and closes the subscription.

Usage:
    ingestor = StreamIngestor()
    snapshot = await ingestor.first_message(url, stream="partial_match")
"""

import asyncio
import json
import logging
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

import httpx

from matchdigest.config import Settings, get_settings
from matchdigest.errors import MalformedPayloadError, StreamTimeoutError, UpstreamStreamError
from matchdigest.stream.sse import aiter_sse
from matchdigest.telemetry.metrics import record_stream_error, record_stream_message

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Accept": "text/event-stream",
    "Cache-Control": "no-cache",
}


@dataclass
class StreamMessage:
    """A decoded stream message."""

    event: str
    data: Any  # JSON-decoded payload
    id: Optional[str] = None


class StreamIngestor:
    """Async SSE subscriber built on a shared httpx client."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = settings or get_settings()
        self.base_url = settings.MATCH_STREAM_BASE_URL.strip().rstrip("/")
        self.timeout = settings.STREAM_TIMEOUT_SECONDS
        self.connect_timeout = settings.STREAM_CONNECT_TIMEOUT_SECONDS
        self._transport = transport

        self._client: Optional[httpx.AsyncClient] = None

    def stream_url(self, stream: str, fixture_id: str) -> str:
        return f"{self.base_url}/{stream}/{fixture_id}"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            # No read timeout: streams idle between events, first_message bounds the wait
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(None, connect=self.connect_timeout),
                headers=SSE_HEADERS,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def subscribe(self, url: str, stream: str = "stream") -> AsyncIterator[StreamMessage]:
        """
        Open a subscription and yield decoded messages until the server closes it.

        Closing the generator (or cancelling its consumer) closes the HTTP stream.

        Raises:
            UpstreamStreamError: transport failure or non-2xx status.
            MalformedPayloadError: a message whose data is not JSON.
        """
        client = await self._get_client()
        logger.info(f"[STREAM] Subscribing to {stream}: {url}")

        try:
            async with client.stream("GET", url) as response:
                if response.status_code != 200:
                    raise UpstreamStreamError(
                        f"{stream} subscription returned HTTP {response.status_code}"
                    )

                async for sse in aiter_sse(response.aiter_lines()):
                    try:
                        payload = json.loads(sse.data)
                    except json.JSONDecodeError as e:
                        raise MalformedPayloadError(
                            f"{stream} message is not valid JSON: {e}"
                        ) from e
                    yield StreamMessage(event=sse.event, data=payload, id=sse.id)

        except httpx.HTTPError as e:
            raise UpstreamStreamError(f"{stream} transport error: {e}") from e
        finally:
            logger.info(f"[STREAM] Closed {stream} subscription")

    async def _await_first(self, url: str, stream: str) -> Any:
        async with aclosing(self.subscribe(url, stream=stream)) as messages:
            async for message in messages:
                if not message.data:
                    record_stream_message(stream, accepted=False)
                    logger.debug(f"[STREAM] Skipping empty {stream} message")
                    continue
                record_stream_message(stream, accepted=True)
                return message.data

        raise UpstreamStreamError(f"{stream} stream closed before a qualifying message")

    async def first_message(self, url: str, stream: str = "stream") -> Any:
        """
        Await the first message with a truthy payload, then close the subscription.

        Falsy payloads (null, [], {}, "", 0, false) are skipped and the
        subscription stays open.

        Raises:
            StreamTimeoutError: no qualifying message within STREAM_TIMEOUT_SECONDS.
            UpstreamStreamError: transport failure or premature end of stream.
        """
        try:
            return await asyncio.wait_for(self._await_first(url, stream), timeout=self.timeout)
        except asyncio.TimeoutError:
            record_stream_error(stream, StreamTimeoutError.error_code)
            logger.warning(f"[STREAM] No qualifying {stream} message after {self.timeout}s")
            raise StreamTimeoutError(
                f"No qualifying {stream} message within {self.timeout:g}s"
            ) from None
        except UpstreamStreamError as e:
            record_stream_error(stream, e.error_code)
            logger.error(f"[STREAM] {stream} failed: {e}")
            raise
