"""Server-sent-events ingestion for Footium match streams."""

from matchdigest.stream.ingestor import StreamIngestor, StreamMessage
from matchdigest.stream.sse import ServerSentEvent, SSEDecoder, aiter_sse

__all__ = ["StreamIngestor", "StreamMessage", "ServerSentEvent", "SSEDecoder", "aiter_sse"]
