"""
text/event-stream decoder.

Follows the WHATWG event-stream interpretation rules:
- "data:" lines accumulate (joined with "\n"), a blank line dispatches
- "event:" sets the event type for the next dispatch (default "message")
- "id:" sets the last event id (ignored if it contains NUL)
- "retry:" sets the reconnection delay when all digits
- lines starting with ":" are comments (keep-alives)
"""

from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator, Optional


@dataclass
class ServerSentEvent:
    """A dispatched server-sent event."""

    event: str = "message"
    data: str = ""
    id: Optional[str] = None
    retry: Optional[int] = None


class SSEDecoder:
    """Incremental line-based decoder. Feed lines without their terminators."""

    def __init__(self):
        self._event = ""
        self._data: list[str] = []
        self._last_event_id: Optional[str] = None
        self._retry: Optional[int] = None

    def decode(self, line: str) -> Optional[ServerSentEvent]:
        if not line:
            return self._dispatch()

        if line.startswith(":"):
            return None

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if field == "data":
            self._data.append(value)
        elif field == "event":
            self._event = value
        elif field == "id":
            if "\0" not in value:
                self._last_event_id = value
        elif field == "retry":
            if value.isdigit():
                self._retry = int(value)
        # Unknown fields are ignored

        return None

    def _dispatch(self) -> Optional[ServerSentEvent]:
        if not self._data:
            # Nothing buffered: reset event type only
            self._event = ""
            return None

        sse = ServerSentEvent(
            event=self._event or "message",
            data="\n".join(self._data),
            id=self._last_event_id,
            retry=self._retry,
        )
        self._event = ""
        self._data = []
        self._retry = None
        return sse


async def aiter_sse(lines: AsyncIterable[str]) -> AsyncIterator[ServerSentEvent]:
    """Turn an async iterable of text lines into server-sent events."""
    decoder = SSEDecoder()
    async for line in lines:
        sse = decoder.decode(line.rstrip("\r\n"))
        if sse is not None:
            yield sse
    # A stream that ends mid-event does not dispatch the partial event
