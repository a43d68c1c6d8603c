"""
Server-sent events framing.

Each job event becomes one `event:`/`data:` frame. Payloads are kept on a
single data line: carriage returns are dropped and newlines are escaped
as the two characters backslash-n.
"""

from typing import AsyncGenerator, AsyncIterator, Optional

from .jobs.models import JobEvent

SSE_MEDIA_TYPE = "text/event-stream"
SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}
KEEP_ALIVE = b": keep-alive\n\n"
KEEP_ALIVE_SECONDS = 15.0


def escape_data(data: str) -> str:
    return data.replace("\r", "").replace("\n", "\\n")


def format_sse(event: str, data: str) -> bytes:
    """Frame one event as `event: <name>\\ndata: <payload>\\n\\n`."""
    return f"event: {event}\ndata: {escape_data(data)}\n\n".encode("utf-8")


async def sse_stream(events: AsyncGenerator[Optional[JobEvent], None]) -> AsyncIterator[bytes]:
    """
    Frame a job event stream.

    None items (heartbeats) become keep-alive comments. The stream ends
    after the first terminal event, and the source is closed either way.
    """
    try:
        async for event in events:
            if event is None:
                yield KEEP_ALIVE
                continue
            yield format_sse(event.name, event.data)
            if event.terminal:
                return
    finally:
        await events.aclose()
