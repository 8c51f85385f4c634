"""Server-Sent Events encoding for session frames."""

from __future__ import annotations

from pydantic import BaseModel

SSE_MEDIA_TYPE = "text/event-stream"

# Keep proxies from buffering or transforming the stream
SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_sse(frame: BaseModel) -> bytes:
    """Encode one frame as a single-line JSON ``data:`` event."""
    return f"data: {frame.model_dump_json()}\n\n".encode("utf-8")
