"""Output streaming for opsdeck.

Public API:
    OutputBroadcaster -- bounded replay buffer plus live fan-out
    StreamingBridge -- per-viewer SSE adapter over a broadcaster
    format_sse -- frame to SSE bytes
"""

from opsdeck.streaming.bridge import BridgeState, StreamingBridge
from opsdeck.streaming.broadcaster import OutputBroadcaster, SubscriberError
from opsdeck.streaming.sse import SSE_HEADERS, SSE_MEDIA_TYPE, format_sse

__all__ = [
    "BridgeState",
    "OutputBroadcaster",
    "SSE_HEADERS",
    "SSE_MEDIA_TYPE",
    "StreamingBridge",
    "SubscriberError",
    "format_sse",
]
