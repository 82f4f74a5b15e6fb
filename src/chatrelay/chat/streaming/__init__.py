"""Chat streaming package."""

from .events import (
    ChatAssigned,
    ContentDelta,
    Done,
    StreamEvent,
    ToolResult,
    encode_event,
    to_sse,
)
from .handler import RelayPhase, RelayTurn, StreamingHandler
from .tooling import ToolCallExecutor

__all__ = [
    "ChatAssigned",
    "ContentDelta",
    "Done",
    "RelayPhase",
    "RelayTurn",
    "StreamEvent",
    "StreamingHandler",
    "ToolCallExecutor",
    "ToolResult",
    "encode_event",
    "to_sse",
]
