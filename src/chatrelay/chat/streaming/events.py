"""Stream events and their wire encoding.

The client receives newline-delimited SSE records of the form
``data: <json>\\n\\n`` terminated by ``data: [DONE]\\n\\n``. All framing goes
through :func:`encode_event` so the relay never builds frame strings by hand.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Union

DONE_SENTINEL = "[DONE]"

SseEvent = dict[str, str]


@dataclass(frozen=True)
class ContentDelta:
    text: str


@dataclass(frozen=True)
class ToolResult:
    kind: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ChatAssigned:
    chat_id: str


@dataclass(frozen=True)
class Done:
    pass


StreamEvent = Union[ContentDelta, ToolResult, ChatAssigned, Done]


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def encode_event(event: StreamEvent) -> str:
    """Return the ``data`` field for a stream event."""

    if isinstance(event, ContentDelta):
        return _dumps({"content": event.text})
    if isinstance(event, ToolResult):
        result = {"type": event.kind, **event.payload}
        return _dumps({"type": "function_result", "data": _dumps(result)})
    if isinstance(event, ChatAssigned):
        return _dumps({"type": "chat_id", "chatId": event.chat_id})
    if isinstance(event, Done):
        return DONE_SENTINEL
    raise TypeError(f"Unsupported stream event: {event!r}")


def to_sse(event: StreamEvent) -> SseEvent:
    """Return the payload dictionary understood by ``EventSourceResponse``."""

    return {"data": encode_event(event)}


__all__ = [
    "ChatAssigned",
    "ContentDelta",
    "DONE_SENTINEL",
    "Done",
    "SseEvent",
    "StreamEvent",
    "ToolResult",
    "encode_event",
    "to_sse",
]
