"""Shared fakes for the chat relay tests."""

from __future__ import annotations

import base64
import json
from pathlib import Path
from typing import Any

from pydantic import SecretStr

from chatrelay.chat.streaming.events import (
    DONE_SENTINEL,
    ChatAssigned,
    ContentDelta,
    Done,
    StreamEvent,
    ToolResult,
    encode_event,
)
from chatrelay.config import Settings


def sse(chunk: dict[str, Any] | str) -> dict[str, str]:
    data = chunk if isinstance(chunk, str) else json.dumps(chunk)
    return {"data": data}


def content_chunk(text: str) -> dict[str, str]:
    return sse({"choices": [{"delta": {"content": text}}]})


def tool_call_chunk(
    index: int,
    *,
    call_id: str | None = None,
    name: str | None = None,
    arguments: str | None = None,
) -> dict[str, str]:
    function: dict[str, Any] = {}
    if name is not None:
        function["name"] = name
    if arguments is not None:
        function["arguments"] = arguments
    delta: dict[str, Any] = {"index": index, "function": function}
    if call_id is not None:
        delta["id"] = call_id
        delta["type"] = "function"
    return sse({"choices": [{"delta": {"tool_calls": [delta]}}]})


DONE = sse("[DONE]")


def format_frame(event: StreamEvent) -> str:
    return f"data: {encode_event(event)}\n\n"


def decode_event(data: str) -> StreamEvent:
    """Parse the ``data`` field of a frame the way the browser client does."""

    if data.strip() == DONE_SENTINEL:
        return Done()
    payload = json.loads(data)
    if not isinstance(payload, dict):
        raise ValueError("Stream frame must be a JSON object")

    frame_type = payload.get("type")
    if frame_type == "function_result":
        result = json.loads(payload.get("data") or "{}")
        kind = str(result.pop("type", "unknown"))
        return ToolResult(kind=kind, payload=result)
    if frame_type == "chat_id":
        return ChatAssigned(chat_id=str(payload.get("chatId")))
    if "content" in payload:
        return ContentDelta(text=str(payload["content"]))
    raise ValueError(f"Unrecognized stream frame: {data}")


def parse_frames(body: str) -> list[StreamEvent]:
    """Decode a full SSE response body into events, skipping comments."""

    events: list[StreamEvent] = []
    for block in body.replace("\r\n", "\n").split("\n\n"):
        data_lines = [
            line[len("data:"):].lstrip(" ")
            for line in block.split("\n")
            if line.startswith("data:")
        ]
        if data_lines:
            events.append(decode_event("\n".join(data_lines)))
    return events


def data_url(text: str | bytes, mime: str = "text/plain") -> str:
    raw = text.encode("utf-8") if isinstance(text, str) else text
    return f"data:{mime};base64,{base64.b64encode(raw).decode('ascii')}"


class ScriptedClient:
    """Stand-in for ``OpenAIClient`` replaying scripted SSE events.

    Each ``stream_chat_raw`` call consumes the next script; an exception in a
    script is raised at that point of the stream.
    """

    def __init__(
        self,
        streams: list[list[Any]] | None = None,
        *,
        completions: list[Any] | None = None,
        image_url: str = "https://images.example.com/cat.png",
        image_error: Exception | None = None,
        configured: bool = True,
    ) -> None:
        self.streams = list(streams or [])
        self.completions = list(completions or [])
        self.image_url = image_url
        self.image_error = image_error
        self.is_configured = configured
        self.payloads: list[dict[str, Any]] = []
        self.completion_payloads: list[dict[str, Any]] = []
        self.image_requests: list[tuple[str, str | None]] = []
        self.closed = False

    async def stream_chat_raw(self, payload: dict[str, Any]):
        self.payloads.append(payload)
        script = self.streams.pop(0) if self.streams else [DONE]
        for item in script:
            if isinstance(item, Exception):
                raise item
            yield item

    async def create_chat_completion(self, payload: dict[str, Any]) -> dict[str, Any]:
        self.completion_payloads.append(payload)
        if self.completions:
            item = self.completions.pop(0)
        else:
            item = {"choices": [{"message": {"content": "Generated Title"}}]}
        if isinstance(item, Exception):
            raise item
        return item

    async def generate_image(self, prompt: str, *, size: str | None = None) -> str:
        self.image_requests.append((prompt, size))
        if self.image_error is not None:
            raise self.image_error
        return self.image_url

    async def aclose(self) -> None:
        self.closed = True


def make_settings(tmp_path: Path, **overrides: Any) -> Settings:
    prompt_path = tmp_path / "prompt.txt"
    if not prompt_path.exists():
        prompt_path.write_text("You are a helpful assistant.", encoding="utf-8")
    values: dict[str, Any] = {
        "openai_api_key": SecretStr("test-key"),
        "chat_db": tmp_path / "chats.db",
        "system_prompt_path": prompt_path,
        "stream_flush_min_chars": 1,
    }
    values.update(overrides)
    return Settings(**values)
