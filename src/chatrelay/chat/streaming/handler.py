"""Conversation streaming: relay deltas, run tools, stream the followup."""

from __future__ import annotations

import enum
import json
import logging
import time
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, Callable, Protocol

from ...openai_client import OpenAIError
from .buffer import FlushBuffer
from .events import ContentDelta, StreamEvent, ToolResult
from .tooling import ToolCallExecutor, finalize_tool_calls, merge_tool_calls


logger = logging.getLogger(__name__)


class CompletionClient(Protocol):
    def stream_chat_raw(
        self, payload: dict[str, Any]
    ) -> AsyncGenerator[dict[str, str], None]:
        ...

    async def create_chat_completion(self, payload: dict[str, Any]) -> dict[str, Any]:
        ...


class RelayPhase(str, enum.Enum):
    IDLE = "idle"
    STREAMING_PRIMARY = "streaming_primary"
    TOOLS_PENDING = "tools_pending"
    STREAMING_FOLLOWUP = "streaming_followup"
    FINALIZING = "finalizing"
    CLOSED = "closed"


@dataclass
class RelayTurn:
    """Everything one request produces, accumulated for persistence."""

    phase: RelayPhase = RelayPhase.IDLE
    text_parts: list[str] = field(default_factory=list)
    images: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None

    @property
    def text(self) -> str:
        return "".join(self.text_parts)


def describe_error(exc: BaseException) -> str:
    if isinstance(exc, OpenAIError):
        detail = exc.detail
        return detail if isinstance(detail, str) else json.dumps(detail)
    return str(exc) or "Unknown error"


class StreamingHandler:
    """Drive the completion call(s) for one turn and emit stream events."""

    def __init__(
        self,
        client: CompletionClient,
        tool_executor: ToolCallExecutor,
        *,
        model: str,
        stream_responses: bool = True,
        flush_min_chars: int = 3,
        flush_interval: float = 0.016,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._tools = tool_executor
        self._model = model
        self._stream_responses = stream_responses
        self._flush_min_chars = flush_min_chars
        self._flush_interval = flush_interval
        self._clock = clock

    def _build_payload(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"model": self._model, "messages": messages}
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"
        return payload

    async def stream_conversation(
        self,
        conversation: list[dict[str, Any]],
        turn: RelayTurn,
    ) -> AsyncGenerator[StreamEvent, None]:
        """Yield content and tool events; errors end the turn as content."""

        buffer = FlushBuffer(
            min_chars=self._flush_min_chars,
            min_interval=self._flush_interval,
            clock=self._clock,
        )
        try:
            turn.phase = RelayPhase.STREAMING_PRIMARY
            streamed_calls: list[dict[str, Any]] = []
            payload = self._build_payload(conversation, self._tools.get_openai_tools())
            async with aclosing(
                self._relay_completion(payload, turn, buffer, streamed_calls)
            ) as events:
                async for event in events:
                    yield event

            tool_calls = finalize_tool_calls(streamed_calls)
            if tool_calls:
                turn.phase = RelayPhase.TOOLS_PENDING
                pending = buffer.flush()
                if pending:
                    yield ContentDelta(pending)

                primary_text = turn.text
                tool_messages: list[dict[str, Any]] = []
                for call in tool_calls:
                    execution = await self._tools.execute(call)
                    if execution.image is not None:
                        turn.images.append(execution.image)
                        yield ToolResult("image", dict(execution.image))
                    tool_messages.append(execution.to_tool_message())

                followup = [
                    *conversation,
                    {
                        "role": "assistant",
                        "content": primary_text or None,
                        "tool_calls": tool_calls,
                    },
                    *tool_messages,
                ]
                turn.phase = RelayPhase.STREAMING_FOLLOWUP
                ignored_calls: list[dict[str, Any]] = []
                async with aclosing(
                    self._relay_completion(
                        self._build_payload(followup), turn, buffer, ignored_calls
                    )
                ) as events:
                    async for event in events:
                        yield event
                if ignored_calls:
                    logger.warning(
                        "Ignoring %d tool call(s) requested during followup",
                        len(ignored_calls),
                    )

            pending = buffer.flush()
            if pending:
                yield ContentDelta(pending)
        except Exception as exc:
            logger.exception("Response error during %s", turn.phase.value)
            turn.error = describe_error(exc)
            pending = buffer.flush()
            if pending:
                yield ContentDelta(pending)
            error_text = f"\n\nError: {turn.error}"
            turn.text_parts.append(error_text)
            yield ContentDelta(error_text)
        finally:
            turn.phase = RelayPhase.FINALIZING

    async def _relay_completion(
        self,
        payload: dict[str, Any],
        turn: RelayTurn,
        buffer: FlushBuffer,
        tool_calls: list[dict[str, Any]],
    ) -> AsyncGenerator[StreamEvent, None]:
        async with aclosing(self._iter_deltas(payload)) as deltas:
            async for delta in deltas:
                text = delta.get("content")
                if isinstance(text, str) and text:
                    turn.text_parts.append(text)
                    flushed = buffer.push(text)
                    if flushed is not None:
                        yield ContentDelta(flushed)
                if tool_deltas := delta.get("tool_calls"):
                    merge_tool_calls(tool_calls, tool_deltas)

    async def _iter_deltas(
        self, payload: dict[str, Any]
    ) -> AsyncGenerator[dict[str, Any], None]:
        """Yield choice deltas; a non-streamed response is one delta."""

        if not self._stream_responses:
            body = await self._client.create_chat_completion(payload)
            for choice in body.get("choices") or []:
                message = choice.get("message") or {}
                yield {
                    "content": message.get("content"),
                    "tool_calls": message.get("tool_calls"),
                }
            return

        async with aclosing(self._client.stream_chat_raw(payload)) as events:
            async for event in events:
                data = event.get("data")
                if not data:
                    continue
                if data == "[DONE]":
                    break
                try:
                    chunk = json.loads(data)
                except json.JSONDecodeError:
                    logger.debug("Skipping non-JSON SSE payload: %s", data)
                    continue
                if not isinstance(chunk, dict):
                    continue

                error = chunk.get("error")
                if error:
                    message = error.get("message") if isinstance(error, dict) else error
                    raise OpenAIError(502, message or error)

                for choice in chunk.get("choices") or []:
                    delta = choice.get("delta")
                    if isinstance(delta, dict):
                        yield delta


__all__ = [
    "CompletionClient",
    "RelayPhase",
    "RelayTurn",
    "StreamingHandler",
    "describe_error",
]
