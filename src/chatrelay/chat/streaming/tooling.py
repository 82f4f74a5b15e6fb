"""Tool-call accumulation and execution for the image generation tool."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol

logger = logging.getLogger(__name__)


IMAGE_TOOL_NAME = "generate_image"
IMAGE_SIZES = ("1024x1024", "1536x1024", "1024x1536", "auto")


class ImageGenerator(Protocol):
    async def generate_image(self, prompt: str, *, size: str | None = None) -> str:
        ...


def image_tool_definition() -> dict[str, Any]:
    """Return the function-tool descriptor advertised to the model."""

    return {
        "type": "function",
        "function": {
            "name": IMAGE_TOOL_NAME,
            "description": (
                "Generate an image from a detailed text description. Use when "
                "the user asks to create, draw, or visualize something."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "prompt": {
                        "type": "string",
                        "description": "Detailed description of the image.",
                    },
                    "size": {
                        "type": "string",
                        "enum": list(IMAGE_SIZES),
                        "description": "Output resolution.",
                    },
                },
                "required": ["prompt"],
            },
        },
    }


def merge_tool_calls(
    accumulator: list[dict[str, Any]],
    deltas: Any,
) -> None:
    """Fold streamed ``tool_calls`` fragments into ``accumulator`` in place."""

    for delta in deltas or []:
        if not isinstance(delta, dict):
            continue

        index = delta.get("index")
        delta_id = delta.get("id")
        if not isinstance(index, int) or index < 0:
            index = None
            if isinstance(delta_id, str):
                for existing_index, existing in enumerate(accumulator):
                    if existing.get("id") == delta_id:
                        index = existing_index
                        break
            if index is None:
                index = len(accumulator)

        while len(accumulator) <= index:
            accumulator.append(
                {
                    "id": None,
                    "type": "function",
                    "function": {"name": None, "arguments": ""},
                }
            )

        entry = accumulator[index]
        if delta_id:
            entry["id"] = delta_id
        if delta_type := delta.get("type"):
            entry["type"] = delta_type

        function_delta = delta.get("function") or {}
        function_entry = entry.setdefault("function", {"name": None, "arguments": ""})
        if function_name := function_delta.get("name"):
            function_entry["name"] = function_name
        if arguments_fragment := function_delta.get("arguments"):
            function_entry["arguments"] = (
                function_entry.get("arguments") or ""
            ) + arguments_fragment


def finalize_tool_calls(
    tool_calls: list[dict[str, Any]],
) -> list[dict[str, Any]]:
    """Drop nameless calls and assign fallback ids."""

    finalized: list[dict[str, Any]] = []
    for index, call in enumerate(tool_calls):
        if not isinstance(call, dict):
            continue
        function = call.get("function")
        if not isinstance(function, dict):
            continue
        name = function.get("name")
        if not (isinstance(name, str) and name.strip()):
            continue
        arguments = function.get("arguments")
        finalized.append(
            {
                "id": call.get("id") or f"call_{index}",
                "type": call.get("type") or "function",
                "function": {
                    "name": name.strip(),
                    "arguments": arguments if isinstance(arguments, str) else "",
                },
            }
        )
    return finalized


@dataclass
class ToolExecution:
    """Outcome of one tool call."""

    call_id: str
    name: str
    content: str = ""
    image: dict[str, Any] | None = None

    def to_tool_message(self) -> dict[str, Any]:
        return {"role": "tool", "tool_call_id": self.call_id, "content": self.content}


def _parse_arguments(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        return {}
    parsed = json.loads(raw)
    if not isinstance(parsed, dict):
        raise ValueError(f"expected a JSON object, received {type(parsed).__name__}")
    return parsed


class ToolCallExecutor:
    """Run tool calls requested by the model, one at a time."""

    def __init__(self, images: ImageGenerator) -> None:
        self._images = images

    def get_openai_tools(self) -> list[dict[str, Any]]:
        return [image_tool_definition()]

    async def execute(self, tool_call: dict[str, Any]) -> ToolExecution:
        function = tool_call.get("function") or {}
        name = function.get("name") or "unknown"
        execution = ToolExecution(call_id=tool_call.get("id") or "call_0", name=name)

        if name != IMAGE_TOOL_NAME:
            logger.warning("Skipping unknown tool %s", name)
            return execution

        try:
            arguments = _parse_arguments(function.get("arguments"))
        except ValueError as exc:
            logger.warning("Invalid arguments for tool %s: %s", name, exc)
            return execution

        prompt = arguments.get("prompt")
        if not isinstance(prompt, str) or not prompt.strip():
            logger.warning("Tool %s called without a prompt", name)
            return execution
        prompt = prompt.strip()

        size = arguments.get("size")
        if size not in IMAGE_SIZES:
            size = None

        try:
            url = await self._images.generate_image(prompt, size=size)
        except Exception:
            logger.exception("Image generation failed for prompt %r", prompt)
            return execution

        execution.image = {"url": url, "prompt": prompt}
        result: dict[str, Any] = {"type": "image", "status": "success", "prompt": prompt}
        if not url.startswith("data:"):
            result["url"] = url
        else:
            result["note"] = "The image was generated and is already shown to the user."
        execution.content = json.dumps(result)
        logger.info("Generated image for prompt %r", prompt)
        return execution


__all__ = [
    "IMAGE_SIZES",
    "IMAGE_TOOL_NAME",
    "ImageGenerator",
    "ToolCallExecutor",
    "ToolExecution",
    "finalize_tool_calls",
    "image_tool_definition",
    "merge_tool_calls",
]
