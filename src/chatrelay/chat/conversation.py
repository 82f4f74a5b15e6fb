"""Helpers for turning stored chat turns into a chat-completions payload.

User attachments are encoded for the multimodal chat-completions format:
PNG, JPEG, GIF and WebP images become ``image_url`` content parts carrying
their data URL, and every other file is inlined as extracted text under a
``[File: ...]`` header. Any other image (SVG, BMP, HEIC, or data that is not
a usable data URL) falls back to a textual ``[Image file: ...]`` note.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

from ..schemas.chat import ChatMessage, FileAttachment
from .attachments import extract_file_content, parse_data_url

logger = logging.getLogger(__name__)


FILE_SECTION_SEPARATOR = "\n\n---\n\n"

# Image formats the vision models accept as inline data URLs.
SUPPORTED_IMAGE_TYPES = frozenset({"image/png", "image/jpeg", "image/gif", "image/webp"})

AVAILABLE_TOOLS_NOTE = (
    "\n\n## Available Tools\n\n"
    "You have access to the following tools:\n\n"
    "1. **generate_image** - Generate images from a text prompt. Use this when "
    "users request image generation, creation, or visualization.\n\n"
    "Note: Other tools mentioned in the prompt (bio, canmore, python, web, "
    "file_search, automations, guardian_tool) are not available in this API "
    "implementation. For those requests, provide helpful text-based responses "
    "explaining what you would do if the tool were available."
)


def build_system_prompt(base_prompt: str) -> str:
    """Append the fixed tool availability policy to the loaded preamble."""

    return base_prompt.strip() + AVAILABLE_TOOLS_NOTE


def _describe_file(file: FileAttachment) -> str:
    return f"{file.name} ({file.size / 1024:.1f} KB, type: {file.type})"


def format_file_section(file: FileAttachment) -> str:
    """Render a non-image attachment (or an unusable image) as prompt text."""

    if file.is_image:
        return f"[Image file: {_describe_file(file)}]"

    content = extract_file_content(file)
    if content:
        return f"[File: {_describe_file(file)}]\nContent:\n{content}"
    return f"[File: {_describe_file(file)} - Content could not be extracted]"


def _is_inline_image(file: FileAttachment) -> bool:
    if not file.is_image:
        return False
    parsed = parse_data_url(file.data)
    if parsed is None:
        return False
    mime, _ = parsed
    return mime in SUPPORTED_IMAGE_TYPES and file.type.strip().lower() in SUPPORTED_IMAGE_TYPES


def _user_content(message: ChatMessage) -> str | list[dict[str, Any]]:
    text = message.content or ""
    files = message.files or []
    if not files:
        return text

    sections: list[str] = []
    image_parts: list[dict[str, Any]] = []
    for file in files:
        if _is_inline_image(file):
            image_parts.append(
                {"type": "image_url", "image_url": {"url": file.data.strip()}}
            )
            continue
        sections.append(format_file_section(file))

    if sections:
        files_section = FILE_SECTION_SEPARATOR.join(sections)
        if text:
            text = f"{text}{FILE_SECTION_SEPARATOR}Attached files:\n\n{files_section}"
        else:
            text = f"Attached files:\n\n{files_section}"

    if not image_parts:
        return text

    parts: list[dict[str, Any]] = []
    if text:
        parts.append({"type": "text", "text": text})
    parts.extend(image_parts)
    return parts


def build_conversation(
    messages: Sequence[ChatMessage],
    system_prompt: str,
) -> list[dict[str, Any]]:
    """Return the ordered message list for the completion call."""

    conversation: list[dict[str, Any]] = []
    if system_prompt:
        conversation.append({"role": "system", "content": system_prompt})

    for message in messages:
        if message.role == "user":
            conversation.append({"role": "user", "content": _user_content(message)})
        elif message.role == "assistant":
            conversation.append(
                {"role": "assistant", "content": message.content or ""}
            )
        else:  # pragma: no cover - schema restricts roles
            logger.debug("Skipping message with role %s", message.role)

    return conversation


__all__ = [
    "AVAILABLE_TOOLS_NOTE",
    "FILE_SECTION_SEPARATOR",
    "SUPPORTED_IMAGE_TYPES",
    "build_conversation",
    "build_system_prompt",
    "format_file_section",
]
