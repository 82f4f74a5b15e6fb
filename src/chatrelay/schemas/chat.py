"""Pydantic models for chat requests and stored chat documents."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class FileAttachment(BaseModel):
    """A user-supplied file carried inline as a base64 data URL."""

    name: str
    type: str = "application/octet-stream"
    size: int = 0
    data: str

    model_config = ConfigDict(extra="ignore")

    @property
    def is_image(self) -> bool:
        return self.type.lower().startswith("image/")


class GeneratedImage(BaseModel):
    """Image produced by the image generation tool."""

    url: str
    prompt: Optional[str] = None


class ChatMessage(BaseModel):
    """Represents a single chat turn as sent by the client or stored."""

    id: Optional[str] = None
    role: Literal["user", "assistant"]
    content: str = ""
    files: Optional[List[FileAttachment]] = None
    images: Optional[List[GeneratedImage]] = None
    created_at: Optional[str] = None
    message_number: Optional[int] = None
    edited: Optional[bool] = None
    edited_at: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_record(self) -> Dict[str, Any]:
        """Return the JSON-ready dictionary form used by the chat document."""

        return self.model_dump(mode="json", exclude_none=True)


class ChatStreamRequest(BaseModel):
    """Incoming body for the streaming chat endpoint."""

    messages: List[ChatMessage]
    chat_id: Optional[str] = Field(default=None, alias="chatId")
    is_edit: bool = Field(default=False, alias="isEdit")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class CreateChatRequest(BaseModel):
    title: Optional[str] = None


class TitleRequest(BaseModel):
    first_message: Optional[str] = Field(default=None, alias="firstMessage")

    model_config = ConfigDict(populate_by_name=True)


__all__ = [
    "ChatMessage",
    "ChatStreamRequest",
    "CreateChatRequest",
    "FileAttachment",
    "GeneratedImage",
    "TitleRequest",
]
