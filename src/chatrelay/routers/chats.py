"""Chat management routes: list, create, delete, messages, titles."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..auth import AuthenticatedUser, get_current_user
from ..chat import ChatOrchestrator
from ..chat.orchestrator import ChatRequestError
from ..schemas.chat import CreateChatRequest, TitleRequest
from ..services.title_service import DEFAULT_TITLE
from .chat import get_orchestrator

router = APIRouter(prefix="/api/chats", tags=["chats"])


def _summary(chat: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": chat["id"],
        "title": chat["title"],
        "created_at": chat["created_at"],
        "updated_at": chat["updated_at"],
    }


@router.get("")
async def list_chats(
    q: Optional[str] = Query(default=None),
    user: AuthenticatedUser = Depends(get_current_user),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    chats = await orchestrator.repository.list_chats(user.id, query=q)
    return {"chats": [_summary(chat) for chat in chats]}


@router.post("", status_code=status.HTTP_200_OK)
async def create_chat(
    payload: Optional[CreateChatRequest] = None,
    user: AuthenticatedUser = Depends(get_current_user),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    title = (payload.title if payload else None) or DEFAULT_TITLE
    chat = await orchestrator.repository.create_chat(user.id, title)
    return {"chat": _summary(chat)}


@router.delete("")
async def delete_chat(
    chat_id: Optional[str] = Query(default=None, alias="id"),
    user: AuthenticatedUser = Depends(get_current_user),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> dict[str, bool]:
    if not chat_id:
        raise HTTPException(status_code=400, detail="Chat ID is required")
    deleted = await orchestrator.repository.delete_chat(chat_id, user.id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Chat not found")
    return {"success": True}


@router.get("/{chat_id}/messages")
async def get_messages(
    chat_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    chat = await orchestrator.repository.get_chat(chat_id, user_id=user.id)
    if chat is None:
        raise HTTPException(status_code=404, detail="Chat not found")
    messages = sorted(
        chat["messages"],
        key=lambda message: message.get("message_number") or 0,
    )
    return {"messages": messages}


@router.post("/{chat_id}/title")
async def generate_chat_title(
    chat_id: str,
    payload: TitleRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> dict[str, str]:
    try:
        title = await orchestrator.generate_title_now(
            chat_id, user.id, payload.first_message
        )
    except ChatRequestError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc
    return {"title": title}


__all__ = ["router"]
