"""Chat streaming API route."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sse_starlette.sse import EventSourceResponse

from ..auth import AuthenticatedUser, get_current_user
from ..chat import ChatOrchestrator
from ..chat.orchestrator import ChatRequestError
from ..chat.streaming import ContentDelta, Done, to_sse
from ..config import Settings, get_settings
from ..schemas.chat import ChatStreamRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["chat"])


def get_orchestrator(request: Request) -> ChatOrchestrator:
    return request.app.state.chat_orchestrator


@router.post("/chat", response_model=None, status_code=200)
async def stream_chat(
    payload: ChatStreamRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_settings),
) -> EventSourceResponse:
    """Relay one assistant turn as Server-Sent Events."""

    try:
        prepared = await orchestrator.prepare_turn(payload, user.id)
    except ChatRequestError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc

    async def event_publisher():
        stream = orchestrator.stream_turn(prepared)
        try:
            async for event in stream:
                yield to_sse(event)
        except Exception as exc:  # pragma: no cover - relay converts its own errors
            logger.exception("Unexpected failure streaming chat %s", prepared.chat_id)
            yield to_sse(ContentDelta(f"Error: {exc}"))
            yield to_sse(Done())
        finally:
            await stream.aclose()

    return EventSourceResponse(
        event_publisher(),
        sep="\n",
        ping=settings.sse_ping_seconds,
    )


__all__ = ["router", "get_orchestrator"]
