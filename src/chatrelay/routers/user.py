"""Account management routes."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from ..auth import (
    AuthenticatedUser,
    AuthNotConfiguredError,
    SupabaseIdentityProvider,
    get_current_user,
    get_identity_provider,
)
from ..chat import ChatOrchestrator
from .chat import get_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["user"])


@router.delete("/user")
async def delete_account(
    user: AuthenticatedUser = Depends(get_current_user),
    provider: SupabaseIdentityProvider = Depends(get_identity_provider),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> dict[str, bool]:
    """Delete the caller's account and every chat they own."""

    try:
        await provider.delete_user(user.id)
    except AuthNotConfiguredError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception("Failed to delete account %s", user.id)
        raise HTTPException(status_code=500, detail="Failed to delete account") from exc

    removed = await orchestrator.repository.delete_user_chats(user.id)
    logger.info("Removed %d chat(s) for deleted account %s", removed, user.id)
    return {"success": True}


__all__ = ["router"]
