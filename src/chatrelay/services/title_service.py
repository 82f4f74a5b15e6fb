"""Lightweight LLM title generation for chats."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Protocol

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 50
DEFAULT_TITLE = "New Chat"

TITLE_SYSTEM_PROMPT = (
    "Generate a concise, descriptive title (maximum 50 characters) for a chat "
    "conversation based on the user's first message. Return only the title, "
    "nothing else. Make it clear and specific."
)


class CompletionProvider(Protocol):
    async def create_chat_completion(self, payload: dict[str, Any]) -> dict[str, Any]:
        ...


def fallback_title(first_message: str | None) -> str:
    """Return the temporary title derived from the message text."""

    return (first_message or "")[:TITLE_MAX_LENGTH] or DEFAULT_TITLE


async def generate_title(
    client: CompletionProvider, first_message: str, *, model: str
) -> str | None:
    """Ask the model for a chat title.

    Returns the title string, or None on failure.
    """
    if not first_message or not first_message.strip():
        return None

    payload = {
        "model": model,
        "messages": [
            {"role": "system", "content": TITLE_SYSTEM_PROMPT},
            {"role": "user", "content": first_message},
        ],
        "max_tokens": 20,
        "temperature": 0.7,
    }
    try:
        data = await client.create_chat_completion(payload)
        title = (data["choices"][0]["message"]["content"] or "").strip()
    except Exception:
        logger.exception("Failed to generate chat title")
        return None
    title = title.strip("\"'").strip()
    if not title:
        return None
    return title[:TITLE_MAX_LENGTH]


TitleWriter = Callable[[str, str], Awaitable[Any]]


class TitleScheduler:
    """Run title generation as detached background tasks.

    Tasks outlive the request that scheduled them; every failure is logged and
    swallowed inside the task so nothing surfaces as an unhandled exception.
    """

    def __init__(
        self,
        client: CompletionProvider,
        writer: TitleWriter,
        *,
        model: str,
    ) -> None:
        self._client = client
        self._writer = writer
        self._model = model
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def schedule(self, chat_id: str, first_message: str) -> asyncio.Task[None]:
        task = asyncio.create_task(
            self._run(chat_id, first_message), name=f"chat-title-{chat_id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, chat_id: str, first_message: str) -> None:
        try:
            title = await generate_title(
                self._client, first_message, model=self._model
            )
            if title is None:
                logger.info("Keeping temporary title for chat %s", chat_id)
                return
            await self._writer(chat_id, title)
            logger.debug("Updated title for chat %s", chat_id)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Background title update failed for chat %s", chat_id)

    async def drain(self, timeout: float | None = None) -> bool:
        """Wait for scheduled tasks; return False if some outlive ``timeout``."""

        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while self._tasks:
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                return False
            await asyncio.wait(list(self._tasks), timeout=remaining)
        return True

    async def aclose(self, *, grace: float = 0.0) -> None:
        """Let pending titles finish for up to ``grace`` seconds, then cancel."""

        if self._tasks and grace > 0:
            logger.info(
                "Waiting up to %.1fs for %d title task(s)", grace, self.pending
            )
            if not await self.drain(timeout=grace):
                logger.warning("Cancelling %d unfinished title task(s)", self.pending)
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._tasks.clear()


__all__ = [
    "DEFAULT_TITLE",
    "TITLE_MAX_LENGTH",
    "TITLE_SYSTEM_PROMPT",
    "TitleScheduler",
    "fallback_title",
    "generate_title",
]
