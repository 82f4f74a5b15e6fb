"""Chat orchestrator coordinating repository, streaming handler, and persistence."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, AsyncGenerator

import anyio

from ..config import PROJECT_ROOT
from ..openai_client import OpenAIClient
from ..repository import ChatRepository
from ..schemas.chat import ChatStreamRequest
from ..services.title_service import TitleScheduler, fallback_title, generate_title
from .conversation import build_conversation, build_system_prompt
from .streaming import (
    ChatAssigned,
    Done,
    RelayPhase,
    RelayTurn,
    StreamEvent,
    StreamingHandler,
    ToolCallExecutor,
)
from .transcript import TranscriptPersister, TranscriptUpdate

if TYPE_CHECKING:
    from ..config import Settings

logger = logging.getLogger(__name__)


class ChatRequestError(Exception):
    """A request that cannot start a turn; mapped to an HTTP status."""

    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class InvalidChatRequest(ChatRequestError):
    status_code = 400


class ChatNotFoundError(ChatRequestError):
    status_code = 404


class ConfigurationError(ChatRequestError):
    status_code = 500


@dataclass
class PreparedTurn:
    """A validated request bound to the chat it will be persisted into."""

    chat_id: str
    user_id: str
    request: ChatStreamRequest
    conversation: list[dict[str, Any]]
    created: bool = False


def _resolve_path(path: Path, root: Path) -> Path:
    return path if path.is_absolute() else root / path


class ChatOrchestrator:
    """High-level coordination for chat turns."""

    def __init__(
        self,
        settings: Settings,
        *,
        client: Any | None = None,
        repository: ChatRepository | None = None,
        project_root: Path = PROJECT_ROOT,
    ):
        self._settings = settings
        self._project_root = project_root
        self._repo = repository or ChatRepository(
            _resolve_path(settings.chat_database_path, project_root)
        )
        self._client = client if client is not None else OpenAIClient(settings)
        self._titles = TitleScheduler(
            self._client, self._write_title, model=settings.title_model
        )
        self._persister = TranscriptPersister(self._repo, title_scheduler=self._titles)
        self._streaming = StreamingHandler(
            self._client,
            ToolCallExecutor(self._client),
            model=settings.chat_model,
            stream_responses=settings.stream_responses,
            flush_min_chars=settings.stream_flush_min_chars,
            flush_interval=settings.stream_flush_interval,
        )
        self._init_lock = asyncio.Lock()
        self._ready = asyncio.Event()

    async def initialize(self) -> None:
        """Initialize the database once."""

        async with self._init_lock:
            if self._ready.is_set():
                return
            await self._repo.initialize()
            self._ready.set()
            logger.info("Chat orchestrator ready (model=%s)", self._settings.chat_model)

    async def shutdown(self) -> None:
        """Clean up held resources."""

        grace = self._settings.title_shutdown_grace_seconds
        try:
            await asyncio.wait_for(self._titles.aclose(grace=grace), timeout=grace + 5.0)
        except (asyncio.TimeoutError, Exception) as exc:
            logger.warning("Error cancelling title tasks: %s", exc)

        try:
            await asyncio.wait_for(self._client.aclose(), timeout=2.0)
        except (asyncio.TimeoutError, Exception) as exc:
            logger.warning("Error closing OpenAI client: %s", exc)

        try:
            await asyncio.wait_for(self._repo.close(), timeout=2.0)
        except (asyncio.TimeoutError, Exception) as exc:
            logger.warning("Error closing repository: %s", exc)

        self._ready.clear()

    @property
    def repository(self) -> ChatRepository:
        return self._repo

    @property
    def client(self) -> Any:
        return self._client

    @property
    def titles(self) -> TitleScheduler:
        return self._titles

    async def _write_title(self, chat_id: str, title: str) -> None:
        await self._repo.update_title(chat_id, title)

    async def _load_system_prompt(self) -> str:
        path = _resolve_path(self._settings.system_prompt_path, self._project_root)
        try:
            base = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except OSError as exc:
            logger.error("Unable to read system prompt %s: %s", path, exc)
            raise ConfigurationError("System prompt is not available") from exc
        return build_system_prompt(base)

    async def prepare_turn(
        self, request: ChatStreamRequest, user_id: str
    ) -> PreparedTurn:
        """Validate the request and bind it to a chat owned by ``user_id``.

        Raises a ``ChatRequestError`` subclass before any stream is opened.
        """

        await self.initialize()

        if not request.messages:
            raise InvalidChatRequest("Messages are required")
        if not self._client.is_configured:
            raise ConfigurationError("OpenAI API key is not configured")

        system_prompt = await self._load_system_prompt()

        created = False
        if request.chat_id:
            chat = await self._repo.get_chat(request.chat_id, user_id=user_id)
            if chat is None:
                raise ChatNotFoundError("Chat not found")
            chat_id = chat["id"]
        else:
            first_user = next(
                (m.content for m in request.messages if m.role == "user"), None
            )
            chat = await self._repo.create_chat(user_id, fallback_title(first_user))
            chat_id = chat["id"]
            created = True
            logger.info("Created chat %s for user %s", chat_id, user_id)

        conversation = build_conversation(request.messages, system_prompt)
        return PreparedTurn(
            chat_id=chat_id,
            user_id=user_id,
            request=request,
            conversation=conversation,
            created=created,
        )

    async def stream_turn(
        self, prepared: PreparedTurn
    ) -> AsyncGenerator[StreamEvent, None]:
        """Relay one turn, then persist it even if the consumer goes away."""

        turn = RelayTurn()
        relay = self._streaming.stream_conversation(prepared.conversation, turn)
        try:
            async for event in relay:
                yield event
            if turn.error is None:
                yield ChatAssigned(prepared.chat_id)
            yield Done()
        finally:
            with anyio.CancelScope(shield=True):
                if turn.phase is not RelayPhase.FINALIZING:
                    logger.info(
                        "Stream for chat %s ended early during %s",
                        prepared.chat_id,
                        turn.phase.value,
                    )
                # Closing the relay closes the upstream HTTP stream
                await relay.aclose()
                await self._persister.persist(
                    TranscriptUpdate(
                        chat_id=prepared.chat_id,
                        history=list(prepared.request.messages),
                        assistant_text=turn.text,
                        images=list(turn.images),
                        is_edit=prepared.request.is_edit,
                    )
                )
            turn.phase = RelayPhase.CLOSED

    async def generate_title_now(
        self, chat_id: str, user_id: str, first_message: str | None
    ) -> str:
        """Generate and store a title synchronously, falling back to the message text."""

        if not first_message or not first_message.strip():
            raise InvalidChatRequest("firstMessage is required")
        chat = await self._repo.get_chat(chat_id, user_id=user_id)
        if chat is None:
            raise ChatNotFoundError("Chat not found")

        title = await generate_title(
            self._client, first_message, model=self._settings.title_model
        )
        if title is None:
            title = fallback_title(first_message)
        await self._repo.update_title(chat_id, title, user_id=user_id)
        return title


__all__ = [
    "ChatNotFoundError",
    "ChatOrchestrator",
    "ChatRequestError",
    "ConfigurationError",
    "InvalidChatRequest",
    "PreparedTurn",
]
