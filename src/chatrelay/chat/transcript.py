"""Reconcile a finished turn with the stored chat document."""

from __future__ import annotations

import asyncio
import logging
import weakref
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence
from uuid import uuid4

from ..repository import ChatRepository, MessageRecord, utc_now_iso
from ..schemas.chat import ChatMessage
from ..services.title_service import TitleScheduler, fallback_title

logger = logging.getLogger(__name__)

_METADATA_KEYS = ("id", "created_at", "message_number", "edited", "edited_at")


@dataclass
class TranscriptUpdate:
    """The data a finished relay hands over for persistence."""

    chat_id: str
    history: list[ChatMessage]
    assistant_text: str
    images: list[dict[str, Any]] = field(default_factory=list)
    is_edit: bool = False


def _valid_number(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def normalize_messages(
    raw: Sequence[MessageRecord], *, now: str
) -> list[MessageRecord]:
    """Backfill ``id``/``created_at``/``message_number`` and order by number.

    A number that is unusable or already taken is replaced with the next one
    after the highest valid number, in storage order.
    """

    numbers = [m.get("message_number") for m in raw]
    next_number = max((n for n in numbers if _valid_number(n)), default=0) + 1
    seen: set[int] = set()
    normalized: list[MessageRecord] = []
    for message in raw:
        record = dict(message)
        if not record.get("id"):
            record["id"] = str(uuid4())
        if not record.get("created_at"):
            record["created_at"] = now
        number = record.get("message_number")
        if not _valid_number(number) or number in seen:
            number = next_number
            next_number += 1
            record["message_number"] = number
        seen.add(number)
        normalized.append(record)
    normalized.sort(key=lambda item: item["message_number"])
    return normalized


def next_message_number(messages: Sequence[MessageRecord]) -> int:
    numbers = [m["message_number"] for m in messages if _valid_number(m.get("message_number"))]
    return max(numbers) + 1 if numbers else 1


def _user_record(
    message: ChatMessage, number: int, now: str, *, edited: bool = False
) -> MessageRecord:
    record: MessageRecord = {
        "id": str(uuid4()),
        "role": "user",
        "content": message.content,
        "files": [f.model_dump(mode="json") for f in message.files] if message.files else None,
        "created_at": now,
        "message_number": number,
    }
    if edited:
        record["edited"] = True
        record["edited_at"] = now
    return record


def _assistant_record(
    text: str, images: Sequence[dict[str, Any]], number: int, now: str
) -> MessageRecord:
    return {
        "id": str(uuid4()),
        "role": "assistant",
        "content": text,
        "images": [dict(image) for image in images] if images else None,
        "created_at": now,
        "message_number": number,
    }


def append_turn(
    stored: Sequence[MessageRecord],
    history: Sequence[ChatMessage],
    assistant_text: str,
    images: Sequence[dict[str, Any]],
    *,
    now: str,
) -> list[MessageRecord]:
    """Append the triggering user turn (if any) and the assistant reply."""

    messages = normalize_messages(stored, now=now)
    number = next_message_number(messages)
    last = history[-1] if history else None
    if last is not None and last.role == "user":
        messages.append(_user_record(last, number, now))
        number += 1
    messages.append(_assistant_record(assistant_text, images, number, now))
    return messages


def _find_match(
    previous: Sequence[MessageRecord], message: ChatMessage, used: set[int]
) -> MessageRecord | None:
    for index, candidate in enumerate(previous):
        if index in used:
            continue
        if candidate.get("role") == message.role and candidate.get("content") == message.content:
            used.add(index)
            return candidate
    return None


def rebuild_for_edit(
    stored: Sequence[MessageRecord],
    history: Sequence[ChatMessage],
    assistant_text: str,
    images: Sequence[dict[str, Any]],
    *,
    now: str,
) -> list[MessageRecord]:
    """Rebuild the chat from the client's truncated history plus the new turn.

    Every message before the edited one keeps its stored ``id``,
    ``created_at`` and edit markers when an unused stored message with the
    same role and content exists. Numbers are reassigned from 1 in history
    order.
    """

    previous = normalize_messages(stored, now=now)
    if history and history[-1].role == "user":
        prefix, edited = list(history[:-1]), history[-1]
    else:
        prefix, edited = list(history), None

    used: set[int] = set()
    rebuilt: list[MessageRecord] = []
    for message in prefix:
        record = message.to_record()
        for key in _METADATA_KEYS:
            record.pop(key, None)

        match = _find_match(previous, message, used)
        if match is not None:
            record["id"] = match["id"]
            record["created_at"] = match["created_at"]
            for key in ("edited", "edited_at"):
                if key in match:
                    record[key] = match[key]
            if message.role == "assistant" and not record.get("images") and match.get("images"):
                record["images"] = match["images"]
        else:
            record["id"] = str(uuid4())
            record["created_at"] = now

        record["message_number"] = len(rebuilt) + 1
        rebuilt.append(record)

    number = len(rebuilt) + 1
    if edited is not None:
        rebuilt.append(_user_record(edited, number, now, edited=True))
        number += 1
    rebuilt.append(_assistant_record(assistant_text, images, number, now))
    return rebuilt


def _title_seed(stored: Sequence[MessageRecord], update: TranscriptUpdate) -> str | None:
    """Return the message text when this turn is (or replaces) the first user message."""

    if not update.history or update.history[-1].role != "user":
        return None
    latest = update.history[-1]
    if update.is_edit:
        earlier_users = [m for m in update.history[:-1] if m.role == "user"]
        return None if earlier_users else latest.content
    if any(m.get("role") == "user" for m in stored):
        return None
    return latest.content


class TranscriptPersister:
    """Write finished turns back to the chat document.

    Read-modify-write cycles for the same chat id are serialized so that
    concurrent sends never reuse a ``message_number``.
    """

    def __init__(
        self,
        repository: ChatRepository,
        *,
        title_scheduler: TitleScheduler | None = None,
        clock: Callable[[], str] = utc_now_iso,
    ) -> None:
        self._repo = repository
        self._titles = title_scheduler
        self._clock = clock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, chat_id: str) -> asyncio.Lock:
        lock = self._locks.get(chat_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[chat_id] = lock
        return lock

    async def persist(self, update: TranscriptUpdate) -> list[MessageRecord] | None:
        """Persist ``update``; failures are logged and reported as ``None``."""

        lock = self._lock_for(update.chat_id)
        async with lock:
            try:
                chat = await self._repo.get_chat(update.chat_id)
                if chat is None:
                    logger.warning("Chat %s disappeared before persistence", update.chat_id)
                    return None
                stored = chat["messages"]
                now = self._clock()
                build = rebuild_for_edit if update.is_edit else append_turn
                messages = build(
                    stored,
                    update.history,
                    update.assistant_text,
                    update.images,
                    now=now,
                )
                seed = _title_seed(stored, update)
                await self._repo.update_messages(
                    update.chat_id,
                    messages,
                    title=fallback_title(seed) if seed else None,
                )
            except Exception:
                logger.exception("Failed to persist chat %s", update.chat_id)
                return None

        logger.debug(
            "Persisted %d message(s) for chat %s", len(messages), update.chat_id
        )
        if seed and self._titles is not None:
            self._titles.schedule(update.chat_id, seed)
        return messages


__all__ = [
    "TranscriptPersister",
    "TranscriptUpdate",
    "append_turn",
    "next_message_number",
    "normalize_messages",
    "rebuild_for_edit",
]
