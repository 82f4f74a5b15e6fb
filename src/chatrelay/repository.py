"""SQLite-backed repository for chat documents."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from uuid import uuid4

import aiosqlite

ChatRecord = dict[str, Any]
MessageRecord = dict[str, Any]

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    """Return the current UTC time as an ISO8601 string."""

    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _decode_messages(raw: str | None) -> list[MessageRecord]:
    """Decode the stored message document, migrating legacy shapes."""

    if not raw:
        return []
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Discarding unreadable message document")
        return []
    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, dict)]
    if isinstance(payload, dict):
        # Older documents keyed messages by position
        return [item for item in payload.values() if isinstance(item, dict)]
    return []


def _row_to_chat(row: aiosqlite.Row) -> ChatRecord:
    return {
        "id": row["id"],
        "user_id": row["user_id"],
        "title": row["title"],
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
        "messages": _decode_messages(row["messages"]),
    }


class ChatRepository:
    """Persist chats as a single JSON message document per row."""

    def __init__(self, database_path: Path):
        self._path = database_path
        self._connection: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open the SQLite connection and ensure tables exist."""

        if self._connection is not None:
            return

        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = await aiosqlite.connect(self._path)
        self._connection.row_factory = aiosqlite.Row
        await self._connection.execute("PRAGMA journal_mode=WAL;")
        await self._create_schema()

    async def _create_schema(self) -> None:
        assert self._connection is not None
        await self._connection.executescript(
            """
            CREATE TABLE IF NOT EXISTS chats (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                title TEXT NOT NULL,
                messages TEXT NOT NULL DEFAULT '[]',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_chats_user_updated
                ON chats(user_id, updated_at);
            """
        )
        await self._connection.commit()

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    async def create_chat(self, user_id: str, title: str) -> ChatRecord:
        """Insert an empty chat owned by ``user_id``."""

        assert self._connection is not None
        chat_id = str(uuid4())
        now = utc_now_iso()
        await self._connection.execute(
            """
            INSERT INTO chats(id, user_id, title, messages, created_at, updated_at)
            VALUES (?, ?, ?, '[]', ?, ?)
            """,
            (chat_id, user_id, title, now, now),
        )
        await self._connection.commit()
        return {
            "id": chat_id,
            "user_id": user_id,
            "title": title,
            "created_at": now,
            "updated_at": now,
            "messages": [],
        }

    async def get_chat(
        self, chat_id: str, *, user_id: str | None = None
    ) -> ChatRecord | None:
        """Return a chat, optionally restricted to its owner."""

        assert self._connection is not None
        query = "SELECT * FROM chats WHERE id = ?"
        params: tuple[Any, ...] = (chat_id,)
        if user_id is not None:
            query += " AND user_id = ?"
            params = (chat_id, user_id)
        cursor = await self._connection.execute(query + " LIMIT 1", params)
        row = await cursor.fetchone()
        await cursor.close()
        if row is None:
            return None
        return _row_to_chat(row)

    async def list_chats(
        self, user_id: str, *, query: str | None = None
    ) -> list[ChatRecord]:
        """Return the user's chats, most recently updated first."""

        assert self._connection is not None
        sql = "SELECT * FROM chats WHERE user_id = ?"
        params: list[Any] = [user_id]
        if query and query.strip():
            sql += " AND title LIKE ? ESCAPE '\\'"
            escaped = (
                query.strip()
                .replace("\\", "\\\\")
                .replace("%", "\\%")
                .replace("_", "\\_")
            )
            params.append(f"%{escaped}%")
        sql += " ORDER BY updated_at DESC, rowid DESC"
        cursor = await self._connection.execute(sql, params)
        rows = await cursor.fetchall()
        await cursor.close()
        return [_row_to_chat(row) for row in rows]

    async def get_messages(self, chat_id: str) -> list[MessageRecord]:
        """Return the stored message list for a chat (empty when missing)."""

        chat = await self.get_chat(chat_id)
        if chat is None:
            return []
        return chat["messages"]

    async def update_messages(
        self,
        chat_id: str,
        messages: list[MessageRecord],
        *,
        title: str | None = None,
    ) -> bool:
        """Replace the message document, optionally updating the title."""

        assert self._connection is not None
        now = utc_now_iso()
        payload = json.dumps(messages, ensure_ascii=False)
        if title is None:
            cursor = await self._connection.execute(
                "UPDATE chats SET messages = ?, updated_at = ? WHERE id = ?",
                (payload, now, chat_id),
            )
        else:
            cursor = await self._connection.execute(
                """
                UPDATE chats SET messages = ?, title = ?, updated_at = ?
                WHERE id = ?
                """,
                (payload, title, now, chat_id),
            )
        await self._connection.commit()
        updated = cursor.rowcount
        await cursor.close()
        return updated > 0

    async def update_title(
        self, chat_id: str, title: str, *, user_id: str | None = None
    ) -> bool:
        """Set the chat title; returns False when no chat matched."""

        assert self._connection is not None
        sql = "UPDATE chats SET title = ?, updated_at = ? WHERE id = ?"
        params: tuple[Any, ...] = (title, utc_now_iso(), chat_id)
        if user_id is not None:
            sql += " AND user_id = ?"
            params = params + (user_id,)
        cursor = await self._connection.execute(sql, params)
        await self._connection.commit()
        updated = cursor.rowcount
        await cursor.close()
        return updated > 0

    async def delete_chat(self, chat_id: str, user_id: str) -> bool:
        """Delete a chat owned by ``user_id``."""

        assert self._connection is not None
        cursor = await self._connection.execute(
            "DELETE FROM chats WHERE id = ? AND user_id = ?",
            (chat_id, user_id),
        )
        await self._connection.commit()
        deleted = cursor.rowcount
        await cursor.close()
        return deleted > 0

    async def delete_user_chats(self, user_id: str) -> int:
        """Remove every chat owned by ``user_id`` and return the count."""

        assert self._connection is not None
        cursor = await self._connection.execute(
            "DELETE FROM chats WHERE user_id = ?", (user_id,)
        )
        await self._connection.commit()
        deleted = cursor.rowcount
        await cursor.close()
        return deleted


__all__ = ["ChatRecord", "ChatRepository", "MessageRecord", "utc_now_iso"]
