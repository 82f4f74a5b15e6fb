"""Tests for transcript persistence and message numbering."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest

from chatrelay.chat.transcript import (
    TranscriptPersister,
    TranscriptUpdate,
    append_turn,
    next_message_number,
    normalize_messages,
    rebuild_for_edit,
)
from chatrelay.repository import ChatRepository
from chatrelay.schemas.chat import ChatMessage, FileAttachment

NOW = "2026-01-01T00:00:00Z"


def _stored(role: str, content: str, number: int, **extra) -> dict:
    return {
        "id": f"{role}-{number}",
        "role": role,
        "content": content,
        "created_at": f"2025-12-0{number}T00:00:00Z",
        "message_number": number,
        **extra,
    }


def test_normalize_backfills_metadata():
    messages = normalize_messages(
        [{"role": "user", "content": "a"}, {"role": "assistant", "content": "b"}],
        now=NOW,
    )
    assert [m["message_number"] for m in messages] == [1, 2]
    assert all(m["id"] and m["created_at"] == NOW for m in messages)


def test_next_message_number():
    assert next_message_number([]) == 1
    assert next_message_number([_stored("user", "a", 1), _stored("assistant", "b", 4)]) == 5


def test_append_turn_numbers_user_and_assistant():
    stored = [_stored("user", "Hi", 1), _stored("assistant", "Hello", 2)]
    history = [
        ChatMessage(role="user", content="Hi"),
        ChatMessage(role="assistant", content="Hello"),
        ChatMessage(role="user", content="Draw a cat"),
    ]

    messages = append_turn(
        stored, history, "Here it is", [{"url": "u", "prompt": "a cat"}], now=NOW
    )

    assert [m["message_number"] for m in messages] == [1, 2, 3, 4]
    user, assistant = messages[2:]
    assert user["role"] == "user" and user["content"] == "Draw a cat"
    assert user["files"] is None
    assert assistant["content"] == "Here it is"
    assert assistant["images"] == [{"url": "u", "prompt": "a cat"}]


def test_append_turn_without_trailing_user_adds_only_assistant():
    history = [ChatMessage(role="assistant", content="Earlier")]
    messages = append_turn([], history, "Again", [], now=NOW)

    assert len(messages) == 1
    assert messages[0]["role"] == "assistant"
    assert messages[0]["images"] is None


def test_edit_recovers_prefix_metadata_and_renumbers_tail():
    stored = [
        _stored("user", "U1", 1),
        _stored("assistant", "A1", 2, images=[{"url": "old", "prompt": "p"}]),
        _stored("user", "U2", 3),
        _stored("assistant", "A2", 4),
    ]
    history = [
        ChatMessage(role="user", content="U1"),
        ChatMessage(role="assistant", content="A1"),
        ChatMessage(role="user", content="U2 edited"),
    ]

    messages = rebuild_for_edit(stored, history, "A2 new", [], now=NOW)

    assert [m["content"] for m in messages] == ["U1", "A1", "U2 edited", "A2 new"]
    assert [m["message_number"] for m in messages] == [1, 2, 3, 4]
    assert messages[0]["id"] == "user-1"
    assert messages[0]["created_at"] == "2025-12-01T00:00:00Z"
    assert messages[1]["id"] == "assistant-2"
    assert messages[1]["created_at"] == "2025-12-02T00:00:00Z"
    assert messages[1]["images"] == [{"url": "old", "prompt": "p"}]
    assert messages[2]["edited"] is True
    assert messages[2]["edited_at"] == NOW
    assert messages[2]["id"] not in {"user-3", "assistant-4"}


def test_edit_renumbers_prefix_sequentially():
    stored = [
        _stored("user", "same", 5),
        _stored("assistant", "reply", 2),
    ]
    history = [
        ChatMessage(role="user", content="same"),
        ChatMessage(role="assistant", content="reply"),
        ChatMessage(role="user", content="new"),
    ]

    messages = rebuild_for_edit(stored, history, "answer", [], now=NOW)

    assert [m["message_number"] for m in messages] == [1, 2, 3, 4]
    assert [m["id"] for m in messages[:2]] == ["user-5", "assistant-2"]


def test_edit_matching_later_messages_starts_numbering_at_one():
    stored = [
        _stored("user", "hi", 1),
        _stored("assistant", "hello", 2),
        _stored("user", "more", 3),
        _stored("assistant", "ok", 4),
    ]
    history = [
        ChatMessage(role="user", content="more"),
        ChatMessage(role="assistant", content="ok"),
        ChatMessage(role="user", content="more, edited"),
    ]

    messages = rebuild_for_edit(stored, history, "new answer", [], now=NOW)

    assert [m["message_number"] for m in messages] == [1, 2, 3, 4]
    assert [m["id"] for m in messages[:2]] == ["user-3", "assistant-4"]
    assert messages[0]["created_at"] == "2025-12-03T00:00:00Z"


def test_normalize_backfill_skips_taken_numbers():
    stored = [
        _stored("user", "a", 2),
        {"id": "legacy", "role": "assistant", "content": "b", "created_at": NOW},
    ]

    messages = normalize_messages(stored, now=NOW)

    assert [m["message_number"] for m in messages] == [2, 3]
    assert messages[1]["id"] == "legacy"


def test_normalize_renumbers_duplicates():
    stored = [_stored("user", "a", 1), {**_stored("assistant", "b", 1), "id": "dup"}]

    messages = normalize_messages(stored, now=NOW)

    assert [(m["id"], m["message_number"]) for m in messages] == [("user-1", 1), ("dup", 2)]


def test_append_after_legacy_record_keeps_numbers_unique():
    stored = [
        _stored("user", "a", 2),
        {"id": "legacy", "role": "assistant", "content": "b", "created_at": NOW},
    ]
    history = [
        ChatMessage(role="user", content="a"),
        ChatMessage(role="assistant", content="b"),
        ChatMessage(role="user", content="c"),
    ]

    messages = append_turn(stored, history, "d", [], now=NOW)

    assert [m["message_number"] for m in messages] == [2, 3, 4, 5]


def test_edit_matches_duplicate_content_once():
    stored = [
        _stored("user", "again", 1),
        _stored("assistant", "ok", 2),
        _stored("user", "again", 3),
        _stored("assistant", "ok", 4),
    ]
    history = [
        ChatMessage(role="user", content="again"),
        ChatMessage(role="assistant", content="ok"),
        ChatMessage(role="user", content="again"),
        ChatMessage(role="assistant", content="ok"),
        ChatMessage(role="user", content="third"),
    ]

    messages = rebuild_for_edit(stored, history, "reply", [], now=NOW)

    assert [m["id"] for m in messages[:4]] == [
        "user-1",
        "assistant-2",
        "user-3",
        "assistant-4",
    ]


@pytest.fixture
async def repository(tmp_path):
    repo = ChatRepository(tmp_path / "chats.db")
    await repo.initialize()
    try:
        yield repo
    finally:
        await repo.close()


@pytest.mark.anyio
async def test_concurrent_sends_do_not_share_numbers(repository):
    chat = await repository.create_chat("user-1", "New Chat")
    persister = TranscriptPersister(repository)

    updates = [
        TranscriptUpdate(
            chat_id=chat["id"],
            history=[ChatMessage(role="user", content=text)],
            assistant_text=f"re: {text}",
        )
        for text in ("first", "second")
    ]
    await asyncio.gather(*(persister.persist(update) for update in updates))

    messages = await repository.get_messages(chat["id"])
    assert sorted(m["message_number"] for m in messages) == [1, 2, 3, 4]


@pytest.mark.anyio
async def test_persisted_files_and_images_reload_unchanged(repository):
    chat = await repository.create_chat("user-1", "New Chat")
    persister = TranscriptPersister(repository)
    file = FileAttachment(
        name="notes.txt", type="text/plain", size=5, data="data:text/plain;base64,aGVsbG8="
    )
    images = [{"url": "https://img/cat.png", "prompt": "a cat"}]

    written = await persister.persist(
        TranscriptUpdate(
            chat_id=chat["id"],
            history=[ChatMessage(role="user", content="See file", files=[file])],
            assistant_text="Here is a cat",
            images=images,
        )
    )

    loaded = await repository.get_messages(chat["id"])
    assert loaded == written
    assert loaded[0]["files"] == [file.model_dump(mode="json")]
    assert loaded[1]["images"] == images


@pytest.mark.anyio
async def test_first_message_sets_temporary_title_and_schedules(repository):
    chat = await repository.create_chat("user-1", "New Chat")
    scheduler = MagicMock()
    persister = TranscriptPersister(repository, title_scheduler=scheduler)
    text = "Please explain how sourdough fermentation works in detail today"

    await persister.persist(
        TranscriptUpdate(
            chat_id=chat["id"],
            history=[ChatMessage(role="user", content=text)],
            assistant_text="Sure.",
        )
    )

    stored = await repository.get_chat(chat["id"])
    assert stored["title"] == text[:50]
    scheduler.schedule.assert_called_once_with(chat["id"], text)


@pytest.mark.anyio
async def test_later_messages_do_not_retitle(repository):
    chat = await repository.create_chat("user-1", "Existing")
    await repository.update_messages(
        chat["id"], [_stored("user", "U1", 1), _stored("assistant", "A1", 2)]
    )
    scheduler = MagicMock()
    persister = TranscriptPersister(repository, title_scheduler=scheduler)

    await persister.persist(
        TranscriptUpdate(
            chat_id=chat["id"],
            history=[
                ChatMessage(role="user", content="U1"),
                ChatMessage(role="assistant", content="A1"),
                ChatMessage(role="user", content="U2"),
            ],
            assistant_text="A2",
        )
    )

    assert (await repository.get_chat(chat["id"]))["title"] == "Existing"
    scheduler.schedule.assert_not_called()


@pytest.mark.anyio
async def test_editing_first_message_retitles(repository):
    chat = await repository.create_chat("user-1", "Old title")
    await repository.update_messages(
        chat["id"], [_stored("user", "U1", 1), _stored("assistant", "A1", 2)]
    )
    scheduler = MagicMock()
    persister = TranscriptPersister(repository, title_scheduler=scheduler)

    await persister.persist(
        TranscriptUpdate(
            chat_id=chat["id"],
            history=[ChatMessage(role="user", content="Rewritten question")],
            assistant_text="New answer",
            is_edit=True,
        )
    )

    stored = await repository.get_chat(chat["id"])
    assert stored["title"] == "Rewritten question"
    assert [m["content"] for m in stored["messages"]] == ["Rewritten question", "New answer"]
    scheduler.schedule.assert_called_once_with(chat["id"], "Rewritten question")


@pytest.mark.anyio
async def test_missing_chat_is_reported_not_raised(repository):
    persister = TranscriptPersister(repository)
    result = await persister.persist(
        TranscriptUpdate(
            chat_id="missing",
            history=[ChatMessage(role="user", content="hi")],
            assistant_text="hello",
        )
    )
    assert result is None


@pytest.mark.anyio
async def test_storage_failure_is_logged(caplog):
    repo = MagicMock()

    async def _boom(*args, **kwargs):
        raise RuntimeError("disk full")

    repo.get_chat = _boom
    persister = TranscriptPersister(repo)

    result = await persister.persist(
        TranscriptUpdate(
            chat_id="c1",
            history=[ChatMessage(role="user", content="hi")],
            assistant_text="hello",
        )
    )

    assert result is None
    assert "Failed to persist chat c1" in caplog.text
