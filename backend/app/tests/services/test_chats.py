import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import col, select

from app.core.db import transaction
from app.errors import NotFoundError, StorageError, ValidationError
from app.models import ChatSession, ChatStatus
from app.services.chats import ChatSessionManager, resolve_status, validate_conversation

HELLO = [{"role": "user", "content": "hi"}]


async def _statuses(session_factory, user_id: str) -> dict[int, str]:
    async with transaction(session_factory) as session:
        rows = (await session.exec(select(ChatSession).where(col(ChatSession.user_id) == user_id))).all()
    return {row.id: ChatStatus(row.status).value for row in rows}


async def _insert(session_factory, user_id: str, status: ChatStatus) -> int:
    async with transaction(session_factory) as session:
        row = ChatSession(user_id=user_id, conversation=[], status=status.value)
        session.add(row)
        await session.flush()
        return row.id


@pytest.mark.parametrize(
    "raw, expected",
    [
        (None, ChatStatus.INCOMPLETE),
        ("bogus", ChatStatus.INCOMPLETE),
        ("archived", ChatStatus.INCOMPLETE),
        ("paused", ChatStatus.PAUSED),
        (ChatStatus.COMPLETED, ChatStatus.COMPLETED),
    ],
)
def test_resolve_status(raw, expected):
    assert resolve_status(raw) == expected


def test_validate_conversation_rejects_non_lists():
    with pytest.raises(ValidationError):
        validate_conversation({"role": "user"})
    with pytest.raises(ValidationError):
        validate_conversation(["not a message"])
    assert validate_conversation([]) == []


@pytest.mark.asyncio
async def test_session_lifecycle(chat_manager, session_factory):
    created = await chat_manager.create("u1", HELLO)
    assert created.status == ChatStatus.INCOMPLETE
    assert created.should_start_fresh is False

    status = await chat_manager.get_session_status("u1")
    assert status.session_type == "resume"
    assert status.has_active_session is True
    assert status.chat.id == created.id
    assert status.chat.conversation == HELLO

    conversation = HELLO + [{"role": "assistant", "content": "hello"}]
    updated = await chat_manager.update(created.id, conversation, "completed")
    assert updated.should_start_fresh is True
    assert updated.conversation == conversation

    status = await chat_manager.get_session_status("u1")
    assert status.session_type == "fresh"
    assert status.should_start_fresh is True
    assert status.chat is None
    assert status.history_count == 1
    assert await _statuses(session_factory, "u1") == {created.id: "completed"}


@pytest.mark.asyncio
async def test_completing_archives_other_live_sessions(chat_manager, session_factory):
    first = await _insert(session_factory, "u1", ChatStatus.INCOMPLETE)
    second = await _insert(session_factory, "u1", ChatStatus.PAUSED)
    other_user = await _insert(session_factory, "u2", ChatStatus.INCOMPLETE)

    await chat_manager.update(second, HELLO, "completed")

    assert await _statuses(session_factory, "u1") == {first: "archived", second: "completed"}
    assert await _statuses(session_factory, "u2") == {other_user: "incomplete"}
    status = await chat_manager.get_session_status("u1")
    assert status.session_type == "fresh"
    assert status.history_count == 2


@pytest.mark.asyncio
async def test_stopping_archives_other_live_sessions_but_stays_resumable(chat_manager, session_factory):
    first = await _insert(session_factory, "u1", ChatStatus.INCOMPLETE)
    second = await _insert(session_factory, "u1", ChatStatus.INCOMPLETE)

    await chat_manager.update(second, HELLO, "stopped")

    assert await _statuses(session_factory, "u1") == {first: "archived", second: "stopped"}
    status = await chat_manager.get_session_status("u1")
    assert status.session_type == "resume"
    assert status.chat.id == second


@pytest.mark.asyncio
async def test_create_completed_archives_live_sessions(chat_manager, session_factory):
    live = await _insert(session_factory, "u1", ChatStatus.PAUSED)

    created = await chat_manager.create("u1", HELLO, "completed")

    assert created.should_start_fresh is True
    assert await _statuses(session_factory, "u1") == {live: "archived", created.id: "completed"}


@pytest.mark.asyncio
async def test_create_live_session_keeps_existing_ones(chat_manager, session_factory):
    live = await _insert(session_factory, "u1", ChatStatus.PAUSED)

    created = await chat_manager.create("u1", HELLO, "archived")

    assert created.status == ChatStatus.INCOMPLETE
    assert await _statuses(session_factory, "u1") == {live: "paused", created.id: "incomplete"}


@pytest.mark.asyncio
async def test_session_status_resumes_most_recent_live_session(chat_manager):
    older = await chat_manager.create("u1", HELLO)
    newer = await chat_manager.create("u1", HELLO, "paused")

    await chat_manager.update(older.id, HELLO + HELLO, "incomplete")
    status = await chat_manager.get_session_status("u1")
    assert status.chat.id == older.id

    await chat_manager.update(newer.id, HELLO, "paused")
    status = await chat_manager.get_session_status("u1")
    assert status.chat.id == newer.id
    assert "paused" in status.message


@pytest.mark.asyncio
async def test_latest_matches_session_status(chat_manager):
    await chat_manager.create("u1", HELLO)

    assert (await chat_manager.latest("u1")).session_type == "resume"
    assert (await chat_manager.latest("nobody")).history_count == 0


@pytest.mark.asyncio
async def test_update_missing_session(chat_manager):
    with pytest.raises(NotFoundError):
        await chat_manager.update(999, HELLO, "completed")


@pytest.mark.asyncio
async def test_create_rejects_bad_input(chat_manager, session_factory):
    with pytest.raises(ValidationError):
        await chat_manager.create("", HELLO)
    with pytest.raises(ValidationError):
        await chat_manager.create("u1", "not a list")

    assert await _statuses(session_factory, "u1") == {}


@pytest.mark.asyncio
async def test_counts(chat_manager, session_factory):
    for status in (
        ChatStatus.INCOMPLETE,
        ChatStatus.PAUSED,
        ChatStatus.COMPLETED,
        ChatStatus.COMPLETED,
        ChatStatus.ARCHIVED,
    ):
        await _insert(session_factory, "u1", status)
    await _insert(session_factory, "u2", ChatStatus.STOPPED)

    counts = await chat_manager.counts("u1")

    assert counts.incomplete == 1
    assert counts.paused == 1
    assert counts.stopped == 0
    assert counts.completed == 2
    assert counts.archived == 1
    assert counts.active == 2
    assert counts.total == 5


@pytest.mark.asyncio
async def test_counts_for_unknown_user_are_zero(chat_manager):
    counts = await chat_manager.counts("nobody")
    assert counts.total == 0
    assert counts.active == 0


@pytest.mark.asyncio
async def test_history_filters_and_pagination(chat_manager, session_factory):
    for status in (ChatStatus.COMPLETED, ChatStatus.COMPLETED, ChatStatus.COMPLETED, ChatStatus.PAUSED):
        await _insert(session_factory, "u1", status)

    page = await chat_manager.history("u1", limit=2)
    assert len(page.sessions) == 2
    assert page.pagination.total == 4
    assert page.pagination.has_more is True
    ids = [s.id for s in page.sessions]
    assert ids == sorted(ids, reverse=True)

    last = await chat_manager.history("u1", limit=2, offset=2)
    assert len(last.sessions) == 2
    assert last.pagination.has_more is False

    completed = await chat_manager.history("u1", status="completed")
    assert completed.pagination.total == 3
    assert {s.status for s in completed.sessions} == {ChatStatus.COMPLETED}

    active = await chat_manager.history("u1", status="active")
    assert [s.status for s in active.sessions] == [ChatStatus.PAUSED]
    assert active.filter == "active"


@pytest.mark.asyncio
async def test_history_rejects_unknown_status(chat_manager):
    with pytest.raises(ValidationError):
        await chat_manager.history("u1", status="finished")
    with pytest.raises(ValidationError):
        await chat_manager.history("u1", limit=0)


@pytest.mark.asyncio
async def test_get_and_delete(chat_manager, session_factory):
    created = await chat_manager.create("u1", HELLO)

    fetched = await chat_manager.get_by_id(created.id)
    assert fetched.user_id == "u1"

    deleted = await chat_manager.delete(created.id)
    assert deleted.id == created.id
    assert deleted.status == ChatStatus.INCOMPLETE
    assert await _statuses(session_factory, "u1") == {}

    with pytest.raises(NotFoundError):
        await chat_manager.get_by_id(created.id)
    with pytest.raises(NotFoundError):
        await chat_manager.delete(created.id)


class BrokenArchiveChatManager(ChatSessionManager):
    """Archives, then fails as if the connection dropped mid-transaction."""

    async def _archive_live(self, session, user_id, *, exclude_id=None):
        archived = await super()._archive_live(session, user_id, exclude_id=exclude_id)
        assert archived
        raise OperationalError("INSERT INTO chat", {}, Exception("disk I/O error"))


@pytest.mark.asyncio
async def test_failed_create_rolls_back_archival(session_factory):
    live = await _insert(session_factory, "u1", ChatStatus.PAUSED)
    manager = BrokenArchiveChatManager(session_factory)

    with pytest.raises(StorageError):
        await manager.create("u1", HELLO, "completed")

    assert await _statuses(session_factory, "u1") == {live: "paused"}


@pytest.mark.asyncio
async def test_failed_update_rolls_back_archival(session_factory):
    first = await _insert(session_factory, "u1", ChatStatus.INCOMPLETE)
    second = await _insert(session_factory, "u1", ChatStatus.PAUSED)
    manager = BrokenArchiveChatManager(session_factory)

    with pytest.raises(StorageError):
        await manager.update(second, HELLO, "completed")

    assert await _statuses(session_factory, "u1") == {first: "incomplete", second: "paused"}
