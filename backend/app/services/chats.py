"""Chat sessions and their lifecycle.

A user has at most one live session (incomplete, paused or stopped) to
resume. Whenever a session is written as completed or stopped, every other
live session of that user is archived in the same transaction.
"""
import logging
from typing import Any

from sqlalchemy import func, update
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.db import SessionFactory, transaction
from app.errors import NotFoundError, ValidationError
from app.models import (
    CREATABLE_STATUSES,
    FRESH_START_STATUSES,
    LIVE_STATUSES,
    OWNER_MAX_LENGTH,
    ChatCounts,
    ChatDeleted,
    ChatHistory,
    ChatSession,
    ChatSessionPublic,
    ChatSessionWrite,
    ChatStatus,
    Pagination,
    SessionStatus,
    get_datetime_utc,
)

logger = logging.getLogger(__name__)

HISTORY_FILTERS = ("all", "active")


def validate_user_id(user_id: str) -> str:
    if not user_id or not user_id.strip():
        raise ValidationError("User ID is required", details=[{"field": "user_id", "message": "required"}])
    if len(user_id) > OWNER_MAX_LENGTH:
        raise ValidationError(
            f"User ID cannot exceed {OWNER_MAX_LENGTH} characters",
            details=[{"field": "user_id", "message": "too long"}],
        )
    return user_id


def validate_conversation(conversation: Any) -> list[dict[str, Any]]:
    if not isinstance(conversation, list):
        raise ValidationError(
            "Invalid conversation format: conversation must be an array",
            details=[{"field": "conversation", "message": "must be an array"}],
        )
    for index, message in enumerate(conversation):
        if not isinstance(message, dict):
            raise ValidationError(
                "Invalid conversation format: every message must be an object",
                details=[{"field": f"conversation.{index}", "message": "must be an object"}],
            )
    return conversation


def resolve_status(status: ChatStatus | str | None) -> ChatStatus:
    """Statuses a client may not set fall back to ``incomplete``."""
    try:
        resolved = ChatStatus(status)
    except ValueError:
        return ChatStatus.INCOMPLETE
    return resolved if resolved in CREATABLE_STATUSES else ChatStatus.INCOMPLETE


def _live_values() -> list[str]:
    return [s.value for s in LIVE_STATUSES]


class ChatSessionManager:
    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    async def _archive_live(self, session: AsyncSession, user_id: str, *, exclude_id: int | None = None) -> list[int]:
        select_live = select(ChatSession.id).where(
            col(ChatSession.user_id) == user_id,
            col(ChatSession.status).in_(_live_values()),
        )
        if exclude_id is not None:
            select_live = select_live.where(col(ChatSession.id) != exclude_id)
        ids = list((await session.exec(select_live)).all())
        if not ids:
            return []

        await session.exec(  # type: ignore[call-overload]
            update(ChatSession)
            .where(col(ChatSession.id).in_(ids))
            .values(status=ChatStatus.ARCHIVED.value, updated_at=get_datetime_utc())
        )
        logger.info("Archived %d live conversation(s) for %s: %s", len(ids), user_id, ids)
        return ids

    async def create(
        self,
        user_id: str,
        conversation: list[dict[str, Any]],
        status: ChatStatus | str | None = ChatStatus.INCOMPLETE,
    ) -> ChatSessionWrite:
        user_id = validate_user_id(user_id)
        conversation = validate_conversation(conversation)
        status = resolve_status(status)

        async with transaction(self.session_factory) as session:
            if status in FRESH_START_STATUSES:
                await self._archive_live(session, user_id)
            row = ChatSession(user_id=user_id, conversation=conversation, status=status.value)
            session.add(row)
            await session.flush()

        logger.info("Chat created for %s with status %s (id %s)", user_id, status.value, row.id)
        return ChatSessionWrite.model_validate(
            row, update={"should_start_fresh": status in FRESH_START_STATUSES}
        )

    async def get_session_status(self, user_id: str) -> SessionStatus:
        """Resume the most recently updated live session, or start fresh."""
        user_id = validate_user_id(user_id)
        async with transaction(self.session_factory) as session:
            statement = (
                select(ChatSession)
                .where(col(ChatSession.user_id) == user_id, col(ChatSession.status).in_(_live_values()))
                .order_by(col(ChatSession.updated_at).desc(), col(ChatSession.id).desc())
                .limit(1)
            )
            live = (await session.exec(statement)).first()
            if live is None:
                finished = (
                    await session.exec(
                        select(func.count())
                        .select_from(ChatSession)
                        .where(
                            col(ChatSession.user_id) == user_id,
                            col(ChatSession.status).in_([ChatStatus.COMPLETED.value, ChatStatus.ARCHIVED.value]),
                        )
                    )
                ).one()

        if live is not None:
            status = ChatStatus(live.status)
            return SessionStatus(
                session_type="resume",
                has_active_session=True,
                should_start_fresh=False,
                chat=ChatSessionPublic.model_validate(live),
                message=f"Found {status.value} conversation to resume",
            )

        logger.debug("No live session for %s (%d completed or archived)", user_id, finished)
        return SessionStatus(
            session_type="fresh",
            has_active_session=False,
            should_start_fresh=True,
            history_count=finished,
            message=(
                "No active conversations found. Starting fresh session. "
                f"({finished} completed sessions in history)"
            ),
        )

    async def latest(self, user_id: str) -> SessionStatus:
        logger.warning("latest() is deprecated, use get_session_status() instead")
        return await self.get_session_status(user_id)

    async def update(
        self,
        session_id: int,
        conversation: list[dict[str, Any]],
        status: ChatStatus | str | None = ChatStatus.INCOMPLETE,
    ) -> ChatSessionWrite:
        conversation = validate_conversation(conversation)
        status = resolve_status(status)

        async with transaction(self.session_factory) as session:
            row = await session.get(ChatSession, session_id)
            if row is None:
                raise NotFoundError("Chat not found")

            if status in FRESH_START_STATUSES:
                await self._archive_live(session, row.user_id, exclude_id=row.id)

            row.conversation = conversation
            row.status = status.value
            row.updated_at = get_datetime_utc()
            session.add(row)
            await session.flush()

        logger.info("Conversation %s updated to %s", session_id, status.value)
        return ChatSessionWrite.model_validate(
            row, update={"should_start_fresh": status in FRESH_START_STATUSES}
        )

    async def counts(self, user_id: str) -> ChatCounts:
        user_id = validate_user_id(user_id)
        statement = (
            select(ChatSession.status, func.count())
            .where(col(ChatSession.user_id) == user_id)
            .group_by(ChatSession.status)
        )
        async with transaction(self.session_factory) as session:
            rows = (await session.exec(statement)).all()

        by_status = {ChatStatus(status).value: count for status, count in rows}
        counts = ChatCounts(user_id=user_id, **by_status)
        counts.active = counts.incomplete + counts.paused + counts.stopped
        counts.total = sum(by_status.values())
        return counts

    async def history(
        self,
        user_id: str,
        *,
        status: str = "all",
        limit: int = 20,
        offset: int = 0,
    ) -> ChatHistory:
        """Sessions newest-updated first.

        ``status`` is ``all``, ``active`` (live sessions only) or a single
        status value.
        """
        user_id = validate_user_id(user_id)
        if limit < 1 or offset < 0:
            raise ValidationError("limit must be positive and offset non-negative")

        filters = [col(ChatSession.user_id) == user_id]
        if status == "active":
            filters.append(col(ChatSession.status).in_(_live_values()))
        elif status != "all":
            try:
                filters.append(col(ChatSession.status) == ChatStatus(status).value)
            except ValueError:
                valid = ", ".join(s.value for s in ChatStatus)
                raise ValidationError(
                    f"Status must be one of: {valid}, 'active', or 'all'",
                    details=[{"field": "status", "message": "invalid status"}],
                ) from None

        async with transaction(self.session_factory) as session:
            rows = (
                await session.exec(
                    select(ChatSession)
                    .where(*filters)
                    .order_by(col(ChatSession.updated_at).desc(), col(ChatSession.id).desc())
                    .limit(limit)
                    .offset(offset)
                )
            ).all()
            total = (await session.exec(select(func.count()).select_from(ChatSession).where(*filters))).one()

        return ChatHistory(
            sessions=[ChatSessionPublic.model_validate(row) for row in rows],
            filter=status,
            pagination=Pagination(total=total, limit=limit, offset=offset, has_more=offset + limit < total),
        )

    async def get_by_id(self, session_id: int) -> ChatSessionPublic:
        async with transaction(self.session_factory) as session:
            row = await session.get(ChatSession, session_id)
        if row is None:
            raise NotFoundError("Chat not found")
        return ChatSessionPublic.model_validate(row)

    async def delete(self, session_id: int) -> ChatDeleted:
        async with transaction(self.session_factory) as session:
            row = await session.get(ChatSession, session_id)
            if row is None:
                raise NotFoundError("Chat not found")
            deleted = ChatDeleted(id=row.id, user_id=row.user_id, status=row.status)
            await session.delete(row)

        logger.info("Chat %s deleted for %s", session_id, deleted.user_id)
        return deleted
