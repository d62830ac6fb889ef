from typing import Any

from fastapi import APIRouter, Query

from app.api.deps import ChatManagerDep
from app.models import (
    ChatCounts,
    ChatCreate,
    ChatDeleted,
    ChatHistory,
    ChatSessionPublic,
    ChatSessionWrite,
    ChatUpdate,
    SessionStatus,
)

router = APIRouter()


@router.post("/", response_model=ChatSessionWrite, status_code=201)
async def create_chat(chats: ChatManagerDep, chat_in: ChatCreate) -> Any:
    """
    Save a conversation. Saving it as completed or stopped archives the
    user's other live conversations.
    """
    return await chats.create(chat_in.user_id, chat_in.conversation, chat_in.status)


@router.get("/session-status/{user_id}", response_model=SessionStatus)
async def read_session_status(chats: ChatManagerDep, user_id: str) -> Any:
    return await chats.get_session_status(user_id)


@router.get("/latest/{user_id}", response_model=SessionStatus, deprecated=True)
async def read_latest_chat(chats: ChatManagerDep, user_id: str) -> Any:
    return await chats.latest(user_id)


@router.get("/counts/{user_id}", response_model=ChatCounts)
async def read_chat_counts(chats: ChatManagerDep, user_id: str) -> Any:
    return await chats.counts(user_id)


@router.get("/history/{user_id}", response_model=ChatHistory)
async def read_chat_history(
    chats: ChatManagerDep,
    user_id: str,
    status: str = "all",
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> Any:
    return await chats.history(user_id, status=status, limit=limit, offset=offset)


@router.get("/{chat_id}", response_model=ChatSessionPublic)
async def read_chat(chats: ChatManagerDep, chat_id: int) -> Any:
    return await chats.get_by_id(chat_id)


@router.put("/{chat_id}", response_model=ChatSessionWrite)
async def update_chat(chats: ChatManagerDep, chat_id: int, chat_in: ChatUpdate) -> Any:
    return await chats.update(chat_id, chat_in.conversation, chat_in.status)


@router.delete("/{chat_id}", response_model=ChatDeleted)
async def delete_chat(chats: ChatManagerDep, chat_id: int) -> Any:
    return await chats.delete(chat_id)
