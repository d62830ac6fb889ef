from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel
from sqlalchemy import JSON, DateTime, Index, String, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel

CONTENT_MAX_LENGTH = 1_000_000
OWNER_MAX_LENGTH = 255


def get_datetime_utc() -> datetime:
    return datetime.now(timezone.utc)


class TemplateType(str, Enum):
    CONCEPT_MENTOR = "conceptMentor"
    ASSESSMENT_PROMPT = "assessmentPrompt"
    DEFAULT_TEMPLATE_VALUES = "defaultTemplateValues"


class ChatStatus(str, Enum):
    INCOMPLETE = "incomplete"
    PAUSED = "paused"
    STOPPED = "stopped"
    COMPLETED = "completed"
    ARCHIVED = "archived"


# Sessions a user can still resume
LIVE_STATUSES = (ChatStatus.INCOMPLETE, ChatStatus.PAUSED, ChatStatus.STOPPED)
# Statuses a client may set through create/update
CREATABLE_STATUSES = LIVE_STATUSES + (ChatStatus.COMPLETED,)
# Writing one of these archives the user's other live sessions
FRESH_START_STATUSES = (ChatStatus.COMPLETED, ChatStatus.STOPPED)


# Generic message
class Message(SQLModel):
    message: str


# Template versions

class TemplateVersionBase(SQLModel):
    owner: str = Field(min_length=1, max_length=OWNER_MAX_LENGTH)
    template_type: TemplateType = Field(sa_type=String(50))  # type: ignore
    content: str = Field(min_length=1, max_length=CONTENT_MAX_LENGTH)


class TemplateUpsert(TemplateVersionBase):
    pass


# Database model. The partial unique index is the guard against two active
# rows for the same owner and type.
class TemplateVersion(TemplateVersionBase, table=True):
    __tablename__ = "prompt_templates"  # type: ignore
    __table_args__ = (
        UniqueConstraint("owner", "template_type", "version", name="uq_prompt_version"),
        Index("idx_prompt_user_type", "owner", "template_type"),
        Index("idx_prompt_active", "owner", "template_type", "is_active"),
        Index(
            "unique_active_template",
            "owner",
            "template_type",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active"),
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    version: int = Field(default=1, ge=1)
    is_active: bool = True
    created_at: datetime | None = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
    )
    updated_at: datetime | None = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
    )


class TemplateVersionPublic(TemplateVersionBase):
    id: int
    version: int
    is_active: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None


class TemplateHistoryPublic(SQLModel):
    templates: list[TemplateVersionPublic]
    total_versions: int
    latest_version: int


class TemplateSummary(SQLModel):
    id: int
    template_type: TemplateType
    version: int
    is_active: bool
    content_length: int
    created_at: datetime | None = None
    updated_at: datetime | None = None


class TemplateListPublic(SQLModel):
    owner: str
    templates: dict[str, list[TemplateSummary]]
    total_templates: int


class TemplateWriteResult(SQLModel):
    id: int
    owner: str
    template_type: TemplateType
    version: int
    created_at: datetime | None = None


class TemplateDelete(SQLModel):
    owner: str = Field(min_length=1, max_length=OWNER_MAX_LENGTH)
    template_type: TemplateType
    version: int | None = Field(default=None, ge=1)
    delete_all: bool = False


class TemplateDeleteResult(SQLModel):
    message: str
    deleted_count: int


class TemplateRestore(SQLModel):
    owner: str = Field(min_length=1, max_length=OWNER_MAX_LENGTH)
    template_type: TemplateType
    version: int = Field(ge=1)


class TemplateResetRequest(SQLModel):
    owner: str = Field(min_length=1, max_length=OWNER_MAX_LENGTH)
    template_type: TemplateType
    reset_to_default: bool = False


class TemplateResetResult(SQLModel):
    owner: str
    template_type: TemplateType
    default_content: str
    action: str = "reset_completed"
    new_version: int
    template_id: int
    created_at: datetime | None = None


class BulkResetRequest(SQLModel):
    confirm_update: bool = False
    template_type: TemplateType = TemplateType.DEFAULT_TEMPLATE_VALUES


class BulkResetOutcome(SQLModel):
    owner: str
    success: bool
    new_version: int | None = None
    template_id: int | None = None
    action: Literal["created", "updated"] | None = None
    error: str | None = None


class BatchResult(SQLModel):
    template_type: TemplateType
    total_owners: int
    success_count: int
    failure_count: int
    content_preview: str = ""
    results: list[BulkResetOutcome] = Field(default_factory=list)

    @property
    def partial_failure(self) -> bool:
        return self.failure_count > 0 and self.success_count > 0


class DefaultTemplateInfo(SQLModel):
    template_type: TemplateType
    description: str
    kind: Literal["text", "json"]
    filename: str
    content: str | None = None
    size: int | None = None
    last_modified: datetime | None = None
    error: str | None = None


# Prompt assembly

class PromptProcessRequest(SQLModel):
    owner: str = Field(min_length=1, max_length=OWNER_MAX_LENGTH)
    prompt_type: TemplateType
    llm_provider: str = Field(default="default", min_length=1, max_length=50)
    user_input: str = ""


class AssembledPrompt(BaseModel):
    messages: list[dict[str, Any]]
    llm_config: dict[str, Any] | None = None
    template_source: Literal["database", "file"]
    metadata: dict[str, Any] = {}


# Chat sessions

class ChatSessionBase(SQLModel):
    user_id: str = Field(min_length=1, max_length=OWNER_MAX_LENGTH)
    conversation: list[dict[str, Any]] = Field(
        default_factory=list,
        sa_type=JSON().with_variant(JSONB(), "postgresql"),  # type: ignore
    )


class ChatCreate(ChatSessionBase):
    conversation: list[dict[str, Any]]
    status: str | None = None


class ChatUpdate(SQLModel):
    conversation: list[dict[str, Any]]
    status: str | None = ChatStatus.INCOMPLETE.value


class ChatSession(ChatSessionBase, table=True):
    __tablename__ = "chat"  # type: ignore
    __table_args__ = (
        Index("idx_chat_user_id", "user_id"),
        Index("idx_chat_status", "status"),
        Index("idx_chat_user_status", "user_id", "status"),
        Index("idx_chat_user_updated", "user_id", text("updated_at DESC")),
    )

    id: int | None = Field(default=None, primary_key=True)
    status: ChatStatus = Field(default=ChatStatus.INCOMPLETE, sa_type=String(50))  # type: ignore
    created_at: datetime | None = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
    )
    updated_at: datetime | None = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
    )


class ChatSessionPublic(ChatSessionBase):
    id: int
    status: ChatStatus
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ChatSessionWrite(ChatSessionPublic):
    should_start_fresh: bool


class SessionStatus(SQLModel):
    session_type: Literal["resume", "fresh"]
    has_active_session: bool
    should_start_fresh: bool
    chat: ChatSessionPublic | None = None
    history_count: int | None = None
    message: str


class ChatCounts(SQLModel):
    user_id: str
    incomplete: int = 0
    paused: int = 0
    stopped: int = 0
    completed: int = 0
    archived: int = 0
    active: int = 0
    total: int = 0


class Pagination(SQLModel):
    total: int
    limit: int
    offset: int
    has_more: bool


class ChatHistory(SQLModel):
    sessions: list[ChatSessionPublic]
    filter: str
    pagination: Pagination


class ChatDeleted(SQLModel):
    id: int
    user_id: str
    status: ChatStatus
