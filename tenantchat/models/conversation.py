"""Conversation model — an ordered exchange between one user and a tenant/chatbot."""

import uuid
from datetime import datetime

from sqlmodel import Field, SQLModel

from tenantchat.models.base import TimestampMixin, new_uuid

DEFAULT_TITLE = "New Conversation"


class Conversation(TimestampMixin, SQLModel, table=True):
    __tablename__ = "conversations"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    tenant_id: uuid.UUID = Field(
        foreign_key="tenants.id", ondelete="CASCADE", nullable=False, index=True,
    )
    user_id: uuid.UUID = Field(
        foreign_key="users.id", ondelete="CASCADE", nullable=False, index=True,
    )
    chatbot_id: uuid.UUID | None = Field(
        default=None, foreign_key="chatbots.id", ondelete="SET NULL", nullable=True, index=True,
    )

    title: str = Field(default=DEFAULT_TITLE, max_length=500)
    is_archived: bool = Field(default=False, index=True)

    # Rollups, maintained by the orchestrator, never computed on read
    message_count: int = Field(default=0)
    total_tokens: int = Field(default=0)
    model: str = Field(default="", max_length=100)
    last_message_at: datetime | None = Field(default=None)


# ── Pydantic schemas ─────────────────────────────────────────

class ConversationRead(SQLModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    chatbot_id: uuid.UUID | None = None
    title: str
    is_archived: bool
    message_count: int
    total_tokens: int
    model: str
    last_message_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class ConversationUpdate(SQLModel):
    title: str | None = Field(default=None, min_length=1, max_length=500)
    is_archived: bool | None = None
