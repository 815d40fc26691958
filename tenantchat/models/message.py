"""Message model — a single immutable entry in a Conversation."""

import uuid
from datetime import datetime
from enum import StrEnum

from sqlalchemy import Text
from sqlmodel import Column, Field, SQLModel

from tenantchat.models.base import new_uuid, utcnow


class MessageRole(StrEnum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class Message(SQLModel, table=True):
    __tablename__ = "messages"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    tenant_id: uuid.UUID = Field(
        foreign_key="tenants.id", ondelete="CASCADE", nullable=False, index=True,
    )
    conversation_id: uuid.UUID = Field(
        foreign_key="conversations.id", ondelete="CASCADE", nullable=False, index=True,
    )

    role: MessageRole = Field(nullable=False)
    content: str = Field(sa_column=Column(Text, nullable=False))

    # Generation metadata (assistant rows only; zero / NULL for user rows)
    token_count: int = Field(default=0)
    prompt_tokens: int = Field(default=0)
    model: str | None = Field(default=None, max_length=100)
    latency_ms: int | None = Field(default=None)
    finish_reason: str | None = Field(default=None, max_length=50)

    # No updated_at: messages are never edited
    created_at: datetime = Field(default_factory=utcnow, nullable=False, index=True)


# ── Pydantic schemas ─────────────────────────────────────────

class MessageRead(SQLModel):
    id: uuid.UUID
    conversation_id: uuid.UUID
    role: MessageRole
    content: str
    token_count: int
    prompt_tokens: int
    model: str | None = None
    latency_ms: int | None = None
    created_at: datetime
