"""Feedback model — one rating per (assistant message, user)."""

import uuid
from datetime import datetime
from enum import StrEnum

from sqlalchemy import Text, UniqueConstraint
from sqlmodel import Column, Field, SQLModel

from tenantchat.models.base import TimestampMixin, new_uuid

MAX_NOTES_LENGTH = 5000


class FeedbackRating(StrEnum):
    POSITIVE = "positive"
    NEGATIVE = "negative"


class Feedback(TimestampMixin, SQLModel, table=True):
    __tablename__ = "feedback"
    __table_args__ = (
        UniqueConstraint("message_id", "user_id", name="uq_feedback_message_user"),
    )

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    tenant_id: uuid.UUID = Field(
        foreign_key="tenants.id", ondelete="CASCADE", nullable=False, index=True,
    )
    message_id: uuid.UUID = Field(
        foreign_key="messages.id", ondelete="CASCADE", nullable=False, index=True,
    )
    user_id: uuid.UUID = Field(
        foreign_key="users.id", ondelete="CASCADE", nullable=False, index=True,
    )

    rating: FeedbackRating = Field(nullable=False)
    notes: str | None = Field(default=None, sa_column=Column(Text, nullable=True))


# ── Pydantic schemas ─────────────────────────────────────────

class FeedbackCreate(SQLModel):
    message_id: str = Field(min_length=1, max_length=200)
    conversation_id: uuid.UUID | None = Field(
        default=None,
        description="Fallback hint used when message_id is a client-side id.",
    )
    rating: FeedbackRating
    notes: str | None = Field(default=None, max_length=MAX_NOTES_LENGTH)


class FeedbackRead(SQLModel):
    id: uuid.UUID
    message_id: uuid.UUID
    user_id: uuid.UUID
    rating: FeedbackRating
    notes: str | None = None
    created_at: datetime
    updated_at: datetime
