"""Shared base fields and column helpers for all models."""

import json
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Text
from sqlmodel import Column, Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


def json_text_column() -> Column:
    """A fresh TEXT column holding a JSON object (defaults to ``{}``)."""
    return Column(Text, nullable=False, server_default="{}")


def load_json_object(raw: str | None) -> dict[str, Any]:
    """Parse a JSON text column, treating blanks and non-objects as empty."""
    if not raw:
        return {}
    value = json.loads(raw)
    return value if isinstance(value, dict) else {}


class TimestampMixin(SQLModel):
    """Created / updated timestamps injected into every table."""

    created_at: datetime = Field(default_factory=utcnow, nullable=False)
    updated_at: datetime = Field(default_factory=utcnow, nullable=False)
