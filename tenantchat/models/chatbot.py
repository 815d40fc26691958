"""Chatbot model — a reusable generation configuration scoped to one tenant."""

import uuid
from datetime import datetime
from typing import Any, Literal

from sqlmodel import Field, SQLModel

from tenantchat.models.base import TimestampMixin, json_text_column, load_json_object, new_uuid


class Chatbot(TimestampMixin, SQLModel, table=True):
    __tablename__ = "chatbots"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    tenant_id: uuid.UUID = Field(
        foreign_key="tenants.id", ondelete="CASCADE", nullable=False, index=True,
    )

    name: str = Field(max_length=255, nullable=False)
    description: str = Field(default="", max_length=1000)

    # LLM configuration
    model: str = Field(default="gpt-4o-mini", max_length=100)
    system_prompt: str = Field(default="You are a helpful assistant.")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2048, ge=1, le=128000)

    # Extended settings as JSON:
    # {"model_params": {...}, "provider_options": {...}, "response_format": {...}}
    settings_json: str = Field(default="{}", sa_column=json_text_column())

    # Provider credentials: Fernet-encrypted JSON blob, e.g. {"api_key": "sk-..."}.
    # NULL means "use platform default credentials".
    encrypted_credentials: str | None = Field(default=None)

    is_published: bool = Field(default=False)

    @property
    def settings(self) -> dict[str, Any]:
        return load_json_object(self.settings_json)


# ── Pydantic schemas ─────────────────────────────────────────

class ModelParams(SQLModel):
    top_p: float | None = Field(default=None, ge=0.0, le=1.0)
    frequency_penalty: float | None = Field(default=None, ge=-2.0, le=2.0)
    presence_penalty: float | None = Field(default=None, ge=-2.0, le=2.0)


class ProviderOptions(SQLModel):
    store: bool | None = None
    reasoning_effort: Literal["none", "low", "medium", "high"] | None = None


class ChatbotSettings(SQLModel):
    model_params: ModelParams = Field(default_factory=ModelParams)
    provider_options: ProviderOptions = Field(default_factory=ProviderOptions)
    response_format: dict | None = None


class ChatbotCreate(SQLModel):
    name: str = Field(min_length=1, max_length=255)
    description: str = Field(default="", max_length=1000)
    model: str = Field(default="gpt-4o-mini", min_length=1, max_length=100)
    system_prompt: str = Field(default="You are a helpful assistant.", min_length=1)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2048, ge=1, le=128000)
    settings: ChatbotSettings = Field(default_factory=ChatbotSettings)
    credentials: dict | None = Field(default=None, description="Provider credentials (encrypted at rest)")
    is_published: bool = False


class ChatbotUpdate(SQLModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=1000)
    model: str | None = Field(default=None, min_length=1, max_length=100)
    system_prompt: str | None = Field(default=None, min_length=1)
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=1, le=128000)
    settings: ChatbotSettings | None = None
    credentials: dict | None = Field(default=None, description="Set to {} to clear credentials")
    is_published: bool | None = None


class ChatbotRead(SQLModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    name: str
    description: str
    model: str
    system_prompt: str
    temperature: float
    max_tokens: int
    settings: dict
    has_credentials: bool = Field(description="True if custom provider credentials are set")
    is_published: bool
    created_at: datetime
    updated_at: datetime
