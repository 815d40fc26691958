"""Tenant model — top-level isolation boundary."""

import uuid

from sqlmodel import Field, SQLModel

from tenantchat.models.base import TimestampMixin, json_text_column, load_json_object, new_uuid


class Tenant(TimestampMixin, SQLModel, table=True):
    __tablename__ = "tenants"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    name: str = Field(max_length=255, nullable=False)
    slug: str = Field(max_length=100, unique=True, nullable=False, index=True)
    is_active: bool = Field(default=True)

    # Generation defaults; NULL falls through to the platform defaults
    llm_model: str | None = Field(default=None, max_length=100)
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=1, le=128000)
    system_prompt: str | None = Field(default=None)

    # Feature flags as a JSON object, e.g. {"feedback": false}
    features_json: str = Field(default="{}", sa_column=json_text_column())

    def has_feature(self, name: str, default: bool = True) -> bool:
        return bool(load_json_object(self.features_json).get(name, default))


# ── Pydantic schemas ─────────────────────────────────────────

class TenantRead(SQLModel):
    id: uuid.UUID
    name: str
    slug: str
    is_active: bool
    llm_model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    system_prompt: str | None = None
