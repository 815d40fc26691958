"""UsageMetric model — daily per-tenant/per-user token ledger."""

import datetime as dt
import uuid

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from tenantchat.models.base import TimestampMixin, new_uuid


class UsageMetric(TimestampMixin, SQLModel, table=True):
    __tablename__ = "usage_metrics"
    __table_args__ = (
        UniqueConstraint("tenant_id", "user_id", "date", name="uq_usage_metrics_daily"),
    )

    # Plain columns, no foreign keys: the ledger outlives conversations and users
    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    tenant_id: uuid.UUID = Field(nullable=False, index=True)
    user_id: uuid.UUID = Field(nullable=False, index=True)
    date: dt.date = Field(nullable=False, index=True)

    prompt_tokens: int = Field(default=0)
    completion_tokens: int = Field(default=0)
    total_tokens: int = Field(default=0)
    request_count: int = Field(default=0)
    estimated_cost: float = Field(default=0.0)


# ── Pydantic schemas ─────────────────────────────────────────

class UsageMetricRead(SQLModel):
    date: dt.date
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    request_count: int
    estimated_cost: float
    updated_at: dt.datetime
