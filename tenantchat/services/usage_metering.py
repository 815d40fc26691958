"""Usage metering sink — daily token and cost ledger per (tenant, user).

Every increment is a single ``INSERT … ON CONFLICT DO UPDATE`` so that
concurrent turns for the same day add up instead of overwriting each other.
"""

from __future__ import annotations

import datetime as dt
import logging
import uuid

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from tenantchat.core.errors import ValidationError
from tenantchat.core.pricing import calc_cost
from tenantchat.models.base import new_uuid, utcnow
from tenantchat.models.usage_metric import UsageMetric

logger = logging.getLogger(__name__)

MAX_USAGE_WINDOW_DAYS = 366


def estimate_cost(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    """USD estimate; unknown models are priced as the default pricing model."""
    return round(calc_cost(model, prompt_tokens, completion_tokens), 6)


def _insert_for(session: AsyncSession):
    if session.get_bind().dialect.name == "sqlite":
        return sqlite.insert
    return postgresql.insert


async def increment(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    user_id: uuid.UUID,
    day: dt.date,
    prompt_tokens: int,
    completion_tokens: int,
    estimated_cost: float,
) -> None:
    """Add one request's usage to the (tenant, user, day) row. Commits."""
    now = utcnow()
    insert = _insert_for(session)
    table = UsageMetric.__table__
    stmt = insert(table).values(
        id=new_uuid(),
        tenant_id=tenant_id,
        user_id=user_id,
        date=day,
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=prompt_tokens + completion_tokens,
        request_count=1,
        estimated_cost=estimated_cost,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.tenant_id, table.c.user_id, table.c.date],
        set_={
            "prompt_tokens": table.c.prompt_tokens + stmt.excluded.prompt_tokens,
            "completion_tokens": table.c.completion_tokens + stmt.excluded.completion_tokens,
            "total_tokens": table.c.total_tokens + stmt.excluded.total_tokens,
            "request_count": table.c.request_count + stmt.excluded.request_count,
            "estimated_cost": table.c.estimated_cost + stmt.excluded.estimated_cost,
            "updated_at": stmt.excluded.updated_at,
        },
    )
    await session.execute(stmt)
    await session.commit()


async def list_usage(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    user_id: uuid.UUID,
    start: dt.date,
    end: dt.date,
) -> list[UsageMetric]:
    """Daily rows for the caller within ``[start, end]``, oldest first."""
    if start > end:
        raise ValidationError("start_date must not be after end_date")
    if (end - start).days >= MAX_USAGE_WINDOW_DAYS:
        raise ValidationError(f"Date range cannot exceed {MAX_USAGE_WINDOW_DAYS} days")

    stmt = (
        select(UsageMetric)
        .where(
            UsageMetric.tenant_id == tenant_id,
            UsageMetric.user_id == user_id,
            UsageMetric.date >= start,
            UsageMetric.date <= end,
        )
        .order_by(UsageMetric.date.asc())  # type: ignore[attr-defined]
    )
    return list((await session.execute(stmt)).scalars().all())
