"""Usage endpoints — the caller's daily token ledger and model pricing."""

import datetime as dt

from fastapi import APIRouter
from pydantic import BaseModel

from tenantchat.api.deps import Identity, Session
from tenantchat.core.pricing import DEFAULT_PRICING_MODEL, MODEL_PRICING
from tenantchat.models.base import utcnow
from tenantchat.models.usage_metric import UsageMetricRead
from tenantchat.services import usage_metering

router = APIRouter(prefix="/usage", tags=["usage"])

DEFAULT_WINDOW_DAYS = 30


class UsageTotals(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    request_count: int = 0
    estimated_cost: float = 0.0


class UsageResponse(BaseModel):
    start_date: dt.date
    end_date: dt.date
    daily: list[UsageMetricRead]
    totals: UsageTotals


class ModelPrice(BaseModel):
    model: str
    prompt_per_1m: float
    completion_per_1m: float


class PricingResponse(BaseModel):
    default_model: str
    models: list[ModelPrice]


@router.get("", response_model=UsageResponse)
async def get_usage(
    identity: Identity,
    session: Session,
    start_date: dt.date | None = None,
    end_date: dt.date | None = None,
) -> UsageResponse:
    """Daily usage for the caller. Defaults to the last 30 days."""
    end = end_date or utcnow().date()
    start = start_date or end - dt.timedelta(days=DEFAULT_WINDOW_DAYS - 1)

    rows = await usage_metering.list_usage(
        session, identity.tenant_id, identity.user_id, start, end
    )
    totals = UsageTotals()
    for row in rows:
        totals.prompt_tokens += row.prompt_tokens
        totals.completion_tokens += row.completion_tokens
        totals.total_tokens += row.total_tokens
        totals.request_count += row.request_count
        totals.estimated_cost += row.estimated_cost
    totals.estimated_cost = round(totals.estimated_cost, 6)

    return UsageResponse(
        start_date=start,
        end_date=end,
        daily=[UsageMetricRead.model_validate(r) for r in rows],
        totals=totals,
    )


@router.get("/pricing", response_model=PricingResponse)
async def get_pricing() -> PricingResponse:
    """Per-1M-token prices used for cost estimates."""
    return PricingResponse(
        default_model=DEFAULT_PRICING_MODEL,
        models=[
            ModelPrice(model=name, prompt_per_1m=prompt, completion_per_1m=completion)
            for name, (prompt, completion) in MODEL_PRICING.items()
        ],
    )
