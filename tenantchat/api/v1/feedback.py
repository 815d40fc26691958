"""Feedback endpoints — rate assistant messages."""

import uuid

from fastapi import APIRouter, Response, status
from pydantic import BaseModel

from tenantchat.api.deps import Identity, Session
from tenantchat.models.feedback import FeedbackCreate, FeedbackRating, FeedbackRead
from tenantchat.services import feedback_linker

router = APIRouter(prefix="/feedback", tags=["feedback"])


class FeedbackStatsRead(BaseModel):
    total: int
    positive: int
    negative: int


class FeedbackPage(BaseModel):
    feedback: list[FeedbackRead]
    stats: FeedbackStatsRead
    total: int
    page: int
    per_page: int
    has_more: bool


@router.post(
    "",
    response_model=FeedbackRead,
    status_code=status.HTTP_201_CREATED,
    responses={200: {"model": FeedbackRead, "description": "Existing feedback updated"}},
)
async def submit_feedback(
    body: FeedbackCreate,
    identity: Identity,
    session: Session,
    response: Response,
) -> FeedbackRead:
    """Create or replace the caller's rating for an assistant message.

    ``message_id`` may be a client-side id; with ``conversation_id`` set the
    latest assistant message of that conversation is rated instead.
    """
    feedback, created = await feedback_linker.submit_feedback(
        session,
        identity.tenant_id,
        identity.user_id,
        message_id=body.message_id,
        rating=body.rating,
        notes=body.notes,
        conversation_id_hint=body.conversation_id,
    )
    if not created:
        response.status_code = status.HTTP_200_OK
    return FeedbackRead.model_validate(feedback)


@router.get("", response_model=FeedbackPage)
async def list_feedback(
    identity: Identity,
    session: Session,
    page: int = 1,
    per_page: int = 20,
    rating: FeedbackRating | None = None,
) -> FeedbackPage:
    result, stats = await feedback_linker.list_feedback(
        session,
        identity.tenant_id,
        identity.user_id,
        page=page,
        per_page=per_page,
        rating=rating,
    )
    return FeedbackPage(
        feedback=[FeedbackRead.model_validate(f) for f in result.items],
        stats=FeedbackStatsRead(total=stats.total, positive=stats.positive, negative=stats.negative),
        total=result.total,
        page=result.page,
        per_page=result.per_page,
        has_more=result.has_more,
    )


@router.get("/{message_id}", response_model=FeedbackRead)
async def get_feedback(
    message_id: uuid.UUID,
    identity: Identity,
    session: Session,
) -> FeedbackRead:
    feedback = await feedback_linker.get_feedback(
        session, identity.tenant_id, identity.user_id, message_id
    )
    return FeedbackRead.model_validate(feedback)
