"""Feedback linker — attaches a user's rating to an assistant message.

Clients that rendered a reply before learning its persisted id may send their
own local id together with the conversation id; in that case the most recent
assistant message of that conversation is used instead.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from tenantchat.core.errors import NotFound, PermissionDenied, ValidationError
from tenantchat.models.base import utcnow
from tenantchat.models.conversation import Conversation
from tenantchat.models.feedback import MAX_NOTES_LENGTH, Feedback, FeedbackRating
from tenantchat.models.message import Message, MessageRole
from tenantchat.services.config_resolver import load_active_tenant
from tenantchat.services.conversation_store import Page, validate_paging

logger = logging.getLogger(__name__)


@dataclass
class FeedbackStats:
    total: int = 0
    positive: int = 0
    negative: int = 0


def _parse_message_id(raw: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(raw)
    except (TypeError, ValueError):
        return None


def _owned_messages(tenant_id: uuid.UUID, user_id: uuid.UUID):
    """Messages whose conversation belongs to the caller."""
    return (
        select(Message)
        .join(Conversation, Conversation.id == Message.conversation_id)
        .where(
            Message.tenant_id == tenant_id,
            Conversation.tenant_id == tenant_id,
            Conversation.user_id == user_id,
        )
    )


async def _resolve_message(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    user_id: uuid.UUID,
    message_id: str,
    conversation_id_hint: uuid.UUID | None,
) -> Message:
    parsed = _parse_message_id(message_id)
    if parsed is not None:
        stmt = _owned_messages(tenant_id, user_id).where(Message.id == parsed)
        message = (await session.execute(stmt)).scalar_one_or_none()
        if message is not None:
            return message

    if conversation_id_hint is not None:
        stmt = (
            _owned_messages(tenant_id, user_id)
            .where(
                Message.conversation_id == conversation_id_hint,
                Message.role == MessageRole.ASSISTANT,
            )
            .order_by(Message.created_at.desc())  # type: ignore[union-attr]
            .limit(1)
        )
        message = (await session.execute(stmt)).scalar_one_or_none()
        if message is not None:
            logger.info(
                "Resolved feedback id %s to message %s via conversation %s",
                message_id, message.id, conversation_id_hint,
            )
            return message

    raise NotFound("Message not found")


async def _find_existing(
    session: AsyncSession, message_id: uuid.UUID, user_id: uuid.UUID
) -> Feedback | None:
    stmt = select(Feedback).where(
        Feedback.message_id == message_id,
        Feedback.user_id == user_id,
    )
    return (await session.execute(stmt)).scalar_one_or_none()


async def _update_existing(
    session: AsyncSession,
    feedback: Feedback,
    rating: FeedbackRating,
    notes: str | None,
) -> Feedback:
    feedback.rating = rating
    feedback.notes = notes
    feedback.updated_at = utcnow()
    session.add(feedback)
    await session.commit()
    await session.refresh(feedback)
    return feedback


async def submit_feedback(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    user_id: uuid.UUID,
    message_id: str,
    rating: FeedbackRating,
    notes: str | None = None,
    conversation_id_hint: uuid.UUID | None = None,
) -> tuple[Feedback, bool]:
    """Create or replace the caller's feedback on an assistant message.

    Returns ``(feedback, created)``. Commits.

    Raises:
        PermissionDenied: feedback is switched off for the tenant.
        NotFound: no owned message matches the id or the hint.
        ValidationError: the message is not an assistant message, or notes
            are too long.
    """
    tenant = await load_active_tenant(session, tenant_id)
    if not tenant.has_feature("feedback"):
        raise PermissionDenied("Feedback is disabled for this tenant")
    if notes is not None and len(notes) > MAX_NOTES_LENGTH:
        raise ValidationError(f"notes must be at most {MAX_NOTES_LENGTH} characters")

    message = await _resolve_message(
        session, tenant_id, user_id, message_id, conversation_id_hint
    )
    if message.role != MessageRole.ASSISTANT:
        raise ValidationError("Feedback can only be submitted for assistant messages")

    target_id = message.id
    existing = await _find_existing(session, target_id, user_id)
    if existing is not None:
        return await _update_existing(session, existing, rating, notes), False

    feedback = Feedback(
        tenant_id=tenant_id,
        message_id=target_id,
        user_id=user_id,
        rating=rating,
        notes=notes,
    )
    session.add(feedback)
    try:
        await session.commit()
    except IntegrityError:
        # Lost a race with a concurrent submission for the same pair
        await session.rollback()
        existing = await _find_existing(session, target_id, user_id)
        if existing is None:
            raise
        return await _update_existing(session, existing, rating, notes), False

    await session.refresh(feedback)
    return feedback, True


async def get_feedback(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    user_id: uuid.UUID,
    message_id: uuid.UUID,
) -> Feedback:
    stmt = select(Feedback).where(
        Feedback.tenant_id == tenant_id,
        Feedback.user_id == user_id,
        Feedback.message_id == message_id,
    )
    feedback = (await session.execute(stmt)).scalar_one_or_none()
    if feedback is None:
        raise NotFound("Feedback not found")
    return feedback


async def list_feedback(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    user_id: uuid.UUID,
    page: int = 1,
    per_page: int = 20,
    rating: FeedbackRating | None = None,
) -> tuple[Page, FeedbackStats]:
    """The caller's feedback, newest first, plus overall rating counts."""
    validate_paging(page, per_page)
    scope = [Feedback.tenant_id == tenant_id, Feedback.user_id == user_id]

    stats_row = (await session.execute(
        select(
            func.count(),
            func.coalesce(func.sum(case((Feedback.rating == FeedbackRating.POSITIVE, 1), else_=0)), 0),
            func.coalesce(func.sum(case((Feedback.rating == FeedbackRating.NEGATIVE, 1), else_=0)), 0),
        ).select_from(Feedback).where(*scope)
    )).one()
    stats = FeedbackStats(total=stats_row[0], positive=stats_row[1], negative=stats_row[2])

    filters = list(scope)
    if rating is not None:
        filters.append(Feedback.rating == rating)
    total = (await session.execute(
        select(func.count()).select_from(Feedback).where(*filters)
    )).scalar_one()
    stmt = (
        select(Feedback)
        .where(*filters)
        .order_by(Feedback.created_at.desc())  # type: ignore[union-attr]
        .limit(per_page)
        .offset((page - 1) * per_page)
    )
    items = list((await session.execute(stmt)).scalars().all())
    return Page(items=items, total=total, page=page, per_page=per_page), stats
