"""Conversation store — conversation and message records.

Functions here take an open ``AsyncSession`` and never commit unless noted;
the caller decides the transaction boundary. All lookups are scoped by
tenant and user, and ownership failures surface as ``NotFound``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Literal

from sqlalchemy import delete, func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from tenantchat.core.config import get_settings
from tenantchat.core.errors import NotFound, ValidationError
from tenantchat.models.base import utcnow
from tenantchat.models.conversation import Conversation
from tenantchat.models.feedback import Feedback
from tenantchat.models.message import Message, MessageRole

TITLE_MAX_CHARS = 50
MAX_PER_PAGE = 100


@dataclass(frozen=True)
class OpenedConversation:
    id: uuid.UUID
    is_new: bool


@dataclass(frozen=True)
class HistoryMessage:
    role: MessageRole
    content: str

    def as_prompt(self) -> dict[str, str]:
        return {"role": str(self.role), "content": self.content}


@dataclass
class MessageMeta:
    token_count: int = 0
    prompt_tokens: int = 0
    model: str | None = None
    latency_ms: int | None = None
    finish_reason: str | None = None


@dataclass
class Page:
    items: list
    total: int
    page: int
    per_page: int

    @property
    def has_more(self) -> bool:
        return self.total > self.page * self.per_page


def make_title(first_message: str) -> str:
    """Conversation title from the user's first message."""
    text = first_message.strip()
    if len(text) <= TITLE_MAX_CHARS:
        return text
    return text[:TITLE_MAX_CHARS] + "..."


def validate_paging(page: int, per_page: int) -> None:
    if page < 1 or not 1 <= per_page <= MAX_PER_PAGE:
        raise ValidationError(
            "Invalid pagination parameters. Page must be >= 1, "
            f"per_page must be between 1 and {MAX_PER_PAGE}."
        )


# ── Turn operations ───────────────────────────────────────────

async def open_conversation(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    user_id: uuid.UUID,
    chatbot_id: uuid.UUID | None = None,
    conversation_id: uuid.UUID | None = None,
    model: str = "",
) -> OpenedConversation:
    """Continue an owned, unarchived conversation or create a new one.

    An existing row is locked FOR UPDATE so an archive racing with this turn
    waits until the caller's transaction (which appends the user message)
    commits.
    """
    if conversation_id is not None:
        stmt = (
            select(Conversation)
            .where(
                Conversation.id == conversation_id,
                Conversation.tenant_id == tenant_id,
                Conversation.user_id == user_id,
                Conversation.is_archived.is_(False),  # type: ignore[union-attr]
            )
            .with_for_update()
        )
        existing = (await session.execute(stmt)).scalar_one_or_none()
        if existing is None:
            raise NotFound("Conversation not found or access denied")
        return OpenedConversation(id=existing.id, is_new=False)

    conversation = Conversation(
        tenant_id=tenant_id,
        user_id=user_id,
        chatbot_id=chatbot_id,
        model=model,
    )
    session.add(conversation)
    await session.flush()
    return OpenedConversation(id=conversation.id, is_new=True)


async def load_history(
    session: AsyncSession, conversation_id: uuid.UUID, limit: int | None = None
) -> tuple[HistoryMessage, ...]:
    """Up to ``limit`` most recent messages, oldest first.

    Returns an immutable snapshot; call again for a fresh view.
    """
    if limit is None:
        limit = get_settings().max_history_messages
    stmt = (
        select(Message.role, Message.content)
        .where(Message.conversation_id == conversation_id)
        .order_by(Message.created_at.desc())  # type: ignore[union-attr]
        .limit(limit)
    )
    rows = (await session.execute(stmt)).all()
    return tuple(HistoryMessage(role=row.role, content=row.content) for row in reversed(rows))


async def append_message(
    session: AsyncSession,
    conversation_id: uuid.UUID,
    tenant_id: uuid.UUID,
    role: MessageRole,
    content: str,
    meta: MessageMeta | None = None,
) -> uuid.UUID:
    meta = meta or MessageMeta()
    message = Message(
        tenant_id=tenant_id,
        conversation_id=conversation_id,
        role=role,
        content=content,
        token_count=meta.token_count,
        prompt_tokens=meta.prompt_tokens,
        model=meta.model,
        latency_ms=meta.latency_ms,
        finish_reason=meta.finish_reason,
    )
    session.add(message)
    await session.flush()
    return message.id


async def update_rollups(
    session: AsyncSession,
    conversation_id: uuid.UUID,
    delta_tokens: int,
    new_title: str | None = None,
    message_delta: int = 2,
) -> None:
    """Increment rollups in one UPDATE so concurrent turns never lose counts."""
    now = utcnow()
    values: dict = {
        "message_count": Conversation.message_count + message_delta,
        "total_tokens": Conversation.total_tokens + delta_tokens,
        "last_message_at": now,
        "updated_at": now,
    }
    if new_title:
        values["title"] = new_title
    stmt = update(Conversation).where(Conversation.id == conversation_id).values(**values)
    await session.execute(stmt)


async def archive_conversations(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    user_id: uuid.UUID,
    conversation_ids: list[uuid.UUID],
    permanent: bool = False,
) -> int:
    """Archive (or hard-delete) the caller's conversations among ``conversation_ids``.

    Ids the caller does not own are ignored. Commits. Returns the number of
    conversations affected.
    """
    limit = get_settings().archive_batch_limit
    if not conversation_ids:
        raise ValidationError("conversation_ids array is required and must not be empty")
    if len(conversation_ids) > limit:
        raise ValidationError(f"Cannot archive more than {limit} conversations at once")

    owned_stmt = select(Conversation.id).where(
        Conversation.id.in_(set(conversation_ids)),  # type: ignore[union-attr]
        Conversation.tenant_id == tenant_id,
        Conversation.user_id == user_id,
    )
    owned = list((await session.execute(owned_stmt)).scalars().all())
    if not owned:
        return 0

    if permanent:
        message_ids = select(Message.id).where(
            Message.conversation_id.in_(owned)  # type: ignore[union-attr]
        )
        await session.execute(
            delete(Feedback).where(Feedback.message_id.in_(message_ids))  # type: ignore[union-attr]
        )
        await session.execute(
            delete(Message).where(Message.conversation_id.in_(owned))  # type: ignore[union-attr]
        )
        await session.execute(
            delete(Conversation).where(Conversation.id.in_(owned))  # type: ignore[union-attr]
        )
    else:
        await session.execute(
            update(Conversation)
            .where(Conversation.id.in_(owned))  # type: ignore[union-attr]
            .values(is_archived=True, updated_at=utcnow())
        )
    await session.commit()
    return len(owned)


# ── Read / management operations ──────────────────────────────

async def get_conversation(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    user_id: uuid.UUID,
    conversation_id: uuid.UUID,
) -> Conversation:
    stmt = select(Conversation).where(
        Conversation.id == conversation_id,
        Conversation.tenant_id == tenant_id,
        Conversation.user_id == user_id,
    )
    conversation = (await session.execute(stmt)).scalar_one_or_none()
    if conversation is None:
        raise NotFound("Conversation not found or access denied")
    return conversation


async def list_conversations(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    user_id: uuid.UUID,
    page: int = 1,
    per_page: int = 20,
    archived: bool = False,
    search: str | None = None,
) -> Page:
    validate_paging(page, per_page)
    filters = [
        Conversation.tenant_id == tenant_id,
        Conversation.user_id == user_id,
        Conversation.is_archived.is_(archived),  # type: ignore[union-attr]
    ]
    if search:
        filters.append(Conversation.title.ilike(f"%{search}%"))  # type: ignore[union-attr]

    total = (await session.execute(
        select(func.count()).select_from(Conversation).where(*filters)
    )).scalar_one()
    stmt = (
        select(Conversation)
        .where(*filters)
        .order_by(Conversation.updated_at.desc())  # type: ignore[union-attr]
        .limit(per_page)
        .offset((page - 1) * per_page)
    )
    items = list((await session.execute(stmt)).scalars().all())
    return Page(items=items, total=total, page=page, per_page=per_page)


async def list_messages(
    session: AsyncSession,
    conversation_id: uuid.UUID,
    page: int = 1,
    per_page: int = 50,
    order: Literal["asc", "desc"] = "asc",
) -> Page:
    validate_paging(page, per_page)
    if order not in ("asc", "desc"):
        raise ValidationError('Invalid order parameter. Must be "asc" or "desc".')

    total = (await session.execute(
        select(func.count()).select_from(Message).where(Message.conversation_id == conversation_id)
    )).scalar_one()
    created = Message.created_at.asc() if order == "asc" else Message.created_at.desc()  # type: ignore[union-attr]
    stmt = (
        select(Message)
        .where(Message.conversation_id == conversation_id)
        .order_by(created)
        .limit(per_page)
        .offset((page - 1) * per_page)
    )
    items = list((await session.execute(stmt)).scalars().all())
    return Page(items=items, total=total, page=page, per_page=per_page)


async def update_conversation(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    user_id: uuid.UUID,
    conversation_id: uuid.UUID,
    title: str | None = None,
    is_archived: bool | None = None,
) -> Conversation:
    """Rename and/or (un)archive a conversation the caller owns. Commits."""
    conversation = await get_conversation(session, tenant_id, user_id, conversation_id)
    if title is not None:
        conversation.title = title
    if is_archived is not None:
        conversation.is_archived = is_archived
    conversation.updated_at = utcnow()
    session.add(conversation)
    await session.commit()
    await session.refresh(conversation)
    return conversation
