"""Conversation management — listing, history, rename and bulk archive."""

import uuid
from typing import Literal

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from tenantchat.api.deps import Identity, Session
from tenantchat.models.conversation import ConversationRead, ConversationUpdate
from tenantchat.models.message import MessageRead
from tenantchat.services import conversation_store

router = APIRouter(prefix="/conversations", tags=["conversations"])


# ── Schemas ───────────────────────────────────────────────────

class ConversationPage(BaseModel):
    conversations: list[ConversationRead]
    total: int
    page: int
    per_page: int
    has_more: bool


class MessagePage(BaseModel):
    conversation_id: uuid.UUID
    messages: list[MessageRead]
    total: int
    page: int
    per_page: int
    has_more: bool


class ArchiveRequest(BaseModel):
    conversation_ids: list[uuid.UUID] = Field(default_factory=list)
    permanent: bool = False


class ArchiveResponse(BaseModel):
    count: int
    permanent: bool


# ── Routes ────────────────────────────────────────────────────

@router.get("", response_model=ConversationPage)
async def list_conversations(
    identity: Identity,
    session: Session,
    page: int = 1,
    per_page: int = 20,
    archived: bool = False,
    search: str | None = Query(default=None, max_length=200),
) -> ConversationPage:
    """List the caller's conversations, most recently active first."""
    result = await conversation_store.list_conversations(
        session,
        identity.tenant_id,
        identity.user_id,
        page=page,
        per_page=per_page,
        archived=archived,
        search=search,
    )
    return ConversationPage(
        conversations=[ConversationRead.model_validate(c) for c in result.items],
        total=result.total,
        page=result.page,
        per_page=result.per_page,
        has_more=result.has_more,
    )


@router.delete("", response_model=ArchiveResponse)
async def archive_conversations(
    body: ArchiveRequest,
    identity: Identity,
    session: Session,
) -> ArchiveResponse:
    """Archive (or permanently delete) up to 100 of the caller's conversations.

    Ids that do not belong to the caller are ignored; ``count`` reports how
    many conversations were actually affected.
    """
    count = await conversation_store.archive_conversations(
        session,
        identity.tenant_id,
        identity.user_id,
        body.conversation_ids,
        permanent=body.permanent,
    )
    return ArchiveResponse(count=count, permanent=body.permanent)


@router.get("/{conversation_id}", response_model=ConversationRead)
async def get_conversation(
    conversation_id: uuid.UUID,
    identity: Identity,
    session: Session,
) -> ConversationRead:
    conversation = await conversation_store.get_conversation(
        session, identity.tenant_id, identity.user_id, conversation_id
    )
    return ConversationRead.model_validate(conversation)


@router.get("/{conversation_id}/messages", response_model=MessagePage)
async def get_conversation_messages(
    conversation_id: uuid.UUID,
    identity: Identity,
    session: Session,
    page: int = 1,
    per_page: int = 50,
    order: Literal["asc", "desc"] = "asc",
) -> MessagePage:
    await conversation_store.get_conversation(
        session, identity.tenant_id, identity.user_id, conversation_id
    )  # verify access
    result = await conversation_store.list_messages(
        session, conversation_id, page=page, per_page=per_page, order=order
    )
    return MessagePage(
        conversation_id=conversation_id,
        messages=[MessageRead.model_validate(m) for m in result.items],
        total=result.total,
        page=result.page,
        per_page=result.per_page,
        has_more=result.has_more,
    )


@router.patch("/{conversation_id}", response_model=ConversationRead)
async def update_conversation(
    conversation_id: uuid.UUID,
    body: ConversationUpdate,
    identity: Identity,
    session: Session,
) -> ConversationRead:
    conversation = await conversation_store.update_conversation(
        session,
        identity.tenant_id,
        identity.user_id,
        conversation_id,
        title=body.title,
        is_archived=body.is_archived,
    )
    return ConversationRead.model_validate(conversation)
