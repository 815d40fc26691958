"""Chatbot CRUD — all queries scoped to tenant_id."""

import json
import uuid

from fastapi import APIRouter, status
from sqlmodel import select

from tenantchat.api.deps import Identity, Session, require_elevated
from tenantchat.core.errors import NotFound
from tenantchat.core.security import encrypt_value
from tenantchat.models.base import utcnow
from tenantchat.models.chatbot import (
    Chatbot,
    ChatbotCreate,
    ChatbotRead,
    ChatbotUpdate,
)

router = APIRouter(prefix="/chatbots", tags=["chatbots"])


def _to_read(bot: Chatbot) -> ChatbotRead:
    return ChatbotRead(
        id=bot.id,
        tenant_id=bot.tenant_id,
        name=bot.name,
        description=bot.description,
        model=bot.model,
        system_prompt=bot.system_prompt,
        temperature=bot.temperature,
        max_tokens=bot.max_tokens,
        settings=bot.settings,
        has_credentials=bot.encrypted_credentials is not None,
        is_published=bot.is_published,
        created_at=bot.created_at,
        updated_at=bot.updated_at,
    )


def _encrypt_credentials(credentials: dict | None) -> str | None:
    if not credentials:
        return None
    return encrypt_value(json.dumps(credentials))


@router.post("", response_model=ChatbotRead, status_code=status.HTTP_201_CREATED)
async def create_chatbot(
    body: ChatbotCreate,
    identity: Identity,
    session: Session,
) -> ChatbotRead:
    require_elevated(identity, "create chatbots")
    bot = Chatbot(
        tenant_id=identity.tenant_id,
        name=body.name,
        description=body.description,
        model=body.model,
        system_prompt=body.system_prompt,
        temperature=body.temperature,
        max_tokens=body.max_tokens,
        settings_json=body.settings.model_dump_json(exclude_none=True),
        encrypted_credentials=_encrypt_credentials(body.credentials),
        is_published=body.is_published,
    )
    session.add(bot)
    await session.commit()
    await session.refresh(bot)
    return _to_read(bot)


@router.get("", response_model=list[ChatbotRead])
async def list_chatbots(
    identity: Identity,
    session: Session,
    published: bool | None = None,
) -> list[ChatbotRead]:
    stmt = select(Chatbot).where(Chatbot.tenant_id == identity.tenant_id)
    if published is not None:
        stmt = stmt.where(Chatbot.is_published.is_(published))  # type: ignore[union-attr]
    stmt = stmt.order_by(Chatbot.created_at.desc())  # type: ignore[union-attr]
    result = await session.execute(stmt)
    return [_to_read(bot) for bot in result.scalars().all()]


@router.get("/{chatbot_id}", response_model=ChatbotRead)
async def get_chatbot(
    chatbot_id: uuid.UUID,
    identity: Identity,
    session: Session,
) -> ChatbotRead:
    bot = await _get_or_404(chatbot_id, identity.tenant_id, session)
    return _to_read(bot)


@router.patch("/{chatbot_id}", response_model=ChatbotRead)
async def update_chatbot(
    chatbot_id: uuid.UUID,
    body: ChatbotUpdate,
    identity: Identity,
    session: Session,
) -> ChatbotRead:
    require_elevated(identity, "change chatbots")
    bot = await _get_or_404(chatbot_id, identity.tenant_id, session)

    update_data = body.model_dump(exclude_unset=True)

    # Credentials and settings are stored serialized
    if "credentials" in update_data:
        bot.encrypted_credentials = _encrypt_credentials(update_data.pop("credentials"))
    if "settings" in update_data:
        update_data.pop("settings")
        if body.settings is not None:
            bot.settings_json = body.settings.model_dump_json(exclude_none=True)

    for field, value in update_data.items():
        if value is not None:
            setattr(bot, field, value)

    bot.updated_at = utcnow()
    session.add(bot)
    await session.commit()
    await session.refresh(bot)
    return _to_read(bot)


@router.delete("/{chatbot_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_chatbot(
    chatbot_id: uuid.UUID,
    identity: Identity,
    session: Session,
) -> None:
    require_elevated(identity, "delete chatbots")
    bot = await _get_or_404(chatbot_id, identity.tenant_id, session)
    await session.delete(bot)
    await session.commit()


# ── Internal helper ───────────────────────────────────────────

async def _get_or_404(
    chatbot_id: uuid.UUID,
    tenant_id: uuid.UUID,
    session,
) -> Chatbot:
    stmt = select(Chatbot).where(
        Chatbot.id == chatbot_id,
        Chatbot.tenant_id == tenant_id,
    )
    result = await session.execute(stmt)
    bot = result.scalar_one_or_none()
    if bot is None:
        raise NotFound("Chatbot not found")
    return bot
