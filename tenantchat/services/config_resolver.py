"""Tenant configuration resolver — effective generation settings for a turn.

Layers, highest precedence first:
  1. Values supplied on the current request
  2. The chatbot's stored settings (only a published chatbot of the same tenant)
  3. The tenant's own defaults
  4. Platform fallbacks from Settings

Read-only. Configuration is re-read on every request; nothing is cached.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from tenantchat.core.config import get_settings
from tenantchat.core.errors import NotFound, ValidationError
from tenantchat.core.security import decrypt_value
from tenantchat.models.chatbot import Chatbot
from tenantchat.models.tenant import Tenant

# Model id prefixes that accept reasoning provider options
REASONING_MODEL_PREFIXES = ("o1", "o3", "o4", "gpt-5")

MAX_TOKENS_LIMIT = 128000


def supports_reasoning_params(model: str) -> bool:
    name = model.rsplit("/", 1)[-1].lower()
    return name.startswith(REASONING_MODEL_PREFIXES)


@dataclass
class RequestOverrides:
    """Generation parameters the caller supplied on the request itself."""
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None


@dataclass
class GenerationConfig:
    """The merged configuration handed to the completion gateway."""
    model: str
    temperature: float
    max_tokens: int
    system_prompt: str
    chatbot_id: uuid.UUID | None = None
    model_params: dict[str, Any] = field(default_factory=dict)
    provider_options: dict[str, Any] = field(default_factory=dict)
    response_format: dict[str, Any] | None = None
    api_key: str | None = field(default=None, repr=False)

    def completion_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for ``litellm.acompletion`` (minus messages)."""
        kwargs: dict[str, Any] = {
            "model": self.model,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        for name in ("top_p", "frequency_penalty", "presence_penalty"):
            if self.model_params.get(name) is not None:
                kwargs[name] = self.model_params[name]
        if self.provider_options.get("store") is not None:
            kwargs["store"] = self.provider_options["store"]
        if (
            self.provider_options.get("reasoning_effort")
            and supports_reasoning_params(self.model)
        ):
            kwargs["reasoning_effort"] = self.provider_options["reasoning_effort"]
        if self.response_format:
            kwargs["response_format"] = self.response_format
        if self.api_key:
            kwargs["api_key"] = self.api_key
        return kwargs


def _validate_overrides(overrides: RequestOverrides) -> None:
    if overrides.model is not None and not overrides.model.strip():
        raise ValidationError("model must be a non-empty string")
    if overrides.temperature is not None and not 0.0 <= overrides.temperature <= 2.0:
        raise ValidationError("temperature must be between 0 and 2")
    if overrides.max_tokens is not None and not 1 <= overrides.max_tokens <= MAX_TOKENS_LIMIT:
        raise ValidationError(f"max_tokens must be between 1 and {MAX_TOKENS_LIMIT}")


async def load_active_tenant(session: AsyncSession, tenant_id: uuid.UUID) -> Tenant:
    """Fetch a tenant; inactive tenants are reported exactly like missing ones."""
    stmt = select(Tenant).where(
        Tenant.id == tenant_id,
        Tenant.is_active.is_(True),  # type: ignore[union-attr]
    )
    tenant = (await session.execute(stmt)).scalar_one_or_none()
    if tenant is None:
        raise NotFound("Tenant not found")
    return tenant


async def _load_chatbot(
    session: AsyncSession, chatbot_id: uuid.UUID, tenant_id: uuid.UUID
) -> Chatbot:
    stmt = select(Chatbot).where(
        Chatbot.id == chatbot_id,
        Chatbot.tenant_id == tenant_id,
        Chatbot.is_published.is_(True),  # type: ignore[union-attr]
    )
    chatbot = (await session.execute(stmt)).scalar_one_or_none()
    if chatbot is None:
        raise NotFound("Chatbot not found")
    return chatbot


def _chatbot_api_key(chatbot: Chatbot) -> str | None:
    if not chatbot.encrypted_credentials:
        return None
    creds = json.loads(decrypt_value(chatbot.encrypted_credentials))
    return creds.get("api_key")


def _first(*values: Any) -> Any:
    """First value that is not None."""
    return next((v for v in values if v is not None), None)


async def resolve_generation_config(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    chatbot_id: uuid.UUID | None = None,
    overrides: RequestOverrides | None = None,
) -> GenerationConfig:
    """Merge request → chatbot → tenant → platform settings.

    Raises:
        NotFound: the tenant is missing or inactive, or the chatbot is missing,
            unpublished or owned by another tenant.
        ValidationError: a request override is out of range.
    """
    overrides = overrides or RequestOverrides()
    _validate_overrides(overrides)

    settings = get_settings()
    tenant = await load_active_tenant(session, tenant_id)
    chatbot = await _load_chatbot(session, chatbot_id, tenant.id) if chatbot_id else None

    extended = chatbot.settings if chatbot else {}

    return GenerationConfig(
        model=(
            overrides.model
            or (chatbot.model if chatbot else None)
            or tenant.llm_model
            or settings.default_llm_model
        ),
        temperature=_first(
            overrides.temperature,
            chatbot.temperature if chatbot else None,
            tenant.temperature,
            settings.default_temperature,
        ),
        max_tokens=_first(
            overrides.max_tokens,
            chatbot.max_tokens if chatbot else None,
            tenant.max_tokens,
            settings.default_max_tokens,
        ),
        system_prompt=(
            (chatbot.system_prompt if chatbot else None)
            or tenant.system_prompt
            or settings.default_system_prompt
        ),
        chatbot_id=chatbot.id if chatbot else None,
        model_params=extended.get("model_params") or {},
        provider_options=extended.get("provider_options") or {},
        response_format=extended.get("response_format") or None,
        api_key=_chatbot_api_key(chatbot) if chatbot else None,
    )
