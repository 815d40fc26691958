"""Generation config precedence: request > chatbot > tenant > platform defaults."""

import json
import uuid
from unittest.mock import patch

import pytest
from httpx import AsyncClient

from tenantchat.core.errors import NotFound, ValidationError
from tenantchat.core.security import encrypt_value
from tenantchat.models.chatbot import Chatbot
from tenantchat.models.tenant import Tenant
from tenantchat.services.config_resolver import (
    GenerationConfig,
    RequestOverrides,
    resolve_generation_config,
    supports_reasoning_params,
)


async def _tenant(session, **fields) -> Tenant:
    tenant = Tenant(name="Acme", slug=f"acme-{uuid.uuid4().hex[:8]}", **fields)
    session.add(tenant)
    await session.commit()
    return tenant


async def _chatbot(session, tenant: Tenant, **fields) -> Chatbot:
    fields.setdefault("is_published", True)
    bot = Chatbot(tenant_id=tenant.id, name="Helper", **fields)
    session.add(bot)
    await session.commit()
    return bot


@pytest.mark.asyncio
async def test_platform_defaults(session, test_settings):
    tenant = await _tenant(session)
    config = await resolve_generation_config(session, tenant.id)

    assert config.model == test_settings.default_llm_model
    assert config.temperature == test_settings.default_temperature
    assert config.max_tokens == test_settings.default_max_tokens
    assert config.system_prompt == test_settings.default_system_prompt
    assert config.chatbot_id is None


@pytest.mark.asyncio
async def test_tenant_defaults_override_platform(session):
    tenant = await _tenant(
        session, llm_model="gpt-4o", temperature=0.2, max_tokens=512, system_prompt="Be terse.",
    )
    config = await resolve_generation_config(session, tenant.id)

    assert (config.model, config.temperature, config.max_tokens) == ("gpt-4o", 0.2, 512)
    assert config.system_prompt == "Be terse."


@pytest.mark.asyncio
async def test_chatbot_overrides_tenant_and_request_overrides_chatbot(session):
    tenant = await _tenant(session, llm_model="gpt-4o", temperature=0.2, max_tokens=512)
    bot = await _chatbot(
        session, tenant, model="gpt-4-turbo", temperature=0.9, max_tokens=1000,
        system_prompt="You are Helper.",
    )

    config = await resolve_generation_config(session, tenant.id, bot.id)
    assert (config.model, config.temperature, config.max_tokens) == ("gpt-4-turbo", 0.9, 1000)
    assert config.system_prompt == "You are Helper."
    assert config.chatbot_id == bot.id

    config = await resolve_generation_config(
        session, tenant.id, bot.id,
        RequestOverrides(model="gpt-3.5-turbo", temperature=0.0, max_tokens=64),
    )
    # Zero is a real override, not a missing value
    assert (config.model, config.temperature, config.max_tokens) == ("gpt-3.5-turbo", 0.0, 64)


@pytest.mark.asyncio
async def test_chatbot_of_another_tenant_is_not_found(session):
    mine = await _tenant(session)
    theirs = await _tenant(session)
    bot = await _chatbot(session, theirs)

    with pytest.raises(NotFound):
        await resolve_generation_config(session, mine.id, bot.id)


@pytest.mark.asyncio
async def test_unpublished_chatbot_is_not_found(session):
    tenant = await _tenant(session)
    bot = await _chatbot(session, tenant, is_published=False)

    with pytest.raises(NotFound):
        await resolve_generation_config(session, tenant.id, bot.id)


@pytest.mark.asyncio
async def test_inactive_or_missing_tenant_is_not_found(session):
    tenant = await _tenant(session, is_active=False)
    with pytest.raises(NotFound):
        await resolve_generation_config(session, tenant.id)
    with pytest.raises(NotFound):
        await resolve_generation_config(session, uuid.uuid4())


@pytest.mark.asyncio
@pytest.mark.parametrize("overrides", [
    RequestOverrides(temperature=2.5),
    RequestOverrides(temperature=-0.1),
    RequestOverrides(max_tokens=0),
    RequestOverrides(model="   "),
])
async def test_out_of_range_overrides_rejected(session, overrides):
    tenant = await _tenant(session)
    with pytest.raises(ValidationError):
        await resolve_generation_config(session, tenant.id, overrides=overrides)


@pytest.mark.asyncio
async def test_chatbot_settings_and_credentials_flow_into_kwargs(session):
    tenant = await _tenant(session)
    bot = await _chatbot(
        session, tenant, model="o3-mini",
        settings_json=json.dumps({
            "model_params": {"top_p": 0.5},
            "provider_options": {"store": False, "reasoning_effort": "low"},
            "response_format": {"type": "json_object"},
        }),
        encrypted_credentials=encrypt_value(json.dumps({"api_key": "sk-tenant"})),
    )

    config = await resolve_generation_config(session, tenant.id, bot.id)
    kwargs = config.completion_kwargs()

    assert kwargs["model"] == "o3-mini"
    assert kwargs["top_p"] == 0.5
    assert kwargs["store"] is False
    assert kwargs["reasoning_effort"] == "low"
    assert kwargs["response_format"] == {"type": "json_object"}
    assert kwargs["api_key"] == "sk-tenant"


def test_reasoning_options_dropped_for_other_models():
    config = GenerationConfig(
        model="gpt-4o", temperature=0.7, max_tokens=100, system_prompt="x",
        provider_options={"reasoning_effort": "high"},
    )
    assert "reasoning_effort" not in config.completion_kwargs()
    assert supports_reasoning_params("openai/o1-mini")
    assert not supports_reasoning_params("claude-haiku-4-5-20251001")


# ── Through the chat endpoint ─────────────────────────────────

@pytest.mark.asyncio
async def test_chat_uses_resolved_config(client: AsyncClient, bootstrap, fake_llm):
    ctx = await bootstrap("resolver-chat", llm_model="gpt-4o", temperature=0.3)
    resp = await client.post("/v1/chatbots", json={
        "name": "Support", "model": "gpt-4-turbo", "temperature": 0.1,
        "system_prompt": "You are Support.", "is_published": True,
    }, headers=ctx["headers"])
    chatbot_id = resp.json()["id"]

    mock_llm = fake_llm("ok")
    with patch("tenantchat.services.completion_gateway.acompletion", mock_llm):
        await client.post("/v1/chat", json={
            "message": "hi", "chatbot_id": chatbot_id, "temperature": 1.5,
        }, headers=ctx["headers"])

    kwargs = mock_llm.call_args.kwargs
    assert kwargs["model"] == "gpt-4-turbo"
    assert kwargs["temperature"] == 1.5
    assert kwargs["messages"][0] == {"role": "system", "content": "You are Support."}


@pytest.mark.asyncio
async def test_chat_with_foreign_chatbot_is_not_found(client: AsyncClient, bootstrap, fake_llm):
    owner = await bootstrap("resolver-owner")
    other = await bootstrap("resolver-other")
    resp = await client.post("/v1/chatbots", json={
        "name": "Private", "is_published": True,
    }, headers=owner["headers"])
    chatbot_id = resp.json()["id"]

    mock_llm = fake_llm("never")
    with patch("tenantchat.services.completion_gateway.acompletion", mock_llm):
        resp = await client.post("/v1/chat", json={
            "message": "hi", "chatbot_id": chatbot_id,
        }, headers=other["headers"])

    assert resp.status_code == 404
    mock_llm.assert_not_called()
