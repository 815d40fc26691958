"""Turn lifecycle at the service level — disconnects and finalizing failures."""

import asyncio
import uuid
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
from sqlmodel import select

from tenantchat.core.errors import NotFound, ProviderError
from tenantchat.models.conversation import Conversation
from tenantchat.models.message import Message, MessageRole
from tenantchat.models.tenant import Tenant
from tenantchat.models.usage_metric import UsageMetric
from tenantchat.models.user import User
from tenantchat.services.completion_gateway import CompletionResult, TextDelta, stream_completion
from tenantchat.services.config_resolver import GenerationConfig
from tenantchat.services.conversation_store import update_rollups
from tenantchat.services.orchestrator import prepare_turn

LLM_PATH = "tenantchat.services.completion_gateway.acompletion"


@pytest.fixture
async def identity(session):
    tenant = Tenant(name="Orch", slug="orch")
    session.add(tenant)
    await session.flush()
    user = User(tenant_id=tenant.id, email="u@orch-test.com")
    session.add(user)
    await session.commit()
    return tenant.id, user.id


def _tracked_stream(fragments: list[str]):
    """acompletion replacement whose stream records whether it was closed."""
    state = SimpleNamespace(closed=False)

    async def _stream():
        try:
            for fragment in fragments:
                choice = SimpleNamespace(delta=SimpleNamespace(content=fragment), finish_reason=None)
                yield SimpleNamespace(choices=[choice], usage=None)
        finally:
            state.closed = True

    async def mock_acompletion(**kwargs):
        return _stream()

    return AsyncMock(side_effect=mock_acompletion), state


@pytest.mark.asyncio
async def test_disconnect_skips_finalizing_and_closes_provider(
    test_session_factory, session, identity,
):
    tenant_id, user_id = identity
    mock_llm, state = _tracked_stream(["a", "b", "c", "d"])

    with patch(LLM_PATH, mock_llm):
        turn = await prepare_turn(test_session_factory, tenant_id, user_id, "hello")
        await turn.start()
        events = turn.events()
        first = await events.__anext__()
        assert first.startswith("event: delta")
        await events.aclose()  # client went away

    assert state.closed is True

    messages = (await session.execute(select(Message))).scalars().all()
    assert [m.role for m in messages] == [MessageRole.USER]
    conversation = await session.get(Conversation, turn.conversation_id)
    assert conversation.message_count == 0
    assert (await session.execute(select(UsageMetric))).scalars().all() == []


@pytest.mark.asyncio
async def test_assistant_persistence_failure_sends_error_frame(
    test_session_factory, session, identity, fake_llm, sse,
):
    tenant_id, user_id = identity

    with (
        patch(LLM_PATH, fake_llm("fine answer")),
        patch(
            "tenantchat.services.orchestrator.ChatTurn._save_assistant_message",
            AsyncMock(side_effect=RuntimeError("disk full")),
        ),
    ):
        turn = await prepare_turn(test_session_factory, tenant_id, user_id, "hello")
        await turn.start()
        frames = [frame async for frame in turn.events()]

    events = sse("".join(frames))
    assert events[-1]["event"] == "error"
    assert events[-1]["data"]["code"] == "INTERNAL_ERROR"
    assert "done" not in [e["event"] for e in events]
    assert (await session.execute(select(UsageMetric))).scalars().all() == []


@pytest.mark.asyncio
async def test_rollup_failure_is_swallowed(test_session_factory, session, identity, fake_llm, sse):
    tenant_id, user_id = identity

    with (
        patch(LLM_PATH, fake_llm("answer", 3, 2)),
        patch(
            "tenantchat.services.orchestrator.update_rollups",
            AsyncMock(side_effect=RuntimeError("lock timeout")),
        ),
    ):
        turn = await prepare_turn(test_session_factory, tenant_id, user_id, "hello")
        await turn.start()
        frames = [frame async for frame in turn.events()]

    events = sse("".join(frames))
    assert events[-1]["event"] == "done"
    # Usage is still recorded after the rollup step failed
    rows = (await session.execute(select(UsageMetric))).scalars().all()
    assert rows[0].total_tokens == 5


@pytest.mark.asyncio
async def test_disconnect_during_finalizing_still_records_bookkeeping(
    test_session_factory, session, identity, fake_llm,
):
    """A client leaving after the last token cannot skip rollups or usage."""
    tenant_id, user_id = identity

    async def slow_rollups(*args, **kwargs):
        await asyncio.sleep(0.3)
        await update_rollups(*args, **kwargs)

    async def consume(events):
        async for _ in events:
            pass

    with (
        patch(LLM_PATH, fake_llm("late answer", 3, 2)),
        patch("tenantchat.services.orchestrator.update_rollups", slow_rollups),
    ):
        turn = await prepare_turn(test_session_factory, tenant_id, user_id, "hello")
        await turn.start()
        consumer = asyncio.create_task(consume(turn.events()))
        await asyncio.sleep(0.1)
        assert turn.finalizing is not None
        consumer.cancel()
        with pytest.raises(asyncio.CancelledError):
            await consumer
        await turn.finalizing

    messages = (await session.execute(select(Message))).scalars().all()
    assert sorted(m.role.value for m in messages) == ["assistant", "user"]
    conversation = await session.get(Conversation, turn.conversation_id)
    assert conversation.message_count == 2
    assert conversation.total_tokens == 5
    rows = (await session.execute(select(UsageMetric))).scalars().all()
    assert len(rows) == 1
    assert rows[0].request_count == 1


@pytest.mark.asyncio
async def test_user_message_committed_before_provider_call(
    test_session_factory, session, identity,
):
    tenant_id, user_id = identity
    seen: list[int] = []

    async def checking_acompletion(**kwargs):
        async with test_session_factory() as s:
            rows = (await s.execute(select(Message))).scalars().all()
            seen.append(len(rows))
        raise RuntimeError("boom")

    with patch(LLM_PATH, AsyncMock(side_effect=checking_acompletion)):
        turn = await prepare_turn(test_session_factory, tenant_id, user_id, "keep me")
        with pytest.raises(ProviderError):
            await turn.start()

    assert seen == [1]


# ── Gateway ───────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_gateway_wraps_failures_with_partial_text(fake_llm):
    config = GenerationConfig(model="gpt-4o-mini", temperature=0.5, max_tokens=10, system_prompt="s")
    received = []

    with patch(LLM_PATH, fake_llm("alpha beta gamma", fail_after=2)):
        with pytest.raises(ProviderError) as exc_info:
            async for item in stream_completion(config, [{"role": "user", "content": "x"}]):
                received.append(item)

    assert received == [TextDelta("alpha"), TextDelta(" beta")]
    assert exc_info.value.partial_text == "alpha beta"
    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_gateway_passes_timeout_and_yields_result(fake_llm, test_settings):
    config = GenerationConfig(model="gpt-4o-mini", temperature=0.5, max_tokens=10, system_prompt="s")
    mock_llm = fake_llm("one two", 9, 2)

    with patch(LLM_PATH, mock_llm):
        items = [i async for i in stream_completion(config, [{"role": "user", "content": "x"}])]

    assert items[-1] == CompletionResult(
        text="one two", prompt_tokens=9, completion_tokens=2, finish_reason="stop",
    )
    assert mock_llm.call_args.kwargs["timeout"] == test_settings.provider_timeout_seconds


@pytest.mark.asyncio
async def test_other_user_cannot_reopen_conversation(test_session_factory, identity):
    """Another user's id in the same tenant cannot reopen the conversation."""
    tenant_id, user_id = identity
    turn = await prepare_turn(test_session_factory, tenant_id, user_id, "mine")

    with pytest.raises(NotFound):
        await prepare_turn(
            test_session_factory, tenant_id, uuid.uuid4(), "theirs",
            conversation_id=turn.conversation_id,
        )
