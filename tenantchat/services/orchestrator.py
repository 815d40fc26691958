"""Session orchestrator — drives one chat turn end to end.

Flow:
  1. Resolve the generation config and validate the message
  2. Open (or create) the conversation, snapshot its history and persist the
     user message, all committed before the provider is called
  3. Stream the completion, forwarding each fragment as an SSE ``delta``
  4. On natural completion only: persist the assistant message, bump the
     conversation rollups, record usage, then emit ``done``. This step runs
     as a shielded task, so a client leaving after the last token cannot
     cut it short

Each persistence step opens its own short session from the injected factory,
so no transaction stays open while the provider is streaming.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from collections.abc import AsyncGenerator
from contextlib import aclosing
from dataclasses import dataclass

from sqlalchemy.orm import sessionmaker

from tenantchat.core.config import get_settings
from tenantchat.core.errors import InternalError, ProviderError, ValidationError
from tenantchat.models.base import utcnow
from tenantchat.models.message import MessageRole
from tenantchat.services import usage_metering
from tenantchat.services.completion_gateway import (
    CompletionResult,
    TextDelta,
    stream_completion,
)
from tenantchat.services.config_resolver import (
    GenerationConfig,
    RequestOverrides,
    resolve_generation_config,
)
from tenantchat.services.conversation_store import (
    HistoryMessage,
    MessageMeta,
    append_message,
    load_history,
    make_title,
    open_conversation,
    update_rollups,
)

logger = logging.getLogger(__name__)

# Strong references to finalizing tasks that outlive a disconnected response
_pending: set[asyncio.Task] = set()


def format_sse(event: str, data: dict) -> str:
    """Format a single SSE event."""
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


def validate_message(message: str | None) -> str:
    """Strip the user's message and enforce the length bounds."""
    text = (message or "").strip()
    if not text:
        raise ValidationError("Message is required and must be a non-empty string")
    limit = get_settings().max_message_length
    if len(text) > limit:
        raise ValidationError(f"Message exceeds maximum length of {limit} characters")
    return text


def build_prompt(
    system_prompt: str, history: tuple[HistoryMessage, ...], user_message: str
) -> list[dict]:
    """System prompt, then prior messages oldest first, then the new message."""
    messages: list[dict] = [{"role": "system", "content": system_prompt}]
    messages.extend(h.as_prompt() for h in history)
    messages.append({"role": "user", "content": user_message})
    return messages


@dataclass
class PreparedTurn:
    """Everything committed and resolved before the provider is called."""
    tenant_id: uuid.UUID
    user_id: uuid.UUID
    conversation_id: uuid.UUID
    is_new_conversation: bool
    user_message: str
    user_message_id: uuid.UUID
    config: GenerationConfig
    prompt: list[dict]


async def prepare_turn(
    session_factory: sessionmaker,
    tenant_id: uuid.UUID,
    user_id: uuid.UUID,
    message: str | None,
    conversation_id: uuid.UUID | None = None,
    chatbot_id: uuid.UUID | None = None,
    overrides: RequestOverrides | None = None,
) -> ChatTurn:
    """Resolve configuration and open the conversation.

    On return the user message is durably stored, so a later provider failure
    never loses the user's input.
    """
    text = validate_message(message)

    async with session_factory() as session:
        config = await resolve_generation_config(session, tenant_id, chatbot_id, overrides)
        opened = await open_conversation(
            session,
            tenant_id=tenant_id,
            user_id=user_id,
            chatbot_id=config.chatbot_id,
            conversation_id=conversation_id,
            model=config.model,
        )
        history = await load_history(session, opened.id)
        user_message_id = await append_message(
            session, opened.id, tenant_id, MessageRole.USER, text
        )
        await session.commit()

    prepared = PreparedTurn(
        tenant_id=tenant_id,
        user_id=user_id,
        conversation_id=opened.id,
        is_new_conversation=opened.is_new,
        user_message=text,
        user_message_id=user_message_id,
        config=config,
        prompt=build_prompt(config.system_prompt, history, text),
    )
    return ChatTurn(prepared, session_factory)


class ChatTurn:
    """The streaming half of a turn.

    Call ``start()`` before handing ``events()`` to the response: it waits for
    the first provider item, so a provider that fails outright raises
    ``ProviderError`` while a normal error response can still be sent.
    """

    def __init__(self, prepared: PreparedTurn, session_factory: sessionmaker) -> None:
        self.prepared = prepared
        self._session_factory = session_factory
        self._stream: AsyncGenerator[TextDelta | CompletionResult, None] | None = None
        self._first: TextDelta | CompletionResult | None = None
        self._started_at = 0.0
        self.finalizing: asyncio.Task | None = None

    @property
    def conversation_id(self) -> uuid.UUID:
        return self.prepared.conversation_id

    @property
    def is_new_conversation(self) -> bool:
        return self.prepared.is_new_conversation

    async def start(self) -> None:
        self._started_at = time.monotonic()
        self._stream = stream_completion(self.prepared.config, self.prepared.prompt)
        try:
            self._first = await self._stream.__anext__()
        except ProviderError:
            logger.warning(
                "Provider failed before first token for conversation %s",
                self.conversation_id,
            )
            raise

    async def events(self) -> AsyncGenerator[str, None]:
        if self._stream is None or self._first is None:
            raise RuntimeError("ChatTurn.start() must be awaited before events()")

        result: CompletionResult | None = None
        try:
            async with aclosing(self._stream) as stream:
                item = self._first
                while not isinstance(item, CompletionResult):
                    yield format_sse("delta", {"content": item.text})
                    item = await stream.__anext__()
                result = item
        except ProviderError as exc:
            logger.warning(
                "Provider failed mid-stream for conversation %s after %d chars: %s",
                self.conversation_id, len(exc.partial_text), exc.message,
            )
            yield self._error_frame(exc)
            return
        except (asyncio.CancelledError, GeneratorExit):
            logger.info(
                "Client disconnected from conversation %s; turn not finalized",
                self.conversation_id,
            )
            raise

        async for frame in self._finalize(result):
            yield frame

    # ── Finalizing ────────────────────────────────────────────

    async def _finalize(self, result: CompletionResult) -> AsyncGenerator[str, None]:
        prepared = self.prepared
        latency_ms = int((time.monotonic() - self._started_at) * 1000)

        # Bookkeeping runs to completion even if the client goes away now
        self.finalizing = asyncio.ensure_future(self._settle(result, latency_ms))
        _pending.add(self.finalizing)
        self.finalizing.add_done_callback(_pending.discard)
        try:
            message_id, cost = await asyncio.shield(self.finalizing)
        except asyncio.CancelledError:
            logger.info(
                "Client disconnected while finalizing conversation %s; bookkeeping continues",
                self.conversation_id,
            )
            raise

        if message_id is None:
            yield self._error_frame(InternalError("Failed to save the assistant response"))
            return

        yield format_sse("done", {
            "conversation_id": str(self.conversation_id),
            "message_id": str(message_id),
            "is_new_conversation": self.is_new_conversation,
            "finish_reason": result.finish_reason,
            "usage": {
                "model": prepared.config.model,
                "prompt_tokens": result.prompt_tokens,
                "completion_tokens": result.completion_tokens,
                "total_tokens": result.total_tokens,
                "estimated_cost": cost,
            },
            "latency_ms": latency_ms,
        })

    async def _settle(
        self, result: CompletionResult, latency_ms: int
    ) -> tuple[uuid.UUID | None, float]:
        """Save the assistant message, then rollups, then usage.

        Returns ``(None, 0.0)`` when the assistant message could not be saved;
        nothing else is recorded in that case.
        """
        try:
            message_id = await self._save_assistant_message(result, latency_ms)
        except Exception:
            logger.exception(
                "Failed to persist assistant message for conversation %s",
                self.conversation_id,
            )
            return None, 0.0

        await self._apply_rollups(result)
        cost = await self._record_usage(result)

        logger.info(
            "Turn completed: conversation=%s model=%s prompt_tokens=%d "
            "completion_tokens=%d latency_ms=%d estimated_cost=%.6f",
            self.conversation_id, self.prepared.config.model, result.prompt_tokens,
            result.completion_tokens, latency_ms, cost,
        )
        return message_id, cost

    async def _save_assistant_message(
        self, result: CompletionResult, latency_ms: int
    ) -> uuid.UUID:
        prepared = self.prepared
        async with self._session_factory() as session:
            message_id = await append_message(
                session,
                prepared.conversation_id,
                prepared.tenant_id,
                MessageRole.ASSISTANT,
                result.text,
                MessageMeta(
                    token_count=result.completion_tokens,
                    prompt_tokens=result.prompt_tokens,
                    model=prepared.config.model,
                    latency_ms=latency_ms,
                    finish_reason=result.finish_reason,
                ),
            )
            await session.commit()
        return message_id

    async def _apply_rollups(self, result: CompletionResult) -> None:
        prepared = self.prepared
        title = make_title(prepared.user_message) if prepared.is_new_conversation else None
        try:
            async with self._session_factory() as session:
                await update_rollups(
                    session,
                    prepared.conversation_id,
                    delta_tokens=result.total_tokens,
                    new_title=title,
                )
                await session.commit()
        except Exception:
            logger.exception(
                "Failed to update rollups for conversation %s", self.conversation_id
            )

    async def _record_usage(self, result: CompletionResult) -> float:
        prepared = self.prepared
        cost = usage_metering.estimate_cost(
            prepared.config.model, result.prompt_tokens, result.completion_tokens
        )
        try:
            async with self._session_factory() as session:
                await usage_metering.increment(
                    session,
                    tenant_id=prepared.tenant_id,
                    user_id=prepared.user_id,
                    day=utcnow().date(),
                    prompt_tokens=result.prompt_tokens,
                    completion_tokens=result.completion_tokens,
                    estimated_cost=cost,
                )
        except Exception:
            logger.exception(
                "Failed to record usage for conversation %s", self.conversation_id
            )
        return cost

    def _error_frame(self, exc: ProviderError | InternalError) -> str:
        body = exc.to_dict()
        body["conversation_id"] = str(self.conversation_id)
        return format_sse("error", body)
