"""Completion streaming gateway — one provider call per turn via LiteLLM.

``stream_completion`` yields ``TextDelta`` items as fragments arrive and then
exactly one ``CompletionResult``. Any upstream failure is re-raised as
``ProviderError`` carrying whatever text had already been received.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from dataclasses import dataclass

import litellm
from litellm import acompletion

from tenantchat.core.config import get_settings
from tenantchat.core.errors import ProviderError
from tenantchat.services.config_resolver import GenerationConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TextDelta:
    """A single fragment of generated text."""
    text: str


@dataclass(frozen=True)
class CompletionResult:
    """Terminal item of a completed stream."""
    text: str
    prompt_tokens: int
    completion_tokens: int
    finish_reason: str | None = None

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


async def _close_stream(response) -> None:
    aclose = getattr(response, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception:
        logger.warning("Failed to close provider stream", exc_info=True)


def _estimate_usage(model: str, messages: list[dict], text: str) -> tuple[int, int]:
    """Token counts for providers that do not report usage on the stream.

    Falls back to zero counts when the tokenizer cannot handle ``model``; the
    completed text is still delivered.
    """
    try:
        prompt_tokens = litellm.token_counter(model=model, messages=messages)
        completion_tokens = litellm.token_counter(model=model, text=text) if text else 0
    except Exception:
        logger.warning("Token estimation failed for model %s; recording zero usage", model, exc_info=True)
        return 0, 0
    return prompt_tokens, completion_tokens


async def stream_completion(
    config: GenerationConfig,
    messages: list[dict],
) -> AsyncGenerator[TextDelta | CompletionResult, None]:
    """Stream a completion for ``messages`` using ``config``.

    Closing the generator (client disconnect, task cancellation) closes the
    upstream stream as well.
    """
    kwargs = config.completion_kwargs()
    kwargs.update(
        messages=messages,
        stream=True,
        stream_options={"include_usage": True},
        timeout=get_settings().provider_timeout_seconds,
    )

    parts: list[str] = []
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    finish_reason: str | None = None
    response = None

    try:
        response = await acompletion(**kwargs)
        async for chunk in response:
            choice = chunk.choices[0] if chunk.choices else None
            if choice is not None:
                content = choice.delta.content if choice.delta else None
                if content:
                    parts.append(content)
                    yield TextDelta(content)
                if choice.finish_reason:
                    finish_reason = choice.finish_reason

            # Usage arrives on the final chunk when include_usage is honoured
            usage = getattr(chunk, "usage", None)
            if usage:
                prompt_tokens = usage.prompt_tokens or 0
                completion_tokens = usage.completion_tokens or 0
    except ProviderError:
        raise
    except Exception as exc:
        logger.warning("Provider call failed for model %s: %s", config.model, exc)
        raise ProviderError(
            f"Completion provider failed: {exc}",
            partial_text="".join(parts),
            details={"model": config.model},
        ) from exc
    finally:
        if response is not None:
            await _close_stream(response)

    text = "".join(parts)
    if prompt_tokens is None or completion_tokens is None:
        prompt_tokens, completion_tokens = _estimate_usage(config.model, messages, text)

    yield CompletionResult(
        text=text,
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        finish_reason=finish_reason,
    )
