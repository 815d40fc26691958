"""Chat endpoint — one streamed turn per request."""

import logging
import uuid

from fastapi import APIRouter
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from tenantchat.api.deps import Identity, SessionFactory
from tenantchat.services.config_resolver import RequestOverrides
from tenantchat.services.orchestrator import prepare_turn

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])


# ── Request schema ────────────────────────────────────────────

class ChatRequest(BaseModel):
    message: str
    conversation_id: uuid.UUID | None = Field(
        default=None,
        description="Existing conversation ID. Omit to start a new conversation.",
    )
    chatbot_id: uuid.UUID | None = Field(
        default=None,
        description="Published chatbot whose settings apply to this turn.",
    )
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None


# ── Route ─────────────────────────────────────────────────────

@router.post(
    "",
    response_class=StreamingResponse,
    responses={200: {"content": {"text/event-stream": {}}}},
)
async def chat(
    body: ChatRequest,
    identity: Identity,
    session_factory: SessionFactory,
) -> StreamingResponse:
    """Send a message and stream the assistant's reply as Server-Sent Events.

    Events: ``delta`` per text fragment, then ``done`` with the persisted
    message id and usage, or a terminal ``error``. The conversation id is also
    returned in the ``X-Conversation-ID`` header so clients can link the
    reply before the stream ends.
    """
    turn = await prepare_turn(
        session_factory,
        tenant_id=identity.tenant_id,
        user_id=identity.user_id,
        message=body.message,
        conversation_id=body.conversation_id,
        chatbot_id=body.chatbot_id,
        overrides=RequestOverrides(
            model=body.model,
            temperature=body.temperature,
            max_tokens=body.max_tokens,
        ),
    )
    await turn.start()

    return StreamingResponse(
        turn.events(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
            "X-Conversation-ID": str(turn.conversation_id),
            "X-Is-New-Conversation": "true" if turn.is_new_conversation else "false",
        },
    )
