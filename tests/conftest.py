"""Shared test fixtures — async SQLite file DB per test + test client + fake LLM."""

import json
import os
from collections.abc import AsyncGenerator
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from cryptography.fernet import Fernet
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

# Use litellm's bundled model cost map; the remote fetch (and its background
# retry thread) can deadlock the litellm import when the network is unavailable.
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")

# Import all models so metadata is populated
import tenantchat.models  # noqa: F401
from tenantchat.core.config import get_settings
from tenantchat.core.database import get_session, get_session_factory
from tenantchat.main import app

TEST_ENCRYPTION_KEY = Fernet.generate_key().decode()


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    """Per-test settings; the streaming pipeline opens its own sessions."""
    settings = get_settings()
    monkeypatch.setattr(settings, "encryption_key", TEST_ENCRYPTION_KEY)
    monkeypatch.setattr(settings, "jwt_secret_key", "test-jwt-secret")
    monkeypatch.setattr(settings, "allow_anonymous", False)
    return settings


@pytest.fixture
async def engine(tmp_path):
    # A file DB so that separate sessions (request vs. stream) see each other's commits
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def test_session_factory(engine):
    """Session factory bound to the test SQLite engine."""
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(test_session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with test_session_factory() as sess:
        yield sess


@pytest.fixture
async def client(test_session_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTPX async test client with DB session overrides."""

    async def _override_session():
        async with test_session_factory() as sess:
            yield sess

    app.dependency_overrides[get_session] = _override_session
    app.dependency_overrides[get_session_factory] = lambda: test_session_factory

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ── Helpers ───────────────────────────────────────────────────

@pytest.fixture
def bootstrap(client):
    """Create a tenant + owner; returns auth headers and ids."""

    async def _bootstrap(slug: str, **tenant_defaults) -> dict:
        resp = await client.post("/v1/tenants", json={
            "tenant_name": f"{slug} inc",
            "tenant_slug": slug,
            "owner_email": f"{slug}@test.com",
            **tenant_defaults,
        })
        assert resp.status_code == 201, resp.text
        data = resp.json()
        return {
            "headers": {"Authorization": f"Bearer {data['api_token']}"},
            "tenant_id": data["tenant"]["id"],
            "user_id": data["owner"]["id"],
        }

    return _bootstrap


def _chunk(content: str | None = None, finish_reason: str | None = None, usage=None):
    """Simulate a single LiteLLM streaming chunk."""
    choice = SimpleNamespace(delta=SimpleNamespace(content=content), finish_reason=finish_reason)
    return SimpleNamespace(choices=[choice], usage=usage)


@pytest.fixture
def fake_llm():
    """Build an ``acompletion`` replacement that streams ``text`` word by word.

    ``fail_after=n`` raises after ``n`` fragments; ``include_usage=False``
    leaves the usage chunk out.
    """

    def _make(
        text: str = "Hello world",
        prompt_tokens: int = 100,
        completion_tokens: int = 20,
        fail_after: int | None = None,
        include_usage: bool = True,
    ) -> AsyncMock:
        words = text.split(" ")
        fragments = [w if i == 0 else f" {w}" for i, w in enumerate(words)]

        async def _stream():
            for i, fragment in enumerate(fragments):
                if fail_after is not None and i == fail_after:
                    raise RuntimeError("upstream connection reset")
                yield _chunk(fragment)
            usage = None
            if include_usage:
                usage = SimpleNamespace(
                    prompt_tokens=prompt_tokens, completion_tokens=completion_tokens,
                )
            yield _chunk(None, finish_reason="stop", usage=usage)

        async def mock_acompletion(**kwargs):
            return _stream()

        return AsyncMock(side_effect=mock_acompletion)

    return _make


def parse_sse_events(text: str) -> list[dict]:
    """Parse SSE text into a list of {event, data} dicts."""
    events = []
    current_event = None
    current_data = []

    for line in text.split("\n"):
        if line.startswith("event: "):
            current_event = line[7:]
        elif line.startswith("data: "):
            current_data.append(line[6:])
        elif line == "" and current_event is not None:
            events.append({
                "event": current_event,
                "data": json.loads("".join(current_data)),
            })
            current_event = None
            current_data = []

    return events


@pytest.fixture
def sse():
    return parse_sse_events
