"""Chatbot CRUD — tenant scoping and settings round trip."""

import pytest
from httpx import AsyncClient

from tenantchat.core.security import create_jwt
from tenantchat.models.chatbot import Chatbot
from tenantchat.models.tenant import Tenant
from tenantchat.models.user import UserRole


@pytest.mark.asyncio
async def test_create_and_get_chatbot(client: AsyncClient, bootstrap):
    ctx = await bootstrap("bots-create")
    resp = await client.post("/v1/chatbots", json={
        "name": "Support Bot",
        "model": "gpt-4o",
        "settings": {
            "model_params": {"top_p": 0.9},
            "provider_options": {"store": True},
        },
        "credentials": {"api_key": "sk-secret"},
    }, headers=ctx["headers"])
    assert resp.status_code == 201
    bot = resp.json()
    assert bot["has_credentials"] is True
    assert bot["is_published"] is False
    assert bot["settings"]["model_params"] == {"top_p": 0.9}
    assert "sk-secret" not in resp.text

    resp = await client.get(f"/v1/chatbots/{bot['id']}", headers=ctx["headers"])
    assert resp.status_code == 200
    assert resp.json()["name"] == "Support Bot"


@pytest.mark.asyncio
async def test_chatbots_are_tenant_scoped(client: AsyncClient, bootstrap):
    a = await bootstrap("bots-a")
    b = await bootstrap("bots-b")
    resp = await client.post("/v1/chatbots", json={"name": "A's bot"}, headers=a["headers"])
    bot_id = resp.json()["id"]

    resp = await client.get("/v1/chatbots", headers=b["headers"])
    assert resp.json() == []

    resp = await client.get(f"/v1/chatbots/{bot_id}", headers=b["headers"])
    assert resp.status_code == 404

    resp = await client.patch(
        f"/v1/chatbots/{bot_id}", json={"name": "hijacked"}, headers=b["headers"],
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_update_publish_and_clear_credentials(client: AsyncClient, bootstrap):
    ctx = await bootstrap("bots-update")
    resp = await client.post("/v1/chatbots", json={
        "name": "Draft", "credentials": {"api_key": "sk-1"},
    }, headers=ctx["headers"])
    bot_id = resp.json()["id"]

    resp = await client.patch(f"/v1/chatbots/{bot_id}", json={
        "is_published": True, "credentials": {}, "temperature": 0.2,
    }, headers=ctx["headers"])
    data = resp.json()
    assert data["is_published"] is True
    assert data["has_credentials"] is False
    assert data["temperature"] == 0.2

    resp = await client.get("/v1/chatbots?published=true", headers=ctx["headers"])
    assert [b["id"] for b in resp.json()] == [bot_id]


@pytest.mark.asyncio
async def test_delete_chatbot(client: AsyncClient, bootstrap):
    ctx = await bootstrap("bots-delete")
    resp = await client.post("/v1/chatbots", json={"name": "Temp"}, headers=ctx["headers"])
    bot_id = resp.json()["id"]

    resp = await client.delete(f"/v1/chatbots/{bot_id}", headers=ctx["headers"])
    assert resp.status_code == 204

    resp = await client.get(f"/v1/chatbots/{bot_id}", headers=ctx["headers"])
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_anonymous_guest_cannot_manage_chatbots(
    client: AsyncClient, session, test_settings, monkeypatch,
):
    monkeypatch.setattr(test_settings, "allow_anonymous", True)
    session.add(Tenant(id=test_settings.demo_tenant_id, name="Demo", slug="demo"))
    await session.flush()
    session.add(Chatbot(tenant_id=test_settings.demo_tenant_id, name="Demo bot", is_published=True))
    await session.commit()

    resp = await client.post("/v1/chatbots", json={
        "name": "Rogue", "credentials": {"api_key": "sk-stolen"},
    })
    assert resp.status_code == 403
    assert resp.json()["code"] == "PERMISSION_DENIED"

    # Guests can still read the published bots
    resp = await client.get("/v1/chatbots")
    assert resp.status_code == 200
    bot_id = resp.json()[0]["id"]

    resp = await client.patch(f"/v1/chatbots/{bot_id}", json={"credentials": {"api_key": "sk-x"}})
    assert resp.status_code == 403
    resp = await client.delete(f"/v1/chatbots/{bot_id}")
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_member_cannot_change_chatbots(client: AsyncClient, bootstrap):
    ctx = await bootstrap("bots-member")
    resp = await client.post("/v1/chatbots", json={"name": "Owned"}, headers=ctx["headers"])
    bot_id = resp.json()["id"]

    token = create_jwt(subject=ctx["user_id"], tenant_id=ctx["tenant_id"], role=UserRole.MEMBER)
    member = {"Authorization": f"Bearer {token}"}

    resp = await client.patch(f"/v1/chatbots/{bot_id}", json={"is_published": True}, headers=member)
    assert resp.status_code == 403
    resp = await client.delete(f"/v1/chatbots/{bot_id}", headers=member)
    assert resp.status_code == 403

    resp = await client.get(f"/v1/chatbots/{bot_id}", headers=member)
    assert resp.json()["is_published"] is False
