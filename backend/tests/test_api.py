"""Tests for the session, image, auth and error endpoints."""

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_list_sessions(client: AsyncClient, service) -> None:
    response = await client.get("/api/sessions")

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 1
    assert data["active_session_id"] == service.registry.active_id
    assert data["sessions"][0]["title"] == "New chat"
    assert data["sessions"][0]["message_count"] == 1


@pytest.mark.asyncio
async def test_start_new_chat_and_select(client: AsyncClient, service) -> None:
    first_id = service.registry.active_id

    response = await client.post("/api/sessions", json={"model": "coding"})
    assert response.status_code == 201
    created = response.json()
    assert created["model"] == "coding"
    assert service.registry.active_id == created["session_id"]

    response = await client.post(f"/api/sessions/{first_id}/select")
    assert response.json() == {"changed": True, "active_session_id": first_id}

    listed = (await client.get("/api/sessions")).json()
    assert listed["total"] == 2


@pytest.mark.asyncio
async def test_select_unknown_session_is_404(client: AsyncClient) -> None:
    response = await client.post("/api/sessions/missing/select")

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_change_model(client: AsyncClient) -> None:
    same = await client.put("/api/sessions/model", json={"model": "general"})
    assert same.json()["changed"] is False

    other = await client.put("/api/sessions/model", json={"model": "coding"})
    assert other.json()["changed"] is True

    invalid = await client.put("/api/sessions/model", json={"model": "vision"})
    assert invalid.status_code == 422


@pytest.mark.asyncio
async def test_session_history_uses_stored_field_names(client: AsyncClient, service) -> None:
    await service.send_message("Hello")
    session_id = service.registry.active_id

    response = await client.get(f"/api/sessions/{session_id}/history")

    assert response.status_code == 200
    data = response.json()
    assert data["title"] == "Hello"
    assert [m["sender"] for m in data["messages"]] == ["ai", "user", "ai"]
    assert data["messages"][-1]["text"] == "Hello there!"
    assert data["messages"][-1]["modelUsed"] == "general"

    assert (await client.get("/api/sessions/missing/history")).status_code == 404


@pytest.mark.asyncio
async def test_generate_image_and_quota(client: AsyncClient) -> None:
    response = await client.post("/api/images", json={"prompt": "a red kite"})

    assert response.status_code == 200
    assert response.json()["state"] == "settled_success"
    assert response.json()["error"] is None

    quota = (await client.get("/api/images/quota")).json()
    assert quota == {"signed_in": True, "count": 1, "limit": 3}


@pytest.mark.asyncio
async def test_generate_image_rejection_returns_error(client: AsyncClient) -> None:
    response = await client.post("/api/images", json={"prompt": "  "})

    data = response.json()
    assert data["state"] == "rejected"
    assert data["error"]["kind"] == "EmptyInput"


@pytest.mark.asyncio
async def test_auth_endpoints(client: AsyncClient) -> None:
    me = (await client.get("/api/auth/me")).json()
    assert me["signed_in"] is True
    assert me["user"]["uid"] == "user-1"

    assert (await client.post("/api/auth/logout")).json() == {"signed_in": False}
    assert (await client.get("/api/auth/me")).json() == {"signed_in": False, "user": None}
    assert (await client.get("/api/images/quota")).json()["signed_in"] is False

    login = await client.post("/api/auth/login")
    assert login.status_code == 200
    assert login.json()["user"]["uid"] == "user-1"


@pytest.mark.asyncio
async def test_login_failure_is_401(client: AsyncClient, service) -> None:
    service.identity._account = None

    response = await client.post("/api/auth/login")

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_error_endpoints(client: AsyncClient, service) -> None:
    assert (await client.get("/api/errors")).json() is None

    await service.send_message("")
    current = (await client.get("/api/errors")).json()
    assert current["kind"] == "EmptyInput"

    assert (await client.delete("/api/errors")).status_code == 204
    assert service.errors.current is None
