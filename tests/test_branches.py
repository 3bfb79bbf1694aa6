import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_create_and_list_branches(client: AsyncClient, super_headers) -> None:
    response = await client.post("/api/v1/branches", json={"name": "  Negombo  "}, headers=super_headers)
    assert response.status_code == 201
    data = response.json()
    assert data["name"] == "Negombo"
    assert data["is_active"] is True
    assert data["user_count"] == 0

    response = await client.get("/api/v1/branches", headers=super_headers)
    assert response.status_code == 200
    page = response.json()
    assert [b["name"] for b in page["items"]] == ["Negombo"]
    assert page["pagination"]["total"] == 1


@pytest.mark.asyncio
async def test_branch_name_unique_case_insensitive(client: AsyncClient, super_headers, colombo) -> None:
    response = await client.post("/api/v1/branches", json={"name": "COLOMBO"}, headers=super_headers)
    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["kind"] == "DuplicateKey"
    assert detail["message"] == "Branch name already exists"


@pytest.mark.asyncio
async def test_only_super_admin_creates_branches(client: AsyncClient, admin_headers) -> None:
    response = await client.post("/api/v1/branches", json={"name": "Jaffna"}, headers=admin_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_non_super_admin_sees_own_branch_only(client: AsyncClient, admin_headers, colombo, kandy) -> None:
    response = await client.get("/api/v1/branches", headers=admin_headers)
    assert response.status_code == 200
    assert [b["name"] for b in response.json()["items"]] == ["Colombo"]

    response = await client.get("/api/v1/branches/active", headers=admin_headers)
    assert [b["name"] for b in response.json()] == ["Colombo"]


@pytest.mark.asyncio
async def test_delete_blocked_by_active_users(client: AsyncClient, super_headers, admin_colombo, colombo) -> None:
    response = await client.delete(f"/api/v1/branches/{colombo.id}", headers=super_headers)
    assert response.status_code == 400
    assert response.json()["detail"]["kind"] == "ResourceInUse"

    response = await client.get(f"/api/v1/branches/{colombo.id}", headers=super_headers)
    assert response.json()["is_active"] is True
    assert response.json()["user_count"] == 1


@pytest.mark.asyncio
async def test_delete_and_restore_branch(client: AsyncClient, super_headers, kandy) -> None:
    response = await client.delete(f"/api/v1/branches/{kandy.id}", headers=super_headers)
    assert response.status_code == 204

    response = await client.get("/api/v1/branches", headers=super_headers)
    assert response.json()["items"] == []
    response = await client.get("/api/v1/branches", params={"include_inactive": True}, headers=super_headers)
    assert [b["name"] for b in response.json()["items"]] == ["Kandy"]

    # Deleting again finds nothing active
    response = await client.delete(f"/api/v1/branches/{kandy.id}", headers=super_headers)
    assert response.status_code == 404

    response = await client.patch(f"/api/v1/branches/{kandy.id}/restore", headers=super_headers)
    assert response.status_code == 200
    assert response.json()["is_active"] is True

    response = await client.patch(f"/api/v1/branches/{kandy.id}/restore", headers=super_headers)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_toggle_status(client: AsyncClient, super_headers, kandy) -> None:
    response = await client.patch(f"/api/v1/branches/{kandy.id}/toggle-status", headers=super_headers)
    assert response.json()["is_active"] is False
    response = await client.patch(f"/api/v1/branches/{kandy.id}/toggle-status", headers=super_headers)
    assert response.json()["is_active"] is True


@pytest.mark.asyncio
async def test_rename_branch(client: AsyncClient, super_headers, colombo, kandy) -> None:
    response = await client.put(f"/api/v1/branches/{kandy.id}", json={"name": "colombo"}, headers=super_headers)
    assert response.status_code == 409

    response = await client.put(f"/api/v1/branches/{kandy.id}", json={"name": "Kandy City"}, headers=super_headers)
    assert response.status_code == 200
    assert response.json()["name"] == "Kandy City"


@pytest.mark.asyncio
async def test_session_on_deactivated_branch_rejected(
    client: AsyncClient, super_admin, super_headers, kandy, headers_for
) -> None:
    scoped = headers_for(super_admin, kandy.id)
    assert (await client.get("/api/v1/auth/me", headers=scoped)).json()["branch"]["name"] == "Kandy"

    response = await client.delete(f"/api/v1/branches/{kandy.id}", headers=super_headers)
    assert response.status_code == 204

    assert (await client.get("/api/v1/auth/me", headers=scoped)).status_code == 401
    assert (await client.get("/api/v1/auth/me", headers=super_headers)).status_code == 200
