import pytest
from httpx import AsyncClient

from academy.core.enums import Role


def user_payload(username: str, role: str, branch_id=None, **overrides) -> dict:
    payload = {
        "full_name": username.replace("_", " ").title(),
        "nic_or_passport": f"{username[:8].upper()}123V",
        "contact_number": "+94 71 555 0101",
        "email": f"{username}@example.com",
        "username": username,
        "password": "Secret123",
        "role": role,
        "branch_id": str(branch_id) if branch_id else None,
    }
    payload.update(overrides)
    return payload


@pytest.mark.asyncio
async def test_super_admin_creates_branch_admin(client: AsyncClient, super_headers, colombo) -> None:
    response = await client.post(
        "/api/v1/users", json=user_payload("Nadeesha_A", "admin", colombo.id), headers=super_headers
    )
    assert response.status_code == 201
    data = response.json()
    assert data["username"] == "nadeesha_a"
    assert data["email"] == "nadeesha_a@example.com"
    assert data["role"] == "admin"
    assert data["branch"]["name"] == "Colombo"
    assert "password_hash" not in data


@pytest.mark.asyncio
async def test_branch_required_for_non_super_admin(client: AsyncClient, super_headers) -> None:
    response = await client.post("/api/v1/users", json=user_payload("no_branch", "staff"), headers=super_headers)
    assert response.status_code == 400
    assert response.json()["detail"]["errors"][0]["field"] == "branch_id"


@pytest.mark.asyncio
async def test_super_admin_user_has_no_branch(client: AsyncClient, super_headers, colombo) -> None:
    response = await client.post(
        "/api/v1/users", json=user_payload("second_root", "superAdmin", colombo.id), headers=super_headers
    )
    assert response.status_code == 201
    assert response.json()["branch"] is None


@pytest.mark.asyncio
async def test_admin_creates_staff_in_own_branch(client: AsyncClient, admin_headers, colombo) -> None:
    # Branch omitted: written into the admin's branch
    response = await client.post("/api/v1/users", json=user_payload("new_staff", "staff"), headers=admin_headers)
    assert response.status_code == 201
    assert response.json()["branch"]["id"] == str(colombo.id)


@pytest.mark.asyncio
async def test_admin_cannot_create_admin(client: AsyncClient, admin_headers, colombo) -> None:
    response = await client.post(
        "/api/v1/users", json=user_payload("other_admin", "admin", colombo.id), headers=admin_headers
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_admin_cannot_create_in_other_branch(client: AsyncClient, admin_headers, kandy) -> None:
    response = await client.post(
        "/api/v1/users", json=user_payload("kandy_staff", "staff", kandy.id), headers=admin_headers
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_duplicate_username_message(client: AsyncClient, super_headers, admin_colombo, colombo) -> None:
    response = await client.post(
        "/api/v1/users",
        json=user_payload("admin_colombo", "staff", colombo.id, email="fresh@example.com"),
        headers=super_headers,
    )
    assert response.status_code == 409
    assert response.json()["detail"]["message"] == "Username already exists"

    response = await client.post(
        "/api/v1/users",
        json=user_payload("fresh_name", "staff", colombo.id, email="ADMIN_COLOMBO@example.com"),
        headers=super_headers,
    )
    assert response.status_code == 409
    assert response.json()["detail"]["message"] == "Email already exists"


@pytest.mark.asyncio
async def test_moderator_cannot_manage_users(client: AsyncClient, moderator_colombo, headers_for) -> None:
    headers = headers_for(moderator_colombo)
    assert (await client.get("/api/v1/users", headers=headers)).status_code == 403
    # Branch directory is open to every role
    response = await client.get("/api/v1/users/branch-users", headers=headers)
    assert response.status_code == 200
    assert [u["username"] for u in response.json()] == ["mod_colombo"]


@pytest.mark.asyncio
async def test_admin_lists_own_branch_only(
    client: AsyncClient, admin_headers, admin_colombo, staff_colombo, admin_kandy, super_admin
) -> None:
    response = await client.get("/api/v1/users", headers=admin_headers)
    assert response.status_code == 200
    usernames = {u["username"] for u in response.json()["items"]}
    assert usernames == {"admin_colombo", "staff_colombo"}

    response = await client.get(f"/api/v1/users/{admin_kandy.id}", headers=admin_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_no_self_delete(client: AsyncClient, super_headers, super_admin, admin_headers, admin_colombo) -> None:
    response = await client.delete(f"/api/v1/users/{super_admin.id}", headers=super_headers)
    assert response.status_code == 403
    response = await client.delete(f"/api/v1/users/{admin_colombo.id}", headers=admin_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_delete_and_restore_user(client: AsyncClient, admin_headers, staff_colombo) -> None:
    response = await client.delete(f"/api/v1/users/{staff_colombo.id}", headers=admin_headers)
    assert response.status_code == 204
    response = await client.get(f"/api/v1/users/{staff_colombo.id}", headers=admin_headers)
    assert response.status_code == 404

    response = await client.patch(f"/api/v1/users/{staff_colombo.id}/restore", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["is_active"] is True


@pytest.mark.asyncio
async def test_nobody_changes_own_role(client: AsyncClient, super_headers, super_admin) -> None:
    response = await client.put(f"/api/v1/users/{super_admin.id}", json={"role": "admin"}, headers=super_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_admin_role_assignment(
    client: AsyncClient, admin_headers, staff_colombo, make_user, colombo
) -> None:
    response = await client.put(
        f"/api/v1/users/{staff_colombo.id}/role", json={"role": "moderator"}, headers=admin_headers
    )
    assert response.status_code == 200
    assert response.json()["role"] == "moderator"

    response = await client.put(
        f"/api/v1/users/{staff_colombo.id}/role", json={"role": "admin"}, headers=admin_headers
    )
    assert response.status_code == 400

    peer = await make_user("peer_admin", Role.ADMIN, colombo)
    response = await client.put(f"/api/v1/users/{peer.id}/role", json={"role": "staff"}, headers=admin_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_super_admin_moves_user_between_branches(
    client: AsyncClient, super_headers, staff_colombo, kandy
) -> None:
    response = await client.put(
        f"/api/v1/users/{staff_colombo.id}", json={"branch_id": str(kandy.id)}, headers=super_headers
    )
    assert response.status_code == 200
    assert response.json()["branch"]["name"] == "Kandy"


@pytest.mark.asyncio
async def test_admin_cannot_move_user(client: AsyncClient, admin_headers, staff_colombo, kandy) -> None:
    response = await client.put(
        f"/api/v1/users/{staff_colombo.id}", json={"branch_id": str(kandy.id)}, headers=admin_headers
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_branch_user_stats(client: AsyncClient, admin_headers, admin_colombo, staff_colombo, colombo) -> None:
    response = await client.get(f"/api/v1/users/branch/{colombo.id}/stats", headers=admin_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 2
    assert data["by_role"] == {"admin": 1, "staff": 1}
