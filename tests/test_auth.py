from uuid import UUID

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from academy.auth.models import User


@pytest.mark.asyncio
async def test_super_admin_login_without_branch(client: AsyncClient, super_admin: User, password: str) -> None:
    response = await client.post(
        "/api/v1/auth/login", json={"username": "root_admin", "password": password}
    )
    assert response.status_code == 200
    data = response.json()
    assert data["token_type"] == "bearer"
    assert data["access_token"]
    assert data["branch"] is None
    assert data["user"]["role"] == "superAdmin"
    assert data["user"]["last_login"] is not None


@pytest.mark.asyncio
async def test_branch_user_login_requires_branch(client: AsyncClient, admin_colombo: User, password: str) -> None:
    response = await client.post(
        "/api/v1/auth/login", json={"username": "admin_colombo", "password": password}
    )
    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["kind"] == "ValidationFailed"
    assert detail["errors"][0]["field"] == "branch_id"


@pytest.mark.asyncio
async def test_branch_user_login_with_own_branch(client: AsyncClient, admin_colombo: User, colombo, password: str) -> None:
    response = await client.post(
        "/api/v1/auth/login",
        json={"username": "Admin_Colombo", "password": password, "branch_id": str(colombo.id)},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["branch"]["id"] == str(colombo.id)
    assert data["branch"]["name"] == "Colombo"


@pytest.mark.asyncio
async def test_branch_user_login_with_other_branch(client: AsyncClient, admin_colombo: User, kandy, password: str) -> None:
    response = await client.post(
        "/api/v1/auth/login",
        json={"username": "admin_colombo", "password": password, "branch_id": str(kandy.id)},
    )
    assert response.status_code == 403
    assert response.json()["detail"]["kind"] == "BranchAccessDenied"


@pytest.mark.asyncio
async def test_wrong_password_and_unknown_user_look_the_same(client: AsyncClient, super_admin: User, password: str) -> None:
    wrong_password = await client.post(
        "/api/v1/auth/login", json={"username": "root_admin", "password": "not-the-password"}
    )
    unknown_user = await client.post(
        "/api/v1/auth/login", json={"username": "nobody_here", "password": password}
    )
    assert wrong_password.status_code == 401
    assert unknown_user.status_code == 401
    assert wrong_password.json() == unknown_user.json()


@pytest.mark.asyncio
async def test_super_admin_login_with_inactive_branch(client: AsyncClient, super_admin: User, make_branch, password: str) -> None:
    closed = await make_branch("Galle", is_active=False)
    response = await client.post(
        "/api/v1/auth/login",
        json={"username": "root_admin", "password": password, "branch_id": str(closed.id)},
    )
    assert response.status_code == 400
    assert response.json()["detail"]["kind"] == "InvalidReference"


@pytest.mark.asyncio
async def test_oauth_form_login(client: AsyncClient, admin_colombo: User, colombo, password: str) -> None:
    response = await client.post(
        "/api/v1/auth/login-oauth",
        data={"username": "admin_colombo", "password": password, "branch_id": str(colombo.id)},
    )
    assert response.status_code == 200
    assert response.json()["token_type"] == "bearer"


@pytest.mark.asyncio
async def test_login_branches_for_username(
    client: AsyncClient, super_admin: User, admin_colombo: User, colombo, kandy
) -> None:
    response = await client.get("/api/v1/auth/branches", params={"username": "admin_colombo"})
    assert response.status_code == 200
    assert [b["name"] for b in response.json()["branches"]] == ["Colombo"]

    response = await client.get("/api/v1/auth/branches", params={"username": "root_admin"})
    assert [b["name"] for b in response.json()["branches"]] == ["Colombo", "Kandy"]

    response = await client.get("/api/v1/auth/branches", params={"username": "ghost"})
    assert response.json()["branches"] == []


@pytest.mark.asyncio
async def test_me_returns_identity_and_branch(client: AsyncClient, admin_colombo: User, admin_headers) -> None:
    response = await client.get("/api/v1/auth/me", headers=admin_headers)
    assert response.status_code == 200
    data = response.json()
    assert UUID(data["user"]["id"]) == admin_colombo.id
    assert data["branch"]["name"] == "Colombo"


@pytest.mark.asyncio
async def test_missing_or_garbage_token_rejected(client: AsyncClient, db_session: AsyncSession) -> None:
    response = await client.get("/api/v1/auth/me")
    assert response.status_code == 401

    response = await client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_deactivated_user_token_rejected(
    client: AsyncClient, db_session: AsyncSession, staff_colombo: User, headers_for
) -> None:
    headers = headers_for(staff_colombo)
    assert (await client.get("/api/v1/auth/me", headers=headers)).status_code == 200

    staff_colombo.is_active = False
    await db_session.commit()

    response = await client.get("/api/v1/auth/me", headers=headers)
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_change_password(client: AsyncClient, admin_colombo: User, admin_headers, colombo, password: str) -> None:
    response = await client.put(
        "/api/v1/auth/change-password",
        json={"current_password": "wrong-one", "new_password": "N3wPassword!"},
        headers=admin_headers,
    )
    assert response.status_code == 401

    response = await client.put(
        "/api/v1/auth/change-password",
        json={"current_password": password, "new_password": "N3wPassword!"},
        headers=admin_headers,
    )
    assert response.status_code == 200
    assert response.json()["message"] == "Password changed successfully"

    response = await client.post(
        "/api/v1/auth/login",
        json={"username": "admin_colombo", "password": "N3wPassword!", "branch_id": str(colombo.id)},
    )
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_logout(client: AsyncClient, admin_headers) -> None:
    response = await client.post("/api/v1/auth/logout", headers=admin_headers)
    assert response.status_code == 200
    assert response.json() == {"message": "Logged out successfully"}
