from datetime import date, timedelta
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.schema import CreateTable

from academy.core.budget_rollup import derive_status
from academy.core.enums import BudgetStatus
from academy.core.models import Budget

TODAY = date.today()


def budget_payload(branch_id, category: str = "Rent", allocated: float = 100000, **overrides) -> dict:
    payload = {
        "category": category,
        "allocated": allocated,
        "period": "monthly",
        "start_date": (TODAY - timedelta(days=10)).isoformat(),
        "end_date": (TODAY + timedelta(days=20)).isoformat(),
        "branch_id": str(branch_id),
    }
    payload.update(overrides)
    return payload


async def add_expense(client: AsyncClient, headers, amount: float, category: str = "Rent", status: str = "completed"):
    response = await client.post(
        "/api/v1/transactions",
        json={"type": "expense", "category": category, "amount": amount, "description": "Paid", "status": status},
        headers=headers,
    )
    assert response.status_code == 201, response.text


def test_derive_status() -> None:
    end = date(2024, 3, 31)
    assert derive_status(Decimal("100"), Decimal("100"), end, date(2024, 3, 1)) == BudgetStatus.EXCEEDED
    assert derive_status(Decimal("10"), Decimal("100"), end, date(2024, 4, 1)) == BudgetStatus.COMPLETED
    assert derive_status(Decimal("10"), Decimal("100"), end, date(2024, 3, 31)) == BudgetStatus.ACTIVE


@pytest.mark.asyncio
async def test_create_budget(client: AsyncClient, super_headers, colombo) -> None:
    response = await client.post("/api/v1/budgets", json=budget_payload(colombo.id), headers=super_headers)
    assert response.status_code == 201
    data = response.json()
    assert data["spent"] == 0
    assert data["remaining"] == 100000
    assert data["utilization_percentage"] == 0
    assert data["budget_status"] == "good"
    assert data["status"] == "active"
    assert data["branch"]["name"] == "Colombo"


@pytest.mark.asyncio
async def test_end_must_follow_start(client: AsyncClient, super_headers, colombo) -> None:
    payload = budget_payload(colombo.id, start_date=TODAY.isoformat(), end_date=TODAY.isoformat())
    response = await client.post("/api/v1/budgets", json=payload, headers=super_headers)
    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["kind"] == "InvalidDateRange"
    assert detail["message"] == "End date must be after start date"


@pytest.mark.asyncio
async def test_overlapping_window_rejected(client: AsyncClient, super_headers, colombo, kandy) -> None:
    assert (await client.post("/api/v1/budgets", json=budget_payload(colombo.id), headers=super_headers)).status_code == 201

    overlapping = budget_payload(
        colombo.id,
        start_date=(TODAY + timedelta(days=15)).isoformat(),
        end_date=(TODAY + timedelta(days=45)).isoformat(),
    )
    response = await client.post("/api/v1/budgets", json=overlapping, headers=super_headers)
    assert response.status_code == 409

    # Other category or other branch is independent
    response = await client.post(
        "/api/v1/budgets", json=dict(overlapping, category="Utilities"), headers=super_headers
    )
    assert response.status_code == 201
    response = await client.post("/api/v1/budgets", json=budget_payload(kandy.id), headers=super_headers)
    assert response.status_code == 201

    # Adjacent window is fine
    adjacent = budget_payload(
        colombo.id,
        start_date=(TODAY + timedelta(days=21)).isoformat(),
        end_date=(TODAY + timedelta(days=50)).isoformat(),
    )
    response = await client.post("/api/v1/budgets", json=adjacent, headers=super_headers)
    assert response.status_code == 201



def test_overlapping_windows_excluded_by_postgresql_schema() -> None:
    postgres_ddl = str(CreateTable(Budget.__table__).compile(dialect=postgresql.dialect()))
    sqlite_ddl = str(CreateTable(Budget.__table__).compile(dialect=sqlite.dialect()))

    assert "ex_budgets_branch_category_window_active" in postgres_ddl
    assert "EXCLUDE USING gist" in postgres_ddl
    assert "daterange(start_date, end_date, '[]')" in postgres_ddl
    assert "WITH &&" in postgres_ddl
    assert "ex_budgets_branch_category_window_active" not in sqlite_ddl


@pytest.mark.asyncio
async def test_identical_active_window_rejected_by_storage(db_session, colombo) -> None:
    def _budget() -> Budget:
        return Budget(
            category="Marketing",
            allocated=Decimal("50000.00"),
            period="monthly",
            start_date=date(2024, 1, 1),
            end_date=date(2024, 1, 31),
            branch_id=colombo.id,
        )

    db_session.add(_budget())
    await db_session.commit()

    db_session.add(_budget())
    with pytest.raises(IntegrityError):
        await db_session.commit()
    await db_session.rollback()

@pytest.mark.asyncio
async def test_refresh_rolls_up_completed_expenses(
    client: AsyncClient, super_headers, admin_headers, colombo
) -> None:
    budget = (await client.post("/api/v1/budgets", json=budget_payload(colombo.id), headers=super_headers)).json()

    await add_expense(client, admin_headers, 40000)
    await add_expense(client, admin_headers, 5000, status="pending")
    await add_expense(client, admin_headers, 7000, category="Utilities")

    response = await client.post(f"/api/v1/budgets/{budget['id']}/refresh", headers=admin_headers)
    assert response.status_code == 200
    first = response.json()
    assert first["spent"] == 40000
    assert first["remaining"] == 60000
    assert first["utilization_percentage"] == 40
    assert first["status"] == "active"

    # Idempotent
    second = (await client.post(f"/api/v1/budgets/{budget['id']}/refresh", headers=admin_headers)).json()
    assert second["spent"] == first["spent"]
    assert second["status"] == first["status"]


@pytest.mark.asyncio
async def test_status_becomes_exceeded(client: AsyncClient, super_headers, admin_headers, colombo) -> None:
    budget = (
        await client.post("/api/v1/budgets", json=budget_payload(colombo.id, allocated=50000), headers=super_headers)
    ).json()
    await add_expense(client, admin_headers, 30000)
    await add_expense(client, admin_headers, 25000)

    response = await client.get(f"/api/v1/budgets/{budget['id']}", headers=admin_headers)
    data = response.json()
    assert data["spent"] == 55000
    assert data["status"] == "exceeded"
    assert data["budget_status"] == "exceeded"
    assert data["remaining"] == 0

    response = await client.get("/api/v1/budgets/statistics", headers=admin_headers)
    stats = response.json()
    assert stats["total_budgets"] == 1
    assert stats["exceeded_budgets"] == 1
    assert stats["total_spent"] == 55000


@pytest.mark.asyncio
async def test_admin_reads_but_cannot_create(client: AsyncClient, admin_headers, super_headers, colombo, kandy) -> None:
    await client.post("/api/v1/budgets", json=budget_payload(colombo.id), headers=super_headers)
    await client.post("/api/v1/budgets", json=budget_payload(kandy.id), headers=super_headers)

    response = await client.post("/api/v1/budgets", json=budget_payload(colombo.id, category="Misc"), headers=admin_headers)
    assert response.status_code == 403

    response = await client.get("/api/v1/budgets", headers=admin_headers)
    assert response.status_code == 200
    assert [b["branch"]["name"] for b in response.json()["items"]] == ["Colombo"]


@pytest.mark.asyncio
async def test_delete_and_restore_rechecks_overlap(client: AsyncClient, super_headers, colombo) -> None:
    budget = (await client.post("/api/v1/budgets", json=budget_payload(colombo.id), headers=super_headers)).json()
    assert (await client.delete(f"/api/v1/budgets/{budget['id']}", headers=super_headers)).status_code == 204

    replacement = await client.post("/api/v1/budgets", json=budget_payload(colombo.id), headers=super_headers)
    assert replacement.status_code == 201

    response = await client.patch(f"/api/v1/budgets/{budget['id']}/restore", headers=super_headers)
    assert response.status_code == 409

    assert (
        await client.delete(f"/api/v1/budgets/{replacement.json()['id']}", headers=super_headers)
    ).status_code == 204
    response = await client.patch(f"/api/v1/budgets/{budget['id']}/restore", headers=super_headers)
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_update_budget_window(client: AsyncClient, super_headers, colombo) -> None:
    budget = (await client.post("/api/v1/budgets", json=budget_payload(colombo.id), headers=super_headers)).json()
    response = await client.put(
        f"/api/v1/budgets/{budget['id']}",
        json={"end_date": budget["start_date"]},
        headers=super_headers,
    )
    assert response.status_code == 400

    response = await client.put(
        f"/api/v1/budgets/{budget['id']}", json={"allocated": 150000, "description": "Hall rent"}, headers=super_headers
    )
    assert response.status_code == 200
    assert response.json()["allocated"] == 150000
    assert response.json()["description"] == "Hall rent"
