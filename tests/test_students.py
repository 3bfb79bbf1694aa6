import pytest
from httpx import AsyncClient

from academy.core.config import settings


async def course_counter(client: AsyncClient, headers, course_id) -> int:
    response = await client.get(f"/api/v1/courses/{course_id}", headers=headers)
    assert response.status_code == 200
    return response.json()["current_enrolled"]


@pytest.mark.asyncio
async def test_create_student_generates_code_and_enrolls(
    client: AsyncClient, create_course, create_student, admin_headers, colombo
) -> None:
    course = await create_course(title="Web Development")
    first = await create_student(admin_headers, course["id"])
    second = await create_student(admin_headers, course["id"], email="amaya@example.com", full_name="Amaya Fernando")

    assert first["student_code"] == "WD0001"
    assert second["student_code"] == "WD0002"
    assert first["branch_id"] == str(colombo.id)
    assert first["course"]["title"] == "Web Development"
    assert first["status"] == "Active"
    assert first["personal_documents"]["original_certificate"]["has_document"] is False
    assert await course_counter(client, admin_headers, course["id"]) == 2


@pytest.mark.asyncio
async def test_course_full_leaves_counter_unchanged(
    client: AsyncClient, create_course, create_student, admin_headers, student_payload
) -> None:
    course = await create_course(title="Spoken English", max_students=1)
    await create_student(admin_headers, course["id"])

    response = await client.post(
        "/api/v1/students",
        json=student_payload(course["id"], email="late@example.com", full_name="Late Comer"),
        headers=admin_headers,
    )
    assert response.status_code == 400
    assert response.json()["detail"]["kind"] == "CourseFull"
    assert await course_counter(client, admin_headers, course["id"]) == 1


@pytest.mark.asyncio
async def test_duplicate_active_email_rejected(
    client: AsyncClient, create_course, create_student, admin_headers, student_payload
) -> None:
    course = await create_course()
    await create_student(admin_headers, course["id"])

    response = await client.post(
        "/api/v1/students",
        json=student_payload(course["id"], email="KASUN@example.com", full_name="Kasun Again"),
        headers=admin_headers,
    )
    assert response.status_code == 409
    assert response.json()["detail"]["message"] == "Email already exists"
    assert await course_counter(client, admin_headers, course["id"]) == 1


@pytest.mark.asyncio
async def test_staff_cannot_create_students(
    client: AsyncClient, create_course, staff_colombo, headers_for, student_payload
) -> None:
    course = await create_course()
    response = await client.post(
        "/api/v1/students", json=student_payload(course["id"]), headers=headers_for(staff_colombo)
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_admin_cannot_write_to_other_branch(
    client: AsyncClient, create_course, admin_headers, student_payload, kandy
) -> None:
    course = await create_course()
    response = await client.post(
        "/api/v1/students",
        json=student_payload(course["id"], branch_id=str(kandy.id)),
        headers=admin_headers,
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_course_of_other_branch_is_invalid(
    client: AsyncClient, create_course, admin_headers, student_payload, kandy
) -> None:
    course = await create_course(branch=kandy.id)
    response = await client.post("/api/v1/students", json=student_payload(course["id"]), headers=admin_headers)
    assert response.status_code == 400
    assert response.json()["detail"]["kind"] == "InvalidReference"


@pytest.mark.asyncio
async def test_future_date_of_birth_rejected(
    client: AsyncClient, create_course, admin_headers, student_payload
) -> None:
    course = await create_course()
    response = await client.post(
        "/api/v1/students", json=student_payload(course["id"], date_of_birth="2999-01-01"), headers=admin_headers
    )
    assert response.status_code == 400
    assert response.json()["detail"]["errors"][0]["field"] == "date_of_birth"


@pytest.mark.asyncio
async def test_every_invalid_field_is_reported(
    client: AsyncClient, create_course, admin_headers, student_payload
) -> None:
    course = await create_course()
    response = await client.post(
        "/api/v1/students",
        json=student_payload(course["id"], full_name="K", email="not-an-email"),
        headers=admin_headers,
    )
    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["kind"] == "ValidationFailed"
    assert {error["field"] for error in detail["errors"]} == {"full_name", "email"}
    assert all(set(error) == {"field", "message"} for error in detail["errors"])


@pytest.mark.asyncio
async def test_course_change_moves_counters_and_regenerates_code(
    client: AsyncClient, create_course, create_student, admin_headers
) -> None:
    web = await create_course(title="Web Development")
    design = await create_course(title="Graphic Design")
    student = await create_student(admin_headers, web["id"])

    response = await client.put(
        f"/api/v1/students/{student['id']}",
        json={"course_id": design["id"], "phone": "+94 71 999 9999"},
        headers=admin_headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["student_code"] == "GD0001"
    assert data["course_id"] == design["id"]
    assert data["phone"] == "+94 71 999 9999"
    assert await course_counter(client, admin_headers, web["id"]) == 0
    assert await course_counter(client, admin_headers, design["id"]) == 1


@pytest.mark.asyncio
async def test_course_change_into_full_course_fails_cleanly(
    client: AsyncClient, create_course, create_student, admin_headers
) -> None:
    web = await create_course(title="Web Development")
    tiny = await create_course(title="Tiny Class", max_students=1)
    await create_student(admin_headers, tiny["id"], email="first@example.com")
    student = await create_student(admin_headers, web["id"])

    response = await client.put(
        f"/api/v1/students/{student['id']}", json={"course_id": tiny["id"]}, headers=admin_headers
    )
    assert response.status_code == 400
    assert response.json()["detail"]["kind"] == "CourseFull"
    assert await course_counter(client, admin_headers, web["id"]) == 1
    assert await course_counter(client, admin_headers, tiny["id"]) == 1


@pytest.mark.asyncio
async def test_delete_and_restore_adjust_counter(
    client: AsyncClient, create_course, create_student, admin_headers
) -> None:
    course = await create_course()
    student = await create_student(admin_headers, course["id"])

    response = await client.delete(f"/api/v1/students/{student['id']}", headers=admin_headers)
    assert response.status_code == 204
    assert await course_counter(client, admin_headers, course["id"]) == 0
    assert (await client.get(f"/api/v1/students/{student['id']}", headers=admin_headers)).status_code == 404

    response = await client.patch(f"/api/v1/students/{student['id']}/restore", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["is_active"] is True
    assert await course_counter(client, admin_headers, course["id"]) == 1


@pytest.mark.asyncio
async def test_code_skips_past_codes_kept_by_deleted_students(
    client: AsyncClient, create_course, create_student, admin_headers
) -> None:
    course = await create_course(title="Web Development")
    first = await create_student(admin_headers, course["id"])
    await create_student(admin_headers, course["id"], email="amaya@example.com", full_name="Amaya Fernando")
    response = await client.delete(f"/api/v1/students/{first['id']}", headers=admin_headers)
    assert response.status_code == 204

    # Counter is back to 1, so WD0002 is the first candidate and is taken
    third = await create_student(admin_headers, course["id"], email="nimal@example.com", full_name="Nimal Jay")
    fourth = await create_student(admin_headers, course["id"], email="sara@example.com", full_name="Sara Dias")

    assert third["student_code"] == "WD0003"
    assert fourth["student_code"] == "WD0004"
    assert await course_counter(client, admin_headers, course["id"]) == 3


@pytest.mark.asyncio
async def test_courses_sharing_initials_do_not_block_each_other(
    client: AsyncClient, create_course, create_student, admin_headers
) -> None:
    development = await create_course(title="Web Development")
    design = await create_course(title="Web Design")
    await create_student(admin_headers, development["id"])

    student = await create_student(admin_headers, design["id"], email="amaya@example.com", full_name="Amaya Fernando")

    assert student["student_code"] == "WD0002"
    assert await course_counter(client, admin_headers, design["id"]) == 1


@pytest.mark.asyncio
async def test_exhausted_code_attempts_are_retryable(
    client: AsyncClient, create_course, create_student, admin_headers, student_payload, monkeypatch
) -> None:
    development = await create_course(title="Web Development")
    design = await create_course(title="Web Design")
    await create_student(admin_headers, development["id"])
    monkeypatch.setattr(settings, "generated_id_attempts", 1)

    response = await client.post(
        "/api/v1/students",
        json=student_payload(design["id"], email="amaya@example.com", full_name="Amaya Fernando"),
        headers=admin_headers,
    )
    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["kind"] == "DuplicateKey"
    assert detail["retryable"] is True
    assert await course_counter(client, admin_headers, design["id"]) == 0


@pytest.mark.asyncio
async def test_course_delete_blocked_until_students_removed(
    client: AsyncClient, create_course, create_student, admin_headers, super_headers
) -> None:
    course = await create_course()
    student = await create_student(admin_headers, course["id"])

    response = await client.delete(f"/api/v1/courses/{course['id']}", headers=super_headers)
    assert response.status_code == 400
    assert response.json()["detail"]["kind"] == "ResourceInUse"

    assert (await client.delete(f"/api/v1/students/{student['id']}", headers=admin_headers)).status_code == 204
    assert (await client.delete(f"/api/v1/courses/{course['id']}", headers=super_headers)).status_code == 204

    # Course gone: the student cannot come back
    response = await client.patch(f"/api/v1/students/{student['id']}/restore", headers=admin_headers)
    assert response.status_code == 400
    assert response.json()["detail"]["kind"] == "InvalidReference"


@pytest.mark.asyncio
async def test_students_scoped_to_branch(
    client: AsyncClient, create_course, create_student, admin_headers, admin_kandy, headers_for
) -> None:
    course = await create_course()
    student = await create_student(admin_headers, course["id"])
    kandy_headers = headers_for(admin_kandy)

    response = await client.get("/api/v1/students", headers=kandy_headers)
    assert response.json()["items"] == []
    response = await client.get(f"/api/v1/students/{student['id']}", headers=kandy_headers)
    assert response.status_code == 403

    response = await client.get("/api/v1/students", params={"search": "kasun"}, headers=admin_headers)
    assert [s["student_code"] for s in response.json()["items"]] == ["WD0001"]


@pytest.mark.asyncio
async def test_student_statistics(client: AsyncClient, create_course, create_student, admin_headers) -> None:
    course = await create_course()
    await create_student(admin_headers, course["id"], gpa=3.5)
    await create_student(admin_headers, course["id"], email="grad@example.com", status="Graduated", gpa=2.5)

    response = await client.get("/api/v1/students/statistics", headers=admin_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 2
    assert data["active"] == 1
    assert data["graduated"] == 1
    assert data["average_gpa"] == 3.0
