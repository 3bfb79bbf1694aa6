import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

from datetime import date, timedelta
from typing import AsyncGenerator, Callable, Dict, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from academy.auth.models import User
from academy.auth.security import create_access_token, hash_password
from academy.core.enums import Role
from academy.core.models import Branch
from academy.db.session import Base, get_db
from academy.main import app


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
PASSWORD = "Passw0rd!"
# Hash once; bcrypt is deliberately slow
PASSWORD_HASH = hash_password(PASSWORD)


@pytest.fixture()
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Fresh in-memory schema per test; the app shares this session."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:

        async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
            yield session

        app.dependency_overrides[get_db] = override_get_db
        yield session

    app.dependency_overrides.clear()
    await engine.dispose()


@pytest.fixture()
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# ----- Data helpers -----
@pytest.fixture()
def make_branch(db_session: AsyncSession) -> Callable:
    async def _make(name: str, is_active: bool = True) -> Branch:
        branch = Branch(name=name, is_active=is_active)
        db_session.add(branch)
        await db_session.commit()
        return branch

    return _make


@pytest.fixture()
def make_user(db_session: AsyncSession) -> Callable:
    counter = {"n": 0}

    async def _make(username: str, role: Role, branch: Optional[Branch] = None) -> User:
        counter["n"] += 1
        user = User(
            full_name=username.replace("_", " ").title(),
            nic_or_passport=f"NIC{counter['n']:06d}",
            contact_number="+94 77 000 0000",
            email=f"{username}@example.com",
            username=username,
            password_hash=PASSWORD_HASH,
            role=role.value,
            branch_id=branch.id if branch else None,
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _make


def token_for(user: User, branch_id=None) -> str:
    """Token as issued by login: non-superAdmins always carry their own branch."""
    if user.role != Role.SUPER_ADMIN.value:
        branch_id = user.branch_id
    return create_access_token(
        subject={
            "sub": str(user.id),
            "user_id": str(user.id),
            "role": user.role,
            "branch_id": str(branch_id) if branch_id else None,
        }
    )


def _headers_for(user: User, branch_id=None) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token_for(user, branch_id)}"}


@pytest.fixture()
def headers_for() -> Callable:
    return _headers_for


@pytest.fixture()
def password() -> str:
    return PASSWORD


@pytest.fixture()
async def colombo(make_branch) -> Branch:
    return await make_branch("Colombo")


@pytest.fixture()
async def kandy(make_branch) -> Branch:
    return await make_branch("Kandy")


@pytest.fixture()
async def super_admin(make_user) -> User:
    return await make_user("root_admin", Role.SUPER_ADMIN)


@pytest.fixture()
async def admin_colombo(make_user, colombo) -> User:
    return await make_user("admin_colombo", Role.ADMIN, colombo)


@pytest.fixture()
async def moderator_colombo(make_user, colombo) -> User:
    return await make_user("mod_colombo", Role.MODERATOR, colombo)


@pytest.fixture()
async def staff_colombo(make_user, colombo) -> User:
    return await make_user("staff_colombo", Role.STAFF, colombo)


@pytest.fixture()
async def admin_kandy(make_user, kandy) -> User:
    return await make_user("admin_kandy", Role.ADMIN, kandy)


@pytest.fixture()
def super_headers(super_admin) -> Dict[str, str]:
    return _headers_for(super_admin)


@pytest.fixture()
def admin_headers(admin_colombo) -> Dict[str, str]:
    return _headers_for(admin_colombo)


# ----- API helpers -----
def _course_payload(title: str = "Web Development", branch="all", max_students: int = 30, **overrides) -> dict:
    payload = {
        "title": title,
        "description": "Full stack web development with Python",
        "duration": "6 months",
        "price": 75000,
        "currency": "LKR",
        "max_students": max_students,
        "schedule": "Weekends 9am-1pm",
        "instructor": "Nimal Silva",
        "next_start": (date.today() + timedelta(days=30)).isoformat(),
        "status": "Active",
        "modules": ["HTML", "CSS", "Python"],
        "branch": str(branch),
    }
    payload.update(overrides)
    return payload


def _student_payload(course_id, email: str = "kasun@example.com", full_name: str = "Kasun Perera", **overrides) -> dict:
    payload = {
        "full_name": full_name,
        "email": email,
        "phone": "+94 77 123 4567",
        "address": "12 Galle Road, Colombo",
        "date_of_birth": "2000-05-14",
        "course_id": str(course_id),
    }
    payload.update(overrides)
    return payload


@pytest.fixture()
def create_course(client: AsyncClient, super_headers) -> Callable:
    async def _create(**kwargs) -> dict:
        response = await client.post("/api/v1/courses", json=_course_payload(**kwargs), headers=super_headers)
        assert response.status_code == 201, response.text
        return response.json()

    return _create


@pytest.fixture()
def create_student(client: AsyncClient) -> Callable:
    async def _create(headers: Dict[str, str], course_id, **kwargs) -> dict:
        response = await client.post("/api/v1/students", json=_student_payload(course_id, **kwargs), headers=headers)
        assert response.status_code == 201, response.text
        return response.json()

    return _create


@pytest.fixture()
def course_payload() -> Callable:
    return _course_payload


@pytest.fixture()
def student_payload() -> Callable:
    return _student_payload
