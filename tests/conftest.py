from datetime import date
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

import app.models  # noqa: F401
from app.core.config import settings
from app.core.security import create_access_token, get_password_hash
from app.database import get_db
from app.main import app as fastapi_app
from app.models.enums import GoalStatus, UserRole
from app.models.goal import Goal
from app.models.user import User

TEST_PASSWORD = "secret123"


@pytest.fixture(autouse=True)
def fast_hashing(monkeypatch):
    # Minimum bcrypt cost keeps the suite quick
    monkeypatch.setattr(settings, "BCRYPT_ROUNDS", 4)


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as session:
        yield session


@pytest.fixture
async def client(session_maker) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db():
        async with session_maker() as session:
            yield session

    fastapi_app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=fastapi_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    async def factory(email: str, role: UserRole = UserRole.VOLUNTEER, **fields) -> User:
        user = User(
            firstName=fields.pop("firstName", email.split("@")[0].title()),
            lastName=fields.pop("lastName", "Tester"),
            email=email,
            password=get_password_hash(TEST_PASSWORD),
            role=role,
            **fields,
        )
        db.add(user)
        await db.commit()
        return user

    return factory


@pytest.fixture
def make_goal(db):
    async def factory(volunteer: User, **fields) -> Goal:
        goal = Goal(
            title=fields.pop("title", "Run a workshop"),
            volunteerId=volunteer.id,
            startDate=fields.pop("startDate", date(2024, 6, 1)),
            dueDate=fields.pop("dueDate", date(2024, 6, 30)),
            status=fields.pop("status", GoalStatus.PENDING),
            **fields,
        )
        db.add(goal)
        await db.commit()
        return goal

    return factory


@pytest.fixture
async def admin(make_user) -> User:
    return await make_user("admin@example.com", role=UserRole.ADMIN)


@pytest.fixture
async def volunteer(make_user) -> User:
    return await make_user("volunteer@example.com")


def _bearer(user: User) -> dict:
    token = create_access_token(subject=user.id, role=user.role.value)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers():
    return _bearer


@pytest.fixture
def admin_headers(admin) -> dict:
    return _bearer(admin)


@pytest.fixture
def volunteer_headers(volunteer) -> dict:
    return _bearer(volunteer)
