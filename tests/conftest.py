import os

# Settings are read at import time, so point them at SQLite before importing the app
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-pytest")

import uuid
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.core import models
from app.core.database import create_tables, get_db
from app.core.security import create_access_token, hash_password
from app.core.sql_sandbox.audit import InMemoryAuditLog, get_audit_log
from app.core.sql_sandbox.executor import EngineQueryRunner
from app.core.sql_sandbox.sandbox import SQLSandbox, get_query_runner

# In-memory SQLite shared by every connection of one engine
TEST_DATABASE_URL = "sqlite+aiosqlite://"


# Fresh database for every test, dropped with the engine afterwards
@pytest_asyncio.fixture(scope="function")
async def test_engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(test_engine):
    session_factory = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
def audit_log():
    return InMemoryAuditLog(capacity=50)


@pytest.fixture(scope="function")
def sandbox(test_engine, audit_log):
    return SQLSandbox(
        EngineQueryRunner(test_engine), audit_log, max_rows=100, timeout_ms=2000
    )


# Client with the database, query runner and audit log swapped for test ones
@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession, test_engine, audit_log):
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_query_runner] = lambda: EngineQueryRunner(test_engine)
    app.dependency_overrides[get_audit_log] = lambda: audit_log

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# User
@pytest_asyncio.fixture(scope="function")
async def test_user(db_session: AsyncSession):
    user = models.User(
        email=f"analyst_{uuid.uuid4().hex[:8]}@example.com",
        password=hash_password("password123"),
        role="user",
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


# Admin
@pytest_asyncio.fixture(scope="function")
async def test_admin(db_session: AsyncSession):
    user = models.User(
        email=f"admin_{uuid.uuid4().hex[:8]}@example.com",
        password=hash_password("password123"),
        role="admin",
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture(scope="function")
async def auth_headers_user(test_user):
    token = create_access_token({"user_id": test_user.id})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture(scope="function")
async def auth_headers_admin(test_admin):
    token = create_access_token({"user_id": test_admin.id})
    return {"Authorization": f"Bearer {token}"}


# A company with one business unit and 150 pain points
@pytest_asyncio.fixture(scope="function")
async def seeded_pain_points(db_session: AsyncSession):
    company = models.Company(name="Acme Logistics", industry="Transport")
    db_session.add(company)
    await db_session.flush()

    unit = models.BusinessUnit(company_id=company.id, name="Finance", fte=12)
    db_session.add(unit)
    await db_session.flush()

    for i in range(150):
        db_session.add(
            models.PainPoint(
                statement=f"Manual invoice matching #{i}",
                total_hours_per_month=i,
                risk_level="High" if i % 3 == 0 else "Low",
                company_id=company.id,
                business_unit_id=unit.id,
            )
        )
    await db_session.commit()
    return company
