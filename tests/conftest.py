"""Shared test fixtures — async DB, client, auth helpers, factories.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Set test JWT_SECRET before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from expenseflow.auth.dependencies import Actor
from expenseflow.common.constants import ExpenseType, UserRole
from expenseflow.config import settings
from expenseflow.database import Base, get_db
from expenseflow.main import create_app

# Import ALL model modules so every table exists in the metadata
import expenseflow.audit.models  # noqa: F401
import expenseflow.budget.models  # noqa: F401
import expenseflow.categories.models  # noqa: F401
import expenseflow.employees.models  # noqa: F401
import expenseflow.expenses.models  # noqa: F401

from expenseflow.budget.models import BudgetAllocation
from expenseflow.categories.models import ExpenseCategory
from expenseflow.employees.models import Employee

# ── SQLite compat: compile PG-specific types ────────────────────────

from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(36)"


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset rate limiter storage between tests to prevent cross-test interference."""
    from expenseflow.common.rate_limit import limiter

    limiter.reset()
    yield


@pytest.fixture(autouse=True)
def _no_smtp(monkeypatch):
    """Route all mail to the log fallback."""
    monkeypatch.setattr(settings, "SMTP_HOST", "")


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app():
    """Create a fresh app instance with DB dependency overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


# ── Model factories ─────────────────────────────────────────────────

async def make_employee(
    db: AsyncSession,
    *,
    email: Optional[str] = None,
    full_name: str = "Test User",
    role: UserRole = UserRole.employee,
    manager_id: Optional[uuid.UUID] = None,
    is_active: bool = True,
) -> Employee:
    employee = Employee(
        id=uuid.uuid4(),
        email=email or f"user-{uuid.uuid4().hex[:8]}@example.com",
        full_name=full_name,
        role=role,
        manager_id=manager_id,
        is_active=is_active,
    )
    db.add(employee)
    await db.commit()
    return employee


async def make_category(
    db: AsyncSession,
    *,
    name: Optional[str] = None,
    expense_type: ExpenseType = ExpenseType.benefit,
    default_allocation: Decimal = Decimal("200"),
    active: bool = True,
) -> ExpenseCategory:
    category = ExpenseCategory(
        id=uuid.uuid4(),
        name=name or f"Category {uuid.uuid4().hex[:6]}",
        expense_type=expense_type,
        default_allocation=default_allocation,
        requires_receipt=False,
        active=active,
    )
    db.add(category)
    await db.commit()
    return category


async def make_allocation(
    db: AsyncSession,
    employee_id: uuid.UUID,
    category_id: uuid.UUID,
    *,
    allocated: Decimal = Decimal("200"),
    spent: Decimal = Decimal("0"),
    year: Optional[int] = None,
) -> BudgetAllocation:
    allocation = BudgetAllocation(
        id=uuid.uuid4(),
        employee_id=employee_id,
        category_id=category_id,
        year=year or datetime.now(timezone.utc).year,
        allocated=allocated,
        spent=spent,
    )
    db.add(allocation)
    await db.commit()
    return allocation


@pytest.fixture
async def team(db) -> dict:
    """A manager (approver), one report, a finance admin and a system admin."""
    manager = await make_employee(db, full_name="Mara Manager", role=UserRole.approver)
    employee = await make_employee(db, full_name="Eli Employee", manager_id=manager.id)
    finance = await make_employee(db, full_name="Fin Admin", role=UserRole.finance_admin)
    admin = await make_employee(db, full_name="Sys Admin", role=UserRole.system_admin)
    return {"manager": manager, "employee": employee, "finance": finance, "admin": admin}


@pytest.fixture
async def benefit_category(db) -> ExpenseCategory:
    return await make_category(db, name="Wellness", default_allocation=Decimal("200"))


# ── Auth helpers ────────────────────────────────────────────────────

def actor_for(employee: Employee, role: Optional[UserRole] = None) -> Actor:
    return Actor(
        id=employee.id,
        role=role or employee.role,
        email=employee.email,
        display_name=employee.display_name,
    )


def create_access_token(
    employee_id: uuid.UUID,
    role: UserRole = UserRole.employee,
    expired: bool = False,
) -> str:
    """Generate a JWT access token for testing."""
    if expired:
        exp = datetime.now(timezone.utc) - timedelta(hours=1)
    else:
        exp = datetime.now(timezone.utc) + timedelta(hours=1)
    payload = {
        "sub": str(employee_id),
        "role": role.value,
        "type": "access",
        "exp": exp,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def auth_headers(employee: Employee, role: Optional[UserRole] = None) -> dict[str, str]:
    token = create_access_token(employee.id, role=role or employee.role)
    return {"Authorization": f"Bearer {token}"}
