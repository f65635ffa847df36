"""
HRMS Core - Test Configuration

Pytest fixtures and configuration.

Each test gets a fresh in-memory SQLite database; the application's session
and permission-cache dependencies are overridden to use it.
"""

import os

# Settings are read at import time; configure before importing the app
os.environ.setdefault("JWT_SECRET_KEY", "test-access-secret-key")
os.environ.setdefault("JWT_REFRESH_SECRET_KEY", "test-refresh-secret-key")
os.environ["DATABASE_URL_ASYNC"] = "sqlite+aiosqlite:///:memory:"
os.environ["APP_ENV"] = "testing"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["PERMISSION_CACHE_BACKEND"] = "memory"

from datetime import date
from decimal import Decimal
from typing import AsyncGenerator, Callable, Dict
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from hrms.database import Base, get_async_session
from hrms.models import (
    Company,
    Permission,
    PayrollCycle,
    PayrollCycleStatus,
    Payslip,
    PayslipStatus,
    Role,
    RolePermission,
    User,
    UserRole,
    UserRoleAssignment,
)
from hrms.services.permission_cache import InMemoryPermissionCache, get_permission_cache
from hrms.services.permission_service import PermissionService
from hrms.utils.security import TokenClaims, create_access_token, get_password_hash
from main import app


TEST_PASSWORD = "TestPassword123!"
TEST_PASSWORD_HASH = get_password_hash(TEST_PASSWORD)


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh in-memory database and session for each test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session
        await session.rollback()

    await engine.dispose()


@pytest.fixture
def permission_cache() -> InMemoryPermissionCache:
    return InMemoryPermissionCache()


@pytest_asyncio.fixture(scope="function")
async def client(
    db_session: AsyncSession,
    permission_cache: InMemoryPermissionCache,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database session and permission cache overrides."""

    async def override_get_session():
        yield db_session

    app.dependency_overrides[get_async_session] = override_get_session
    app.dependency_overrides[get_permission_cache] = lambda: permission_cache

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def user_password() -> str:
    """Plain-text password of every user created by make_user."""
    return TEST_PASSWORD


@pytest.fixture
def auth_headers() -> Callable[[User], Dict[str, str]]:
    """Build a bearer header for a user."""

    def _headers(user: User) -> Dict[str, str]:
        token = create_access_token(TokenClaims.for_user(user))
        return {"Authorization": f"Bearer {token}"}

    return _headers


# ===========================================
# DATA FIXTURES
# ===========================================

@pytest_asyncio.fixture
async def company(db_session: AsyncSession) -> Company:
    """Create a test company."""
    company = Company(id=uuid4(), name="Acme Payroll Ltd")
    db_session.add(company)
    await db_session.commit()
    await db_session.refresh(company)
    return company


@pytest_asyncio.fixture
async def other_company(db_session: AsyncSession) -> Company:
    """A second tenant, for isolation tests."""
    company = Company(id=uuid4(), name="Globex Ltd")
    db_session.add(company)
    await db_session.commit()
    await db_session.refresh(company)
    return company


@pytest.fixture
def make_user(db_session: AsyncSession):
    """Factory for users with the shared test password."""

    async def _make_user(
        email: str,
        role: str = UserRole.EMPLOYEE.value,
        company: Company = None,
        is_super_admin: bool = False,
        is_active: bool = True,
    ) -> User:
        user = User(
            id=uuid4(),
            email=email,
            hashed_password=TEST_PASSWORD_HASH,
            first_name=email.split("@")[0].title(),
            last_name="Tester",
            role=role,
            company_id=company.id if company else None,
            is_super_admin=is_super_admin,
            is_active=is_active,
        )
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _make_user


@pytest_asyncio.fixture
async def admin_user(make_user, company: Company) -> User:
    return await make_user("admin@acme.test", UserRole.ADMIN.value, company)


@pytest_asyncio.fixture
async def hr_user(make_user, company: Company) -> User:
    return await make_user("hr@acme.test", UserRole.HR.value, company)


@pytest_asyncio.fixture
async def finance_user(make_user, company: Company) -> User:
    return await make_user("finance@acme.test", UserRole.FINANCE.value, company)


@pytest_asyncio.fixture
async def employee_user(make_user, company: Company) -> User:
    return await make_user("employee@acme.test", UserRole.EMPLOYEE.value, company)


@pytest_asyncio.fixture
async def other_admin(make_user, other_company: Company) -> User:
    return await make_user("admin@globex.test", UserRole.ADMIN.value, other_company)


@pytest_asyncio.fixture
async def super_admin(make_user) -> User:
    return await make_user("root@platform.test", UserRole.ADMIN.value, None, is_super_admin=True)


@pytest_asyncio.fixture
async def default_permissions(db_session: AsyncSession) -> Dict[str, Permission]:
    """The default catalogue, keyed by code."""
    service = PermissionService(db_session)
    await service.seed_defaults()
    permissions, _ = await service.list_permissions(limit=1000)
    return {permission.code: permission for permission in permissions}


@pytest.fixture
def make_role(db_session: AsyncSession):
    """Factory for a company role granting the given permission objects."""

    async def _make_role(
        name: str,
        company: Company = None,
        permissions=(),
        is_system: bool = False,
    ) -> Role:
        role = Role(
            id=uuid4(),
            company_id=company.id if company else None,
            name=name,
            display_name=name.title(),
            is_system=is_system,
        )
        db_session.add(role)
        await db_session.flush()
        for permission in permissions:
            db_session.add(RolePermission(role_id=role.id, permission_id=permission.id))
        await db_session.commit()
        await db_session.refresh(role)
        return role

    return _make_role


@pytest.fixture
def assign_role(db_session: AsyncSession):
    """Assign a role to a user directly in the database."""

    async def _assign(user: User, role: Role) -> UserRoleAssignment:
        assignment = UserRoleAssignment(user_id=user.id, role_id=role.id)
        db_session.add(assignment)
        await db_session.commit()
        return assignment

    return _assign


@pytest_asyncio.fixture
async def payroll_cycle(db_session: AsyncSession, company: Company) -> PayrollCycle:
    """A March payroll cycle for the test company."""
    cycle = PayrollCycle(
        id=uuid4(),
        company_id=company.id,
        name="March 2026",
        start_date=date(2026, 3, 1),
        end_date=date(2026, 3, 31),
        status=PayrollCycleStatus.PAID,
    )
    db_session.add(cycle)
    await db_session.commit()
    await db_session.refresh(cycle)
    return cycle


@pytest_asyncio.fixture
async def payslips(db_session: AsyncSession, company: Company, payroll_cycle: PayrollCycle):
    """
    Payslips of the March cycle:
    - UTR1, 1000.00, approved
    - UTR2, 2000.00, paid
    - no UTR, 1500.00, approved (Ada Obi, paid 2026-03-28)
    - draft payslip, never reconciled
    """
    rows = [
        ("UTR1", Decimal("1000.00"), PayslipStatus.APPROVED, "John Doe", date(2026, 3, 28)),
        ("UTR2", Decimal("2000.00"), PayslipStatus.PAID, "Mary Major", date(2026, 3, 28)),
        (None, Decimal("1500.00"), PayslipStatus.APPROVED, "Ada Obi", date(2026, 3, 28)),
        (None, Decimal("999.00"), PayslipStatus.DRAFT, "Draft Person", None),
    ]
    created = []
    for utr, amount, status, name, paid_on in rows:
        payslip = Payslip(
            id=uuid4(),
            company_id=company.id,
            payroll_cycle_id=payroll_cycle.id,
            employee_id=uuid4(),
            employee_name=name,
            net_amount=amount,
            utr_number=utr,
            payment_date=paid_on,
            status=status,
        )
        db_session.add(payslip)
        created.append(payslip)
    await db_session.commit()
    return created
