"""
Test configuration and fixtures for LeadCRM backend tests.
"""
import os
import pytest
import pytest_asyncio
from typing import AsyncGenerator, Optional
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from leadcrm.main import app
from leadcrm.db.base import Base, get_db
from leadcrm.db.seed import seed_reference_data
from leadcrm.core.security import get_password_hash
from leadcrm.models.base import utcnow
from leadcrm.models.role import Role, UserRole
from leadcrm.models.user import User, UserStatus
from leadcrm.services import tokens


# Use a file-based SQLite DB to avoid :memory: multiple-connection issues
# with SQLAlchemy + aiosqlite (each new connection would see an empty DB).
TEST_DATABASE_URL = "sqlite+aiosqlite:///./test_leadcrm.db"

TEST_PASSWORD = "TestPass123"


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=NullPool,
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; emit BEGIN ourselves.
    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()
    # Clean up test database file
    try:
        os.remove("./test_leadcrm.db")
    except OSError:
        pass


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session with reference data seeded."""
    async_session_maker = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )
    async with async_session_maker() as session:
        await seed_reference_data(session)
        await session.commit()
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database session override."""
    async def override_get_db():
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def create_user_with_role(
    db: AsyncSession,
    email: str,
    role_name: Optional[str],
    password: str = TEST_PASSWORD,
    first_name: str = "Test",
    last_name: str = "User",
) -> User:
    """Insert an active user and, if given, an active assignment of ``role_name``."""
    user = User(
        email=email,
        first_name=first_name,
        last_name=last_name,
        password_hash=get_password_hash(password),
        status=UserStatus.ACTIVE,
        login_attempts=0,
        email_verified=True,
    )
    db.add(user)
    await db.flush()

    if role_name:
        role = (await db.execute(select(Role).where(Role.name == role_name))).scalar_one()
        db.add(UserRole(
            user_id=user.id,
            role_id=role.id,
            assigned_by=user.id,
            assigned_at=utcnow(),
            is_active=True,
        ))
    await db.commit()
    return user


async def auth_headers_for(db: AsyncSession, user: User) -> dict:
    """Issue a real session-backed token for ``user``."""
    token, _ = await tokens.issue(db, user)
    await db.commit()
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def admin_user(db_session: AsyncSession) -> User:
    return await create_user_with_role(db_session, "admin@example.com", "admin", first_name="Ada")


@pytest_asyncio.fixture
async def manager_user(db_session: AsyncSession) -> User:
    return await create_user_with_role(db_session, "manager@example.com", "manager", first_name="Max")


@pytest_asyncio.fixture
async def employee_user(db_session: AsyncSession) -> User:
    return await create_user_with_role(db_session, "employee@example.com", "employee", first_name="Eve")


@pytest_asyncio.fixture
async def admin_headers(db_session: AsyncSession, admin_user: User) -> dict:
    return await auth_headers_for(db_session, admin_user)


@pytest_asyncio.fixture
async def manager_headers(db_session: AsyncSession, manager_user: User) -> dict:
    return await auth_headers_for(db_session, manager_user)


@pytest_asyncio.fixture
async def employee_headers(db_session: AsyncSession, employee_user: User) -> dict:
    return await auth_headers_for(db_session, employee_user)
