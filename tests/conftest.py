import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

from typing import AsyncGenerator, Dict

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.auth.models import User
from app.auth.security import create_access_token, hash_password
from app.core.models import School
from app.db.session import DB_SCHEMAS, Base, get_db
from app.main import app


TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest.fixture()
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory SQLite per test; Postgres schemas are mapped to the default schema."""
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        execution_options={"schema_translate_map": {name: None for name in DB_SCHEMAS}},
    )

    # Let SQLAlchemy emit BEGIN itself so SAVEPOINT behaves like on Postgres
    @event.listens_for(test_engine.sync_engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(test_engine.sync_engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture()
async def db_session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Provide a database session for a test and override FastAPI dependency."""
    async_session = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    async with async_session() as session:

        async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
            yield session

        app.dependency_overrides[get_db] = override_get_db
        yield session

    app.dependency_overrides.clear()


@pytest.fixture()
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


async def create_school(db: AsyncSession, slug: str, name: str) -> School:
    school = School(slug=slug, name=name, status="ACTIVE")
    db.add(school)
    await db.commit()
    return school


async def create_admin(db: AsyncSession, school: School, email: str, password: str = "StrongPass123") -> User:
    user = User(
        school_id=school.id,
        full_name="School Admin",
        email=email,
        password_hash=hash_password(password),
        role="ADMIN",
        status="ACTIVE",
    )
    db.add(user)
    await db.commit()
    return user


def bearer_headers(user: User) -> Dict[str, str]:
    token = create_access_token(
        subject={
            "sub": str(user.id),
            "user_id": str(user.id),
            "school_id": str(user.school_id),
            "role": user.role,
        }
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
async def school(db_session: AsyncSession) -> School:
    return await create_school(db_session, "alpha", "Alpha Academy")


@pytest.fixture()
async def admin(db_session: AsyncSession, school: School) -> User:
    return await create_admin(db_session, school, "admin@alpha.example.com")


@pytest.fixture()
def auth_headers(admin: User) -> Dict[str, str]:
    return bearer_headers(admin)


@pytest.fixture()
async def other_admin(db_session: AsyncSession) -> User:
    """Admin of a second school; must never reach the first school's data."""
    other = await create_school(db_session, "beta", "Beta School")
    return await create_admin(db_session, other, "admin@beta.example.com")


@pytest.fixture()
def other_auth_headers(other_admin: User) -> Dict[str, str]:
    return bearer_headers(other_admin)
