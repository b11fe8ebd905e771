"""Pytest fixtures for backend tests."""

import os
import tempfile
import uuid
from collections.abc import AsyncGenerator

# Settings are read at import time, so the environment must be in place first
_TEST_DIR = tempfile.mkdtemp(prefix="jbs-tests-")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-pytest-0123456789abcdef")
os.environ.setdefault("DATABASE_URL_OVERRIDE", f"sqlite+aiosqlite:///{_TEST_DIR}/app.db")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("GEOIP_DB_PATH", f"{_TEST_DIR}/missing.mmdb")
os.environ.setdefault("LOCKOUT_MAX_ATTEMPTS", "5")
os.environ.setdefault("LOCKOUT_MINUTES", "15")

import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from jbs.core.security import get_password_hash  # noqa: E402
from jbs.db.base import Base  # noqa: E402
from jbs.db.session import get_db  # noqa: E402
from jbs.main import app  # noqa: E402
from jbs.models.user import User, UserRole  # noqa: E402
from jbs.services.tokens import TokenService  # noqa: E402

TEST_PASSWORD = "Str0ng!Passw0rd"
TEST_USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 Chrome/120.0 Safari/537.36"


async def create_user(
    session: AsyncSession,
    email: str,
    role: UserRole = UserRole.STUDENT,
    password: str = TEST_PASSWORD,
    is_active: bool = True,
    **fields,
) -> User:
    user = User(
        id=uuid.uuid4(),
        email=email,
        username=f"{email.split('@')[0]}_{uuid.uuid4().hex[:4]}",
        password_hash=get_password_hash(password),
        role=role,
        is_active=is_active,
        first_name=fields.pop("first_name", "Test"),
        last_name=fields.pop("last_name", "User"),
        **fields,
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """Create a test database engine on a fresh SQLite file."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/test.db", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def test_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async_session = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with async_session() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def student_user(test_session: AsyncSession) -> User:
    return await create_user(
        test_session,
        "student@example.com",
        UserRole.STUDENT,
        institution="State University",
    )


@pytest_asyncio.fixture(scope="function")
async def owner_user(test_session: AsyncSession) -> User:
    return await create_user(
        test_session,
        "owner@example.com",
        UserRole.OWNER,
        business_name="Sunrise Hostels",
    )


@pytest_asyncio.fixture(scope="function")
async def admin_user(test_session: AsyncSession) -> User:
    return await create_user(test_session, "admin@example.com", UserRole.ADMIN)


async def _issue_token(session: AsyncSession, user: User) -> str:
    issued = await TokenService(session).issue(user, TEST_USER_AGENT, "127.0.0.1")
    await session.commit()
    return issued.token


@pytest_asyncio.fixture(scope="function")
async def student_token(test_session: AsyncSession, student_user: User) -> str:
    return await _issue_token(test_session, student_user)


@pytest_asyncio.fixture(scope="function")
async def owner_token(test_session: AsyncSession, owner_user: User) -> str:
    return await _issue_token(test_session, owner_user)


@pytest_asyncio.fixture(scope="function")
async def admin_token(test_session: AsyncSession, admin_user: User) -> str:
    return await _issue_token(test_session, admin_user)


@pytest_asyncio.fixture(scope="function")
async def client(test_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create an unauthenticated test client."""
    # Override get_db with our test session
    async def override():
        yield test_session

    app.dependency_overrides[get_db] = override

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"User-Agent": TEST_USER_AGENT},
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def authenticated_client(
    test_session: AsyncSession, student_token: str
) -> AsyncGenerator[AsyncClient, None]:
    """Create a client authenticated as the student user."""

    async def override():
        yield test_session

    app.dependency_overrides[get_db] = override

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={**auth_headers(student_token), "User-Agent": TEST_USER_AGENT},
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
