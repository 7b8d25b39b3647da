import socket
import uuid
from collections.abc import AsyncGenerator, Iterator
from unittest.mock import patch

import pytest
import pytest_asyncio
from pydantic import SecretStr
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from credence.core.config import Settings, settings
from credence.models.base import Base
from tests.fakes import FrozenTime

# Use separate test database
TEST_DATABASE_URL = settings.database_url.replace(
    settings.database_name, f"{settings.database_name}_test"
)

# Test user ID (consistent across tests)
TEST_USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")

# Security: This is a test-only secret. Production uses a real secret from env.
TEST_AUTH_SECRET = "test-secret-key-that-is-at-least-32-characters-long"  # nosec B105  # gitleaks:allow

# Satisfies every password rule; not in the breach corpus
TEST_PASSWORD = "Vq7#mLp2xZ!k"  # nosec B105  # gitleaks:allow

# Low bcrypt cost factor for fast tests
TEST_BCRYPT_ROUNDS = 4


def make_test_settings(**overrides) -> Settings:
    """Settings for tests: fixed secret, no .env file."""
    values = {"auth_secret": SecretStr(TEST_AUTH_SECRET), **overrides}
    return Settings(_env_file=None, **values)


def _is_postgres_available() -> bool:
    """Check if PostgreSQL is accepting connections.

    Returns:
        True if PostgreSQL is reachable on port 5432, False otherwise.
    """
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.settimeout(1)
        result = sock.connect_ex(("127.0.0.1", 5432))
        sock.close()
        return result == 0
    except OSError:
        return False


# Check once at module load time
_POSTGRES_AVAILABLE = _is_postgres_available()


def skip_if_no_postgres() -> None:
    """Skip test if PostgreSQL is not available.

    Called by fixtures that require database connection.
    Provides clear skip message to help diagnose CI/local issues.
    """
    if not _POSTGRES_AVAILABLE:
        pytest.skip(
            "PostgreSQL not available on port 5432. "
            "Start database with: docker compose up -d"
        )


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create test database engine.

    Skips test if PostgreSQL is not available (e.g., Docker not running).
    """
    skip_if_no_postgres()

    engine = create_async_engine(TEST_DATABASE_URL, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async_session = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session
        await session.rollback()


@pytest.fixture
def frozen_time() -> Iterator[FrozenTime]:
    """Freeze the wall clock seen by the rate limiter and its memory storage."""
    clock = FrozenTime()
    with (
        patch("limits.storage.memory.time", clock),
        patch("credence.services.rate_limiter.time", clock),
    ):
        yield clock
