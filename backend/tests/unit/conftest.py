"""Shared fixtures for endpoint tests.

The app is built with create_app() around in-memory stores, a recording
notifier, and a rate limiter on a frozen clock. get_db is overridden to
yield an AsyncMock session, so no database is needed.
"""

from collections.abc import AsyncGenerator
from dataclasses import dataclass
from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from credence.core.auth import hash_password
from credence.core.database import get_db
from credence.main import create_app
from credence.models.user import User
from credence.services.account_service import AccountService
from credence.services.identity import FederatedClaim, IdentityReconciler
from credence.services.password_policy import PasswordPolicy
from credence.services.rate_limiter import RateLimiter
from credence.services.token_issuer import SigningKey, TokenIssuer
from credence.services.verification_codes import VerificationCodeManager
from tests.conftest import (
    TEST_AUTH_SECRET,
    TEST_BCRYPT_ROUNDS,
    TEST_PASSWORD,
    make_test_settings,
)
from tests.fakes import (
    InMemoryUserRepository,
    InMemoryVerificationTokenRepository,
    FrozenTime,
    MutableClock,
    RecordingNotifier,
    StaticIdentityVerifier,
)

FEDERATED_TOKEN = "federated-id-token"  # nosec B105


@dataclass
class ApiStack:
    """Everything an endpoint test may want to inspect or adjust."""

    app: object
    accounts: AccountService
    users: InMemoryUserRepository
    tokens: InMemoryVerificationTokenRepository
    notifier: RecordingNotifier
    session: AsyncMock
    limiter_clock: FrozenTime

    def add_verified_user(self, email: str = "user@example.com", **kwargs) -> User:
        """Create a verified password user with TEST_PASSWORD."""
        return self.users.add(
            email,
            password_hash=hash_password(TEST_PASSWORD, rounds=TEST_BCRYPT_ROUNDS),
            is_verified=True,
            **kwargs,
        )


@pytest.fixture
def stack(frozen_time: FrozenTime) -> ApiStack:
    """Build the app around fakes."""
    config = make_test_settings()
    clock = MutableClock(datetime.now(UTC))
    users = InMemoryUserRepository()
    tokens = InMemoryVerificationTokenRepository()
    policy = PasswordPolicy()
    identity = IdentityReconciler(policy, users=users, clock=clock)
    accounts = AccountService(
        identity=identity,
        codes=VerificationCodeManager(tokens=tokens, users=users, clock=clock),
        issuer=TokenIssuer(SigningKey(secret=TEST_AUTH_SECRET), identity, clock=clock),
        policy=policy,
        verifier=StaticIdentityVerifier(
            {
                FEDERATED_TOKEN: FederatedClaim(
                    email="fed@example.com",
                    provider_user_id="firebase-uid-1",
                    name="Fed User",
                )
            }
        ),
        users=users,
        clock=clock,
    )
    notifier = RecordingNotifier()
    app = create_app(
        config=config,
        accounts=accounts,
        notifier=notifier,
        rate_limiter=RateLimiter(
            config.rate_limit_rules,
            default_rule=config.rate_limit_default,
        ),
    )

    session = AsyncMock()

    async def override_get_db() -> AsyncGenerator[AsyncMock, None]:
        yield session

    app.dependency_overrides[get_db] = override_get_db

    return ApiStack(
        app=app,
        accounts=accounts,
        users=users,
        tokens=tokens,
        notifier=notifier,
        session=session,
        limiter_clock=frozen_time,
    )


@pytest_asyncio.fixture
async def client(stack: ApiStack) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the fake-backed app."""
    transport = ASGITransport(app=stack.app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def sign_in(client: AsyncClient, email: str = "user@example.com") -> dict:
    """Log in with TEST_PASSWORD and return the token pair."""
    response = await client.post(
        "/api/v1/auth/login", json={"email": email, "password": TEST_PASSWORD}
    )
    assert response.status_code == 200, response.text
    return response.json()["data"]["tokens"]
