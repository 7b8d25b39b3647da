"""Shared dependencies for API endpoints.

Services, the notifier, and the rate limiter are built once in
create_app() and kept on app.state; these providers hand them to routes.

Tests swap in fakes through create_app() arguments or dependency_overrides.
"""

from collections.abc import Awaitable, Callable
from typing import Annotated

from fastapi import Depends, Request
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from credence.core.database import get_db
from credence.core.errors import UnauthorizedError
from credence.core.notifier import Notifier
from credence.services.account_service import AccountService
from credence.services.rate_limiter import RateLimiter
from credence.services.token_issuer import TokenClaims, TokenType

DbSession = Annotated[AsyncSession, Depends(get_db)]

_BEARER_PREFIX = "bearer "


def get_accounts(request: Request) -> AccountService:
    accounts: AccountService = request.app.state.accounts
    return accounts


def get_notifier(request: Request) -> Notifier:
    notifier: Notifier = request.app.state.notifier
    return notifier


def get_rate_limiter(request: Request) -> RateLimiter:
    limiter: RateLimiter = request.app.state.rate_limiter
    return limiter


Accounts = Annotated[AccountService, Depends(get_accounts)]
Mailer = Annotated[Notifier, Depends(get_notifier)]


def rate_limited(action: str) -> Callable[..., Awaitable[None]]:
    """Build a dependency that applies the rate limit for an action.

    Keyed by client network address.

    Args:
        action: Rule name ("login", "register", "otp", ...).

    Returns:
        Dependency raising RateLimitExceededError when the window is full.
    """

    async def _check(
        request: Request,
        limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
    ) -> None:
        limiter.check(get_remote_address(request), action)

    return _check


def bearer_token(request: Request) -> str:
    """Extract the token from an "Authorization: Bearer ..." header.

    Raises:
        UnauthorizedError: Header missing or not a bearer credential.
    """
    header = request.headers.get("Authorization", "")
    if not header.lower().startswith(_BEARER_PREFIX):
        raise UnauthorizedError()
    token = header[len(_BEARER_PREFIX) :].strip()
    if not token:
        raise UnauthorizedError()
    return token


def get_access_claims(
    token: Annotated[str, Depends(bearer_token)],
    accounts: Accounts,
) -> TokenClaims:
    """Verify the bearer access token.

    Raises:
        InvalidSessionError: Token expired, malformed, or refresh-typed.
    """
    return accounts.issuer.verify(token, TokenType.ACCESS)


AccessClaims = Annotated[TokenClaims, Depends(get_access_claims)]
