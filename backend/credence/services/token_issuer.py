"""Signed session tokens: access/refresh pairs.

Both tokens are HS256 JWTs signed with one process-wide key that is
loaded at startup and never mutated. Verification fails closed: anything
PyJWT rejects, and any missing or ill-typed claim, is "malformed".

Refresh tokens are not rotated or denylisted server-side. A stolen
refresh token stays usable until it expires or the account is
deactivated; refresh() re-checks the account on every call.
"""

import logging
import secrets
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, Protocol

import jwt
from sqlalchemy.ext.asyncio import AsyncSession

from credence.core.config import Settings
from credence.core.errors import (
    InvalidRefreshError,
    RefreshExpiredError,
    TokenExpiredError,
    TokenMalformedError,
    TokenWrongTypeError,
)
from credence.models.user import User, UserRole

logger = logging.getLogger(__name__)

_ALGORITHM = "HS256"

# Claims every token must carry; PyJWT rejects tokens missing any of them
_REQUIRED_CLAIMS = ["sub", "exp", "iat", "iss", "aud", "jti"]


class TokenType(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


@dataclass(frozen=True)
class SigningKey:
    """Token signing configuration, fixed for the life of the process.

    Attributes:
        secret: HMAC signing secret.
        issuer: iss claim.
        audience: aud claim.
        access_ttl: Access token lifetime.
        refresh_ttl: Refresh token lifetime.
    """

    secret: str = field(repr=False)
    issuer: str = "credence"
    audience: str = "credence-app"
    access_ttl: timedelta = timedelta(minutes=15)
    refresh_ttl: timedelta = timedelta(days=7)

    @classmethod
    def from_settings(cls, settings: Settings) -> "SigningKey":
        """Load the signing key from settings.

        Outside production an empty AUTH_SECRET is replaced by a random
        per-process secret, so tokens do not survive a restart.

        Args:
            settings: Application settings.

        Returns:
            SigningKey.
        """
        secret = settings.auth_secret.get_secret_value()
        if not secret:
            logger.warning(
                "AUTH_SECRET is not set; using an ephemeral signing secret",
                extra={"environment": settings.environment},
            )
            secret = secrets.token_hex(32)
        return cls(
            secret=secret,
            issuer=settings.auth_issuer,
            audience=settings.auth_audience,
            access_ttl=timedelta(minutes=settings.access_token_ttl_minutes),
            refresh_ttl=timedelta(days=settings.refresh_token_ttl_days),
        )


@dataclass(frozen=True)
class TokenPair:
    """Access and refresh tokens returned to the caller.

    Attributes:
        access_token: Short-lived signed access token.
        refresh_token: Long-lived signed refresh token.
        expires_in: Access token lifetime in seconds.
        refresh_expires_in: Refresh token lifetime in seconds.
        token_type: Always "bearer".
    """

    access_token: str
    refresh_token: str
    expires_in: int
    refresh_expires_in: int
    token_type: str = "bearer"


@dataclass(frozen=True)
class TokenClaims:
    """Verified claim set.

    Attributes:
        subject: User id from the sub claim.
        token_type: access or refresh.
        role: Role at issue time (access tokens only).
        issued_at: iat claim.
        expires_at: exp claim.
        token_id: jti claim.
    """

    subject: uuid.UUID
    token_type: TokenType
    role: UserRole | None
    issued_at: datetime
    expires_at: datetime
    token_id: str


class SubjectResolver(Protocol):
    """Looks up the account behind a refresh token."""

    async def resolve_active_subject(
        self, db: AsyncSession, user_id: uuid.UUID
    ) -> User: ...


class TokenIssuer:
    """Issues and verifies access/refresh token pairs.

    Args:
        key: Signing configuration.
        subjects: Account lookup used by refresh().
        clock: Time source for iat/exp.
    """

    def __init__(
        self,
        key: SigningKey,
        subjects: SubjectResolver,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._key = key
        self._subjects = subjects
        self._clock = clock

    def _encode(self, payload: dict[str, Any]) -> str:
        return jwt.encode(payload, self._key.secret, algorithm=_ALGORITHM)

    def issue(self, subject_id: uuid.UUID, role: UserRole) -> TokenPair:
        """Create a fresh token pair.

        Args:
            subject_id: User id for the sub claim.
            role: Role embedded in the access token.

        Returns:
            TokenPair.
        """
        now = self._clock()
        common = {
            "sub": str(subject_id),
            "iss": self._key.issuer,
            "aud": self._key.audience,
            "iat": now,
        }
        access = self._encode(
            {
                **common,
                "type": TokenType.ACCESS.value,
                "role": UserRole(role).value,
                "exp": now + self._key.access_ttl,
                "jti": secrets.token_hex(16),
            }
        )
        refresh = self._encode(
            {
                **common,
                "type": TokenType.REFRESH.value,
                "exp": now + self._key.refresh_ttl,
                "jti": secrets.token_hex(16),
            }
        )
        return TokenPair(
            access_token=access,
            refresh_token=refresh,
            expires_in=int(self._key.access_ttl.total_seconds()),
            refresh_expires_in=int(self._key.refresh_ttl.total_seconds()),
        )

    def verify(self, token: str, expected_type: TokenType) -> TokenClaims:
        """Check signature, standard claims, expiry, and token type.

        Args:
            token: Encoded JWT.
            expected_type: Type the caller requires.

        Returns:
            TokenClaims.

        Raises:
            TokenExpiredError: Signature valid but exp has passed.
            TokenMalformedError: Any other decode, signature, or claim problem.
            TokenWrongTypeError: Valid token of the other type.
        """
        try:
            payload = jwt.decode(
                token,
                self._key.secret,
                algorithms=[_ALGORITHM],
                audience=self._key.audience,
                issuer=self._key.issuer,
                options={"require": _REQUIRED_CLAIMS},
            )
        except jwt.ExpiredSignatureError as exc:
            raise TokenExpiredError() from exc
        except jwt.InvalidTokenError as exc:
            raise TokenMalformedError() from exc

        try:
            token_type = TokenType(payload["type"])
            subject = uuid.UUID(payload["sub"])
            role = UserRole(payload["role"]) if token_type is TokenType.ACCESS else None
            issued_at = datetime.fromtimestamp(payload["iat"], UTC)
            expires_at = datetime.fromtimestamp(payload["exp"], UTC)
        except (KeyError, ValueError, TypeError) as exc:
            raise TokenMalformedError() from exc

        if token_type is not expected_type:
            raise TokenWrongTypeError()

        return TokenClaims(
            subject=subject,
            token_type=token_type,
            role=role,
            issued_at=issued_at,
            expires_at=expires_at,
            token_id=str(payload["jti"]),
        )

    async def refresh(self, db: AsyncSession, refresh_token: str) -> TokenPair:
        """Exchange a refresh token for a new pair.

        The account is re-resolved so deactivated or deleted users cannot
        mint new tokens, and the new access token carries the current role.

        Args:
            db: Async database session.
            refresh_token: Encoded refresh JWT.

        Returns:
            Fresh TokenPair.

        Raises:
            RefreshExpiredError: Refresh token expired.
            InvalidRefreshError: Malformed or not refresh-typed.
            SubjectInactiveError: Account missing, deleted, or deactivated.
        """
        try:
            claims = self.verify(refresh_token, TokenType.REFRESH)
        except TokenExpiredError as exc:
            raise RefreshExpiredError() from exc
        except (TokenMalformedError, TokenWrongTypeError) as exc:
            logger.info("Refresh rejected", extra={"reason": exc.reason})
            raise InvalidRefreshError() from exc

        user = await self._subjects.resolve_active_subject(db, claims.subject)
        return self.issue(user.id, user.role)
