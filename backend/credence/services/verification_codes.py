"""Single-use verification codes (email OTP, password reset).

Lifecycle per token:
- issued unused, with expires_at = now + ttl
- used (terminal), on the one successful verify()
- expired (terminal), once expires_at has passed; expiry is checked
  before the used flag, so an expired token never becomes used

Issuing a code invalidates every live code for the same (user, method),
so at most one code per pair is ever accepted. Only the SHA-256 hash of a
code is stored; the plaintext goes back to the caller for delivery and is
never logged.
"""

import logging
import math
import secrets
import string
import uuid
from collections.abc import Callable, Mapping
from datetime import UTC, datetime, timedelta
from enum import Enum

from sqlalchemy.ext.asyncio import AsyncSession

from credence.core.auth import hash_secret
from credence.core.config import Settings
from credence.core.errors import (
    CodeAlreadyUsedError,
    CodeExpiredError,
    CodeNotFoundError,
    InvalidOrExpiredCodeError,
    RateLimitExceededError,
    SubjectInactiveError,
)
from credence.models.verification_token import VerificationMethod, VerificationToken
from credence.repositories.user_repository import UserRepository
from credence.repositories.verification_token_repository import (
    VerificationTokenRepository,
)

logger = logging.getLogger(__name__)

MIN_CODE_LENGTH = 4
MAX_CODE_LENGTH = 12

# Trailing window for the per-account issuance cap
_ISSUE_WINDOW = timedelta(hours=1)

_DEFAULT_TTLS = {
    VerificationMethod.EMAIL_VERIFICATION: timedelta(minutes=15),
    VerificationMethod.PASSWORD_RESET: timedelta(minutes=15),
}


class CodeAlphabet(str, Enum):
    """Character sets codes are drawn from."""

    NUMERIC = string.digits
    ALPHANUMERIC = string.ascii_uppercase + string.digits


_ACCEPTED_CHARS = frozenset(CodeAlphabet.ALPHANUMERIC.value)


def _normalize(code: str) -> str:
    return code.strip().upper()


def _is_well_formed(code: str) -> bool:
    return MIN_CODE_LENGTH <= len(code) <= MAX_CODE_LENGTH and all(
        c in _ACCEPTED_CHARS for c in code
    )


class VerificationCodeManager:
    """Issues and redeems hashed single-use codes.

    Stores default to the SQLAlchemy repositories; any object with the
    same async methods can stand in.

    Args:
        code_length: Default code length.
        ttls: Default lifetime per method.
        max_issues_per_hour: Per-(user, method) issuance cap.
        tokens: Verification token store.
        users: User store (row lock during issuance).
        clock: Time source.
    """

    def __init__(
        self,
        *,
        code_length: int = 6,
        ttls: Mapping[VerificationMethod, timedelta] | None = None,
        max_issues_per_hour: int = 5,
        tokens: type[VerificationTokenRepository] = VerificationTokenRepository,
        users: type[UserRepository] = UserRepository,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._check_length(code_length)
        self.code_length = code_length
        self._ttls = {**_DEFAULT_TTLS, **(ttls or {})}
        self.max_issues_per_hour = max_issues_per_hour
        self._tokens = tokens
        self._users = users
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "VerificationCodeManager":
        """Build a manager from application settings.

        Args:
            settings: Application settings.
            **kwargs: Overrides (stores, clock).

        Returns:
            Configured VerificationCodeManager.
        """
        return cls(
            code_length=settings.verification_code_length,
            ttls={
                VerificationMethod.EMAIL_VERIFICATION: timedelta(
                    minutes=settings.email_verification_ttl_minutes
                ),
                VerificationMethod.PASSWORD_RESET: timedelta(
                    minutes=settings.password_reset_ttl_minutes
                ),
            },
            max_issues_per_hour=settings.verification_max_issues_per_hour,
            **kwargs,
        )

    @staticmethod
    def _check_length(length: int) -> None:
        if not MIN_CODE_LENGTH <= length <= MAX_CODE_LENGTH:
            msg = (
                f"Code length must be between {MIN_CODE_LENGTH} "
                f"and {MAX_CODE_LENGTH}, got {length}"
            )
            raise ValueError(msg)

    def ttl_for(self, method: VerificationMethod) -> timedelta:
        return self._ttls[method]

    async def _enforce_issue_cap(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        method: VerificationMethod,
        now: datetime,
    ) -> None:
        since = now - _ISSUE_WINDOW
        issued = await self._tokens.count_issued_since(
            db, user_id=user_id, method=method, since=since
        )
        if issued < self.max_issues_per_hour:
            return

        oldest = await self._tokens.oldest_issued_since(
            db, user_id=user_id, method=method, since=since
        )
        wait = (oldest + _ISSUE_WINDOW - now).total_seconds() if oldest else 0
        retry_after = max(1, math.ceil(wait))
        logger.warning(
            "Verification code issuance cap reached",
            extra={
                "user_id": str(user_id),
                "method": method.value,
                "retry_after": retry_after,
            },
        )
        raise RateLimitExceededError(retry_after)

    async def issue(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        method: VerificationMethod,
        *,
        code_length: int | None = None,
        ttl: timedelta | None = None,
        alphabet: CodeAlphabet = CodeAlphabet.NUMERIC,
    ) -> str:
        """Create a new code for (user, method), replacing any live one.

        The user row is locked for the rest of the transaction so two
        concurrent issuances for one account cannot both leave a live code.

        Args:
            db: Async database session.
            user_id: Owning user.
            method: What the code authorizes.
            code_length: Override of the default length.
            ttl: Override of the method's default lifetime.
            alphabet: Character set to draw from.

        Returns:
            Plaintext code, for out-of-band delivery only.

        Raises:
            ValueError: If code_length is out of range.
            SubjectInactiveError: If the user does not exist or is deleted.
            RateLimitExceededError: If the per-account cap is reached.
        """
        length = self.code_length if code_length is None else code_length
        self._check_length(length)
        lifetime = ttl if ttl is not None else self.ttl_for(method)

        if await self._users.lock_for_update(db, user_id) is None:
            raise SubjectInactiveError()

        now = self._clock()
        await self._enforce_issue_cap(db, user_id, method, now)

        invalidated = await self._tokens.invalidate_live(
            db, user_id=user_id, method=method, now=now
        )
        code = "".join(secrets.choice(alphabet.value) for _ in range(length))
        await self._tokens.create(
            db,
            user_id=user_id,
            token_hash=hash_secret(code),
            method=method,
            expires_at=now + lifetime,
            created_at=now,
        )

        logger.info(
            "Verification code issued",
            extra={
                "user_id": str(user_id),
                "method": method.value,
                "invalidated": invalidated,
            },
        )
        return code

    async def verify(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        method: VerificationMethod,
        code: str,
    ) -> VerificationToken:
        """Redeem a code. Succeeds at most once per issued code.

        Args:
            db: Async database session.
            user_id: Owning user.
            method: What the code must authorize.
            code: Code supplied by the caller.

        Returns:
            The consumed VerificationToken.

        Raises:
            CodeNotFoundError: No token matches (or the code is malformed).
            CodeExpiredError: Matching token is past its expiry.
            CodeAlreadyUsedError: Matching token was consumed, possibly by a
                concurrent caller that won the race.
        """
        now = self._clock()
        supplied = _normalize(code)

        error: InvalidOrExpiredCodeError
        if not _is_well_formed(supplied):
            error = CodeNotFoundError()
        else:
            token_hash = hash_secret(supplied)
            token = await self._tokens.find_live(
                db, user_id=user_id, method=method, token_hash=token_hash, now=now
            )
            if token is not None:
                if await self._tokens.mark_used(db, token.id, now=now):
                    token.is_used = True
                    token.used_at = now
                    logger.info(
                        "Verification code accepted",
                        extra={"user_id": str(user_id), "method": method.value},
                    )
                    return token
                error = CodeAlreadyUsedError()
            else:
                error = await self._diagnose(db, user_id, method, token_hash, now)

        logger.info(
            "Verification code rejected",
            extra={
                "user_id": str(user_id),
                "method": method.value,
                "reason": error.reason,
            },
        )
        raise error

    async def _diagnose(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        method: VerificationMethod,
        token_hash: str,
        now: datetime,
    ) -> InvalidOrExpiredCodeError:
        latest = await self._tokens.find_latest(
            db, user_id=user_id, method=method, token_hash=token_hash
        )
        if latest is None:
            return CodeNotFoundError()
        # Expiry first: an expired token reports expired even if also used
        if latest.expires_at <= now:
            return CodeExpiredError()
        if latest.is_used:
            return CodeAlreadyUsedError()
        return CodeNotFoundError()

    async def purge_expired(self, db: AsyncSession) -> int:
        """Delete tokens whose expiry has passed.

        Tokens issued inside the issuance-cap window are kept until they
        age out of it, so purging never lifts the cap.

        Args:
            db: Async database session.

        Returns:
            Number of deleted tokens.
        """
        now = self._clock()
        deleted = await self._tokens.delete_expired(
            db, before=now, issued_before=now - _ISSUE_WINDOW
        )
        logger.info("Purged expired verification tokens", extra={"count": deleted})
        return deleted
