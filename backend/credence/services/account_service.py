"""Account flows composed from the credential components.

Each method runs inside the caller's transaction and never commits. The
plaintext codes it returns are meant for delivery after the commit.

Enumeration safety:
- request_* flows return None for unknown, inactive, or ineligible
  accounts instead of raising
- code confirmation for an unknown email raises the same error as a
  wrong code
"""

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from credence.core.auth import hash_password, verify_password
from credence.core.errors import (
    CodeNotFoundError,
    InvalidCredentialsError,
    RateLimitExceededError,
    SubjectInactiveError,
    ValidationError,
)
from credence.models.user import User, UserRole
from credence.models.verification_token import VerificationMethod
from credence.repositories.user_repository import UserPatch, UserRepository
from credence.services.federated import FederatedIdentityVerifier
from credence.services.identity import IdentityReconciler
from credence.services.password_policy import PasswordPolicy
from credence.services.token_issuer import TokenIssuer, TokenPair
from credence.services.verification_codes import VerificationCodeManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssuedCode:
    """A code created for out-of-band delivery.

    Attributes:
        user: Account the code belongs to.
        code: Plaintext code.
        ttl_minutes: Lifetime, for the message text.
    """

    user: User
    code: str
    ttl_minutes: int


class AccountService:
    """Registration, sign-in, verification, and password flows.

    Args:
        identity: Identity reconciler.
        codes: Verification code manager.
        issuer: Session token issuer.
        policy: Password policy.
        verifier: Federated identity verifier.
        users: User store.
        clock: Time source for deactivation stamps.
    """

    def __init__(
        self,
        *,
        identity: IdentityReconciler,
        codes: VerificationCodeManager,
        issuer: TokenIssuer,
        policy: PasswordPolicy,
        verifier: FederatedIdentityVerifier,
        users: type[UserRepository] = UserRepository,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.identity = identity
        self.codes = codes
        self.issuer = issuer
        self.policy = policy
        self.verifier = verifier
        self._users = users
        self._clock = clock

    async def _issue(
        self, db: AsyncSession, user: User, method: VerificationMethod
    ) -> IssuedCode:
        code = await self.codes.issue(db, user.id, method)
        ttl_minutes = int(self.codes.ttl_for(method).total_seconds() // 60)
        return IssuedCode(user=user, code=code, ttl_minutes=ttl_minutes)

    async def register(
        self,
        db: AsyncSession,
        email: str,
        password: str,
        *,
        role: UserRole = UserRole.CONSUMER,
        name: str | None = None,
        phone: str | None = None,
    ) -> IssuedCode:
        """Create a password account and its first email verification code.

        Returns:
            IssuedCode for the new, unverified user.
        """
        user = await self.identity.register_with_password(
            db, email, password, role=role, name=name, phone=phone
        )
        return await self._issue(db, user, VerificationMethod.EMAIL_VERIFICATION)

    async def login(
        self, db: AsyncSession, email: str, password: str
    ) -> tuple[User, TokenPair]:
        """Password sign-in. The email must be verified.

        Raises:
            InvalidCredentialsError: Unknown email or wrong password.
            SubjectInactiveError: Account deactivated.
            EmailNotVerifiedError: Email not yet verified.
        """
        user = await self.identity.authenticate_password(
            db, email, password, require_verified=True
        )
        return user, self.issuer.issue(user.id, user.role)

    async def social_login(
        self, db: AsyncSession, id_token: str
    ) -> tuple[User, bool, TokenPair]:
        """Federated sign-in or sign-up.

        Returns:
            Tuple of (user, is_new, tokens).
        """
        claim = await self.verifier.verify(id_token)
        user, is_new = await self.identity.find_or_create_from_federated_claim(
            db, claim
        )
        return user, is_new, self.issuer.issue(user.id, user.role)

    async def _eligible_for_code(
        self, db: AsyncSession, email: str, method: VerificationMethod
    ) -> IssuedCode | None:
        user = await self._users.get_by_email(db, email)
        if user is None or not user.is_active:
            return None
        if method == VerificationMethod.EMAIL_VERIFICATION and user.is_verified:
            return None
        try:
            return await self._issue(db, user, method)
        except RateLimitExceededError:
            # Surfacing the cap would reveal that the account exists
            logger.info(
                "Code request suppressed by issuance cap",
                extra={"user_id": str(user.id), "method": method.value},
            )
            return None

    async def request_email_verification(
        self, db: AsyncSession, email: str
    ) -> IssuedCode | None:
        """Issue a fresh email verification code.

        Returns:
            IssuedCode, or None when nothing should be sent.
        """
        return await self._eligible_for_code(
            db, email, VerificationMethod.EMAIL_VERIFICATION
        )

    async def confirm_email(self, db: AsyncSession, email: str, code: str) -> User:
        """Redeem an email verification code and mark the email verified.

        Raises:
            InvalidOrExpiredCodeError: Unknown email or bad code.
        """
        user = await self._users.get_by_email(db, email)
        if user is None or not user.is_active:
            raise CodeNotFoundError()
        await self.codes.verify(
            db, user.id, VerificationMethod.EMAIL_VERIFICATION, code
        )
        updated = await self._users.update(db, user.id, UserPatch(is_verified=True))
        logger.info("Email verified", extra={"user_id": str(user.id)})
        return updated

    async def request_password_reset(
        self, db: AsyncSession, email: str
    ) -> IssuedCode | None:
        """Issue a password reset code.

        Returns:
            IssuedCode, or None when nothing should be sent.
        """
        return await self._eligible_for_code(
            db, email, VerificationMethod.PASSWORD_RESET
        )

    async def complete_password_reset(
        self, db: AsyncSession, email: str, code: str, new_password: str
    ) -> User:
        """Set a new password using a reset code.

        The password policy runs before the code is redeemed, so a rejected
        password leaves the code usable. Redeeming a reset code also proves
        control of the email, so the account becomes verified.

        Raises:
            WeakPasswordError: New password fails the rules.
            CompromisedPasswordError: New password is breached.
            InvalidOrExpiredCodeError: Unknown email or bad code.
        """
        await self.policy.enforce(new_password)

        user = await self._users.get_by_email(db, email)
        if user is None or not user.is_active:
            raise CodeNotFoundError()
        await self.codes.verify(db, user.id, VerificationMethod.PASSWORD_RESET, code)

        updated = await self._users.update(
            db,
            user.id,
            UserPatch(password_hash=hash_password(new_password), is_verified=True),
        )
        logger.info("Password reset completed", extra={"user_id": str(user.id)})
        return updated

    async def change_password(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        current_password: str,
        new_password: str,
    ) -> User:
        """Change the password of a signed-in user.

        Raises:
            SubjectInactiveError: Account no longer active.
            InvalidCredentialsError: Current password is wrong.
            ValidationError: New password equals the current one.
            WeakPasswordError: New password fails the rules.
            CompromisedPasswordError: New password is breached.
        """
        user = await self.identity.resolve_active_subject(db, user_id)
        if not verify_password(current_password, user.password_hash):
            raise InvalidCredentialsError()
        if current_password == new_password:
            raise ValidationError("New password must differ from the current one")

        await self.policy.enforce(new_password)
        updated = await self._users.update(
            db, user.id, UserPatch(password_hash=hash_password(new_password))
        )
        logger.info("Password changed", extra={"user_id": str(user.id)})
        return updated

    async def deactivate(self, db: AsyncSession, user_id: uuid.UUID) -> None:
        """Soft delete the account. Existing tokens stop refreshing.

        Raises:
            SubjectInactiveError: Account already gone.
        """
        if not await self._users.soft_delete(db, user_id, self._clock()):
            raise SubjectInactiveError()
        logger.info("Account deactivated", extra={"user_id": str(user_id)})
