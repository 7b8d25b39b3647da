"""Identity reconciliation: map a proven identity to a local user.

Two kinds of proof are accepted:
1. Email + password, checked against the stored bcrypt hash
2. A verified federated claim (email, profile, provider subject id)

Rules:
- Unknown email, password-less account, and wrong password are one error
- Inactive accounts are reported only after the password matched
- Federated first login creates a pre-verified, password-less user
- Replaying a claim for an already linked account is a plain login
- Federated returning login backfills empty profile fields, never
  overwriting a value the user already has
- A federated claim only links into an existing account when both the
  provider and the account have verified the email (pre-hijack defense)
"""

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from credence.core.auth import hash_password, verify_password
from credence.core.errors import (
    ConflictError,
    DuplicateEmailError,
    EmailNotVerifiedError,
    InvalidCredentialsError,
    SubjectInactiveError,
    ValidationError,
)
from credence.models.user import User, UserRole
from credence.repositories.user_repository import UserPatch, UserRepository
from credence.services.password_policy import PasswordPolicy

logger = logging.getLogger(__name__)

# Profile fields a federated claim may fill in when empty
_BACKFILL_FIELDS = ("name", "picture", "provider_user_id")


@dataclass(frozen=True)
class FederatedClaim:
    """Identity asserted by an external provider, already verified.

    Attributes:
        email: Email address from the provider.
        provider_user_id: Provider's stable subject id.
        name: Display name, if the provider has one.
        picture: Profile picture URL, if any.
        email_verified: Whether the provider verified the email.
    """

    email: str
    provider_user_id: str
    name: str | None = None
    picture: str | None = None
    email_verified: bool = True


class IdentityReconciler:
    """Finds, creates, and merges local users from proven identities.

    Args:
        policy: Password policy applied on registration.
        users: User store. Defaults to the SQLAlchemy repository.
        clock: Time source for last-login stamps.
    """

    def __init__(
        self,
        policy: PasswordPolicy,
        *,
        users: type[UserRepository] = UserRepository,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._policy = policy
        self._users = users
        self._clock = clock

    async def _record_login(self, db: AsyncSession, user: User) -> None:
        now = self._clock()
        await self._users.touch_last_login(db, user.id, now)
        user.last_login_at = now

    async def authenticate_password(
        self,
        db: AsyncSession,
        email: str,
        password: str,
        *,
        require_verified: bool = False,
    ) -> User:
        """Sign in with email and password.

        Args:
            db: Async database session.
            email: Email address (any case).
            password: Plain-text password.
            require_verified: Reject accounts whose email is unverified.

        Returns:
            Authenticated User, with last_login_at updated.

        Raises:
            InvalidCredentialsError: Unknown email, no password, or mismatch.
            SubjectInactiveError: Password matched but account is deactivated.
            EmailNotVerifiedError: Password matched but email is unverified.
        """
        user = await self._users.get_by_email(db, email)
        # Security: always run bcrypt so timing does not reveal which case hit
        stored_hash = user.password_hash if user is not None else None
        matched = verify_password(password, stored_hash)
        if user is None or not matched:
            logger.info(
                "Password sign-in rejected",
                extra={"user_id": str(user.id) if user is not None else None},
            )
            raise InvalidCredentialsError()
        if not user.is_active:
            logger.info(
                "Sign-in to inactive account", extra={"user_id": str(user.id)}
            )
            raise SubjectInactiveError()
        if require_verified and not user.is_verified:
            raise EmailNotVerifiedError()

        await self._record_login(db, user)
        return user

    async def find_or_create_from_federated_claim(
        self, db: AsyncSession, claim: FederatedClaim
    ) -> tuple[User, bool]:
        """Sign in, or sign up, with a verified federated identity.

        Idempotent: concurrent first logins for the same email produce one
        user. The loser of the insert race re-reads the winner's row and
        continues as a returning login.

        Args:
            db: Async database session.
            claim: Verified provider claim.

        Returns:
            Tuple of (User, is_new).

        Raises:
            ConflictError: Existing account cannot be linked (unverified email).
            SubjectInactiveError: Matching account is deactivated.
        """
        email = claim.email.strip().lower()
        user = await self._users.get_by_email(db, email)
        if user is None:
            try:
                user = await self._users.create(
                    db,
                    email=email,
                    password_hash=None,
                    is_verified=True,
                    name=claim.name,
                    picture=claim.picture,
                    provider_user_id=claim.provider_user_id,
                )
            except DuplicateEmailError:
                logger.info("Federated sign-up lost creation race; re-fetching")
                user = await self._users.get_by_email(db, email)
                if user is None:
                    raise
            else:
                await self._record_login(db, user)
                logger.info(
                    "Created user from federated identity",
                    extra={"user_id": str(user.id)},
                )
                return user, True

        if not user.is_active:
            raise SubjectInactiveError()

        already_linked = user.provider_user_id == claim.provider_user_id
        if not already_linked and not (claim.email_verified and user.is_verified):
            logger.warning(
                "Federated account linking blocked by email verification",
                extra={
                    "user_id": str(user.id),
                    "provider_verified": claim.email_verified,
                    "existing_verified": user.is_verified,
                },
            )
            raise ConflictError(
                code="ACCOUNT_LINK_BLOCKED",
                message=(
                    "An account with this email already exists. "
                    "Please sign in with your original method first."
                ),
            )

        backfill = {
            field: getattr(claim, field)
            for field in _BACKFILL_FIELDS
            if getattr(user, field) is None and getattr(claim, field) is not None
        }
        if backfill:
            user = await self._users.update(db, user.id, UserPatch(**backfill))
            logger.info(
                "Backfilled profile from federated identity",
                extra={"user_id": str(user.id), "fields": sorted(backfill)},
            )

        await self._record_login(db, user)
        return user, False

    async def resolve_active_subject(
        self, db: AsyncSession, user_id: uuid.UUID
    ) -> User:
        """Load a user that may still hold a session.

        Args:
            db: Async database session.
            user_id: Subject id from a token.

        Returns:
            Live, active User.

        Raises:
            SubjectInactiveError: Missing, soft-deleted, or deactivated.
        """
        user = await self._users.get_by_id(db, user_id)
        if user is None or not user.is_usable:
            logger.info(
                "Session subject is no longer active",
                extra={"user_id": str(user_id)},
            )
            raise SubjectInactiveError()
        return user

    async def register_with_password(
        self,
        db: AsyncSession,
        email: str,
        password: str,
        *,
        role: UserRole = UserRole.CONSUMER,
        name: str | None = None,
        phone: str | None = None,
    ) -> User:
        """Create an unverified user with a local password.

        Args:
            db: Async database session.
            email: Email address.
            password: Plain-text password; must pass the policy.
            role: Requested role (ADMIN is not self-assignable).
            name: Display name.
            phone: Phone number.

        Returns:
            Created User.

        Raises:
            ValidationError: ADMIN role requested.
            WeakPasswordError: Password fails the strength rules.
            CompromisedPasswordError: Password is in a breach corpus.
            ConflictError: A live user already has this email.
        """
        if role == UserRole.ADMIN:
            raise ValidationError("The admin role cannot be self-assigned")

        await self._policy.enforce(password)

        try:
            user = await self._users.create(
                db,
                email=email,
                password_hash=hash_password(password),
                role=role,
                is_verified=False,
                name=name,
                phone=phone,
            )
        except DuplicateEmailError as exc:
            raise ConflictError(
                code="EMAIL_ALREADY_EXISTS",
                message="An account with this email already exists",
            ) from exc

        logger.info(
            "Registered user", extra={"user_id": str(user.id), "role": role.value}
        )
        return user
