"""Repository for User CRUD operations.

Provides database access for the users table. Every lookup is scoped to
live (non-soft-deleted) rows unless the caller asks otherwise.
"""

import uuid
from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from credence.core.errors import DuplicateEmailError
from credence.models.user import User, UserRole


class _Unset:
    """Marker type for patch fields that were not provided."""

    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


@dataclass(frozen=True)
class UserPatch:
    """Partial update for a user row.

    Only fields that are explicitly set are written; UNSET fields are left
    alone. Passing None clears a nullable column.

    Security: email, role, id, and timestamps are not patchable. Email
    changes need re-verification; role changes need an admin path;
    soft delete and last-login have dedicated methods.
    """

    name: str | None = UNSET
    phone: str | None = UNSET
    picture: str | None = UNSET
    provider_user_id: str | None = UNSET
    password_hash: str | None = UNSET
    is_verified: bool = UNSET
    is_active: bool = UNSET

    def changes(self) -> dict[str, Any]:
        """Return only the fields that were set.

        Returns:
            Mapping of column name to new value.
        """
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not UNSET
        }


class UserRepository:
    """Stateless repository for User table operations.

    All methods are static; no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def get_by_id(
        db: AsyncSession,
        user_id: uuid.UUID,
        *,
        include_deleted: bool = False,
    ) -> User | None:
        """Fetch a user by primary key.

        Args:
            db: Async database session.
            user_id: UUID primary key.
            include_deleted: Also return soft-deleted rows.

        Returns:
            User if found, None otherwise.
        """
        stmt = select(User).where(User.id == user_id)
        if not include_deleted:
            stmt = stmt.where(User.deleted_at.is_(None))
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_email(db: AsyncSession, email: str) -> User | None:
        """Fetch a live user by email address (case-insensitive).

        Args:
            db: Async database session.
            email: Email address to look up.

        Returns:
            User if found, None otherwise.
        """
        stmt = select(User).where(
            User.email == email.strip().lower(),
            User.deleted_at.is_(None),
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def lock_for_update(db: AsyncSession, user_id: uuid.UUID) -> User | None:
        """Fetch a live user and hold a row lock until the transaction ends.

        Serializes concurrent writers that must see each other's effects,
        e.g. two code issuances for the same account.

        Args:
            db: Async database session.
            user_id: UUID primary key.

        Returns:
            Locked User if found, None otherwise.
        """
        stmt = (
            select(User)
            .where(User.id == user_id, User.deleted_at.is_(None))
            .with_for_update()
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        email: str,
        password_hash: str | None = None,
        role: UserRole = UserRole.CONSUMER,
        is_verified: bool = False,
        name: str | None = None,
        phone: str | None = None,
        picture: str | None = None,
        provider_user_id: str | None = None,
    ) -> User:
        """Create a new user.

        Email is normalized to lowercase before storage. The insert runs in
        a savepoint so a uniqueness violation leaves the outer transaction
        usable.

        Args:
            db: Async database session.
            email: User email address.
            password_hash: bcrypt hash (None for federated-only users).
            role: Account role.
            is_verified: Whether the email is already proven.
            name: Display name.
            phone: Phone number.
            picture: Profile picture URL.
            provider_user_id: Federated subject id.

        Returns:
            Created User with database-generated fields populated.

        Raises:
            DuplicateEmailError: If a live user already has this email.
        """
        user = User(
            email=email.strip().lower(),
            password_hash=password_hash,
            role=role,
            is_verified=is_verified,
            is_active=True,
            name=name,
            phone=phone,
            picture=picture,
            provider_user_id=provider_user_id,
        )
        try:
            async with db.begin_nested():
                db.add(user)
                await db.flush()
        except IntegrityError as exc:
            raise DuplicateEmailError(email) from exc
        await db.refresh(user)
        return user

    @staticmethod
    async def update(
        db: AsyncSession,
        user_id: uuid.UUID,
        patch: UserPatch,
    ) -> User | None:
        """Apply a partial update to a live user.

        Args:
            db: Async database session.
            user_id: UUID of the user to update.
            patch: Fields to write; UNSET fields are skipped.

        Returns:
            Updated User if found, None if user does not exist.
        """
        user = await UserRepository.get_by_id(db, user_id)
        if user is None:
            return None

        changes = patch.changes()
        if not changes:
            return user

        for field, value in changes.items():
            setattr(user, field, value)

        await db.flush()
        await db.refresh(user)
        return user

    @staticmethod
    async def touch_last_login(
        db: AsyncSession, user_id: uuid.UUID, at: datetime
    ) -> None:
        """Record a successful sign-in.

        Args:
            db: Async database session.
            user_id: UUID of the user.
            at: Sign-in timestamp.
        """
        stmt = update(User).where(User.id == user_id).values(last_login_at=at)
        await db.execute(stmt)

    @staticmethod
    async def soft_delete(
        db: AsyncSession, user_id: uuid.UUID, at: datetime
    ) -> bool:
        """Deactivate and soft delete a user.

        Args:
            db: Async database session.
            user_id: UUID of the user.
            at: Deletion timestamp.

        Returns:
            True if a live row was deleted, False otherwise.
        """
        stmt = (
            update(User)
            .where(User.id == user_id, User.deleted_at.is_(None))
            .values(deleted_at=at, is_active=False)
            .returning(User.id)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none() is not None
