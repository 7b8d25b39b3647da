"""Repository for VerificationToken operations.

Single-use codes are stored as SHA-256 hashes. A token moves from unused
to used exactly once; the transition is a conditional UPDATE so that
concurrent consumers cannot both win.
"""

import uuid
from datetime import datetime

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from credence.models.verification_token import VerificationMethod, VerificationToken


class VerificationTokenRepository:
    """Stateless repository for VerificationToken table operations.

    All methods are static; no instance state.
    """

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        token_hash: str,
        method: VerificationMethod,
        expires_at: datetime,
        created_at: datetime,
    ) -> VerificationToken:
        """Store a new verification token.

        Args:
            db: Async database session.
            user_id: Owning user.
            token_hash: SHA-256 hash of the plain code.
            method: What the code authorizes.
            expires_at: Token expiry timestamp.
            created_at: Issue timestamp.

        Returns:
            Created VerificationToken.
        """
        vt = VerificationToken(
            user_id=user_id,
            token_hash=token_hash,
            method=method,
            expires_at=expires_at,
            created_at=created_at,
            is_used=False,
        )
        db.add(vt)
        await db.flush()
        await db.refresh(vt)
        return vt

    @staticmethod
    async def find_live(
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        method: VerificationMethod,
        token_hash: str,
        now: datetime,
    ) -> VerificationToken | None:
        """Look up an unused, unexpired token.

        Args:
            db: Async database session.
            user_id: Owning user.
            method: What the code authorizes.
            token_hash: SHA-256 hash of the supplied code.
            now: Reference time for the expiry check.

        Returns:
            VerificationToken if a live match exists, None otherwise.
        """
        stmt = (
            select(VerificationToken)
            .where(
                VerificationToken.user_id == user_id,
                VerificationToken.method == method,
                VerificationToken.token_hash == token_hash,
                VerificationToken.is_used.is_(False),
                VerificationToken.expires_at > now,
            )
            .order_by(VerificationToken.created_at.desc())
            .limit(1)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def find_latest(
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        method: VerificationMethod,
        token_hash: str,
    ) -> VerificationToken | None:
        """Look up the newest token matching the hash, whatever its state.

        Used to tell expired from already-used after find_live missed.

        Args:
            db: Async database session.
            user_id: Owning user.
            method: What the code authorizes.
            token_hash: SHA-256 hash of the supplied code.

        Returns:
            VerificationToken if any match exists, None otherwise.
        """
        stmt = (
            select(VerificationToken)
            .where(
                VerificationToken.user_id == user_id,
                VerificationToken.method == method,
                VerificationToken.token_hash == token_hash,
            )
            .order_by(VerificationToken.created_at.desc())
            .limit(1)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def invalidate_live(
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        method: VerificationMethod,
        now: datetime,
    ) -> int:
        """Mark every live token for (user, method) as used.

        Rows are kept for audit and the issuance cap; only the flag flips.

        Args:
            db: Async database session.
            user_id: Owning user.
            method: What the codes authorize.
            now: Reference time; also recorded as used_at.

        Returns:
            Number of invalidated tokens.
        """
        stmt = (
            update(VerificationToken)
            .where(
                VerificationToken.user_id == user_id,
                VerificationToken.method == method,
                VerificationToken.is_used.is_(False),
                VerificationToken.expires_at > now,
            )
            .values(is_used=True, used_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count

    @staticmethod
    async def mark_used(
        db: AsyncSession,
        token_id: uuid.UUID,
        *,
        now: datetime,
    ) -> bool:
        """Consume a token if it is still unused and unexpired at write time.

        The WHERE clause is the optimistic precondition: of two concurrent
        callers, the second sees zero affected rows.

        Args:
            db: Async database session.
            token_id: Token primary key.
            now: Consumption time.

        Returns:
            True if this call consumed the token, False if it lost.
        """
        stmt = (
            update(VerificationToken)
            .where(
                VerificationToken.id == token_id,
                VerificationToken.is_used.is_(False),
                VerificationToken.expires_at > now,
            )
            .values(is_used=True, used_at=now)
            .returning(VerificationToken.id)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def count_issued_since(
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        method: VerificationMethod,
        since: datetime,
    ) -> int:
        """Count tokens issued for (user, method) at or after a time.

        Args:
            db: Async database session.
            user_id: Owning user.
            method: What the codes authorize.
            since: Window start.

        Returns:
            Number of tokens created in the window.
        """
        stmt = select(func.count(VerificationToken.id)).where(
            VerificationToken.user_id == user_id,
            VerificationToken.method == method,
            VerificationToken.created_at >= since,
        )
        result = await db.execute(stmt)
        return int(result.scalar_one())

    @staticmethod
    async def oldest_issued_since(
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        method: VerificationMethod,
        since: datetime,
    ) -> datetime | None:
        """Creation time of the oldest token in the window.

        Args:
            db: Async database session.
            user_id: Owning user.
            method: What the codes authorize.
            since: Window start.

        Returns:
            Oldest created_at in the window, or None if the window is empty.
        """
        stmt = select(func.min(VerificationToken.created_at)).where(
            VerificationToken.user_id == user_id,
            VerificationToken.method == method,
            VerificationToken.created_at >= since,
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def delete_expired(
        db: AsyncSession, *, before: datetime, issued_before: datetime
    ) -> int:
        """Delete tokens that expired before a cutoff (periodic cleanup).

        Rows issued at or after issued_before are kept even when expired;
        the issuance cap still counts them.

        Args:
            db: Async database session.
            before: Tokens with expires_at earlier than this are removed.
            issued_before: Only tokens created earlier than this are removed.

        Returns:
            Number of deleted rows.
        """
        stmt = delete(VerificationToken).where(
            VerificationToken.expires_at < before,
            VerificationToken.created_at < issued_before,
        )
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count
