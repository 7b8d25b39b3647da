"""Delete expired verification tokens.

Standalone housekeeping script, meant for a periodic job (cron, k8s
CronJob). Used and invalidated tokens that have not yet expired are kept:
they still count toward the per-account issuance cap.

Usage:
    cd backend && python -m scripts.purge_expired_tokens
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from credence.services.verification_codes import VerificationCodeManager

logger = logging.getLogger(__name__)


async def run_purge(
    session: AsyncSession,
    manager: VerificationCodeManager | None = None,
) -> int:
    """Purge expired tokens inside the given session.

    The caller commits.

    Args:
        session: Active async database session.
        manager: Code manager override (tests).

    Returns:
        Number of deleted tokens.
    """
    manager = manager or VerificationCodeManager()
    return await manager.purge_expired(session)


async def main() -> None:
    """CLI entry point: purge against the configured database."""
    from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

    from credence.core.config import settings

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    engine = create_async_engine(settings.database_url, echo=False)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with factory() as session:
        deleted = await run_purge(session)
        await session.commit()

    await engine.dispose()

    logger.info("Purge complete: %d expired tokens deleted", deleted)


if __name__ == "__main__":
    import asyncio

    asyncio.run(main())
