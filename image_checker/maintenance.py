"""
Purge job: hard-deletes sessions soft-deleted longer than the retention window

Run on any schedule (e.g. daily cron) or on demand:

    image-checker-purge --retention-days 14
"""
import argparse
import asyncio
import logging
import sys
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .core.clock import Clock, utcnow
from .core.config import settings
from .services import SessionRepository

logger = logging.getLogger(__name__)


async def purge_deleted_sessions(
    session_maker: async_sessionmaker[AsyncSession],
    retention_days: int = settings.RETENTION_DAYS,
    clock: Clock = utcnow,
) -> int:
    """Remove expired soft-deleted sessions and return how many went"""
    logger.info(f"🧹 Purging sessions deleted more than {retention_days} days ago...")
    async with session_maker() as db:
        repo = SessionRepository(db, retention_days=retention_days, clock=clock)
        count = await repo.purge_expired(retention_days)

    if count:
        logger.info(f"✅ Purged {count} expired session(s)")
    else:
        logger.info("✅ No expired sessions to purge")
    return count


async def _run(retention_days: int) -> int:
    from .core.database import async_session_maker, engine

    try:
        return await purge_deleted_sessions(async_session_maker, retention_days)
    finally:
        await engine.dispose()


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Purge expired soft-deleted review sessions")
    parser.add_argument(
        "--retention-days",
        type=int,
        default=settings.RETENTION_DAYS,
        help=f"Days a deleted session is kept before purge (default: {settings.RETENTION_DAYS})"
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        count = asyncio.run(_run(args.retention_days))
    except Exception as e:
        logger.error(f"❌ Purge failed: {e}")
        return 1

    print(f"Purged {count} session(s)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
