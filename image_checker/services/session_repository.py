"""
Session repository: versioned metadata rows, advisory edit locks, soft delete

Correctness of concurrent saves rests on one thing only: every update is a
single conditional UPDATE (`... WHERE version = :expected`). There is no
read-then-write window to protect, so no application-level lock is held
across round-trips.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock, utcnow
from ..core.config import settings
from ..models import ReviewSession
from ..schemas.device import count_completed
from ..schemas.session import SessionDocument
from .errors import (
    DuplicateSessionError,
    OptimisticLockConflict,
    SessionLockedError,
    SessionNotFoundError,
)

logger = logging.getLogger(__name__)


@dataclass
class DeletedSession:
    """Soft-deleted row annotated with the days left before the purge"""
    record: ReviewSession
    days_remaining: int


class SessionRepository:
    """Create/read/update/delete/list/restore plus locking for review sessions"""

    def __init__(
        self,
        db: AsyncSession,
        *,
        lock_ttl: timedelta = timedelta(seconds=settings.LOCK_TTL_SECONDS),
        retention_days: int = settings.RETENTION_DAYS,
        clock: Clock = utcnow,
    ):
        self.db = db
        self.lock_ttl = lock_ttl
        self.retention_days = retention_days
        self.clock = clock

    async def _fetch(self, session_id: str, include_deleted: bool = False) -> Optional[ReviewSession]:
        # populate_existing: bulk UPDATEs bypass the identity map, so always reload
        stmt = (
            select(ReviewSession)
            .where(ReviewSession.session_id == session_id)
            .execution_options(populate_existing=True)
        )
        if not include_deleted:
            stmt = stmt.where(ReviewSession.deleted_at.is_(None))
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def _require_exists(self, session_id: str, include_deleted: bool) -> None:
        if await self._fetch(session_id, include_deleted=include_deleted) is None:
            raise SessionNotFoundError(session_id)

    # ==================== CRUD ====================

    async def create(
        self,
        document: SessionDocument,
        blob_url: str,
        owner_id: Optional[str] = None
    ) -> ReviewSession:
        """
        Insert a new session row at version 1, unlocked and not deleted.

        The device array must already be in the payload store (blob_url).
        A session_id collision raises DuplicateSessionError instead of
        overwriting the existing row.
        """
        now = self.clock()
        record = ReviewSession(
            session_id=document.session_id,
            session_name=document.session_name,
            filename=document.filename,
            user_id=owner_id,
            total_rows=document.total_rows,
            progress_percentage=document.progress_percentage,
            current_batch=document.current_batch,
            total_batches=document.total_batches,
            completed_batches=sorted(set(document.completed_batches)),
            blob_url=blob_url,
            device_count=len(document.devices),
            completed_device_count=count_completed(document.devices),
            version=1,
            locked_by=None,
            locked_at=None,
            deleted_at=None,
            created_at=now,
            updated_at=now,
        )
        self.db.add(record)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.warning(f"⚠️ Duplicate session_id on create: {document.session_id}")
            raise DuplicateSessionError(document.session_id) from e

        logger.info(f"✅ Created session {record.session_id} v1 ({record.device_count} devices)")
        return record

    async def find(self, session_id: str, include_deleted: bool = False) -> Optional[ReviewSession]:
        """Metadata row or None"""
        return await self._fetch(session_id, include_deleted=include_deleted)

    async def get(self, session_id: str, include_deleted: bool = False) -> ReviewSession:
        """
        Metadata row only. The device payload is fetched separately via
        blob_url because many callers (listing, locking) never need it.
        """
        record = await self._fetch(session_id, include_deleted=include_deleted)
        if record is None:
            raise SessionNotFoundError(session_id)
        return record

    async def update(
        self,
        document: SessionDocument,
        blob_url: str,
        expected_version: int
    ) -> ReviewSession:
        """
        Compare-and-swap update: succeeds only if the row is still at
        expected_version, and bumps it by exactly one.

        Raises:
            SessionNotFoundError: row is gone or soft-deleted
            OptimisticLockConflict: row exists at a different version
        """
        session_id = document.session_id
        now = self.clock()

        stmt = (
            update(ReviewSession)
            .where(
                ReviewSession.session_id == session_id,
                ReviewSession.version == expected_version,  # Atomic version check
                ReviewSession.deleted_at.is_(None),
            )
            .values(
                session_name=document.session_name,
                total_rows=document.total_rows,
                progress_percentage=document.progress_percentage,
                current_batch=document.current_batch,
                total_batches=document.total_batches,
                completed_batches=sorted(set(document.completed_batches)),
                blob_url=blob_url,
                device_count=len(document.devices),
                completed_device_count=count_completed(document.devices),
                version=ReviewSession.version + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()

        if result.rowcount == 0:
            current = await self._fetch(session_id)
            if current is None:
                raise SessionNotFoundError(session_id)
            logger.warning(
                f"⚠️ CONFLICT for {session_id}: expected v{expected_version}, current v{current.version}"
            )
            raise OptimisticLockConflict(session_id, current.version, expected_version)

        record = await self._fetch(session_id)
        if record is None:
            raise SessionNotFoundError(session_id)
        logger.info(f"✅ Updated {session_id}: v{expected_version} → v{expected_version + 1}")
        return record

    async def delete(self, session_id: str) -> bool:
        """
        Soft delete. Returns False (no-op) if the session was already deleted.
        """
        now = self.clock()
        stmt = (
            update(ReviewSession)
            .where(
                ReviewSession.session_id == session_id,
                ReviewSession.deleted_at.is_(None),
            )
            .values(deleted_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()

        if result.rowcount == 0:
            await self._require_exists(session_id, include_deleted=True)
            return False

        logger.info(f"🗑️  Soft-deleted session {session_id}")
        return True

    async def restore(self, session_id: str) -> bool:
        """Clear deleted_at. Returns False (no-op) if the session was not deleted."""
        now = self.clock()
        stmt = (
            update(ReviewSession)
            .where(
                ReviewSession.session_id == session_id,
                ReviewSession.deleted_at.is_not(None),
            )
            .values(deleted_at=None, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()

        if result.rowcount == 0:
            await self._require_exists(session_id, include_deleted=True)
            return False

        logger.info(f"♻️ Restored session {session_id}")
        return True

    async def permanently_delete(self, session_id: str) -> bool:
        """Hard delete regardless of soft-delete state (activity rows cascade)"""
        stmt = (
            delete(ReviewSession)
            .where(ReviewSession.session_id == session_id)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()

        if result.rowcount == 0:
            raise SessionNotFoundError(session_id)

        logger.info(f"💥 Permanently deleted session {session_id}")
        return True

    async def purge_expired(self, retention_days: Optional[int] = None) -> int:
        """
        Hard-delete rows soft-deleted longer than the retention window.

        Only rows past the cutoff are touched, so this is safe alongside
        normal traffic and returns 0 when re-run.
        """
        days = self.retention_days if retention_days is None else retention_days
        cutoff = self.clock() - timedelta(days=days)
        stmt = (
            delete(ReviewSession)
            .where(
                ReviewSession.deleted_at.is_not(None),
                ReviewSession.deleted_at < cutoff,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()

        count = result.rowcount or 0
        logger.info(f"🧹 Purged {count} session(s) deleted before {cutoff.isoformat()}")
        return count

    # ==================== Listing ====================

    async def list_sessions(
        self,
        owner_id: Optional[str] = None,
        limit: int = settings.DEFAULT_LIST_LIMIT,
        offset: int = 0
    ) -> list[ReviewSession]:
        """
        Active sessions, most recently updated first.

        Without owner_id every session is returned (collaborative mode).
        """
        stmt = select(ReviewSession).where(ReviewSession.deleted_at.is_(None))
        if owner_id is not None:
            stmt = stmt.where(ReviewSession.user_id == owner_id)
        stmt = (
            stmt.order_by(ReviewSession.updated_at.desc(), ReviewSession.id)
            .limit(limit)
            .offset(offset)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_deleted(
        self,
        owner_id: Optional[str] = None,
        limit: int = settings.DEFAULT_LIST_LIMIT
    ) -> list[DeletedSession]:
        """Soft-deleted sessions, most recently deleted first"""
        stmt = select(ReviewSession).where(ReviewSession.deleted_at.is_not(None))
        if owner_id is not None:
            stmt = stmt.where(ReviewSession.user_id == owner_id)
        stmt = stmt.order_by(ReviewSession.deleted_at.desc()).limit(limit)
        result = await self.db.execute(stmt)

        now = self.clock()
        return [
            DeletedSession(record=record, days_remaining=self.days_remaining(record, now))
            for record in result.scalars().all()
        ]

    def days_remaining(self, record: ReviewSession, now=None) -> int:
        """retention - whole days elapsed since deletion, never negative"""
        if record.deleted_at is None:
            return self.retention_days
        now = now or self.clock()
        elapsed = max(now - record.deleted_at, timedelta(0))
        return max(self.retention_days - elapsed.days, 0)

    # ==================== Advisory locking ====================

    def _lock_is_free_for(self, editor_id: str, now):
        stale_before = now - self.lock_ttl
        return or_(
            ReviewSession.locked_by.is_(None),
            ReviewSession.locked_by == editor_id,  # Re-acquire refreshes
            ReviewSession.locked_at.is_(None),
            ReviewSession.locked_at < stale_before,  # Stale lock, reclaimable
        )

    async def acquire_lock(self, session_id: str, editor_id: str) -> ReviewSession:
        """
        Take (or refresh) the advisory lock for editor_id.

        Expiry is evaluated here, lazily: a stale lock stays visible until
        someone next tries to acquire it.

        Raises:
            SessionNotFoundError: unknown or soft-deleted session
            SessionLockedError: another editor holds a live lock
        """
        now = self.clock()
        stmt = (
            update(ReviewSession)
            .where(
                ReviewSession.session_id == session_id,
                ReviewSession.deleted_at.is_(None),
                self._lock_is_free_for(editor_id, now),
            )
            .values(locked_by=editor_id, locked_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()

        if result.rowcount == 0:
            current = await self._fetch(session_id)
            if current is None:
                raise SessionNotFoundError(session_id)
            logger.warning(
                f"🔒 {session_id} locked by {current.locked_by} since {current.locked_at}; "
                f"denied to {editor_id}"
            )
            raise SessionLockedError(
                session_id,
                current.locked_by or "another editor",
                current.locked_at
            )

        record = await self._fetch(session_id)
        if record is None:
            raise SessionNotFoundError(session_id)
        logger.info(f"🔐 {editor_id} holds lock on {session_id}")
        return record

    async def release_lock(self, session_id: str, editor_id: str) -> bool:
        """Clear the lock only if editor_id holds it; otherwise a no-op"""
        stmt = (
            update(ReviewSession)
            .where(
                ReviewSession.session_id == session_id,
                ReviewSession.locked_by == editor_id,
            )
            .values(locked_by=None, locked_at=None)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()

        if result.rowcount == 0:
            await self._require_exists(session_id, include_deleted=True)
            return False

        logger.info(f"🔓 {editor_id} released lock on {session_id}")
        return True

    async def refresh_lock(self, session_id: str, editor_id: str) -> bool:
        """Heartbeat: restamp locked_at only if editor_id holds the lock"""
        stmt = (
            update(ReviewSession)
            .where(
                ReviewSession.session_id == session_id,
                ReviewSession.locked_by == editor_id,
                ReviewSession.deleted_at.is_(None),
            )
            .values(locked_at=self.clock())
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()

        if result.rowcount == 0:
            await self._require_exists(session_id, include_deleted=False)
            return False
        return True
