"""
Append-only activity log for session mutations
"""
import logging
from enum import Enum
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import utcnow
from ..models import SessionActivityLog

logger = logging.getLogger(__name__)


class ActivityAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    RESTORED = "restored"
    CONFLICT = "conflict"


class ActivityLogService:
    """Writes and reads audit rows"""
    
    @staticmethod
    async def log(
        db: AsyncSession,
        session_id: str,
        action: ActivityAction,
        user_id: Optional[str] = None,
        version: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> SessionActivityLog:
        entry = SessionActivityLog(
            session_id=session_id,
            user_id=user_id,
            action=ActivityAction(action).value,
            version=version,
            details=details,
            created_at=utcnow(),
        )
        db.add(entry)
        await db.commit()
        return entry
    
    @staticmethod
    async def log_safely(
        db: AsyncSession,
        session_id: str,
        action: ActivityAction,
        user_id: Optional[str] = None,
        version: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> bool:
        """
        Best-effort variant used after the primary operation has committed.
        A failure is logged and reported as False, never raised.
        """
        try:
            await ActivityLogService.log(db, session_id, action, user_id, version, details)
            return True
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"❌ Failed to log '{ActivityAction(action).value}' for {session_id}: {e}")
            return False
    
    @staticmethod
    async def list_for_session(db: AsyncSession, session_id: str) -> list[SessionActivityLog]:
        """Audit rows for one session, oldest first"""
        result = await db.execute(
            select(SessionActivityLog)
            .where(SessionActivityLog.session_id == session_id)
            .order_by(SessionActivityLog.created_at.asc(), SessionActivityLog.id)
        )
        return list(result.scalars().all())
