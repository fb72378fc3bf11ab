"""
Database models for review sessions and their audit trail

The device array itself never lives in these tables: it is written to the
blob payload store and referenced by `blob_url`. Rows stay small so that
listing, locking and the version compare-and-swap are cheap.
"""
from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

from sqlalchemy import JSON, Float, ForeignKey, Index, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ..core.clock import utcnow


class Base(DeclarativeBase):
    """Base class for all models"""
    pass


class ReviewSession(Base):
    """
    One review/checking unit of work over a batch of device records.
    
    Concurrency control:
    - version: starts at 1, bumped by exactly 1 per successful update (CAS)
    - locked_by / locked_at: advisory edit lock, stale after the lock TTL
    - deleted_at: soft delete marker, purged after the retention window
    """
    __tablename__ = "sessions"
    
    # Surrogate key (UUID for distributed generation) + client-generated identity
    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4())
    )
    session_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    
    # Descriptive
    session_name: Mapped[str] = mapped_column(String(255), nullable=False)
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        index=True,
        comment="Owner email, nullable for rows created without an identity"
    )
    
    # Progress aggregates
    total_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    progress_percentage: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    current_batch: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    total_batches: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    completed_batches: Mapped[list[int]] = mapped_column(JSON, nullable=False, default=list)
    
    # Payload pointer
    blob_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    
    # Denormalized counts, recomputed by the writer on every save
    device_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_device_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    
    # Version tracking (optimistic concurrency control)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    
    # Advisory lock
    locked_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    locked_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    
    # Soft delete
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, index=True)
    
    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    
    __table_args__ = (
        Index('idx_sessions_active_updated', 'deleted_at', 'updated_at'),  # Active listing
    )
    
    def __repr__(self):
        return f"<ReviewSession session_id={self.session_id} v{self.version} locked_by={self.locked_by}>"


class SessionActivityLog(Base):
    """
    Append-only audit record of session mutations.
    
    Rows are never updated; they disappear only when the parent session row
    is hard-deleted (cascade).
    """
    __tablename__ = "session_activity_log"
    
    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4())
    )
    session_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey('sessions.session_id', ondelete='CASCADE'),
        nullable=False,
        index=True
    )
    user_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    version: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    # "metadata" is reserved on declarative classes
    details: Mapped[Optional[dict[str, Any]]] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False, index=True)
    
    def __repr__(self):
        return f"<SessionActivityLog session_id={self.session_id} {self.action} v{self.version}>"
