"""Services module exports"""
from .activity_log import ActivityAction, ActivityLogService
from .errors import (
    DuplicateSessionError,
    OptimisticLockConflict,
    PayloadStoreError,
    PayloadValidationError,
    SessionError,
    SessionLockedError,
    SessionNotFoundError,
)
from .payload import DevicePayloadStore
from .session_repository import DeletedSession, SessionRepository
from .storage import BlobNotFoundError, BlobStore, InMemoryBlobStore, MinioBlobStore, create_blob_store

__all__ = [
    "ActivityAction",
    "ActivityLogService",
    "DuplicateSessionError",
    "OptimisticLockConflict",
    "PayloadStoreError",
    "PayloadValidationError",
    "SessionError",
    "SessionLockedError",
    "SessionNotFoundError",
    "DevicePayloadStore",
    "DeletedSession",
    "SessionRepository",
    "BlobNotFoundError",
    "BlobStore",
    "InMemoryBlobStore",
    "MinioBlobStore",
    "create_blob_store",
]
