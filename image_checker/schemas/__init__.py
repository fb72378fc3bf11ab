"""Schemas module exports"""
from .device import COMPLETED_STATUSES, DeviceRecord, DeviceStatus, count_completed
from .session import (
    ConflictResponse,
    DeletedSessionListResponse,
    DeletedSessionSummary,
    DeleteResponse,
    ErrorResponse,
    LoadedSession,
    LockedResponse,
    SaveResponse,
    SessionActionRequest,
    SessionActionResponse,
    SessionDocument,
    SessionListResponse,
    SessionLoadResponse,
    SessionSummary,
)

__all__ = [
    "COMPLETED_STATUSES",
    "DeviceRecord",
    "DeviceStatus",
    "count_completed",
    "ConflictResponse",
    "DeletedSessionListResponse",
    "DeletedSessionSummary",
    "DeleteResponse",
    "ErrorResponse",
    "LoadedSession",
    "LockedResponse",
    "SaveResponse",
    "SessionActionRequest",
    "SessionActionResponse",
    "SessionDocument",
    "SessionListResponse",
    "SessionLoadResponse",
    "SessionSummary",
]
