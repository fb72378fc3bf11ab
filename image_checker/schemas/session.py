"""
Pydantic schemas for session API request/response validation
"""
from datetime import datetime
from typing import Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, computed_field

from .device import DeviceRecord


class SessionDocument(BaseModel):
    """Full session as saved by the client (request body of POST /sessions)"""
    model_config = ConfigDict(populate_by_name=True)
    
    session_id: str = Field(..., min_length=1, max_length=255)  # Client-generated UUID
    session_name: str = Field(..., min_length=1, max_length=255)
    filename: str = Field(..., min_length=1, max_length=255)
    total_rows: int = Field(0, ge=0)
    progress_percentage: float = Field(0.0, ge=0, le=100)
    current_batch: int = Field(1, ge=1)
    total_batches: int = Field(1, ge=0)
    completed_batches: list[int] = Field(default_factory=list)
    devices: list[DeviceRecord] = Field(default_factory=list)
    # Version the client last saw; the update is rejected if the row moved on
    version: int = Field(
        1,
        ge=1,
        validation_alias=AliasChoices("version", "_version"),
    )
    created_at: Optional[datetime] = None
    last_updated: Optional[datetime] = None


class SaveResponse(BaseModel):
    """Successful save"""
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    session_id: str
    version: int  # New version the client must send on its next save
    last_saved: datetime = Field(..., alias="lastSaved")


class SessionSummary(BaseModel):
    """Session metadata without the device payload"""
    model_config = ConfigDict(from_attributes=True)
    
    session_id: str
    session_name: str
    filename: str
    user_id: Optional[str]
    total_rows: int
    progress_percentage: float
    current_batch: int
    total_batches: int
    completed_batches: list[int]
    device_count: int
    completed_device_count: int
    version: int
    locked_by: Optional[str] = None
    locked_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @computed_field
    @property
    def last_updated(self) -> datetime:
        return self.updated_at


class DeletedSessionSummary(SessionSummary):
    """Entry in the recently deleted list"""
    days_remaining: int  # Days until the purge job removes it


class SessionListResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    sessions: list[SessionSummary]
    total: int
    user_id: Optional[str] = Field(None, alias="userId")


class DeletedSessionListResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    sessions: list[DeletedSessionSummary]
    total: int
    user_id: Optional[str] = Field(None, alias="userId")


class LoadedSession(SessionSummary):
    """Metadata merged with the device array fetched from the payload store"""
    blob_url: Optional[str] = None
    devices: list[DeviceRecord]


class SessionLoadResponse(BaseModel):
    success: bool = True
    session: LoadedSession


class SessionActionRequest(BaseModel):
    """Body of PATCH /sessions/{id}"""
    action: Literal["unlock", "refresh", "restore"]


class SessionActionResponse(BaseModel):
    success: bool = True
    session_id: str
    action: str
    applied: bool  # False when the call was an idempotent no-op


class DeleteResponse(BaseModel):
    success: bool = True
    session_id: str
    permanent: bool = False


class ErrorResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    error: str
    message: str


class ConflictResponse(ErrorResponse):
    """Version conflict: both numbers so the client can show 'yours N vs current M'"""
    error: str = "CONFLICT"
    current_version: int = Field(..., alias="currentVersion")
    attempted_version: int = Field(..., alias="attemptedVersion")


class LockedResponse(ErrorResponse):
    """Another editor holds a live advisory lock"""
    error: str = "LOCKED"
    locked_by: str = Field(..., alias="lockedBy")
    locked_at: Optional[datetime] = Field(None, alias="lockedAt")
