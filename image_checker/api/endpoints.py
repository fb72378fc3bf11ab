"""
FastAPI endpoints for review session persistence
"""
import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from ..core.config import settings
from ..schemas import (
    DeletedSessionListResponse,
    DeletedSessionSummary,
    DeleteResponse,
    LoadedSession,
    SaveResponse,
    SessionActionRequest,
    SessionActionResponse,
    SessionListResponse,
    SessionLoadResponse,
    SessionSummary,
)
from ..services import (
    ActivityAction,
    ActivityLogService,
    DevicePayloadStore,
    OptimisticLockConflict,
    SessionError,
    SessionRepository,
)
from .dependencies import (
    decode_session_body,
    get_current_user,
    get_payload_store,
    get_session_repository,
    require_current_user,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions", tags=["sessions"])

Repository = Annotated[SessionRepository, Depends(get_session_repository)]
PayloadStore = Annotated[DevicePayloadStore, Depends(get_payload_store)]
CurrentUser = Annotated[Optional[str], Depends(get_current_user)]


@router.post("", response_model=SaveResponse)
async def save_session(
    request: Request,
    repo: Repository,
    payload_store: PayloadStore,
    user: CurrentUser,
):
    """
    Save the full session (plain or gzip JSON).

    Flow:
    1. Upload the device array to the payload store
    2. Create the row (first save) or compare-and-swap it against the
       version the client sent
    3. Append an activity entry (best-effort)

    A lost compare-and-swap returns 409 with both versions.
    """
    document = decode_session_body(await request.body(), request.headers)
    logger.info(
        f"📤 Save {document.session_id}: {len(document.devices)} devices, "
        f"expected v{document.version}, user={user}"
    )

    blob_url = await payload_store.write_devices(document.session_id, document.devices)
    existing = await repo.find(document.session_id, include_deleted=True)
    # Snapshot before the update reloads the same identity-mapped row
    previous_version = existing.version if existing is not None else None
    previous_blob_url = existing.blob_url if existing is not None else None

    try:
        if existing is None:
            record = await repo.create(document, blob_url, owner_id=user)
            action = ActivityAction.CREATED
        else:
            record = await repo.update(document, blob_url, expected_version=document.version)
            action = ActivityAction.UPDATED
    except OptimisticLockConflict as e:
        await payload_store.discard(blob_url)
        await ActivityLogService.log_safely(
            repo.db,
            document.session_id,
            ActivityAction.CONFLICT,
            user_id=user,
            version=document.version,
            details={
                "attempted_version": e.attempted_version,
                "current_version": e.current_version,
            }
        )
        raise
    except SessionError:
        await payload_store.discard(blob_url)
        raise

    # The replaced payload is only known for certain when the row we read is
    # the one the compare-and-swap replaced
    if previous_version == document.version and previous_blob_url != blob_url:
        await payload_store.discard(previous_blob_url)

    if action == ActivityAction.UPDATED and user:
        await repo.refresh_lock(record.session_id, user)

    await ActivityLogService.log_safely(
        repo.db,
        record.session_id,
        action,
        user_id=user,
        version=record.version,
        details={
            "device_count": record.device_count,
            "progress": record.progress_percentage,
        }
    )

    return SaveResponse(
        session_id=record.session_id,
        version=record.version,
        last_saved=record.updated_at
    )


@router.get("", response_model=SessionListResponse)
async def list_sessions(
    repo: Repository,
    user: CurrentUser,
    limit: int = Query(settings.DEFAULT_LIST_LIMIT, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    owner: Optional[str] = Query(None, description="Only sessions owned by this user"),
):
    """List active sessions, most recently updated first (all owners by default)"""
    records = await repo.list_sessions(owner_id=owner, limit=limit, offset=offset)
    logger.info(f"📋 Listed {len(records)} sessions")

    return SessionListResponse(
        sessions=[SessionSummary.model_validate(r) for r in records],
        total=len(records),
        user_id=user
    )


@router.get("/deleted", response_model=DeletedSessionListResponse)
async def list_deleted_sessions(
    repo: Repository,
    user: CurrentUser,
    limit: int = Query(settings.DEFAULT_LIST_LIMIT, ge=1, le=1000),
    owner: Optional[str] = Query(None),
):
    """Recently deleted sessions with days remaining before the purge"""
    entries = await repo.list_deleted(owner_id=owner, limit=limit)
    logger.info(f"📋 Listed {len(entries)} deleted sessions")

    sessions = [
        DeletedSessionSummary(
            **SessionSummary.model_validate(entry.record).model_dump(),
            days_remaining=entry.days_remaining
        )
        for entry in entries
    ]
    return DeletedSessionListResponse(sessions=sessions, total=len(sessions), user_id=user)


@router.get("/{session_id}", response_model=SessionLoadResponse)
async def load_session(
    session_id: str,
    repo: Repository,
    payload_store: PayloadStore,
    user: Annotated[str, Depends(require_current_user)],
):
    """
    Load a session for editing.

    Loading takes the advisory lock for the caller; if another editor holds
    a live lock the load fails with 423 and no data is returned.
    """
    logger.info(f"📥 Load {session_id} by {user}")
    record = await repo.acquire_lock(session_id, user)
    devices = await payload_store.read_devices(record.blob_url)

    loaded = LoadedSession(
        **SessionSummary.model_validate(record).model_dump(),
        blob_url=record.blob_url,
        devices=devices
    )
    return SessionLoadResponse(session=loaded)


@router.patch("/{session_id}", response_model=SessionActionResponse)
async def session_action(
    session_id: str,
    body: SessionActionRequest,
    repo: Repository,
    user: CurrentUser,
):
    """unlock / refresh the caller's lock, or restore a soft-deleted session"""
    logger.info(f"🔧 {body.action} {session_id} by {user}")

    if body.action == "restore":
        applied = await repo.restore(session_id)
        if applied:
            record = await repo.get(session_id)
            await ActivityLogService.log_safely(
                repo.db, session_id, ActivityAction.RESTORED, user_id=user, version=record.version
            )
        return SessionActionResponse(session_id=session_id, action=body.action, applied=applied)

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {settings.USER_HEADER} header"
        )

    if body.action == "unlock":
        applied = await repo.release_lock(session_id, user)
    else:
        applied = await repo.refresh_lock(session_id, user)
    return SessionActionResponse(session_id=session_id, action=body.action, applied=applied)


@router.delete("/{session_id}", response_model=DeleteResponse)
async def delete_session(
    session_id: str,
    repo: Repository,
    payload_store: PayloadStore,
    user: CurrentUser,
    permanent: bool = Query(False, description="Skip the recovery window"),
):
    """Soft delete (recoverable for the retention window) or permanent delete"""
    logger.info(f"🗑️  DELETE {session_id} permanent={permanent} by {user}")

    if permanent:
        record = await repo.get(session_id, include_deleted=True)
        await repo.permanently_delete(session_id)
        await payload_store.discard(record.blob_url)
        return DeleteResponse(session_id=session_id, permanent=True)

    if await repo.delete(session_id):
        record = await repo.get(session_id, include_deleted=True)
        await ActivityLogService.log_safely(
            repo.db, session_id, ActivityAction.DELETED, user_id=user, version=record.version
        )
    return DeleteResponse(session_id=session_id)
