"""
Maps repository errors to HTTP responses
"""
import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from ..schemas import ConflictResponse, ErrorResponse, LockedResponse
from ..services import (
    DuplicateSessionError,
    OptimisticLockConflict,
    PayloadStoreError,
    SessionLockedError,
    SessionNotFoundError,
)

logger = logging.getLogger(__name__)


async def session_not_found_handler(_: Request, exc: SessionNotFoundError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content=ErrorResponse(error="NOT_FOUND", message=str(exc)).model_dump()
    )


async def optimistic_lock_conflict_handler(_: Request, exc: OptimisticLockConflict) -> JSONResponse:
    body = ConflictResponse(
        message=str(exc),
        current_version=exc.current_version,
        attempted_version=exc.attempted_version
    )
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content=body.model_dump(by_alias=True)
    )


async def session_locked_handler(_: Request, exc: SessionLockedError) -> JSONResponse:
    body = LockedResponse(
        message=str(exc),
        locked_by=exc.locked_by,
        locked_at=exc.locked_at
    )
    return JSONResponse(
        status_code=status.HTTP_423_LOCKED,
        content=body.model_dump(mode="json", by_alias=True)
    )


async def duplicate_session_handler(_: Request, exc: DuplicateSessionError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content=ErrorResponse(error="DUPLICATE", message=str(exc)).model_dump()
    )


async def payload_store_error_handler(_: Request, exc: PayloadStoreError) -> JSONResponse:
    logger.error(f"❌ Payload store failure: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(error="PAYLOAD_STORE_FAILURE", message=str(exc)).model_dump()
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SessionNotFoundError, session_not_found_handler)
    app.add_exception_handler(OptimisticLockConflict, optimistic_lock_conflict_handler)
    app.add_exception_handler(SessionLockedError, session_locked_handler)
    app.add_exception_handler(DuplicateSessionError, duplicate_session_handler)
    app.add_exception_handler(PayloadStoreError, payload_store_error_handler)
