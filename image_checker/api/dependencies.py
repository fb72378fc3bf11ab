"""
Request-scoped dependencies for the session API
"""
import gzip
import zlib
from datetime import timedelta
from typing import Annotated, Mapping, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock, utcnow
from ..core.config import settings
from ..core.database import get_db
from ..schemas import SessionDocument
from ..services import DevicePayloadStore, SessionRepository

GZIP_MAGIC = b"\x1f\x8b"


def get_clock() -> Clock:
    return utcnow


def get_payload_store(request: Request) -> DevicePayloadStore:
    """Payload store attached to the app at construction time"""
    return request.app.state.payload_store


def get_session_repository(
    db: Annotated[AsyncSession, Depends(get_db)],
    clock: Annotated[Clock, Depends(get_clock)],
) -> SessionRepository:
    return SessionRepository(
        db,
        lock_ttl=timedelta(seconds=settings.LOCK_TTL_SECONDS),
        retention_days=settings.RETENTION_DAYS,
        clock=clock,
    )


def get_current_user(request: Request) -> Optional[str]:
    """
    Acting editor's identity, supplied by the authenticating proxy in a
    header (e.g. the signed-in user's email).
    """
    value = request.headers.get(settings.USER_HEADER)
    if value is None or not value.strip():
        return None
    return value.strip()


def require_current_user(
    user: Annotated[Optional[str], Depends(get_current_user)],
) -> str:
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {settings.USER_HEADER} header"
        )
    return user


def is_gzip_body(body: bytes, headers: Mapping[str, str]) -> bool:
    encoding = headers.get("content-encoding", "").lower()
    content_type = headers.get("content-type", "").split(";")[0].strip().lower()
    return encoding == "gzip" or content_type == "application/gzip" or body[:2] == GZIP_MAGIC


def decode_session_body(body: bytes, headers: Mapping[str, str]) -> SessionDocument:
    """
    Parse a save body that may be plain JSON or gzip-compressed JSON.
    
    The encoding is detected from Content-Encoding / Content-Type and, failing
    those, from the gzip magic bytes.
    """
    if is_gzip_body(body, headers):
        try:
            body = gzip.decompress(body)
        except (OSError, EOFError, zlib.error) as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid gzip body: {e}")
    
    try:
        return SessionDocument.model_validate_json(body)
    except ValidationError as e:
        raise RequestValidationError(e.errors(include_url=False, include_context=False))
