"""
Device array payload store

Wraps a blob backend with the device schema: arrays are validated on the
way in and on the way out, and every backend failure surfaces as a
PayloadStoreError so the API can treat it as fatal for the request.

Each save attempt writes its own object under the session's prefix. A save
that then loses the version check leaves an unreferenced object instead of
clobbering the payload the winning save points at; callers discard the
loser's object (and the superseded one after a win) with `discard`.
"""
import logging
from typing import Any, Iterable, Optional, Union
from uuid import uuid4

from pydantic import TypeAdapter, ValidationError

from ..schemas.device import DeviceRecord
from .errors import PayloadStoreError, PayloadValidationError
from .storage import BlobNotFoundError, BlobStore

logger = logging.getLogger(__name__)

_devices_adapter = TypeAdapter(list[DeviceRecord])


class DevicePayloadStore:
    """Reads and writes device arrays, one live object per session"""
    
    def __init__(self, backend: BlobStore):
        self.backend = backend
    
    @staticmethod
    def path_for(session_id: str, token: str) -> str:
        """sessions/{session_id}/devices-{token}.json"""
        return f"sessions/{session_id}/devices-{token}.json"
    
    async def write_devices(
        self,
        session_id: str,
        devices: Iterable[Union[DeviceRecord, dict[str, Any]]]
    ) -> str:
        """Validate and upload the full device array. Returns the blob URL."""
        try:
            records = _devices_adapter.validate_python(
                [d.model_dump() if isinstance(d, DeviceRecord) else d for d in devices]
            )
        except ValidationError as e:
            raise PayloadValidationError(f"Invalid device array for {session_id}: {e}") from e
        
        data = _devices_adapter.dump_json(records)
        path = self.path_for(session_id, uuid4().hex)
        try:
            url = await self.backend.put(path, data, content_type="application/json")
        except Exception as e:
            logger.error(f"❌ Payload upload failed for {session_id}: {e}")
            raise PayloadStoreError(f"Failed to upload payload for {session_id}") from e
        
        logger.info(f"📦 Stored {len(records)} devices for {session_id} ({len(data)} bytes)")
        return url
    
    async def read_devices(self, blob_url: Optional[str]) -> list[DeviceRecord]:
        """Fetch and validate the device array behind a blob URL"""
        if not blob_url:
            return []
        
        path = self.backend.path_from_url(blob_url)
        try:
            data = await self.backend.get(path)
        except BlobNotFoundError as e:
            raise PayloadStoreError(f"Payload missing at {path}") from e
        except Exception as e:
            logger.error(f"❌ Payload fetch failed for {path}: {e}")
            raise PayloadStoreError(f"Failed to fetch payload at {path}") from e
        
        try:
            return _devices_adapter.validate_json(data)
        except ValidationError as e:
            raise PayloadValidationError(f"Stored payload at {path} is malformed: {e}") from e
    
    async def delete_blob(self, blob_url: str) -> None:
        path = self.backend.path_from_url(blob_url)
        try:
            await self.backend.delete(path)
        except Exception as e:
            raise PayloadStoreError(f"Failed to delete payload at {path}") from e
    
    async def discard(self, blob_url: Optional[str]) -> bool:
        """Best-effort delete of an unreferenced payload; failures are only logged"""
        if not blob_url:
            return False
        try:
            await self.delete_blob(blob_url)
            return True
        except PayloadStoreError as e:
            logger.warning(f"⚠️ Could not discard payload {blob_url}: {e.__cause__ or e}")
            return False
