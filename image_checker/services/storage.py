"""
Blob storage backends for session payloads

Backends know nothing about devices or versions; they move bytes by path
and translate between paths and the URLs recorded on session rows.
"""
import asyncio
import logging
from functools import partial
from io import BytesIO
from typing import Optional, Protocol
from urllib.parse import quote, unquote, urlparse

from minio import Minio
from minio.error import S3Error

from ..core.config import settings

logger = logging.getLogger(__name__)


class BlobNotFoundError(KeyError):
    """No object stored at the requested path"""


class BlobStore(Protocol):
    """put/get/delete by path; put returns a durable URL"""

    async def put(self, path: str, data: bytes, content_type: str = "application/json") -> str: ...

    async def get(self, path: str) -> bytes: ...

    async def delete(self, path: str) -> None: ...

    def url_for(self, path: str) -> str: ...

    def path_from_url(self, url: str) -> str: ...


class MinioBlobStore:
    """
    Object storage backend using MinIO (S3-compatible).
    
    The minio client is blocking, so every call is pushed to the default
    executor to keep the event loop free for other requests.
    """
    
    def __init__(
        self,
        endpoint: str = settings.MINIO_ENDPOINT,
        access_key: str = settings.MINIO_ACCESS_KEY,
        secret_key: str = settings.MINIO_SECRET_KEY,
        bucket: str = settings.MINIO_BUCKET,
        secure: bool = settings.MINIO_SECURE,
        public_base_url: Optional[str] = None,
    ):
        self.client = Minio(
            endpoint,
            access_key=access_key,
            secret_key=secret_key,
            secure=secure
        )
        self.bucket = bucket
        scheme = "https" if secure else "http"
        base = public_base_url or settings.PAYLOAD_PUBLIC_BASE_URL or f"{scheme}://{endpoint}"
        self.base_url = base.rstrip("/")
        logger.info(f"🗄️  MinIO client initialized: {endpoint}/{self.bucket}")
    
    def ensure_bucket_exists(self):
        """Create bucket if it doesn't exist"""
        try:
            if not self.client.bucket_exists(self.bucket):
                self.client.make_bucket(self.bucket)
                logger.info(f"✅ Created MinIO bucket: {self.bucket}")
            else:
                logger.info(f"✅ MinIO bucket exists: {self.bucket}")
        except S3Error as e:
            logger.error(f"❌ Failed to create bucket: {e}")
            raise
    
    async def _run(self, func, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args, **kwargs))
    
    async def put(self, path: str, data: bytes, content_type: str = "application/json") -> str:
        await self._run(
            self.client.put_object,
            self.bucket,
            path,
            BytesIO(data),
            length=len(data),
            content_type=content_type
        )
        logger.info(f"📤 Uploaded {len(data)} bytes to {path}")
        return self.url_for(path)
    
    def _read_object(self, path: str) -> bytes:
        response = self.client.get_object(self.bucket, path)
        try:
            return response.read()
        finally:
            response.close()
            response.release_conn()
    
    async def get(self, path: str) -> bytes:
        try:
            content = await self._run(self._read_object, path)
        except S3Error as e:
            if e.code == "NoSuchKey":
                raise BlobNotFoundError(path) from e
            raise
        logger.info(f"📥 Downloaded {len(content)} bytes from {path}")
        return content
    
    async def delete(self, path: str) -> None:
        await self._run(self.client.remove_object, self.bucket, path)
        logger.info(f"🗑️  Deleted {path}")
    
    def url_for(self, path: str) -> str:
        # Object keys may hold "?" or "#" (they embed client session ids)
        return f"{self.base_url}/{self.bucket}/{quote(path, safe='/')}"
    
    def path_from_url(self, url: str) -> str:
        # URL: {base}/{bucket}/{path}
        object_path = unquote(urlparse(url).path).lstrip("/")
        prefix = f"{self.bucket}/"
        if object_path.startswith(prefix):
            object_path = object_path[len(prefix):]
        return object_path


class InMemoryBlobStore:
    """Process-local backend for development and tests"""
    
    def __init__(self, bucket: str = "image-checker"):
        self.bucket = bucket
        self.objects: dict[str, bytes] = {}
    
    async def put(self, path: str, data: bytes, content_type: str = "application/json") -> str:
        self.objects[path] = bytes(data)
        return self.url_for(path)
    
    async def get(self, path: str) -> bytes:
        try:
            return self.objects[path]
        except KeyError:
            raise BlobNotFoundError(path) from None
    
    async def delete(self, path: str) -> None:
        self.objects.pop(path, None)
    
    def url_for(self, path: str) -> str:
        return f"memory://{self.bucket}/{quote(path, safe='/')}"
    
    def path_from_url(self, url: str) -> str:
        return unquote(urlparse(url).path).lstrip("/")


def create_blob_store(backend: str = settings.STORAGE_BACKEND):
    """Build the configured backend"""
    if backend == "memory":
        logger.warning("⚠️ Using in-memory payload storage; payloads are lost on restart")
        return InMemoryBlobStore(bucket=settings.MINIO_BUCKET)
    if backend == "minio":
        return MinioBlobStore()
    raise ValueError(f"Unknown storage backend: {backend}")
