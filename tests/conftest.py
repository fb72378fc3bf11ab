"""
Shared fixtures: a throwaway SQLite database per test, an in-memory payload
store, a controllable clock and an in-process HTTP client.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("STORAGE_BACKEND", "memory")

from datetime import datetime, timedelta
from uuid import uuid4

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from image_checker.api.dependencies import get_clock
from image_checker.core.database import create_tables, enable_sqlite_foreign_keys, get_db
from image_checker.main import create_app
from image_checker.schemas import SessionDocument
from image_checker.services import DevicePayloadStore, InMemoryBlobStore, SessionRepository

LOCK_TTL = timedelta(minutes=5)
RETENTION_DAYS = 14


class FakeClock:
    """Naive-UTC clock that only moves when told to"""

    def __init__(self, start: datetime = datetime(2024, 3, 1, 9, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def make_devices(count: int, completed: int = 0) -> list[dict]:
    devices = []
    for i in range(count):
        devices.append({
            "product_name": f"Device {i + 1}",
            "manufacturer": "Acme Medical",
            "manuf_number": f"AM-{1000 + i}",
            "image_url": f"https://img.example.com/{i + 1}.jpg",
            "manual_url": f"https://docs.example.com/{i + 1}.pdf",
            "status": "approved" if i < completed else "pending",
        })
    return devices


def make_document(session_id: str = None, devices: list[dict] = None, version: int = 1, **fields) -> dict:
    devices = make_devices(3) if devices is None else devices
    return {
        "session_id": session_id or str(uuid4()),
        "session_name": fields.pop("session_name", "Cardiology batch"),
        "filename": fields.pop("filename", "cardiology.csv"),
        "total_rows": len(devices),
        "progress_percentage": 0.0,
        "current_batch": 1,
        "total_batches": max(1, (len(devices) + 9) // 10),
        "completed_batches": [],
        "devices": devices,
        "version": version,
        **fields,
    }


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'sessions.db'}")
    enable_sqlite_foreign_keys(engine)
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def repo(db, clock) -> SessionRepository:
    return SessionRepository(db, lock_ttl=LOCK_TTL, retention_days=RETENTION_DAYS, clock=clock)


@pytest.fixture
def blob_backend() -> InMemoryBlobStore:
    return InMemoryBlobStore(bucket="test-bucket")


@pytest.fixture
def payload_store(blob_backend) -> DevicePayloadStore:
    return DevicePayloadStore(blob_backend)


@pytest.fixture
def app(session_maker, clock, payload_store):
    app = create_app(payload_store=payload_store)

    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    return app


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def document_factory():
    """Build a validated SessionDocument"""
    def factory(**kwargs) -> SessionDocument:
        return SessionDocument.model_validate(make_document(**kwargs))
    return factory
