"""
Database connection and session management
"""
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import settings

# SQLite (local dev/tests) does not take pool sizing arguments
_pool_kwargs = {} if settings.is_sqlite else {
    "pool_size": settings.DB_POOL_SIZE,
    "max_overflow": settings.DB_MAX_OVERFLOW,
    "pool_pre_ping": True,
}


def enable_sqlite_foreign_keys(bind: AsyncEngine) -> None:
    """SQLite ignores FOREIGN KEY (and ON DELETE CASCADE) unless asked per connection"""
    if bind.dialect.name != "sqlite":
        return

    @event.listens_for(bind.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


# Create async engine
engine = create_async_engine(settings.DATABASE_URL, echo=False, **_pool_kwargs)
enable_sqlite_foreign_keys(engine)

# Session maker
async_session_maker = async_sessionmaker(
    engine, 
    class_=AsyncSession, 
    expire_on_commit=False
)


async def get_db():
    """Dependency for getting database session"""
    async with async_session_maker() as session:
        yield session


async def create_tables(bind: AsyncEngine = engine) -> None:
    """Create the session tables if they are missing"""
    from ..models import Base

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
