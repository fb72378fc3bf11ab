"""
Main FastAPI application entry point
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from .api import register_exception_handlers, router
from .core import create_tables, engine, settings
from .services import DevicePayloadStore, MinioBlobStore, create_blob_store

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown"""
    # Startup
    logger.info("🚀 Starting session server...")
    
    await create_tables(engine)
    logger.info("✅ Database tables created/verified")
    
    backend = app.state.payload_store.backend
    if isinstance(backend, MinioBlobStore):
        backend.ensure_bucket_exists()
    
    logger.info(f"🌐 Server ready at http://{settings.SERVER_HOST}:{settings.SERVER_PORT}")
    logger.info(f"📖 API docs at http://{settings.SERVER_HOST}:{settings.SERVER_PORT}/docs")
    
    yield
    
    # Shutdown
    logger.info("🛑 Shutting down session server...")
    await engine.dispose()


def create_app(payload_store: Optional[DevicePayloadStore] = None) -> FastAPI:
    """Build the application; tests pass their own payload store"""
    app = FastAPI(
        title=settings.APP_TITLE,
        description=settings.APP_DESCRIPTION,
        version=settings.APP_VERSION,
        lifespan=lifespan
    )
    app.state.payload_store = payload_store or DevicePayloadStore(create_blob_store())
    
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    
    # Compress large list/load responses when the client accepts gzip
    app.add_middleware(GZipMiddleware, minimum_size=1000, compresslevel=6)
    
    register_exception_handlers(app)
    app.include_router(router)
    
    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "service": settings.APP_TITLE,
            "version": settings.APP_VERSION,
            "status": "running",
            "docs": "/docs",
            "health": "/health"
        }
    
    @app.get("/health")
    async def health():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "storage": settings.STORAGE_BACKEND
        }
    
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host=settings.SERVER_HOST,
        port=settings.SERVER_PORT,
        log_level=settings.LOG_LEVEL.lower()
    )
