import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from labsync.config.database import Base, engine
from labsync.config.settings import settings
from labsync.core.errors import register_exception_handlers
from labsync.core.middleware import setup_logging, setup_middleware
from labsync.core.scheduler import start_purge_task
from labsync.api.v1.router import api_router
from labsync.shared.database import models  # noqa: F401  registra las tablas en Base

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    setup_logging()
    logger.info(f"LabSync API starting, version {settings.version}")
    logger.info(f"Environment: {'Development' if settings.debug else 'Production'}")

    if settings.auto_create_db:
        Base.metadata.create_all(bind=engine)

    purge_task = start_purge_task() if settings.enable_purge_job else None

    yield

    # Shutdown
    if purge_task:
        purge_task.cancel()
        try:
            await purge_task
        except asyncio.CancelledError:
            pass
    logger.info("LabSync API shutting down")

# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    description="Préstamo e inventario de material de laboratorio",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan
)

# Setup middleware
setup_middleware(app)
register_exception_handlers(app)

# Include routers
app.include_router(api_router, prefix="/api/v1")

# Root endpoint
@app.get("/")
async def root():
    return {
        "message": "LabSync API - Préstamo de material de laboratorio",
        "version": settings.version,
        "status": "running",
        "docs": "/docs" if settings.debug else "Disabled in production",
        "api": "/api/v1"
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "labsync.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
