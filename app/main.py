"""
Feishu File Sync - Main FastAPI Application

Stages files sent to a Feishu bot for pickup by a phone app:
- Feishu event callbacks (file messages are downloaded and staged)
- Sync pull API (list pending, download, report status)
- Storage housekeeping (expiry of stale files, orphan cleanup)
"""

import asyncio
from contextlib import asynccontextmanager, suppress
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
import sys

from app.utils.config import get_settings
from app.utils.errors import FileSyncError
from app.utils.feishu_client import get_feishu_client, close_feishu_client
from app.api import health, sync, feishu, admin
from domains.file_sync.dedup import EventDedupCache
from domains.file_sync.pipeline import FileIngestionPipeline
from domains.file_sync.store import FileRecordStore
from domains.file_sync.sweeper import StorageSweeper


# Configure logging
settings = get_settings()
logger.remove()
logger.add(
    sys.stdout,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
    level=settings.log_level.upper()
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings = get_settings()
    logger.info(f"Starting {settings.api_title} v{settings.api_version}")

    store = FileRecordStore(settings.get_media_dir(), settings.get_state_file())
    await store.initialize()
    logger.success(f"File store ready with {len(store)} records at {settings.data_root}")

    dedup = EventDedupCache(window_seconds=settings.dedup_window_seconds)

    pipeline = None
    if settings.has_feishu_credentials():
        pipeline = FileIngestionPipeline(
            store=store,
            dedup=dedup,
            client=get_feishu_client(),
            staging_dir=settings.get_staging_dir(),
            fetch_timeout=settings.fetch_timeout_seconds,
        )
        pipeline.initialize()
        logger.success("Feishu ingestion enabled")
    else:
        logger.warning("Feishu App ID or App Secret is not set, ingestion disabled")

    sweeper = StorageSweeper(
        store=store,
        staging_dir=settings.get_staging_dir(),
        expiry_hours=settings.file_expiry_hours,
        staging_grace_seconds=settings.staging_grace_seconds,
    )

    app.state.store = store
    app.state.dedup = dedup
    app.state.pipeline = pipeline
    app.state.sweeper = sweeper

    sweep_task = None
    if settings.sweep_interval_seconds > 0:
        sweep_task = asyncio.create_task(sweeper.run_forever(settings.sweep_interval_seconds))

    yield

    # Cleanup
    logger.info("Shutting down application...")
    if sweep_task is not None:
        sweep_task.cancel()
        with suppress(asyncio.CancelledError):
            await sweep_task
    if pipeline is not None:
        await close_feishu_client()
    logger.success("Application shut down complete")


# Create FastAPI app
app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description="Stages files received over Feishu for pickup by a remote puller",
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Exception handlers
@app.exception_handler(FileSyncError)
async def file_sync_exception_handler(request: Request, exc: FileSyncError):
    """Structured errors raised by the store, pipeline and routers."""
    if exc.status_code >= 500:
        logger.error(f"{exc.error_code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are reported as invalid input."""
    problems = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg')}"
        for err in exc.errors()
    )
    return JSONResponse(
        status_code=422,
        content={"error": "invalid_input", "detail": problems or "Invalid request"}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    logger.error(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc) if settings.log_level == "DEBUG" else "An error occurred"
        }
    )


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(sync.router, prefix="/sync", tags=["Sync"])
app.include_router(feishu.router, prefix="/feishu", tags=["Feishu"])
app.include_router(admin.router, prefix="/admin", tags=["Admin"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "Feishu File Sync",
        "version": settings.api_version,
        "status": "operational",
        "docs": "/docs",
        "health": "/health"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=settings.api_port,
        reload=True,
        log_level=settings.log_level.lower()
    )
