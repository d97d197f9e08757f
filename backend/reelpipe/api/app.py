"""FastAPI application setup with lifespan and exception handlers."""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from reelpipe import __version__, validate_dependencies
from reelpipe.config import settings
from reelpipe.db import init_database, shutdown
from reelpipe.services.temp_files import get_temp_manager
from reelpipe.api.routes import current_orchestrator, router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager.

    Startup:
        - Validate system dependencies (ffmpeg, ffprobe)
        - Initialize database schema
        - Reclaim temp files orphaned by a previous process

    Shutdown:
        - Release every tracked temp file
        - Close service HTTP clients and database connections
    """
    logger.info("Starting Reel Pipeline API...")
    validate_dependencies()
    await init_database()
    get_temp_manager().reclaim_orphans()
    logger.info("API startup complete")

    yield

    logger.info("Shutting down Reel Pipeline API...")
    get_temp_manager().release_all()
    orchestrator = current_orchestrator()
    if orchestrator is not None:
        await orchestrator.services.aclose()
    await shutdown()
    logger.info("API shutdown complete")


app = FastAPI(
    title="Reel Pipeline API",
    version=__version__,
    lifespan=lifespan,
)

app.include_router(router)

# Finished reels, served at storage.public_base_url
settings.storage.output_dir.mkdir(parents=True, exist_ok=True)
app.mount("/media", StaticFiles(directory=str(settings.storage.output_dir)), name="media")


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Catch-all exception handler to prevent stack traces in API responses."""
    logger.error(f"Unhandled exception in {request.method} {request.url.path}: {type(exc).__name__}: {str(exc)}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc),
        }
    )
