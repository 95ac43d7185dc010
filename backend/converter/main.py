"""Main FastAPI application."""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from converter.config import settings
from converter.database import init_db

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Ensure logging output if Uvicorn hijacked the root logger but didn't set level/handlers as expected
if not logging.getLogger().handlers:
    console = logging.StreamHandler()
    console.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    logging.getLogger().addHandler(console)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("Starting conversion service...")

    settings.ensure_directories()
    await init_db()

    from converter.services.job_runner import job_runner
    from converter.services.job_store import job_store
    from converter.services.websocket_manager import websocket_manager

    # Push store writes to WebSocket subscribers
    job_store.set_publisher(websocket_manager)

    orphaned = await job_store.fail_orphaned("Interrupted by server restart")
    if orphaned:
        logger.warning(f"Marked {orphaned} interrupted jobs as failed")

    if not settings.engine_configured:
        logger.warning("Processing engine credentials are not set; new jobs will fail")

    yield

    logger.info("Shutting down conversion service...")
    await job_runner.shutdown()


# Create FastAPI app
app = FastAPI(
    title="Media Conversion Service",
    description="Upload media, pick a format and settings, download the converted file",
    version="1.0.0",
    lifespan=lifespan,
)

# Add GZip Middleware
app.add_middleware(GZipMiddleware, minimum_size=1000)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
from converter.routes import files, jobs, websocket  # noqa: E402

app.include_router(jobs.router, prefix="/api/jobs", tags=["jobs"])
app.include_router(files.router, prefix="/api/files", tags=["files"])
app.include_router(websocket.router, tags=["websocket"])


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    from converter.services.job_runner import job_runner
    from converter.services.websocket_manager import websocket_manager

    runner_status = job_runner.get_status()

    return {
        "status": "healthy",
        "active_jobs": runner_status["active_jobs"],
        "websocket_connections": websocket_manager.get_connection_count(),
        "engine_configured": settings.engine_configured,
    }


@app.get("/api/formats")
async def get_formats():
    """List supported output formats with their codec defaults."""
    from converter.formats import DEFAULT_TABLES

    formats = {}
    for fmt in sorted(DEFAULT_TABLES.supported_formats):
        defaults = DEFAULT_TABLES.codec_defaults.get(fmt, {})
        formats[fmt] = {
            "kind": "audio" if DEFAULT_TABLES.is_audio(fmt) else "video",
            "mime_type": DEFAULT_TABLES.mime_type(fmt),
            "video_codec": defaults.get("vcodec"),
            "audio_codec": defaults.get("acodec"),
            "container": DEFAULT_TABLES.container_overrides.get(fmt),
        }
    return {"formats": formats}


def run():
    """Serve the app with uvicorn."""
    import uvicorn

    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())


if __name__ == "__main__":
    run()
