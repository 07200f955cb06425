"""Main FastAPI application: import API plus the periodic import scheduler."""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routes import imports_router
from database.connection import DatabaseConnection
from database.repositories.import_run_repo import ImportRunRepository
from scheduler.lease import PipelineLease
from scheduler.pipeline import ImportPipeline
from scheduler.scheduler import ImportScheduler
from shared.config import settings
from shared.utils import get_utc_now
from shared.work_queue import RedisWorkQueue

logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup: refuse to serve without MongoDB and Redis
    connection = DatabaseConnection()
    await connection.connect()

    queue = RedisWorkQueue(connection.redis)
    run_repo = ImportRunRepository(connection.db)
    pipeline = ImportPipeline(queue, run_repo)
    scheduler = ImportScheduler(pipeline, PipelineLease(connection.redis))

    app.state.queue = queue
    app.state.run_repo = run_repo
    app.state.scheduler = scheduler

    if settings.scheduler_enabled:
        scheduler.start()

    yield

    # Shutdown
    await scheduler.stop()
    await connection.close()


# Create FastAPI app
app = FastAPI(
    title="Job Feed Importer",
    description="Imports job postings from RSS/Atom feeds through a Redis work queue into MongoDB",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    logger.error(f"Unhandled error on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "detail": str(exc)}
    )


# Include routers
app.include_router(imports_router)


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "timestamp": get_utc_now().isoformat()}


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": "Job Feed Importer",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_debug
    )
