"""Main application entry point."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from brickprice.api.routes import admin, products, refresh, tracking
from brickprice.config import settings
from brickprice.db.session import engine, init_db
from brickprice.logging_config import setup_logging
from brickprice.worker.scheduler import setup_scheduler
from brickprice.worker.tasks import task_runner

setup_logging()
logger = logging.getLogger(__name__)

# Global scheduler
scheduler = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global scheduler

    # Startup
    logger.info("Starting brickprice...")

    await init_db()
    await task_runner.initialize()

    if settings.scheduler_enabled:
        scheduler = setup_scheduler()
        scheduler.start()
        logger.info("Scheduler started")

    yield

    # Shutdown
    logger.info("Shutting down...")

    if scheduler:
        scheduler.shutdown()

    await task_runner.close()
    await engine.dispose()

    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="brickprice",
    description="LEGO set price tracking across Amazon and LEGO.com",
    version="0.1.0",
    lifespan=lifespan,
)

# Add Prometheus instrumentation
instrumentator = Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    excluded_handlers=["/metrics", "/health"],
)
instrumentator.instrument(app).expose(app, include_in_schema=True, tags=["monitoring"])

# Include API routes
app.include_router(refresh.router)
app.include_router(admin.router)
app.include_router(tracking.router)
app.include_router(products.router)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    uvicorn.run(
        "brickprice.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
