"""
FastAPI service for the Sales Navigator lead runner.

Exposes job control (create, stop, resume, run, delete, status), cookie
management and CSV download. One scheduler per process owns the browser;
it is built on startup from the validated settings.

Run with:
    uvicorn lead_runner.app:app --port 3000
"""

import logging
from datetime import datetime

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from lead_runner import __version__
from lead_runner.common.logger import setup_logging
from lead_runner.config import get_settings, validate_config_on_startup
from lead_runner.dependencies import get_scheduler, init_scheduler
from lead_runner.jobs.scheduler import Scheduler
from lead_runner.models import HealthResponse
from lead_runner.routes import cookies_router, jobs_router

logger = logging.getLogger(__name__)

settings = get_settings()
setup_logging(settings.log_level, settings.log_format)

app = FastAPI(title="Sales Navigator Lead Runner", version=__version__)

# Configure CORS using validated settings
if settings.cors_origins_list:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.include_router(jobs_router)
app.include_router(cookies_router)


@app.on_event("startup")
async def startup_scheduler():
    """Validate config, load job records and build the scheduler."""
    validated = validate_config_on_startup()
    scheduler = init_scheduler(validated)
    logger.info(f"Lead runner ready with {len(scheduler.list_jobs())} job(s)")


@app.on_event("shutdown")
async def shutdown_scheduler():
    """Pause the active job so its progress is persisted before exit."""
    try:
        scheduler = get_scheduler()
    except HTTPException:
        return
    await scheduler.shutdown()
    logger.info("Scheduler stopped")


@app.get("/health", response_model=HealthResponse)
async def health_check(scheduler: Scheduler = Depends(get_scheduler)) -> HealthResponse:
    """Health check endpoint for container orchestration."""
    return HealthResponse(
        status="healthy",
        running=scheduler.is_running,
        current_job_id=scheduler.current_job_id,
        timestamp=datetime.utcnow(),
    )
