"""
Job Endpoints

Thin HTTP layer over the scheduler:
- POST /api/scrape: create and start a job
- POST /api/stop, POST /api/resume: pause / resume the current job
- GET /api/status: runner status and current job
- GET /api/jobs: all jobs, newest first
- POST /api/jobs/{job_id}/run, POST /api/jobs/{job_id}/stop, DELETE /api/jobs/{job_id}
- GET /api/jobs/{job_id}/download: the job's CSV
"""

import logging
from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse

from lead_runner.auth import verify_token
from lead_runner.common.error_handling import (
    CredentialMissingError,
    InvalidJobRequestError,
    JobConflictError,
    JobNotFoundError,
)
from lead_runner.dependencies import get_scheduler
from lead_runner.jobs.scheduler import Scheduler
from lead_runner.models import (
    JobActionResponse,
    JobListResponse,
    JobResponse,
    MessageResponse,
    ScrapeRequest,
    ScrapeResponse,
    StatusResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["jobs"])


def _to_http(e: Exception) -> HTTPException:
    if isinstance(e, JobNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, JobConflictError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, CredentialMissingError):
        return HTTPException(status_code=400, detail="LinkedIn cookie not found. Please save your cookie first.")
    return HTTPException(status_code=400, detail=str(e))


@router.post("/scrape", response_model=ScrapeResponse, dependencies=[Depends(verify_token)])
async def start_scrape(request: ScrapeRequest, scheduler: Scheduler = Depends(get_scheduler)) -> ScrapeResponse:
    try:
        job = await scheduler.create_job(request.url, request.list_name)
    except (InvalidJobRequestError, CredentialMissingError) as e:
        raise _to_http(e)
    return ScrapeResponse(message="Scrape started", job_id=job.id, file_name=job.file_name)


@router.post("/stop", response_model=JobActionResponse, dependencies=[Depends(verify_token)])
async def stop_current(scheduler: Scheduler = Depends(get_scheduler)) -> JobActionResponse:
    try:
        job = scheduler.request_pause()
    except (InvalidJobRequestError, JobNotFoundError) as e:
        raise _to_http(e)
    return JobActionResponse(message="Scrape will pause shortly.", job=JobResponse.from_job(job))


@router.post("/resume", response_model=JobActionResponse, dependencies=[Depends(verify_token)])
async def resume_current(scheduler: Scheduler = Depends(get_scheduler)) -> JobActionResponse:
    try:
        job = await scheduler.resume_current()
    except (InvalidJobRequestError, JobNotFoundError, JobConflictError) as e:
        raise _to_http(e)
    return JobActionResponse(message="Scrape resumed", job=JobResponse.from_job(job))


@router.get("/status", response_model=StatusResponse)
async def get_status(scheduler: Scheduler = Depends(get_scheduler)) -> StatusResponse:
    status = scheduler.get_status()
    job = status["job"]
    return StatusResponse(
        running=status["running"],
        paused=status["paused"],
        current_job_id=status["current_job_id"],
        job=JobResponse.from_job(job) if job else None,
    )


@router.get("/jobs", response_model=JobListResponse)
async def list_jobs(scheduler: Scheduler = Depends(get_scheduler)) -> JobListResponse:
    return JobListResponse(jobs=[JobResponse.from_job(j) for j in scheduler.list_jobs()])


@router.post("/jobs/{job_id}/run", response_model=JobActionResponse, dependencies=[Depends(verify_token)])
async def run_job(job_id: str, scheduler: Scheduler = Depends(get_scheduler)) -> JobActionResponse:
    try:
        job = await scheduler.run_job(job_id)
    except (JobNotFoundError, JobConflictError) as e:
        raise _to_http(e)
    return JobActionResponse(message="Job started.", job=JobResponse.from_job(job))


@router.post("/jobs/{job_id}/stop", response_model=JobActionResponse, dependencies=[Depends(verify_token)])
async def stop_job(job_id: str, scheduler: Scheduler = Depends(get_scheduler)) -> JobActionResponse:
    try:
        job = scheduler.request_pause(job_id)
    except (InvalidJobRequestError, JobNotFoundError) as e:
        raise _to_http(e)
    return JobActionResponse(message=job.message or "Job paused.", job=JobResponse.from_job(job))


@router.delete("/jobs/{job_id}", response_model=MessageResponse, dependencies=[Depends(verify_token)])
async def delete_job(job_id: str, scheduler: Scheduler = Depends(get_scheduler)) -> MessageResponse:
    try:
        scheduler.delete_job(job_id)
    except (JobNotFoundError, JobConflictError) as e:
        raise _to_http(e)
    return MessageResponse(message="Job deleted.")


@router.get("/jobs/{job_id}/download")
async def download_job_csv(job_id: str, scheduler: Scheduler = Depends(get_scheduler)) -> FileResponse:
    try:
        job = scheduler.get_job(job_id)
    except JobNotFoundError as e:
        raise _to_http(e)
    path = Path(job.output_file)
    if not path.is_file():
        raise HTTPException(status_code=404, detail="No CSV written for this job yet")
    return FileResponse(path, media_type="text/csv", filename=job.file_name)
