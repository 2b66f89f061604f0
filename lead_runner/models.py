"""
Pydantic models for the lead runner API.

These models define the structure for API requests and responses. Job
records are exposed through ``JobResponse.from_job`` so the persisted
dataclass and the wire format can evolve separately.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from lead_runner.jobs.models import Job


class ScrapeRequest(BaseModel):
    """Request body for starting a new scrape job."""

    url: str = Field(..., description="Sales Navigator people search URL.")
    list_name: str = Field(..., alias="listName", description="Label used for the job id and CSV name.")

    model_config = {"populate_by_name": True}


class CookieRequest(BaseModel):
    """Request body carrying a Chrome cookie export (JSON array as text)."""

    cookie: str = Field(..., description="Cookie export JSON.")
    site: str = Field("linkedin", description="linkedin, signalhire or contactout")


class JobResponse(BaseModel):
    """One job record."""

    id: str
    source_url: str
    current_url: str
    list_name: str
    file_name: str
    page_index: int
    total_primary_rows: int
    total_enriched_rows: int
    state: str
    state_reason: Optional[str] = None
    message: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_job(cls, job: Job) -> "JobResponse":
        return cls(
            id=job.id,
            source_url=job.source_url,
            current_url=job.current_url,
            list_name=job.list_name,
            file_name=job.file_name,
            page_index=job.page_index,
            total_primary_rows=job.total_primary_rows,
            total_enriched_rows=job.total_enriched_rows,
            state=job.state.value,
            state_reason=job.state_reason,
            message=job.message,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )


class ScrapeResponse(BaseModel):
    """Response after a job was created and started."""

    message: str
    job_id: str
    file_name: str


class JobActionResponse(BaseModel):
    """Response for run/stop/resume actions."""

    message: str
    job: Optional[JobResponse] = None


class StatusResponse(BaseModel):
    """Runner status: whether a loop is active and the current job."""

    running: bool
    paused: bool
    current_job_id: Optional[str] = None
    job: Optional[JobResponse] = None


class JobListResponse(BaseModel):
    jobs: List[JobResponse]


class CookieStatusResponse(BaseModel):
    site: str
    has_cookie: bool
    message: str


class MessageResponse(BaseModel):
    message: str


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    running: bool
    current_job_id: Optional[str] = None
    timestamp: datetime
