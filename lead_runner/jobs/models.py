"""
Job Data Models

Defines the persistent Job record and its lifecycle states.
"""

import re
from dataclasses import asdict, dataclass, fields, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional


class JobState(str, Enum):
    """Lifecycle states of a job."""

    RUNNING = "running"      # Owned by the runner loop
    PAUSING = "pausing"      # Pause requested, runner has not stopped yet
    PAUSED = "paused"        # Runner stopped and released the browser
    COMPLETED = "completed"  # Pagination reported the list exhausted


class StateReason(str, Enum):
    """Machine-readable causes for a paused job."""

    CREDENTIAL_MISSING = "credential_missing"
    COOKIE_EXPIRED = "cookie_expired"
    SIDEBAR_LOGIN_FAILED = "sidebar_login_failed"
    NAVIGATION_FAILED = "navigation_failed"
    UNEXPECTED_ERROR = "unexpected_error"


TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"


def job_slug(list_name: str) -> str:
    """
    Filesystem-safe form of a list name.

    >>> job_slug("Q3 Leads  EU")
    'Q3_Leads_EU'
    """
    slug = re.sub(r"\s+", "_", list_name.strip())
    return re.sub(r"[^\w\-]", "_", slug)


@dataclass
class Job:
    """
    A resumable scrape of one search URL into one CSV file.

    ``page_index`` and ``current_url`` form the page cursor: the 1-based
    page the result view was on at the last persisted step, and its URL.
    """

    id: str                                 # "<slug>_<YYYYMMDD_HHMMSS>"
    source_url: str = ""                    # Search URL the job was created with
    list_name: str = ""
    output_file: str = ""                   # Absolute or data_dir-relative CSV path
    file_name: str = ""                     # Basename of output_file
    created_at: Optional[datetime] = None
    current_url: str = ""                   # URL to reopen on resume
    page_index: int = 1
    total_primary_rows: int = 0
    total_enriched_rows: int = 0
    state: JobState = JobState.PAUSED
    state_reason: Optional[str] = None
    message: Optional[str] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def create(cls, source_url: str, list_name: str, data_dir: Path, now: Optional[datetime] = None) -> "Job":
        """New running job at page 1, cursor at the source URL."""
        now = now or datetime.now()
        job_id = f"{job_slug(list_name)}_{now.strftime(TIMESTAMP_FORMAT)}"
        file_name = f"{job_id}.csv"
        return cls(
            id=job_id,
            source_url=source_url,
            list_name=list_name.strip(),
            output_file=str(Path(data_dir) / file_name),
            file_name=file_name,
            created_at=now,
            current_url=source_url,
            page_index=1,
            state=JobState.RUNNING,
        )

    @property
    def resume_url(self) -> str:
        return self.current_url or self.source_url

    def copy(self) -> "Job":
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data["state"] = self.state.value
        data["created_at"] = self.created_at.isoformat() if self.created_at else None
        data["updated_at"] = self.updated_at.isoformat() if self.updated_at else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        """
        Create a Job from a persisted record.

        Unknown keys are ignored; missing keys take their defaults.
        """
        def parse_datetime(value: Optional[str]) -> Optional[datetime]:
            if not value:
                return None
            try:
                return datetime.fromisoformat(value)
            except ValueError:
                return None

        if not isinstance(data, dict) or not data.get("id"):
            raise ValueError("Job record must be an object with an id")

        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values["state"] = JobState(values.get("state") or JobState.PAUSED.value)
        values["created_at"] = parse_datetime(values.get("created_at"))
        values["updated_at"] = parse_datetime(values.get("updated_at"))
        values["page_index"] = int(values.get("page_index") or 1)
        values["total_primary_rows"] = int(values.get("total_primary_rows") or 0)
        values["total_enriched_rows"] = int(values.get("total_enriched_rows") or 0)
        return cls(**values)
