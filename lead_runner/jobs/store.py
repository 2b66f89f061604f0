"""
Job Store

Durable Job records, one JSON file per job id under ``jobs_dir``, with an
in-memory cache that is the source of truth between writes.

Writes go to a temporary file that is then renamed over the record, so a
crash mid-write never leaves a truncated record behind.
"""

import json
import logging
import os
import time
from dataclasses import fields
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional, Union

from lead_runner.jobs.models import Job, JobState

logger = logging.getLogger(__name__)

_JOB_FIELDS = {f.name for f in fields(Job)}


class JobStore:
    """
    File-backed Job persistence with an in-memory cache.

    Usage:
        store = JobStore(settings.jobs_dir)
        store.load()
        store.put(job)
        store.update(job.id, page_index=2, current_url=url)
    """

    def __init__(self, jobs_dir: Union[str, Path]):
        self.jobs_dir = Path(jobs_dir)
        self._cache: Dict[str, Job] = {}

    def _path_for(self, job_id: str) -> Path:
        return self.jobs_dir / f"{job_id}.json"

    def load(self) -> int:
        """
        Read every ``*.json`` record into the cache, replacing its contents.

        Malformed records are skipped with a warning.

        Returns:
            Number of jobs loaded.
        """
        self.jobs_dir.mkdir(parents=True, exist_ok=True)
        jobs: Dict[str, Job] = {}
        for path in sorted(self.jobs_dir.glob("*.json")):
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
                if isinstance(data, dict):
                    data.setdefault("id", path.stem)
                job = Job.from_dict(data)
            except (OSError, ValueError, TypeError) as e:
                logger.warning(f"Skipping malformed job record {path.name}: {e}")
                continue
            jobs[job.id] = job
        self._cache = jobs
        logger.info(f"Loaded {len(jobs)} job(s) from {self.jobs_dir}")
        return len(jobs)

    def get(self, job_id: str) -> Optional[Job]:
        """Cached job or None. Never touches disk."""
        return self._cache.get(job_id)

    def get_all(self) -> List[Job]:
        """Snapshot of all cached jobs; the returned objects are copies."""
        return [job.copy() for job in self._cache.values()]

    def put(self, job: Job) -> None:
        """
        Cache and persist a full record, replacing any previous one.

        The cache is updated before the write, so a disk error leaves the
        in-memory record authoritative. Disk errors propagate.
        """
        job.updated_at = datetime.now()
        self._cache[job.id] = job
        self._write(job)

    def update(self, job_id: str, **changes) -> Job:
        """
        Merge ``changes`` onto the cached record (creating one if absent) and persist.

        Raises:
            AttributeError: for a field Job does not have
            OSError: if the record could not be written
        """
        unknown = set(changes) - _JOB_FIELDS
        if unknown:
            raise AttributeError(f"Unknown job field(s): {', '.join(sorted(unknown))}")

        job = self._cache.get(job_id) or Job(id=job_id)
        for key, value in changes.items():
            if key == "state" and not isinstance(value, JobState):
                value = JobState(value)
            setattr(job, key, value)
        self.put(job)
        return job

    def delete(self, job_id: str) -> bool:
        """
        Remove the record and evict it from the cache. Idempotent.

        Returns:
            True if a cached job or file existed.
        """
        existed = self._cache.pop(job_id, None) is not None
        try:
            self._path_for(job_id).unlink()
            existed = True
        except FileNotFoundError:
            pass
        if existed:
            logger.info(f"Deleted job {job_id}")
        return existed

    def sweep_older_than(self, age: timedelta) -> List[str]:
        """
        Delete records whose file modification time is older than ``age``.

        Individual failures are logged and skipped.

        Returns:
            Ids of the removed jobs.
        """
        cutoff = time.time() - age.total_seconds()
        removed = []
        if not self.jobs_dir.exists():
            return removed
        for path in self.jobs_dir.glob("*.json"):
            try:
                if path.stat().st_mtime < cutoff:
                    path.unlink()
                    self._cache.pop(path.stem, None)
                    removed.append(path.stem)
            except OSError as e:
                logger.warning(f"Retention sweep could not remove {path.name}: {e}")
        if removed:
            logger.info(f"Retention sweep removed {len(removed)} job(s) older than {age.days} day(s)")
        return removed

    def _write(self, job: Job) -> None:
        self.jobs_dir.mkdir(parents=True, exist_ok=True)
        path = self._path_for(job.id)
        tmp_path = path.with_name(f".{path.name}.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(job.to_dict(), f, indent=2)
        os.replace(tmp_path, path)
