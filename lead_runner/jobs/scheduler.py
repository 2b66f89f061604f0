"""
Job Scheduler

Single owner of "which job drives the browser". Holds the current job id and
the pause flag, starts runner loops as asyncio tasks, and implements the
operations the request layer exposes (create, run, resume, pause, delete,
status).

At most one job is ``running``: before a job is made current, the previous
current job is flipped to ``paused`` and persisted, and the new loop waits
for the previous task to finish before it touches the browser.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from lead_runner.common.error_handling import (
    CredentialMissingError,
    InvalidJobRequestError,
    JobConflictError,
    JobNotFoundError,
    best_effort,
)
from lead_runner.config import LeadRunnerSettings
from lead_runner.jobs.models import Job, JobState
from lead_runner.jobs.store import JobStore
from lead_runner.services.base import CredentialProvider

logger = logging.getLogger(__name__)

RunJobFn = Callable[[str], Awaitable[Any]]

INVALID_URL_MESSAGE = "Not valid, please use a valid LinkedIn Sales Navigator People URL."


def validate_search_request(source_url: Optional[str], list_name: Optional[str]) -> None:
    """
    Raises:
        InvalidJobRequestError: empty list name, or a URL that is not a
            Sales Navigator people search
    """
    if not source_url or not source_url.strip():
        raise InvalidJobRequestError("URL is required.")
    if not list_name or not list_name.strip():
        raise InvalidJobRequestError("List name is required.")
    lowered = source_url.lower()
    if "linkedin.com" not in lowered or "people" not in lowered:
        raise InvalidJobRequestError(INVALID_URL_MESSAGE)


class Scheduler:
    """
    Current-job bookkeeping plus the exposed job operations.

    The runner callable is attached after construction because the runner
    itself needs the scheduler for its stop checks:

        scheduler = Scheduler(store, settings, linkedin_credentials)
        runner = JobRunner(store, scheduler, ...)
        scheduler.set_runner(runner.run)
    """

    def __init__(
        self,
        store: JobStore,
        settings: LeadRunnerSettings,
        credentials: CredentialProvider,
        runner: Optional[RunJobFn] = None,
    ):
        self.store = store
        self.settings = settings
        self.credentials = credentials
        self._runner = runner
        self.current_job_id: Optional[str] = None
        self.pause_requested = False
        # Bumped on every activation; a loop holding an older value is stale
        self.activation = 0
        self._task: Optional[asyncio.Task] = None

    def set_runner(self, runner: RunJobFn) -> None:
        self._runner = runner

    # === State ===

    @property
    def is_running(self) -> bool:
        """A runner loop is active (it may be on its way to pausing)."""
        return self._task is not None and not self._task.done()

    @property
    def is_paused(self) -> bool:
        job = self.store.get(self.current_job_id) if self.current_job_id else None
        return job is not None and job.state == JobState.PAUSED

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    def should_stop(self, job_id: str, activation: Optional[int] = None) -> bool:
        """
        Checked by the runner at every checkpoint.

        ``activation`` is the value of ``self.activation`` the loop started
        under; passing it also stops a loop whose job was re-run meanwhile.
        """
        return self.current_job_id != job_id or self.pause_requested or self.superseded(job_id, activation)

    def superseded(self, job_id: str, activation: Optional[int]) -> bool:
        """A newer activation of the same job owns it; the old loop must not write state."""
        return activation is not None and self.current_job_id == job_id and activation != self.activation

    @best_effort("persist job", component="scheduler")
    def _save(self, job_id: str, **changes) -> Job:
        return self.store.update(job_id, **changes)

    def recover_interrupted(self) -> List[str]:
        """
        Pause jobs a previous process left running or pausing.

        Called once at startup, before any loop exists.
        """
        recovered = []
        for job in self.store.get_all():
            if job.state in (JobState.RUNNING, JobState.PAUSING):
                self._save(job.id, state=JobState.PAUSED, message="Paused: interrupted by restart")
                recovered.append(job.id)
        if recovered:
            logger.warning(f"Paused {len(recovered)} job(s) interrupted by restart: {recovered}")
        return recovered

    # === Activation ===

    def _preempt_current(self, next_job_id: str) -> None:
        previous = self.current_job_id
        if previous is None or previous == next_job_id:
            return
        job = self.store.get(previous)
        if job is not None and job.state in (JobState.RUNNING, JobState.PAUSING):
            logger.info(f"Preempting job {previous} for {next_job_id}")
            self._save(previous, state=JobState.PAUSED, message="Paused: another job was started")

    def _activate(self, job_id: str) -> None:
        if self._runner is None:
            raise RuntimeError("Scheduler has no runner attached")
        self.current_job_id = job_id
        self.pause_requested = False
        self.activation += 1
        previous_task = self._task
        self._task = asyncio.create_task(self._run(job_id, self.activation, previous_task))

    async def _run(self, job_id: str, activation: int, previous_task: Optional[asyncio.Task]) -> None:
        if previous_task is not None and not previous_task.done():
            logger.info(f"Job {job_id} waiting for the previous runner to release the browser")
            try:
                await previous_task
            except Exception as e:
                logger.warning(f"Previous runner ended with error: {e}")
        if self.current_job_id != job_id or self.activation != activation:
            logger.info(f"Job {job_id} was preempted before it started")
            return
        try:
            await self._runner(job_id)
        except Exception as e:
            logger.exception(f"Runner for job {job_id} crashed: {e}")
            self._save(job_id, state=JobState.PAUSED, state_reason="unexpected_error", message=f"Unexpected error: {e}")

    # === Exposed operations ===

    async def create_job(self, source_url: str, list_name: str) -> Job:
        """
        Create a job, preempt the current one, and start the runner.

        Raises:
            InvalidJobRequestError: bad URL or list name
            CredentialMissingError: no LinkedIn cookie stored
        """
        validate_search_request(source_url, list_name)
        if not self.credentials.has_stored_credential():
            raise CredentialMissingError(self.credentials.site)

        job = Job.create(source_url.strip(), list_name, self.settings.data_dir)
        self._preempt_current(job.id)
        job.message = "Running"
        self.store.put(job)
        self._activate(job.id)
        logger.info(f"Created job {job.id} -> {job.file_name}")
        return job.copy()

    async def run_job(self, job_id: str) -> Job:
        """
        (Re)start a persisted job from its saved cursor.

        Running the current job while its pause is still pending cancels the
        pause instead of starting a second loop. Once the runner has written
        ``paused`` the loop is gone even if its task is still closing the
        browser, so a fresh loop is queued behind that task.

        Raises:
            JobNotFoundError: unknown id
            JobConflictError: the job is already the current running job
        """
        job = self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)

        if job_id == self.current_job_id and self.is_running and job.state in (JobState.RUNNING, JobState.PAUSING):
            if job.state == JobState.PAUSING:
                self.pause_requested = False
                self._save(job_id, state=JobState.RUNNING, message="Running")
                logger.info(f"Pause of job {job_id} cancelled")
                return self.store.get(job_id)
            raise JobConflictError("Job is already running.")

        self._preempt_current(job_id)
        self._save(job_id, state=JobState.RUNNING, state_reason=None, message="Running")
        self._activate(job_id)
        logger.info(f"Running job {job_id} from page {job.page_index} ({job.resume_url})")
        return self.store.get(job_id)

    async def resume_current(self) -> Job:
        """
        Raises:
            InvalidJobRequestError: no current job is paused or pausing
        """
        job = self.store.get(self.current_job_id) if self.current_job_id else None
        if job is None or job.state not in (JobState.PAUSED, JobState.PAUSING):
            raise InvalidJobRequestError("No paused scrape to resume.")
        return await self.run_job(job.id)

    def request_pause(self, job_id: Optional[str] = None) -> Job:
        """
        Ask a job to pause.

        The current running job is flagged ``pausing``; the runner writes
        ``paused`` once it has stopped. A job with no active loop is marked
        ``paused`` directly.

        Raises:
            InvalidJobRequestError: no job given and nothing is running
            JobNotFoundError: unknown id
        """
        target = job_id or self.current_job_id
        if target is None or (job_id is None and not self.is_running):
            raise InvalidJobRequestError("No scrape is currently running.")
        if self.store.get(target) is None:
            raise JobNotFoundError(target)

        if target == self.current_job_id and self.is_running:
            self.pause_requested = True
            self._save(target, state=JobState.PAUSING, message="Job will pause shortly.")
            logger.info(f"Pause requested for job {target}")
        else:
            self._save(target, state=JobState.PAUSED, message="Job paused.")
        return self.store.get(target)

    def delete_job(self, job_id: str) -> None:
        """
        Raises:
            JobNotFoundError: unknown id
            JobConflictError: the job is running
        """
        job = self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.state == JobState.RUNNING or (job_id == self.current_job_id and self.is_running):
            raise JobConflictError("Job is running. Stop it first, then delete.")
        self.store.delete(job_id)
        if self.current_job_id == job_id:
            self.current_job_id = None

    def get_status(self) -> Dict[str, Any]:
        job = self.store.get(self.current_job_id) if self.current_job_id else None
        return {
            "running": self.is_running,
            "paused": self.is_paused,
            "current_job_id": self.current_job_id,
            "job": job,
        }

    def list_jobs(self) -> List[Job]:
        """All jobs, newest first."""
        return sorted(
            self.store.get_all(),
            key=lambda j: (j.created_at is not None, j.created_at),
            reverse=True,
        )

    def get_job(self, job_id: str) -> Job:
        job = self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def shutdown(self, timeout: float = 30.0) -> None:
        """Ask the active loop to pause and wait for it to release the browser."""
        if not self.is_running:
            return
        self.pause_requested = True
        if self.current_job_id:
            self._save(self.current_job_id, state=JobState.PAUSING, message="Job will pause shortly.")
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Runner did not stop within {timeout}s; cancelling")
            self._task.cancel()
