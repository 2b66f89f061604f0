"""
Job Runner

Drives one job from its saved page cursor until the result list is exhausted,
a pause or preemption is observed, or something fails. Progress (page index,
current URL, totals) is persisted together after every page and at every
stop, so a resume continues from the page the view was on.

Per page:
    1. primary sidebar -> dedupe against the file -> append rows
    2. enrichment sidebar (only if step 1 found rows) -> merge domains -> dedupe
    3. human pacing (scroll + wait)
    4. pagination: MOVED continues, EXHAUSTED completes, FAILED pauses

The scheduler's stop flag is checked before each step.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from lead_runner.common.csv_store import (
    DEFAULT_KEY_ALIASES,
    deduplicate_by_key,
    merge_by_key,
    read_key_values,
    upsert_rows,
)
from lead_runner.common.error_handling import CredentialMissingError, best_effort, safe_execute
from lead_runner.common.logger import JobLogger, get_logger
from lead_runner.common.text import normalize_key
from lead_runner.common.types import LeadRow
from lead_runner.config import LeadRunnerSettings
from lead_runner.jobs.models import Job, JobState, StateReason
from lead_runner.jobs.scheduler import Scheduler
from lead_runner.jobs.store import JobStore
from lead_runner.services.base import BrowserLauncher, BrowserSession, CredentialProvider, Pacer
from lead_runner.services.pagination import PageAdvance, PaginationAdvancer
from lead_runner.services.sales_nav import SalesNavigator
from lead_runner.services.sidebar import SidebarOrchestrator

COOKIE_MISSING_MESSAGE = "LinkedIn cookie not found. Please save your cookie first."
COOKIE_EXPIRED_MESSAGE = "LinkedIn cookie expired. Please update your cookie."


@dataclass
class Progress:
    """The fields persisted together after every page."""

    page_index: int
    current_url: str
    total_primary_rows: int
    total_enriched_rows: int

    def as_changes(self) -> Dict[str, Any]:
        return {
            "page_index": self.page_index,
            "current_url": self.current_url,
            "total_primary_rows": self.total_primary_rows,
            "total_enriched_rows": self.total_enriched_rows,
        }


def new_rows_only(rows: List[LeadRow], existing_keys: set) -> List[LeadRow]:
    """
    Drop rows whose profile URL is already known or repeats in the batch.

    Rows without a profile URL are always kept.
    """
    seen = set(existing_keys)
    fresh = []
    for row in rows:
        key = normalize_key(row.get("profile_url"))
        if key:
            if key in seen:
                continue
            seen.add(key)
        fresh.append(row)
    return fresh


class JobRunner:
    """
    Runs jobs for a ``Scheduler``; ``run`` is the callable the scheduler starts.

    Every collaborator is injected so the loop can be driven by fakes.
    """

    def __init__(
        self,
        store: JobStore,
        scheduler: Scheduler,
        credentials: CredentialProvider,
        launcher: BrowserLauncher,
        navigator: SalesNavigator,
        primary: SidebarOrchestrator,
        enrichment: SidebarOrchestrator,
        advancer: PaginationAdvancer,
        pacer: Pacer,
        settings: LeadRunnerSettings,
    ):
        self.store = store
        self.scheduler = scheduler
        self.credentials = credentials
        self.launcher = launcher
        self.navigator = navigator
        self.primary = primary
        self.enrichment = enrichment
        self.advancer = advancer
        self.pacer = pacer
        self.settings = settings

    # === Persistence ===

    @best_effort("persist job progress", component="runner")
    def _save(self, job_id: str, **changes) -> Job:
        return self.store.update(job_id, **changes)

    def _pause(self, job_id: str, progress: Optional[Progress], reason: Optional[StateReason], message: str) -> None:
        changes = progress.as_changes() if progress else {}
        self._save(
            job_id,
            state=JobState.PAUSED,
            state_reason=reason.value if reason else None,
            message=message,
            **changes,
        )

    def _stop_if_requested(self, job_id: str, activation: int, progress: Progress, log: JobLogger) -> bool:
        if not self.scheduler.should_stop(job_id, activation):
            return False
        if self.scheduler.superseded(job_id, activation):
            # The newer run owns the state field; hand over the cursor only
            log.info(f"Superseded by a newer run at page {progress.page_index}; stopping")
            self._save(job_id, **progress.as_changes())
            return True
        preempted = self.scheduler.current_job_id != job_id
        log.info(f"{'Preempted' if preempted else 'Pause requested'} at page {progress.page_index}; stopping")
        self._pause(job_id, progress, None, "Paused: another job was started" if preempted else "Paused")
        return True

    # === Entry point ===

    async def run(self, job_id: str) -> None:
        """Run ``job_id`` until it completes or pauses. Never raises."""
        log = get_logger(__name__, job_id=job_id, component="runner")
        activation = self.scheduler.activation
        job = self.store.get(job_id)
        if job is None:
            log.error("Job record not found; nothing to run")
            return

        if job.page_index <= 1:
            job.total_primary_rows = 0
            job.total_enriched_rows = 0
        progress = Progress(
            page_index=max(1, job.page_index),
            current_url=job.resume_url,
            total_primary_rows=job.total_primary_rows,
            total_enriched_rows=job.total_enriched_rows,
        )
        self._save(job_id, state=JobState.RUNNING, state_reason=None, message="Running", **progress.as_changes())
        log.info(f"Starting at page {progress.page_index}: {progress.current_url}")

        session: Optional[BrowserSession] = None
        try:
            if not self.credentials.has_stored_credential():
                log.warning("No LinkedIn cookie stored")
                self._pause(job_id, progress, StateReason.CREDENTIAL_MISSING, COOKIE_MISSING_MESSAGE)
                return

            session = await self.launcher.launch()

            for sidebar in (self.primary, self.enrichment):
                if not await self._sidebar_login(session, sidebar, log):
                    self._pause(
                        job_id,
                        progress,
                        StateReason.SIDEBAR_LOGIN_FAILED,
                        f"{sidebar.name} login failed. Please update your {sidebar.name} cookie.",
                    )
                    return

            if self._stop_if_requested(job_id, activation, progress, log):
                return

            search = await self.navigator.open(session, progress.current_url)
            if not search.logged_in:
                log.warning(f"LinkedIn redirected to {search.final_url}")
                self._pause(job_id, progress, StateReason.COOKIE_EXPIRED, COOKIE_EXPIRED_MESSAGE)
                return

            await self._loop(job, activation, session, search.page, progress, log)
        except CredentialMissingError as e:
            log.warning(f"LinkedIn cookie unusable: {e}")
            self._pause(job_id, progress, StateReason.CREDENTIAL_MISSING, COOKIE_MISSING_MESSAGE)
        except Exception as e:
            log.exception(f"Unexpected error on page {progress.page_index}: {e}")
            self._pause(job_id, progress, StateReason.UNEXPECTED_ERROR, f"Unexpected error: {e}")
        finally:
            if session is not None:
                try:
                    await session.close()
                except Exception as e:
                    log.warning(f"Error closing browser session: {e}")
            log.info("Runner finished")

    async def _sidebar_login(self, session: BrowserSession, sidebar: SidebarOrchestrator, log: JobLogger) -> bool:
        """Cookie login, retried once."""
        for attempt in (1, 2):
            try:
                if await sidebar.login(session):
                    return True
            except CredentialMissingError as e:
                log.warning(f"{sidebar.name}: {e}")
                return False
            except Exception as e:
                log.warning(f"{sidebar.name} login attempt {attempt} failed: {e}")
        return False

    # === Page loop ===

    async def _loop(
        self, job: Job, activation: int, session: BrowserSession, page: Any, progress: Progress, log: JobLogger
    ) -> None:
        job_id = job.id
        output_file = job.output_file
        view = self.navigator.result_view(page)

        while True:
            if self._stop_if_requested(job_id, activation, progress, log):
                return

            page_log = log.at_page(progress.page_index)
            rows = await self._collect(self.primary, session, page, page_log)
            appended = self._append_new_rows(rows, output_file, page_log)
            progress.total_primary_rows += appended

            if rows:
                if self._stop_if_requested(job_id, activation, progress, log):
                    return
                profiles = await self._collect(self.enrichment, session, page, page_log)
                if profiles:
                    merged = safe_execute(
                        merge_by_key,
                        output_file,
                        profiles,
                        operation_name="merge enrichment",
                        logger=page_log.logger,
                        fallback=0,
                    )
                    progress.total_enriched_rows += merged
                    page_log.info(f"Merged {merged} domain(s) from {len(profiles)} profile(s)")
                deduplicate_by_key(output_file, DEFAULT_KEY_ALIASES)
            else:
                page_log.info("No primary rows on this page; skipping enrichment")

            if self._stop_if_requested(job_id, activation, progress, log):
                return

            await self.pacer.settle(page)

            if self._stop_if_requested(job_id, activation, progress, log):
                return

            outcome = await self.advancer.advance(view, current_page=progress.page_index)
            if outcome == PageAdvance.MOVED:
                progress.page_index += 1
            progress.current_url = view.url() or progress.current_url
            self._save(job_id, **progress.as_changes())
            page_log.info(
                f"Pagination {outcome.value}; totals primary={progress.total_primary_rows} "
                f"enriched={progress.total_enriched_rows}"
            )

            if outcome == PageAdvance.EXHAUSTED:
                self._save(job_id, state=JobState.COMPLETED, state_reason=None, message="Completed: no more pages")
                log.info(f"Completed after {progress.page_index} page(s)")
                return
            if outcome == PageAdvance.FAILED:
                self._pause(
                    job_id,
                    progress,
                    StateReason.NAVIGATION_FAILED,
                    f"Could not move past page {progress.page_index}. Resume to retry.",
                )
                return

    async def _collect(self, sidebar: SidebarOrchestrator, session: BrowserSession, page: Any, log: JobLogger) -> list:
        """Sidebar rows, or [] when the sidebar gave up."""
        try:
            return await sidebar.collect(session, page)
        except Exception as e:
            log.warning(f"{sidebar.name} extraction failed, counting 0 rows: {e}")
            return []

    def _append_new_rows(self, rows: List[LeadRow], output_file: str, log: JobLogger) -> int:
        if not rows:
            return 0
        existing = read_key_values(output_file, DEFAULT_KEY_ALIASES)
        fresh = new_rows_only(rows, existing)
        if len(fresh) < len(rows):
            log.info(f"Skipped {len(rows) - len(fresh)} already-saved lead(s)")
        upsert_rows(fresh, output_file)
        log.info(f"Saved {len(fresh)} lead(s)")
        return len(fresh)
