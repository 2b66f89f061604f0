"""
Unit tests for lead_runner/jobs/scheduler.py

The runner is replaced by a cooperative fake that polls ``should_stop`` the
way the real loop does at its checkpoints.
"""

import asyncio
from datetime import datetime

import pytest
import pytest_asyncio

from lead_runner.common.error_handling import (
    CredentialMissingError,
    InvalidJobRequestError,
    JobConflictError,
    JobNotFoundError,
)
from lead_runner.jobs.models import Job, JobState
from lead_runner.jobs.scheduler import INVALID_URL_MESSAGE, Scheduler, validate_search_request
from lead_runner.services.base import CredentialProvider

SEARCH_URL = "https://www.linkedin.com/sales/search/people?query=(keywords:cto)"


class FakeCredentials(CredentialProvider):
    site = "linkedin"

    def __init__(self, present=True):
        self.present = present

    def has_stored_credential(self):
        return self.present

    def load_credential(self):
        return []


class CooperativeRunner:
    """Stands in for JobRunner.run: works until told to stop, then pauses."""

    def __init__(self, store):
        self.store = store
        self.scheduler = None
        self.started = []
        self.active = 0
        self.max_running_seen = 0

    def running_count(self):
        return sum(1 for j in self.store.get_all() if j.state == JobState.RUNNING)

    async def run(self, job_id):
        activation = self.scheduler.activation
        self.started.append(job_id)
        self.active += 1
        self.max_running_seen = max(self.max_running_seen, self.running_count())
        try:
            while not self.scheduler.should_stop(job_id, activation):
                self.max_running_seen = max(self.max_running_seen, self.running_count())
                await asyncio.sleep(0.002)
            if not self.scheduler.superseded(job_id, activation):
                self.store.update(job_id, state=JobState.PAUSED, message="Paused")
        finally:
            self.active -= 1
        await self.on_exit()

    async def on_exit(self):
        """The real runner closes the browser here."""


class SlowCloseRunner(CooperativeRunner):
    """Confirms the pause, then holds its task open until ``closed`` is set."""

    def __init__(self, store):
        super().__init__(store)
        self.closed = asyncio.Event()

    async def on_exit(self):
        await self.closed.wait()


@pytest_asyncio.fixture
async def scheduler(store, settings):
    runner = CooperativeRunner(store)
    sched = Scheduler(store, settings, FakeCredentials(), runner.run)
    runner.scheduler = sched
    sched.fake_runner = runner
    yield sched
    await sched.shutdown(timeout=2)


async def settle(scheduler):
    """Let the scheduler's task reach its first await."""
    for _ in range(5):
        await asyncio.sleep(0.005)


async def wait_stopped(scheduler):
    await asyncio.wait_for(asyncio.shield(scheduler.task), timeout=2)


class TestValidateSearchRequest:

    def test_valid(self):
        validate_search_request(SEARCH_URL, "CTOs")

    @pytest.mark.parametrize("url,name,message", [
        ("", "CTOs", "URL is required."),
        (SEARCH_URL, "   ", "List name is required."),
        ("https://www.linkedin.com/sales/search/company?x=1", "CTOs", INVALID_URL_MESSAGE),
        ("https://example.com/people", "CTOs", INVALID_URL_MESSAGE),
    ])
    def test_invalid(self, url, name, message):
        with pytest.raises(InvalidJobRequestError, match=message.replace(".", r"\.")):
            validate_search_request(url, name)


class TestCreateJob:

    @pytest.mark.asyncio
    async def test_creates_and_starts(self, scheduler, store):
        job = await scheduler.create_job(SEARCH_URL, "CTOs")
        await settle(scheduler)

        assert scheduler.current_job_id == job.id
        assert scheduler.is_running
        assert scheduler.fake_runner.started == [job.id]
        stored = store.get(job.id)
        assert stored.state == JobState.RUNNING
        assert stored.page_index == 1
        assert stored.current_url == SEARCH_URL

    @pytest.mark.asyncio
    async def test_rejects_bad_url(self, scheduler, store):
        with pytest.raises(InvalidJobRequestError):
            await scheduler.create_job("https://example.com", "CTOs")
        assert store.get_all() == []

    @pytest.mark.asyncio
    async def test_requires_linkedin_cookie(self, store, settings):
        sched = Scheduler(store, settings, FakeCredentials(present=False), CooperativeRunner(store).run)
        with pytest.raises(CredentialMissingError):
            await sched.create_job(SEARCH_URL, "CTOs")
        assert sched.current_job_id is None

    @pytest.mark.asyncio
    async def test_new_job_preempts_current(self, scheduler, store):
        """At most one job is running at any observed instant."""
        first = await scheduler.create_job(SEARCH_URL, "First")
        await settle(scheduler)
        second = await scheduler.create_job(SEARCH_URL, "Second")

        assert store.get(first.id).state == JobState.PAUSED
        assert store.get(second.id).state == JobState.RUNNING
        await settle(scheduler)

        assert scheduler.fake_runner.started == [first.id, second.id]
        assert scheduler.fake_runner.max_running_seen <= 1
        assert scheduler.current_job_id == second.id


class TestPauseAndResume:

    @pytest.mark.asyncio
    async def test_pause_current(self, scheduler, store):
        job = await scheduler.create_job(SEARCH_URL, "CTOs")
        await settle(scheduler)

        result = scheduler.request_pause()
        assert result.state == JobState.PAUSING
        assert result.message == "Job will pause shortly."

        await wait_stopped(scheduler)
        assert store.get(job.id).state == JobState.PAUSED
        assert scheduler.is_paused
        assert not scheduler.is_running

    @pytest.mark.asyncio
    async def test_pause_with_nothing_running(self, scheduler):
        with pytest.raises(InvalidJobRequestError, match="No scrape is currently running"):
            scheduler.request_pause()

    @pytest.mark.asyncio
    async def test_pause_specific_idle_job(self, scheduler, store):
        store.put(Job(id="idle", state=JobState.COMPLETED))
        result = scheduler.request_pause("idle")
        assert result.state == JobState.PAUSED
        assert result.message == "Job paused."

    @pytest.mark.asyncio
    async def test_pause_unknown_job(self, scheduler):
        with pytest.raises(JobNotFoundError):
            scheduler.request_pause("missing")

    @pytest.mark.asyncio
    async def test_resume_current(self, scheduler, store):
        job = await scheduler.create_job(SEARCH_URL, "CTOs")
        await settle(scheduler)
        scheduler.request_pause()
        await wait_stopped(scheduler)

        resumed = await scheduler.resume_current()
        await settle(scheduler)

        assert resumed.state == JobState.RUNNING
        assert scheduler.fake_runner.started == [job.id, job.id]

    @pytest.mark.asyncio
    async def test_resume_without_paused_job(self, scheduler):
        with pytest.raises(InvalidJobRequestError, match="No paused scrape to resume"):
            await scheduler.resume_current()

    @pytest.mark.asyncio
    async def test_run_while_pausing_cancels_pause(self, scheduler, store):
        job = await scheduler.create_job(SEARCH_URL, "CTOs")
        await settle(scheduler)
        scheduler.pause_requested = True
        store.update(job.id, state=JobState.PAUSING)

        result = await scheduler.run_job(job.id)

        assert result.state == JobState.RUNNING
        assert not scheduler.pause_requested
        assert scheduler.fake_runner.started == [job.id]

    @pytest.mark.asyncio
    async def test_run_after_pause_confirmed_queues_a_new_loop(self, store, settings):
        """The runner already wrote paused and is only closing the browser."""
        runner = SlowCloseRunner(store)
        sched = Scheduler(store, settings, FakeCredentials(), runner.run)
        runner.scheduler = sched
        job = await sched.create_job(SEARCH_URL, "CTOs")
        await settle(sched)

        sched.request_pause()
        await settle(sched)
        assert store.get(job.id).state == JobState.PAUSED
        assert sched.is_running

        result = await sched.run_job(job.id)
        assert result.state == JobState.RUNNING
        assert runner.started == [job.id]

        runner.closed.set()
        await settle(sched)

        assert runner.started == [job.id, job.id]
        assert runner.active == 1
        status = sched.get_status()
        assert status["running"] is True
        assert status["job"].state == JobState.RUNNING

        await sched.shutdown(timeout=2)
        assert store.get(job.id).state == JobState.PAUSED


class TestRunJob:

    @pytest.mark.asyncio
    async def test_unknown_job(self, scheduler):
        with pytest.raises(JobNotFoundError):
            await scheduler.run_job("missing")

    @pytest.mark.asyncio
    async def test_already_running(self, scheduler):
        job = await scheduler.create_job(SEARCH_URL, "CTOs")
        await settle(scheduler)
        with pytest.raises(JobConflictError, match="already running"):
            await scheduler.run_job(job.id)

    @pytest.mark.asyncio
    async def test_run_persisted_job_preempts_current(self, scheduler, store):
        store.put(Job(id="older", source_url=SEARCH_URL, page_index=3,
                      current_url=SEARCH_URL + "&page=3", state=JobState.PAUSED))
        current = await scheduler.create_job(SEARCH_URL, "CTOs")
        await settle(scheduler)

        result = await scheduler.run_job("older")
        await settle(scheduler)

        assert result.state == JobState.RUNNING
        assert result.page_index == 3
        assert store.get(current.id).state == JobState.PAUSED
        assert scheduler.current_job_id == "older"
        assert scheduler.fake_runner.max_running_seen <= 1

    @pytest.mark.asyncio
    async def test_switching_back_stops_the_leftover_loop(self, scheduler, store):
        """First -> Second -> First before the first loop reaches a checkpoint."""
        first = await scheduler.create_job(SEARCH_URL, "First")
        await settle(scheduler)
        second = await scheduler.create_job(SEARCH_URL, "Second")
        await scheduler.run_job(first.id)
        await settle(scheduler)

        runner = scheduler.fake_runner
        assert runner.started == [first.id, first.id]
        assert runner.active == 1
        assert store.get(first.id).state == JobState.RUNNING
        assert store.get(second.id).state == JobState.PAUSED
        assert scheduler.current_job_id == first.id


class TestDeleteAndQueries:

    @pytest.mark.asyncio
    async def test_delete_running_job_rejected(self, scheduler, store):
        job = await scheduler.create_job(SEARCH_URL, "CTOs")
        await settle(scheduler)
        with pytest.raises(JobConflictError, match="Stop it first"):
            scheduler.delete_job(job.id)
        assert store.get(job.id) is not None

    @pytest.mark.asyncio
    async def test_delete_paused_job(self, scheduler, store):
        store.put(Job(id="done", state=JobState.PAUSED))
        scheduler.delete_job("done")
        assert store.get("done") is None

    @pytest.mark.asyncio
    async def test_delete_unknown(self, scheduler):
        with pytest.raises(JobNotFoundError):
            scheduler.delete_job("missing")

    @pytest.mark.asyncio
    async def test_status_and_listing(self, scheduler, store):
        store.put(Job(id="a", created_at=datetime(2024, 1, 1)))
        store.put(Job(id="b", created_at=datetime(2024, 2, 1)))
        store.put(Job(id="c"))

        status = scheduler.get_status()
        assert status == {"running": False, "paused": False, "current_job_id": None, "job": None}
        assert [j.id for j in scheduler.list_jobs()] == ["b", "a", "c"]

    @pytest.mark.asyncio
    async def test_recover_interrupted(self, scheduler, store):
        store.put(Job(id="r", state=JobState.RUNNING))
        store.put(Job(id="p", state=JobState.PAUSING))
        store.put(Job(id="c", state=JobState.COMPLETED))

        assert sorted(scheduler.recover_interrupted()) == ["p", "r"]
        assert store.get("r").state == JobState.PAUSED
        assert store.get("c").state == JobState.COMPLETED

    @pytest.mark.asyncio
    async def test_shutdown_pauses_active_job(self, scheduler, store):
        job = await scheduler.create_job(SEARCH_URL, "CTOs")
        await settle(scheduler)
        await scheduler.shutdown(timeout=2)
        assert store.get(job.id).state == JobState.PAUSED
