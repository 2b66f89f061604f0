"""
Unit tests for lead_runner/jobs/runner.py

The runner loop is driven end to end with fake browser collaborators:
scripted pagination outcomes, canned sidebar rows and a pacer hook that can
request a pause at a precise point in the page cycle.
"""

import pytest

from lead_runner.common.csv_store import read_rows
from lead_runner.common.error_handling import CredentialMissingError, SidebarError
from lead_runner.jobs.models import Job, JobState, StateReason
from lead_runner.jobs.runner import JobRunner, new_rows_only
from lead_runner.jobs.scheduler import Scheduler
from lead_runner.services.base import BrowserLauncher, BrowserSession, CredentialProvider, Pacer
from lead_runner.services.pagination import PageAdvance
from lead_runner.services.sales_nav import SearchPage

SOURCE_URL = "https://www.linkedin.com/sales/search/people?query=(x)"


def page_url(n):
    return f"{SOURCE_URL}&page={n}"


# =============================================================================
# Fakes
# =============================================================================

class FakeCredentials(CredentialProvider):
    site = "linkedin"

    def __init__(self, present=True):
        self.present = present

    def has_stored_credential(self):
        return self.present

    def load_credential(self):
        return [{"name": "li_at", "value": "x", "domain": ".linkedin.com", "path": "/"}]


class FakeSession(BrowserSession):
    def __init__(self):
        self.closed = 0

    async def new_page(self):
        return FakePage(SOURCE_URL)

    async def add_cookies(self, cookies):
        return len(cookies)

    async def close(self):
        self.closed += 1


class FakeLauncher(BrowserLauncher):
    def __init__(self):
        self.sessions = []

    async def launch(self):
        session = FakeSession()
        self.sessions.append(session)
        return session


class FakePage:
    """Result view and page in one: only ``url()`` is read by the runner."""

    def __init__(self, url):
        self._url = url

    def url(self):
        return self._url


class FakeNavigator:
    def __init__(self, logged_in=True, error=None):
        self.logged_in = logged_in
        self.error = error
        self.opened = []
        self.page = None

    async def open(self, session, url):
        if self.error:
            raise self.error
        self.opened.append(url)
        self.page = FakePage(url)
        final_url = url if self.logged_in else "https://www.linkedin.com/login"
        return SearchPage(page=self.page, logged_in=self.logged_in, final_url=final_url)

    def result_view(self, page):
        return page


class FakeAdvancer:
    """Pops scripted outcomes; MOVED rewrites the view URL to the next page."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    async def advance(self, view, current_page=1):
        self.calls.append(current_page)
        outcome = self.outcomes.pop(0)
        if outcome == PageAdvance.MOVED:
            view._url = page_url(current_page + 1)
        return outcome


class FakeSidebar:
    def __init__(self, name, pages=None, login_results=(True,), error=None):
        self.name = name
        self.pages = list(pages or [])
        self.login_results = list(login_results)
        self.error = error
        self.collect_calls = 0
        self.login_calls = 0

    async def login(self, session):
        self.login_calls += 1
        result = self.login_results.pop(0) if self.login_results else True
        if isinstance(result, Exception):
            raise result
        return result

    async def collect(self, session, page):
        self.collect_calls += 1
        if self.error:
            raise self.error
        return self.pages.pop(0) if self.pages else []


class HookPacer(Pacer):
    """Calls ``hook(n)`` on the n-th settle (1-based)."""

    def __init__(self, hook=None):
        self.hook = hook
        self.calls = 0

    async def settle(self, page):
        self.calls += 1
        if self.hook:
            self.hook(self.calls)


NAMES = ["Ada Lovelace", "Grace Hopper", "Alan Turing", "Edsger Dijkstra"]


def lead(i):
    first, last = NAMES[i - 1].split()
    return {"name": NAMES[i - 1], "first_name": first, "last_name": last,
            "profile_url": f"https://www.linkedin.com/in/lead-{i}"}


def profile(name, domain):
    first, _, last = name.partition(" ")
    return {"full_name": name, "first_name": first, "last_name": last, "domains": [domain]}


class Harness:
    """Wires a JobRunner with fakes around a real JobStore and Scheduler."""

    def __init__(self, store, settings, outcomes=(), primary=None, enrichment=None,
                 navigator=None, credentials=None, pacer=None):
        self.store = store
        self.credentials = credentials or FakeCredentials()
        self.scheduler = Scheduler(store, settings, self.credentials)
        self.launcher = FakeLauncher()
        self.navigator = navigator or FakeNavigator()
        self.primary = primary or FakeSidebar("signalhire")
        self.enrichment = enrichment or FakeSidebar("contactout")
        self.advancer = FakeAdvancer(*outcomes)
        self.pacer = pacer or HookPacer()
        self.runner = JobRunner(
            store=store,
            scheduler=self.scheduler,
            credentials=self.credentials,
            launcher=self.launcher,
            navigator=self.navigator,
            primary=self.primary,
            enrichment=self.enrichment,
            advancer=self.advancer,
            pacer=self.pacer,
            settings=settings,
        )
        self.page_writes = []
        original_update = store.update

        def recording_update(job_id, **changes):
            if "page_index" in changes:
                self.page_writes.append(changes["page_index"])
            return original_update(job_id, **changes)

        store.update = recording_update

    def new_job(self, settings, **overrides):
        job = Job.create(SOURCE_URL, "Test list", settings.data_dir)
        for key, value in overrides.items():
            setattr(job, key, value)
        self.store.put(job)
        self.scheduler.current_job_id = job.id
        return job

    async def run(self, job):
        await self.runner.run(job.id)
        return self.store.get(job.id)


# =============================================================================
# Tests
# =============================================================================

class TestNewRowsOnly:

    def test_drops_known_and_repeated_urls(self):
        rows = [lead(1), lead(2), lead(2), {"name": "No Url"}, {"name": "No Url 2", "profile_url": ""}]
        fresh = new_rows_only(rows, {"https://www.linkedin.com/in/lead-1"})
        assert [r["name"] for r in fresh] == ["Grace Hopper", "No Url", "No Url 2"]


class TestTermination:

    @pytest.mark.asyncio
    async def test_completes_after_exhaustion(self, store, settings):
        """Scenario: three MOVED outcomes then EXHAUSTED."""
        h = Harness(store, settings, outcomes=[PageAdvance.MOVED] * 3 + [PageAdvance.EXHAUSTED],
                    primary=FakeSidebar("signalhire", pages=[[lead(1)], [lead(2)], [lead(3)], [lead(4)]]))
        job = h.new_job(settings)

        final = await h.run(job)

        assert final.state == JobState.COMPLETED
        assert final.page_index == 4
        assert final.current_url == page_url(4)
        assert final.total_primary_rows == 4
        assert h.advancer.calls == [1, 2, 3, 4]
        assert h.launcher.sessions[0].closed == 1

    @pytest.mark.asyncio
    async def test_page_index_persisted_monotonically(self, store, settings):
        h = Harness(store, settings, outcomes=[PageAdvance.MOVED] * 3 + [PageAdvance.EXHAUSTED])
        job = h.new_job(settings)

        await h.run(job)

        assert h.page_writes == sorted(h.page_writes)
        assert sorted(set(h.page_writes)) == [1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_navigation_failure_pauses(self, store, settings):
        """Scenario: pagination FAILED lands in paused, never completed."""
        h = Harness(store, settings, outcomes=[PageAdvance.MOVED, PageAdvance.FAILED])
        job = h.new_job(settings)

        final = await h.run(job)

        assert final.state == JobState.PAUSED
        assert final.state_reason == StateReason.NAVIGATION_FAILED.value
        assert final.page_index == 2
        assert final.current_url == page_url(2)
        assert h.launcher.sessions[0].closed == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_pauses_and_closes(self, store, settings):
        h = Harness(store, settings, navigator=FakeNavigator(error=RuntimeError("browser crashed")))
        job = h.new_job(settings)

        final = await h.run(job)

        assert final.state == JobState.PAUSED
        assert final.state_reason == StateReason.UNEXPECTED_ERROR.value
        assert "browser crashed" in final.message
        assert h.launcher.sessions[0].closed == 1


class TestPreconditions:

    @pytest.mark.asyncio
    async def test_missing_linkedin_cookie(self, store, settings):
        h = Harness(store, settings, credentials=FakeCredentials(present=False))
        job = h.new_job(settings)

        final = await h.run(job)

        assert final.state == JobState.PAUSED
        assert final.state_reason == StateReason.CREDENTIAL_MISSING.value
        assert h.launcher.sessions == []

    @pytest.mark.asyncio
    async def test_sidebar_login_failure(self, store, settings):
        h = Harness(store, settings,
                    enrichment=FakeSidebar("contactout", login_results=[False, False]))
        job = h.new_job(settings)

        final = await h.run(job)

        assert final.state == JobState.PAUSED
        assert final.state_reason == StateReason.SIDEBAR_LOGIN_FAILED.value
        assert "contactout" in final.message
        assert h.enrichment.login_calls == 2
        assert h.navigator.opened == []
        assert h.launcher.sessions[0].closed == 1

    @pytest.mark.asyncio
    async def test_sidebar_login_retried_once(self, store, settings):
        h = Harness(store, settings, outcomes=[PageAdvance.EXHAUSTED],
                    primary=FakeSidebar("signalhire", login_results=[RuntimeError("timeout"), True]))
        job = h.new_job(settings)

        final = await h.run(job)

        assert final.state == JobState.COMPLETED
        assert h.primary.login_calls == 2

    @pytest.mark.asyncio
    async def test_sidebar_cookie_missing(self, store, settings):
        h = Harness(store, settings,
                    primary=FakeSidebar("signalhire", login_results=[CredentialMissingError("signalhire")]))
        job = h.new_job(settings)

        final = await h.run(job)

        assert final.state_reason == StateReason.SIDEBAR_LOGIN_FAILED.value
        assert h.primary.login_calls == 1

    @pytest.mark.asyncio
    async def test_expired_linkedin_cookie(self, store, settings):
        h = Harness(store, settings, navigator=FakeNavigator(logged_in=False))
        job = h.new_job(settings)

        final = await h.run(job)

        assert final.state == JobState.PAUSED
        assert final.state_reason == StateReason.COOKIE_EXPIRED.value
        assert final.message == "LinkedIn cookie expired. Please update your cookie."
        assert h.launcher.sessions[0].closed == 1


class TestPauseAndResume:

    @pytest.mark.asyncio
    async def test_pause_before_advancing_first_page(self, store, settings):
        """Scenario: pause requested after page 1 is processed, before pagination."""
        h = Harness(store, settings, outcomes=[PageAdvance.MOVED],
                    primary=FakeSidebar("signalhire", pages=[[lead(1)]]))
        h.pacer.hook = lambda n: setattr(h.scheduler, "pause_requested", True)
        job = h.new_job(settings)

        final = await h.run(job)

        assert final.state == JobState.PAUSED
        assert final.state_reason is None
        assert final.page_index == 1
        assert final.current_url == SOURCE_URL
        assert final.total_primary_rows == 1
        assert h.advancer.calls == []

    @pytest.mark.asyncio
    async def test_resume_reopens_current_url(self, store, settings):
        """Pause on page 2, resume: the browser reopens page 2, not the source URL."""
        h = Harness(store, settings, outcomes=[PageAdvance.MOVED, PageAdvance.EXHAUSTED],
                    primary=FakeSidebar("signalhire", pages=[[lead(1)], [lead(2)], [lead(3)]]))
        h.pacer.hook = lambda n: setattr(h.scheduler, "pause_requested", n == 2)
        job = h.new_job(settings)

        paused = await h.run(job)
        assert paused.state == JobState.PAUSED
        assert paused.page_index == 2
        assert paused.current_url == page_url(2)
        assert paused.total_primary_rows == 2

        h.scheduler.pause_requested = False
        h.pacer.hook = None
        final = await h.run(job)

        assert h.navigator.opened == [SOURCE_URL, page_url(2)]
        assert h.advancer.calls == [1, 2]
        assert final.state == JobState.COMPLETED
        assert final.page_index == 2
        assert final.total_primary_rows == 3

    @pytest.mark.asyncio
    async def test_totals_reset_on_fresh_run(self, store, settings):
        h = Harness(store, settings, outcomes=[PageAdvance.EXHAUSTED])
        job = h.new_job(settings, total_primary_rows=50, total_enriched_rows=20)

        final = await h.run(job)

        assert final.total_primary_rows == 0
        assert final.total_enriched_rows == 0

    @pytest.mark.asyncio
    async def test_preempted_job_stops_at_first_checkpoint(self, store, settings):
        h = Harness(store, settings, outcomes=[PageAdvance.MOVED])
        job = h.new_job(settings)
        h.scheduler.current_job_id = "someone_else"

        final = await h.run(job)

        assert final.state == JobState.PAUSED
        assert h.primary.collect_calls == 0
        assert h.launcher.sessions[0].closed == 1

    @pytest.mark.asyncio
    async def test_superseded_run_hands_over_cursor_only(self, store, settings):
        """The same job was run again meanwhile: stop, save the cursor, leave the state alone."""
        h = Harness(store, settings, outcomes=[PageAdvance.MOVED],
                    primary=FakeSidebar("signalhire", pages=[[lead(1)]]))

        def rerun(n):
            h.scheduler.activation += 1

        h.pacer.hook = rerun
        job = h.new_job(settings)

        final = await h.run(job)

        assert final.state == JobState.RUNNING
        assert final.page_index == 1
        assert final.total_primary_rows == 1
        assert h.advancer.calls == []
        assert h.launcher.sessions[0].closed == 1

    @pytest.mark.asyncio
    async def test_pause_between_sidebars(self, store, settings):
        class PausingSidebar(FakeSidebar):
            async def collect(inner_self, session, page):
                rows = await super().collect(session, page)
                h.scheduler.pause_requested = True
                return rows

        h = Harness(store, settings, outcomes=[PageAdvance.MOVED],
                    primary=PausingSidebar("signalhire", pages=[[lead(1)]]))
        job = h.new_job(settings)

        final = await h.run(job)

        assert final.state == JobState.PAUSED
        assert h.enrichment.collect_calls == 0


class TestPageProcessing:

    @pytest.mark.asyncio
    async def test_rows_appended_and_enriched(self, store, settings):
        h = Harness(
            store, settings, outcomes=[PageAdvance.EXHAUSTED],
            primary=FakeSidebar("signalhire", pages=[[lead(1), lead(2)]]),
            enrichment=FakeSidebar("contactout", pages=[[profile("Grace Hopper", "navy.mil"), profile("Nobody Known", "x.io")]]),
        )
        job = h.new_job(settings)

        final = await h.run(job)

        header, rows = read_rows(job.output_file)
        assert header[7] == "Website"
        assert [r[7] for r in rows] == ["", "navy.mil"]
        assert final.total_primary_rows == 2
        assert final.total_enriched_rows == 1

    @pytest.mark.asyncio
    async def test_no_primary_rows_skips_enrichment(self, store, settings):
        h = Harness(store, settings, outcomes=[PageAdvance.EXHAUSTED],
                    primary=FakeSidebar("signalhire", pages=[[]]))
        job = h.new_job(settings)

        final = await h.run(job)

        assert h.enrichment.collect_calls == 0
        assert final.state == JobState.COMPLETED
        assert final.total_primary_rows == 0

    @pytest.mark.asyncio
    async def test_primary_failure_counts_zero_and_continues(self, store, settings):
        h = Harness(store, settings, outcomes=[PageAdvance.MOVED, PageAdvance.EXHAUSTED],
                    primary=FakeSidebar("signalhire", error=SidebarError("toggle not found")))
        job = h.new_job(settings)

        final = await h.run(job)

        assert final.state == JobState.COMPLETED
        assert final.page_index == 2
        assert final.total_primary_rows == 0

    @pytest.mark.asyncio
    async def test_enrichment_failure_does_not_abort_page(self, store, settings):
        h = Harness(store, settings, outcomes=[PageAdvance.EXHAUSTED],
                    primary=FakeSidebar("signalhire", pages=[[lead(1)]]),
                    enrichment=FakeSidebar("contactout", error=SidebarError("no profiles")))
        job = h.new_job(settings)

        final = await h.run(job)

        assert final.state == JobState.COMPLETED
        assert final.total_primary_rows == 1
        assert final.total_enriched_rows == 0

    @pytest.mark.asyncio
    async def test_reprocessed_page_not_duplicated(self, store, settings):
        h = Harness(store, settings, outcomes=[PageAdvance.MOVED, PageAdvance.EXHAUSTED],
                    primary=FakeSidebar("signalhire", pages=[[lead(1), lead(2)], [lead(2), lead(3)]]))
        job = h.new_job(settings)

        final = await h.run(job)

        _, rows = read_rows(job.output_file)
        assert [r[6] for r in rows] == [lead(i)["profile_url"] for i in (1, 2, 3)]
        assert final.total_primary_rows == 3
