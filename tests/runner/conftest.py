"""
Pytest fixtures for lead runner API tests.
"""

import asyncio
import json
import os

# IMPORTANT: Set environment variables BEFORE any imports from lead_runner
# so LeadRunnerSettings is configured correctly when the app module loads.
os.environ["ENVIRONMENT"] = "development"
os.environ.pop("RUNNER_API_SECRET", None)
os.environ["SPEED_SCALE"] = "0.01"

import pytest
from fastapi.testclient import TestClient

from lead_runner.config import get_settings
from lead_runner.jobs.models import JobState

TEST_SECRET = "test-secret-key-1234"  # Min 16 chars
SEARCH_URL = "https://www.linkedin.com/sales/search/people?query=(keywords:founder)"
LINKEDIN_COOKIES = json.dumps([
    {"name": "li_at", "value": "AQED", "domain": ".linkedin.com", "path": "/", "secure": True},
])


class CooperativeRunner:
    """Replaces the browser loop: idles until told to stop, then pauses."""

    def __init__(self, scheduler):
        self.scheduler = scheduler
        self.started = []

    async def run(self, job_id):
        self.started.append(job_id)
        while not self.scheduler.should_stop(job_id):
            await asyncio.sleep(0.01)
        self.scheduler.store.update(job_id, state=JobState.PAUSED, message="Paused")


def _configure(tmp_path, monkeypatch, secret=None):
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("JOBS_DIR", str(tmp_path / "jobs"))
    monkeypatch.setenv("COOKIES_DIR", str(tmp_path / "cookies"))
    if secret:
        monkeypatch.setenv("RUNNER_API_SECRET", secret)
    get_settings.cache_clear()


def _serve():
    """Enter the app lifespan and swap the browser loop for a CooperativeRunner."""
    from lead_runner.app import app
    from lead_runner.dependencies import get_scheduler

    with TestClient(app) as test_client:
        scheduler = get_scheduler()
        test_client.runner = CooperativeRunner(scheduler)
        test_client.scheduler = scheduler
        scheduler.set_runner(test_client.runner.run)
        yield test_client
    get_settings.cache_clear()


@pytest.fixture
def client(tmp_path, monkeypatch):
    """Client with startup run against temp dirs and a fake runner; auth off."""
    _configure(tmp_path, monkeypatch)
    yield from _serve()


@pytest.fixture
def secured_client(tmp_path, monkeypatch):
    """Same as ``client`` but with RUNNER_API_SECRET configured."""
    _configure(tmp_path, monkeypatch, secret=TEST_SECRET)
    yield from _serve()


@pytest.fixture
def auth_headers():
    """Authentication headers for test requests."""
    return {"Authorization": f"Bearer {TEST_SECRET}"}


@pytest.fixture
def invalid_auth_headers():
    """Invalid authentication headers for testing auth failures."""
    return {"Authorization": "Bearer wrong-secret-value"}


@pytest.fixture
def with_linkedin_cookie(client):
    response = client.post("/api/save-cookie", json={"cookie": LINKEDIN_COOKIES})
    assert response.status_code == 200
    return client
