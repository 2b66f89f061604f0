"""
Global fixtures for all unit tests.

Environment variables are set BEFORE any lead_runner import so the cached
settings never pick up a developer's .env values.
"""

import os

os.environ["ENVIRONMENT"] = "development"
os.environ.pop("RUNNER_API_SECRET", None)
os.environ["SPEED_SCALE"] = "0.01"

import pytest

from lead_runner.config import LeadRunnerSettings, get_settings
from lead_runner.jobs.store import JobStore


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Settings are lru_cached; start every test from a clean environment."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings(tmp_path):
    """Settings rooted in a temp dir with near-zero pacing."""
    return LeadRunnerSettings(
        data_dir=tmp_path / "data",
        jobs_dir=tmp_path / "jobs",
        cookies_dir=tmp_path / "cookies",
        user_data_dir=tmp_path / "profile",
        extensions_dir=tmp_path / "extensions",
        speed_scale=0.01,
        pagination_settle_ms=100,
        pagination_poll_ms=10,
        pagination_max_attempts=3,
        sidebar_retries=2,
    )


@pytest.fixture
def store(tmp_path):
    return JobStore(tmp_path / "jobs")
