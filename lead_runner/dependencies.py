"""
Component wiring for the request layer.

``build_scheduler`` assembles the job store, browser collaborators, sidebars
and runner from settings. Routes obtain the process-wide scheduler through
``get_scheduler``, which tests replace via ``app.dependency_overrides``.
"""

import logging
from datetime import timedelta
from typing import Optional

from fastapi import Depends, HTTPException

from lead_runner.config import LeadRunnerSettings, get_settings
from lead_runner.jobs.runner import JobRunner
from lead_runner.jobs.scheduler import Scheduler
from lead_runner.jobs.store import JobStore
from lead_runner.services.browser import PlaywrightLauncher
from lead_runner.services.contactout import ContactOutOrchestrator
from lead_runner.services.credentials import CONTACTOUT, LINKEDIN, SIGNALHIRE, CookieFileCredentialProvider
from lead_runner.services.pagination import PaginationAdvancer
from lead_runner.services.sales_nav import HumanPacer, SalesNavigator
from lead_runner.services.signalhire import SignalHireOrchestrator

logger = logging.getLogger(__name__)

COOKIE_SITES = (LINKEDIN, SIGNALHIRE, CONTACTOUT)

_scheduler: Optional[Scheduler] = None


def build_scheduler(settings: LeadRunnerSettings) -> Scheduler:
    """Load job records, sweep old ones and wire a scheduler with its runner."""
    store = JobStore(settings.jobs_dir)
    store.load()
    removed = store.sweep_older_than(timedelta(days=settings.job_retention_days))
    if removed:
        logger.info(f"Retention sweep removed {len(removed)} job(s)")

    linkedin = CookieFileCredentialProvider(LINKEDIN, settings.cookies_dir)
    scheduler = Scheduler(store, settings, linkedin)
    scheduler.recover_interrupted()

    runner = JobRunner(
        store=store,
        scheduler=scheduler,
        credentials=linkedin,
        launcher=PlaywrightLauncher(settings),
        navigator=SalesNavigator(settings, linkedin),
        primary=SignalHireOrchestrator(settings, CookieFileCredentialProvider(SIGNALHIRE, settings.cookies_dir)),
        enrichment=ContactOutOrchestrator(settings, CookieFileCredentialProvider(CONTACTOUT, settings.cookies_dir)),
        advancer=PaginationAdvancer.from_settings(settings),
        pacer=HumanPacer(settings),
        settings=settings,
    )
    scheduler.set_runner(runner.run)
    return scheduler


def init_scheduler(settings: LeadRunnerSettings) -> Scheduler:
    global _scheduler
    _scheduler = build_scheduler(settings)
    return _scheduler


def get_scheduler() -> Scheduler:
    if _scheduler is None:
        raise HTTPException(status_code=503, detail="Runner not initialized")
    return _scheduler


def cookie_provider_for(site: Optional[str], settings: LeadRunnerSettings) -> CookieFileCredentialProvider:
    site = (site or LINKEDIN).lower()
    if site not in COOKIE_SITES:
        raise HTTPException(status_code=400, detail=f"Unknown site: {site}")
    return CookieFileCredentialProvider(site, settings.cookies_dir)


def get_cookie_provider(
    site: str = LINKEDIN,
    settings: LeadRunnerSettings = Depends(get_settings),
) -> CookieFileCredentialProvider:
    """Cookie file provider for ``site`` (query parameter, default linkedin)."""
    return cookie_provider_for(site, settings)
