"""
Pagination Advancer

Moves a live result list to its next page and classifies the outcome:

- MOVED: the visible result set changed (content fingerprint differs)
- EXHAUSTED: the "no leads" banner is shown or the list is on its last page
- FAILED: nothing moved after every attempt and both rescues

A click is never trusted on its own; only a changed fingerprint counts as
movement.

Usage:
    advancer = PaginationAdvancer.from_settings(settings)
    outcome = await advancer.advance(view, current_page=job.page_index)
"""

import asyncio
import logging
from enum import Enum
from typing import Optional

from lead_runner.common.retry import retry_with_recovery
from lead_runner.config import LeadRunnerSettings
from lead_runner.services.base import ResultView

logger = logging.getLogger(__name__)

# Sales Navigator page size used when the URL paginates by offset
OFFSET_PAGE_SIZE = 25


class PageAdvance(str, Enum):
    MOVED = "moved"
    EXHAUSTED = "exhausted"
    FAILED = "failed"


def summarize_fingerprint(key: Optional[str]) -> str:
    """Shorten long fingerprints so log lines stay readable."""
    if not key:
        return "(empty)"
    if len(key) <= 120:
        return key
    return f"{key[:100]} ... {key[-18:]}"


def compute_next_page_url(current_url: str, desired_page: int) -> Optional[str]:
    """
    Next-page URL built from the current one.

    ``page`` or ``p`` is set to ``desired_page``; ``start`` is advanced by
    one page of results; otherwise ``page=<desired_page>`` is added. Other
    parameters are left byte-for-byte untouched.

    >>> compute_next_page_url("https://x.test/search?query=a&page=2", 3)
    'https://x.test/search?query=a&page=3'
    >>> compute_next_page_url("https://x.test/search?start=25", 3)
    'https://x.test/search?start=50'
    >>> compute_next_page_url("https://x.test/search", 2)
    'https://x.test/search?page=2'
    """
    if not current_url or "://" not in current_url:
        return None

    base, _, fragment = current_url.partition("#")
    path, sep, query = base.partition("?")
    params = [p for p in query.split("&") if p] if sep else []

    def find(name: str) -> Optional[int]:
        for i, part in enumerate(params):
            if part.split("=", 1)[0] == name:
                return i
        return None

    for name in ("page", "p"):
        idx = find(name)
        if idx is not None:
            params[idx] = f"{name}={desired_page}"
            break
    else:
        idx = find("start")
        if idx is not None:
            raw = params[idx].split("=", 1)[1] if "=" in params[idx] else "0"
            try:
                start = int(raw or 0)
            except ValueError:
                start = 0
            params[idx] = f"start={start + OFFSET_PAGE_SIZE}"
        else:
            params.append(f"page={desired_page}")

    url = f"{path}?{'&'.join(params)}"
    return f"{url}#{fragment}" if fragment else url


class PaginationAdvancer:
    """
    Bounded next-page protocol over a ``ResultView``.

    Each attempt clicks the numbered control for the next page (or Next) and
    polls the fingerprint for up to ``settle_ms``. Between attempts the view
    is reloaded. After ``max_attempts`` a reload rescue and a URL rescue are
    tried before giving up.
    """

    def __init__(self, settle_ms: int = 1200, poll_ms: int = 120, max_attempts: int = 3):
        self.settle_ms = settle_ms
        self.poll_ms = poll_ms
        self.max_attempts = max_attempts

    @classmethod
    def from_settings(cls, settings: LeadRunnerSettings) -> "PaginationAdvancer":
        return cls(
            settle_ms=settings.pagination_settle_ms,
            poll_ms=settings.pagination_poll_ms,
            max_attempts=settings.pagination_max_attempts,
        )

    async def advance(self, view: ResultView, current_page: int = 1) -> PageAdvance:
        """Advance ``view`` by one page and report what happened."""
        if await view.has_exhaustion_banner():
            logger.info("End: 'No leads matched your search' banner detected")
            return PageAdvance.EXHAUSTED
        if await view.is_last_page():
            logger.info(f"End: last page detected (page {current_page})")
            return PageAdvance.EXHAUSTED

        before = await view.fingerprint()
        logger.debug(f"fingerprint.before = {summarize_fingerprint(before)}")

        async def attempt(n: int) -> Optional[PageAdvance]:
            if n > 1 and await self._changed_since(view, before):
                logger.info("Result list changed after recovery reload")
                return PageAdvance.MOVED
            return await self._click_and_wait(view, before, current_page)

        try:
            outcome = await retry_with_recovery(
                attempt,
                succeeded=lambda r: r is not None,
                max_attempts=self.max_attempts,
                recover=view.reload,
                label="pagination",
            )
        except Exception as e:
            logger.warning(f"Pagination attempts ended with error: {e}")
            outcome = None
        if outcome is not None:
            return outcome

        outcome = await self._reload_rescue(view, before, current_page)
        if outcome is not None:
            return outcome

        outcome = await self._url_rescue(view, before, current_page)
        if outcome is not None:
            return outcome

        try:
            if await view.has_exhaustion_banner():
                logger.info("End: banner detected at final check")
                return PageAdvance.EXHAUSTED
            if await view.is_last_page():
                logger.info("End: last page at final check")
                return PageAdvance.EXHAUSTED
        except Exception as e:
            logger.warning(f"Final pagination check failed: {e}")

        logger.error(f"FAILED to move past page {current_page} after all attempts and rescues")
        return PageAdvance.FAILED

    async def _target_page(self, view: ResultView, current_page: int) -> int:
        try:
            live = await view.current_page_number()
        except Exception:
            live = 0
        return (live or current_page or 0) + 1

    async def _click_and_wait(self, view: ResultView, before: str, current_page: int) -> Optional[PageAdvance]:
        target = await self._target_page(view, current_page)
        logger.info(f"Clicking through to page {target}")
        if not await view.click_next(target):
            if await view.is_last_page():
                logger.info("End: next control absent or disabled (last page)")
                return PageAdvance.EXHAUSTED
            logger.warning("No pagination control could be clicked")
            return None
        return await self._wait_for_change(view, before)

    async def _wait_for_change(self, view: ResultView, before: str) -> Optional[PageAdvance]:
        """Poll until the banner appears or the fingerprint moves, up to settle_ms."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settle_ms / 1000
        while loop.time() < deadline:
            if await view.has_exhaustion_banner():
                logger.info("End: 'No leads' banner after click")
                return PageAdvance.EXHAUSTED
            after = await view.fingerprint()
            if after and before and after != before:
                logger.info(f"MOVED. fingerprint.after = {summarize_fingerprint(after)}")
                return PageAdvance.MOVED
            await asyncio.sleep(self.poll_ms / 1000)
        logger.warning("No change detected within settle window")
        return None

    async def _changed_since(self, view: ResultView, before: str) -> bool:
        """Fingerprint differs now, or after one short resample."""
        for sample in range(2):
            after = await view.fingerprint()
            if before and after and after != before:
                return True
            if sample == 0:
                await asyncio.sleep(self.poll_ms / 1000)
        return False

    async def _reload_rescue(self, view: ResultView, before: str, current_page: int) -> Optional[PageAdvance]:
        logger.warning("Rescue #1: reload and re-check")
        try:
            await view.reload()
            if await self._changed_since(view, before):
                logger.info("MOVED after reload")
                return PageAdvance.MOVED
            return await self._click_and_wait(view, before, current_page)
        except Exception as e:
            logger.warning(f"Reload rescue failed: {e}")
            return None

    async def _url_rescue(self, view: ResultView, before: str, current_page: int) -> Optional[PageAdvance]:
        desired = await self._target_page(view, current_page)
        next_url = compute_next_page_url(view.url(), desired)
        logger.warning(f"Rescue #2: URL jump planned => {next_url or '(none)'}")
        if not next_url:
            return None
        try:
            await view.goto(next_url)
            if await self._changed_since(view, before):
                logger.info("MOVED via URL jump")
                return PageAdvance.MOVED
            logger.warning("URL jump did not change list")
        except Exception as e:
            logger.warning(f"URL jump failed: {e}")
        return None
