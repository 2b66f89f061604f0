"""
ContactOut sidebar: the enrichment source.

ContactOut shows contact cards (name plus email addresses) for the visible
leads. Its floating toggle may live in the page or in an extension frame
that is attached only after the page loads, so finding it races a poll of
the existing frames against the next ``frameattached`` event.
"""

import asyncio
import logging
import re
from typing import Any, Awaitable, Iterable, List, Optional, Sequence, Tuple

from playwright.async_api import Error as PlaywrightError

from lead_runner.common.delays import scaled_sequence_ms
from lead_runner.common.error_handling import SidebarError
from lead_runner.common.text import clean_name, filter_business_domains, split_name
from lead_runner.common.types import EnrichmentProfile
from lead_runner.services.sidebar import SidebarOrchestrator

logger = logging.getLogger(__name__)

TOGGLE = (
    "button#floating-button, button#contactout-floating-button, "
    '[data-testid="contactout-floating-button"], [aria-label*="contactout" i]'
)
RESULT_CARD = 'div[data-testid="contact-information"]'
LOGGED_OUT_MARKERS = (
    "text=Sign up to save contact details",
    "button:has-text('Sign up')",
    "button:has-text('Sign in')",
    "button:has-text('Login')",
    "text=/ContactOut.*free/i",
)

TOGGLE_TIMEOUT_MS = 8_000
EXISTING_POLL_MS = 400
NEW_FRAME_WAIT_MS = 800
RESULTS_TIMEOUT_MS = 15_000
RESULTS_POLL_MS = 150
POLL_STEP_MS = 120
MICRO_SCROLL_WAIT_MS = 250

PRE_EXTRACT_DELAYS_MS = (1000, 1200, 1400, 1500, 1600, 1700, 1800, 1900, 2000)

_FRAME_URL = re.compile(r"contactout", re.IGNORECASE)

_EXTRACT_SCRIPT = """
(cards) => cards.map((card) => {
  const nameEl = card.querySelector('div.css-72nh78')
    || card.querySelector('[data-testid="contact-name"]')
    || card.querySelector('h3, h4');
  const emails = Array.from(card.querySelectorAll(':scope * span'))
    .map((s) => (s.textContent || '').trim())
    .filter((t) => t.includes('@'));
  return { name: nameEl ? (nameEl.textContent || '').trim() : '', emails };
})
"""

_MICRO_SCROLL_SCRIPT = """
(sel) => {
  const card = document.querySelector(sel);
  let n = card ? card.parentElement : null;
  while (n && n !== document.body && n.scrollHeight <= n.clientHeight) n = n.parentElement;
  (n || document.scrollingElement || document.body).scrollBy(0, 200);
}
"""


def _is_contactout_frame(frame: Any) -> bool:
    url = frame.url or ""
    return url.startswith("chrome-extension://") and bool(_FRAME_URL.search(url))


def _roots(page: Any) -> List[Any]:
    """Extension frames first, then the page and every other frame."""
    frames = list(page.frames)
    preferred = [f for f in frames if _is_contactout_frame(f)]
    return preferred + [f for f in frames if f not in preferred]


async def first_found(awaitables: Iterable[Awaitable[Optional[Any]]]) -> Optional[Any]:
    """
    Run ``awaitables`` concurrently and return the first non-None result.

    The remaining tasks are cancelled and awaited before returning. Errors
    in an individual task count as "not found".
    """
    tasks = [asyncio.ensure_future(a) for a in awaitables]
    try:
        pending = set(tasks)
        while pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if task.cancelled() or task.exception() is not None:
                    continue
                if task.result() is not None:
                    return task.result()
        return None
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


def to_profiles(raw_cards: Iterable[dict]) -> List[EnrichmentProfile]:
    """
    Clean raw cards into profiles, dropping unnamed cards and duplicates.

    Two cards are duplicates when their lowercased names and sorted domain
    sets are equal.
    """
    seen: set = set()
    profiles: List[EnrichmentProfile] = []
    for raw in raw_cards:
        full_name = clean_name(raw.get("name") or "")
        if not full_name:
            continue
        domains = filter_business_domains(raw.get("emails") or [])
        key: Tuple[str, Tuple[str, ...]] = (full_name.lower(), tuple(sorted(domains)))
        if key in seen:
            continue
        seen.add(key)
        first, last = split_name(full_name)
        profiles.append(EnrichmentProfile(full_name=full_name, first_name=first, last_name=last, domains=domains))
    return profiles


class ContactOutOrchestrator(SidebarOrchestrator):
    """
    Enrichment sidebar. The toggle is clicked on every page, even with cards
    still showing, so the extension reloads its cards for the new leads.
    """

    name = "contactout"
    login_url = "https://contactout.com/profile"
    require_results = True

    def pre_extract_delays_ms(self) -> Optional[Sequence[int]]:
        return scaled_sequence_ms(PRE_EXTRACT_DELAYS_MS, self.settings.speed_scale)

    # === Toggle ===

    async def _find_in_existing(self, page: Any, timeout_ms: int) -> Optional[Any]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_ms / 1000
        while True:
            for root in _roots(page):
                try:
                    toggle = root.locator(TOGGLE).first
                    if await toggle.count():
                        return toggle
                except PlaywrightError:
                    continue
            if loop.time() >= deadline:
                return None
            await asyncio.sleep(POLL_STEP_MS / 1000)

    async def _find_in_new_frame(self, page: Any, timeout_ms: int) -> Optional[Any]:
        queue: asyncio.Queue = asyncio.Queue()
        handler = queue.put_nowait
        page.on("frameattached", handler)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_ms / 1000
        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    return None
                try:
                    frame = await asyncio.wait_for(queue.get(), timeout=remaining)
                except asyncio.TimeoutError:
                    return None
                try:
                    await frame.wait_for_load_state("domcontentloaded", timeout=max(1, int(remaining * 1000)))
                    toggle = frame.locator(TOGGLE).first
                    if await toggle.count():
                        return toggle
                except PlaywrightError:
                    continue
        finally:
            page.remove_listener("frameattached", handler)

    async def _click(self, toggle: Any) -> bool:
        try:
            await toggle.evaluate("el => el.click()")
            return True
        except PlaywrightError:
            pass
        try:
            await toggle.click(force=True, timeout=2000)
            return True
        except PlaywrightError as e:
            logger.warning(f"ContactOut toggle click failed: {e}")
            return False

    async def open_sidebar(self, page: Any) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + TOGGLE_TIMEOUT_MS / 1000
        while loop.time() < deadline:
            toggle = await first_found([
                self._find_in_existing(page, EXISTING_POLL_MS),
                self._find_in_new_frame(page, NEW_FRAME_WAIT_MS),
            ])
            if toggle is not None:
                logger.debug("ContactOut toggle found")
                return await self._click(toggle)
        return False

    # === State ===

    async def is_logged_in(self, page: Any) -> bool:
        for root in _roots(page):
            for marker in LOGGED_OUT_MARKERS:
                try:
                    if await root.locator(marker).first.is_visible():
                        logger.info(f"ContactOut logged-out marker found: {marker}")
                        return False
                except PlaywrightError:
                    continue
        return True

    async def _count_cards(self, page: Any) -> int:
        total = 0
        for root in page.frames:
            try:
                total += await root.locator(RESULT_CARD).count()
            except PlaywrightError:
                continue
        return total

    async def wait_for_results(self, page: Any) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + RESULTS_TIMEOUT_MS / 1000
        while loop.time() < deadline:
            if await self._count_cards(page):
                return
            await asyncio.sleep(RESULTS_POLL_MS / 1000)
        raise SidebarError("ContactOut results not visible")

    # === Extraction ===

    async def _read_cards(self, page: Any) -> List[dict]:
        raw: List[dict] = []
        for root in page.frames:
            try:
                cards = root.locator(RESULT_CARD)
                if await cards.count():
                    raw.extend(await cards.evaluate_all(_EXTRACT_SCRIPT))
            except PlaywrightError as e:
                logger.debug(f"ContactOut read failed in frame {root.url}: {e}")
        return raw

    async def extract(self, page: Any) -> List[EnrichmentProfile]:
        raw = await self._read_cards(page)
        before = len(raw)

        for root in page.frames:
            try:
                if await root.locator(RESULT_CARD).count():
                    await root.evaluate(_MICRO_SCROLL_SCRIPT, RESULT_CARD)
            except PlaywrightError:
                continue
        await asyncio.sleep(MICRO_SCROLL_WAIT_MS / 1000)

        if await self._count_cards(page) > before:
            logger.debug("More ContactOut cards after scroll; reading again")
            raw.extend(await self._read_cards(page))

        profiles = to_profiles(raw)
        logger.info(f"ContactOut profiles: {len(profiles)} (from {len(raw)} card(s))")
        return profiles
