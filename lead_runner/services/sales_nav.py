"""
Sales Navigator page helpers.

- ``SalesNavigator``: opens the search page with the LinkedIn cookies and
  detects a logged-out redirect.
- ``SalesNavResultView``: the Playwright-backed result view used by the
  pagination advancer.
- ``HumanPacer``: scrolls the lead list like a person and waits a random
  interval before pagination.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional, Tuple

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from lead_runner.common.delays import next_delay_secs, sleep_random
from lead_runner.config import LeadRunnerSettings
from lead_runner.services.base import BrowserSession, CredentialProvider, Pacer

logger = logging.getLogger(__name__)

ROW_TITLE = 'a[data-control-name^="view_lead_panel"]'
PAGINATION_ROOT = 'div[data-sn-view-name="search-pagination"]'
NEXT_BUTTON = f'{PAGINATION_ROOT} button[aria-label="Next"]'
CURRENT_PAGE_BUTTON = (
    f"{PAGINATION_ROOT} li.artdeco-pagination__indicator--number.active.selected "
    'button[aria-current="true"]'
)
PAGE_STATE = (
    f"{PAGINATION_ROOT} .artdeco-pagination__page-state, "
    f"{PAGINATION_ROOT} .artdeco-pagination__state--a11y"
)
NO_LEADS_XPATH = "xpath=//div[h3[contains(text(), 'No leads matched your search')]]"

NEXT_WAIT_MS = 3000
FIRST_ROW_ATTACH_MS = 700
NO_LEADS_WAIT_MS = 300
NAVIGATION_TIMEOUT_MS = 45_000
RELOAD_TIMEOUT_MS = 15_000
MIN_VISIBLE_ROWS = 10

_LINKEDIN_LOGGED_OUT = ("/login", "/signin", "signup")


def page_button_selector(n: int) -> str:
    return f'{PAGINATION_ROOT} li[data-test-pagination-page-btn="{n}"] > button'


def is_linkedin_login_url(url: str) -> bool:
    """LinkedIn redirects logged-out sessions to a login/signup page."""
    lowered = (url or "").lower()
    return any(marker in lowered for marker in _LINKEDIN_LOGGED_OUT)


def _norm(s: Optional[str]) -> str:
    return re.sub(r"\s+", " ", (s or "").lower()).strip()


def parse_page_state(text: str) -> Tuple[Optional[int], Optional[int]]:
    """
    Parse "Page X of Y".

    >>> parse_page_state("Page 3 of 40")
    (3, 40)
    >>> parse_page_state("")
    (None, None)
    """
    m = re.search(r"Page\s+(\d+)\s+of\s+(\d+)", text or "", re.IGNORECASE)
    if not m:
        return None, None
    return int(m.group(1)), int(m.group(2))


async def wait_for_lead_list(page: Page, settings: LeadRunnerSettings, timeout_ms: Optional[int] = None) -> None:
    """
    Wait until the lead list is visible with a reasonable number of rows.

    Raises PlaywrightTimeoutError if no row becomes visible in time.
    """
    timeout = timeout_ms or settings.lead_list_timeout_ms
    await page.wait_for_selector(ROW_TITLE, state="visible", timeout=timeout)
    try:
        await page.wait_for_function(
            "([sel, n]) => document.querySelectorAll(sel).length >= n",
            arg=[ROW_TITLE, MIN_VISIBLE_ROWS],
            timeout=timeout,
        )
    except PlaywrightTimeoutError:
        # Short final pages have fewer rows
        logger.debug("Lead list has fewer rows than expected; continuing")
    try:
        await page.wait_for_load_state("domcontentloaded", timeout=500)
    except PlaywrightTimeoutError:
        pass
    await sleep_random(settings.lead_list_delay_min_secs, settings.lead_list_delay_max_secs, settings.speed_scale)


async def is_lead_list_visible(page: Any, timeout_ms: int = 600) -> bool:
    try:
        await page.locator(ROW_TITLE).first.wait_for(state="visible", timeout=timeout_ms)
        return True
    except (PlaywrightTimeoutError, PlaywrightError):
        return False


async def safe_reload(page: Page, settings: LeadRunnerSettings) -> None:
    """Reload, falling back to re-navigating; then wait for the lead list. Never raises."""
    url = page.url
    try:
        await page.reload(wait_until="domcontentloaded", timeout=RELOAD_TIMEOUT_MS)
    except PlaywrightError:
        try:
            await page.goto(url, wait_until="domcontentloaded", timeout=RELOAD_TIMEOUT_MS)
        except PlaywrightError as e:
            logger.warning(f"Reload failed for {url}: {e}")
    try:
        await wait_for_lead_list(page, settings)
    except PlaywrightError:
        pass


class SalesNavResultView:
    """Playwright implementation of the pagination ``ResultView``."""

    def __init__(self, page: Page, settings: LeadRunnerSettings):
        self.page = page
        self.settings = settings

    async def fingerprint(self) -> str:
        """``first href|text || last href|text || count:N``, normalized; "" when no rows."""
        rows = self.page.locator(ROW_TITLE)
        try:
            count = await rows.count()
            if count == 0:
                return ""
            first = rows.first
            last = rows.nth(max(0, count - 1))
            try:
                await first.wait_for(state="attached", timeout=FIRST_ROW_ATTACH_MS)
            except PlaywrightTimeoutError:
                pass
            f_href, f_text, l_href, l_text = await asyncio.gather(
                first.get_attribute("href"),
                first.text_content(),
                last.get_attribute("href"),
                last.text_content(),
                return_exceptions=True,
            )
        except PlaywrightError:
            return ""

        def clean(v: Any) -> str:
            return "" if isinstance(v, BaseException) else _norm(v)

        return f"{clean(f_href)}|{clean(f_text)}||{clean(l_href)}|{clean(l_text)}||count:{count}"

    async def has_exhaustion_banner(self) -> bool:
        try:
            await self.page.wait_for_selector(NO_LEADS_XPATH, timeout=NO_LEADS_WAIT_MS)
            return True
        except PlaywrightError:
            return False

    async def current_page_number(self) -> int:
        try:
            text = await self.page.locator(CURRENT_PAGE_BUTTON).first.text_content(timeout=600)
            return int((text or "").strip())
        except (PlaywrightError, ValueError):
            return 0

    async def _page_state(self) -> Tuple[Optional[int], Optional[int]]:
        try:
            text = await self.page.locator(PAGE_STATE).first.text_content(timeout=900)
        except PlaywrightError:
            return None, None
        return parse_page_state(text or "")

    async def _next_disabled(self, timeout_ms: int) -> Optional[bool]:
        """True/False for the Next button state, None if it is not on the page."""
        try:
            button = await self.page.wait_for_selector(NEXT_BUTTON, timeout=timeout_ms)
        except PlaywrightError:
            return None
        if button is None:
            return None
        return await button.evaluate("b => b.disabled || b.getAttribute('aria-disabled') === 'true'")

    async def is_last_page(self) -> bool:
        """
        Disabled Next, "Page X of Y" with X >= Y, or no pagination control
        at all under a rendered lead list (a single page of results).
        """
        disabled = await self._next_disabled(1200)
        if disabled:
            return True
        current = await self.current_page_number()
        state_current, total = await self._page_state()
        current = current or state_current
        if current and total:
            return current >= total
        if disabled is None and await is_lead_list_visible(self.page):
            logger.info("No pagination control under the lead list; single page of results")
            return True
        return False

    async def _safe_click(self, locator: Any, label: str) -> None:
        try:
            await locator.scroll_into_view_if_needed(timeout=1500)
        except PlaywrightError:
            pass
        try:
            await locator.click(timeout=1500)
        except PlaywrightError:
            # Overlay intercepting the click: wiggle the mouse and force it
            try:
                await self.page.mouse.move(5, 5)
                await self.page.mouse.move(0, 0)
            except PlaywrightError:
                pass
            await locator.click(timeout=1500, force=True)
        logger.debug(f"clicked: {label}")

    async def click_next(self, target_page: int) -> bool:
        numbered = self.page.locator(page_button_selector(target_page)).first
        if await numbered.count():
            await self._safe_click(numbered, f"page-{target_page}")
            return True

        disabled = await self._next_disabled(NEXT_WAIT_MS)
        if disabled is None or disabled:
            return False
        await self._safe_click(self.page.locator(NEXT_BUTTON).first, "next")
        return True

    async def reload(self) -> None:
        await safe_reload(self.page, self.settings)

    def url(self) -> str:
        return self.page.url

    async def goto(self, url: str) -> None:
        await self.page.goto(url, wait_until="domcontentloaded", timeout=RELOAD_TIMEOUT_MS)
        try:
            await wait_for_lead_list(self.page, self.settings)
        except PlaywrightError:
            pass


@dataclass
class SearchPage:
    page: Any
    logged_in: bool
    final_url: str


class SalesNavigator:
    """Opens the search results with the stored LinkedIn cookies."""

    def __init__(self, settings: LeadRunnerSettings, credentials: CredentialProvider):
        self.settings = settings
        self.credentials = credentials

    async def open(self, session: BrowserSession, url: str) -> SearchPage:
        """
        Add LinkedIn cookies, open ``url`` and judge login by the final URL.

        A navigation timeout is not fatal; the URL check still runs.
        """
        cookies = self.credentials.load_credential()
        await session.add_cookies(cookies)

        page = await session.new_page()
        try:
            await page.goto(url, wait_until="domcontentloaded", timeout=NAVIGATION_TIMEOUT_MS)
        except PlaywrightError as e:
            logger.warning(f"Navigation to search page did not finish cleanly: {e}")
        await page.wait_for_timeout(500)
        final_url = page.url
        logged_in = not is_linkedin_login_url(final_url)
        if logged_in:
            try:
                await wait_for_lead_list(page, self.settings)
            except PlaywrightError as e:
                logger.warning(f"Lead list not visible after opening search: {e}")
        return SearchPage(page=page, logged_in=logged_in, final_url=final_url)

    def result_view(self, page: Any) -> SalesNavResultView:
        return SalesNavResultView(page, self.settings)


# In-page scroller: largest scrollable container, fixed steps, stop when stuck
_SCROLL_SCRIPT = """
async (cfg) => {
  const delay = (ms) => new Promise((res) => setTimeout(res, ms));
  const rand = (min, max) => Math.floor(min + Math.random() * (max - min + 1));
  const cands = Array.from(document.querySelectorAll('main, section, div, ul, ol'))
    .filter((n) => n.scrollHeight > n.clientHeight && n.offsetHeight > 300)
    .sort((a, b) => b.clientHeight - a.clientHeight);
  const el = cands[0] || null;
  if (!el) return 'no-scroll-container';
  let lastTop = -1;
  let same = 0;
  for (let i = 0; i < cfg.maxSteps; i++) {
    el.scrollBy({ top: cfg.stepPx, behavior: 'smooth' });
    await delay(rand(cfg.minDelayMs, cfg.maxDelayMs));
    const curr = el.scrollTop;
    if (curr === lastTop) {
      same++;
      if (same >= cfg.stuckSteps) break;
    } else {
      same = 0;
      lastTop = curr;
    }
  }
  return 'scroll-complete';
}
"""


class HumanPacer(Pacer):
    """
    Incremental scroll of the lead list followed by a random pause.

    All delays are multiplied by ``speed_scale``.
    """

    def __init__(
        self,
        settings: LeadRunnerSettings,
        max_steps: int = 40,
        step_px: int = 200,
        min_delay_ms: int = 400,
        max_delay_ms: int = 1000,
        stuck_steps: int = 4,
    ):
        self.settings = settings
        self.max_steps = max_steps
        self.step_px = step_px
        self.min_delay_ms = min_delay_ms
        self.max_delay_ms = max_delay_ms
        self.stuck_steps = stuck_steps

    async def settle(self, page: Any) -> None:
        scale = self.settings.speed_scale
        try:
            await page.wait_for_selector(ROW_TITLE, timeout=15_000)
            result = await page.evaluate(
                _SCROLL_SCRIPT,
                {
                    "maxSteps": self.max_steps,
                    "stepPx": self.step_px,
                    "minDelayMs": round(self.min_delay_ms * scale),
                    "maxDelayMs": round(self.max_delay_ms * scale),
                    "stuckSteps": self.stuck_steps,
                },
            )
            logger.debug(f"Lead list scroll: {result}")
        except PlaywrightError as e:
            logger.warning(f"Scroll error: {e}")

        delay = next_delay_secs(self.settings.page_delay_min_secs, self.settings.page_delay_max_secs, scale)
        await asyncio.sleep(delay)
