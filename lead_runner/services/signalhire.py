"""
SignalHire sidebar: the primary lead source.

The extension lists the visible Sales Navigator people as cards (name,
title, company, location, LinkedIn URL). Cards are rendered either in the
page or in the extension's own frame.
"""

import logging
import re
from typing import Any, List, Optional, Sequence

from playwright.async_api import Error as PlaywrightError

from lead_runner.common.delays import increasing_delays_ms
from lead_runner.common.error_handling import SidebarError
from lead_runner.common.text import clean_cell, clean_company_name, clean_name, split_name
from lead_runner.common.types import LeadRow
from lead_runner.services.sidebar import SidebarOrchestrator

logger = logging.getLogger(__name__)

TOGGLE = 'button img[alt="SH"]'
CARD = "li._1VGRZDYbh"
LOGGED_OUT_MARKERS = (
    "text=/Welcome to SignalHire/i",
    'span._1AjY9-VYq:has-text("Sign in")',
    "text=/Sign in/i",
)

TOGGLE_TIMEOUT_MS = 10_000
RESULTS_TIMEOUT_MS = 8_000
FIRST_CARD_TIMEOUT_MS = 15_000
MAX_CARDS = 2000

_FRAME_URL = re.compile(r"signalhire", re.IGNORECASE)

# Runs in the card container: scroll until the card count is stable twice
_LOAD_ALL_SCRIPT = """
async ([cardSel, maxCards]) => {
  const delay = (ms) => new Promise((r) => setTimeout(r, ms));
  const list = document.querySelector(`ul:has(${cardSel})`);
  if (!list) return 0;
  const scroller = (() => {
    let n = list;
    while (n && n !== document.body) {
      if (n.scrollHeight > n.clientHeight) return n;
      n = n.parentElement;
    }
    return list;
  })();
  let last = -1;
  let stable = 0;
  while (stable < 2) {
    const count = list.querySelectorAll(cardSel).length;
    if (count >= maxCards) break;
    if (count === last) { stable++; } else { stable = 0; last = count; }
    scroller.scrollTop = scroller.scrollHeight;
    await delay(400);
  }
  return list.querySelectorAll(cardSel).length;
}
"""

_EXTRACT_SCRIPT = """
(cards) => cards.map((card) => {
  const text = (sel) => {
    const el = card.querySelector(sel);
    return el ? (el.textContent || '').trim() : '';
  };
  const link = card.querySelector('div._4rhT6X1EK a');
  return {
    name: text('h3.X9UUt5-wC'),
    location: text('i._1rkN4HF-c + span'),
    title: text('i._23sCxfSQ5 + span'),
    company: text('i._1kYVNzVgg + span'),
    profile_url: link ? link.href : '',
  };
})
"""


def to_lead_row(raw: dict) -> LeadRow:
    """Clean one raw card into a lead row with split first/last names."""
    name = clean_name(raw.get("name") or "")
    first, last = split_name(name)
    return LeadRow(
        name=name,
        first_name=first,
        last_name=last,
        title=clean_cell(raw.get("title")),
        company=clean_company_name(raw.get("company") or ""),
        location=clean_cell(raw.get("location")),
        profile_url=clean_cell(raw.get("profile_url")),
    )


def _roots(page: Any) -> List[Any]:
    return [page] + [f for f in page.frames if f is not page.main_frame]


class SignalHireOrchestrator(SidebarOrchestrator):
    name = "signalhire"
    login_url = "https://www.signalhire.com/candidates/3c4f94c0b61d4f999d1bf0b6093f3fcb"

    def pre_extract_delays_ms(self) -> Optional[Sequence[int]]:
        return increasing_delays_ms(base=1000, max_ms=2000, scale=self.settings.speed_scale)

    async def is_open(self, page: Any) -> bool:
        for root in _roots(page):
            try:
                if await root.locator(CARD).first.is_visible():
                    return True
            except PlaywrightError:
                continue
        return False

    async def open_sidebar(self, page: Any) -> bool:
        try:
            toggle = page.locator(TOGGLE).first
            await toggle.wait_for(state="visible", timeout=TOGGLE_TIMEOUT_MS)
            await toggle.click(force=True)
            logger.debug("SignalHire toggle clicked")
            return True
        except PlaywrightError:
            pass
        for frame in page.frames:
            try:
                toggle = frame.locator(TOGGLE).first
                if await toggle.count():
                    await toggle.click(force=True)
                    logger.debug(f"SignalHire toggle clicked in frame {frame.url}")
                    return True
            except PlaywrightError:
                continue
        return False

    async def is_logged_in(self, page: Any) -> bool:
        for root in _roots(page):
            for marker in LOGGED_OUT_MARKERS:
                try:
                    if await root.locator(marker).first.is_visible():
                        logger.info(f"SignalHire logged-out marker found: {marker}")
                        return False
                except PlaywrightError:
                    continue
        return True

    async def wait_for_results(self, page: Any) -> None:
        try:
            await page.locator(CARD).first.wait_for(state="visible", timeout=RESULTS_TIMEOUT_MS)
            return
        except PlaywrightError:
            pass
        if await self.is_open(page):
            return
        raise SidebarError("SignalHire results not visible")

    async def _result_root(self, page: Any) -> Any:
        try:
            if await page.locator(CARD).count():
                return page
        except PlaywrightError:
            pass
        for frame in page.frames:
            if frame.url.startswith("chrome-extension://") and _FRAME_URL.search(frame.url):
                return frame
        return page

    async def extract(self, page: Any) -> List[LeadRow]:
        root = await self._result_root(page)
        try:
            await root.locator(CARD).first.wait_for(state="visible", timeout=FIRST_CARD_TIMEOUT_MS)
        except PlaywrightError as e:
            raise SidebarError(f"No SignalHire cards found: {e}") from e

        loaded = await root.evaluate(_LOAD_ALL_SCRIPT, [CARD, MAX_CARDS])
        logger.debug(f"SignalHire cards loaded: {loaded}")

        raw_cards = await root.locator(CARD).evaluate_all(_EXTRACT_SCRIPT)
        rows = [to_lead_row(raw) for raw in raw_cards]
        return [r for r in rows if r.get("name") or r.get("profile_url")]
