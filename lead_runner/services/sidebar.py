"""
Sidebar Orchestrator Base

Shared open / login / wait / extract cycle for the browser-extension
sidebars. Concrete orchestrators supply the page-specific pieces (toggle,
login markers, result wait, extraction); this class owns the bounded retry
with a page reload between attempts and the cookie re-login fallback.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Sequence

from playwright.async_api import Error as PlaywrightError

from lead_runner.common.delays import sleep_sequence_ms
from lead_runner.common.error_handling import SidebarError, SidebarLoginError
from lead_runner.common.retry import retry_with_recovery
from lead_runner.config import LeadRunnerSettings
from lead_runner.services.base import BrowserSession, CredentialProvider
from lead_runner.services.sales_nav import is_lead_list_visible, safe_reload, wait_for_lead_list

logger = logging.getLogger(__name__)

LOGIN_TIMEOUT_MS = 15_000

_PROVIDER_LOGGED_OUT = ("/login", "/signin", "auth")


def is_provider_login_url(url: str) -> bool:
    """Sidebar providers redirect logged-out sessions to login/auth pages."""
    lowered = (url or "").lower()
    return any(marker in lowered for marker in _PROVIDER_LOGGED_OUT)


class SidebarOrchestrator(ABC):
    """
    One third-party sidebar on the Sales Navigator results page.

    Subclasses set ``name`` and ``login_url`` and implement the abstract
    page hooks. ``require_results`` makes an empty extraction count as a
    failed attempt.
    """

    name: str = "sidebar"
    login_url: str = ""
    require_results: bool = False

    def __init__(self, settings: LeadRunnerSettings, credentials: CredentialProvider):
        self.settings = settings
        self.credentials = credentials

    # === Page hooks ===

    async def is_open(self, page: Any) -> bool:
        """
        True if results are already showing, so the toggle must not be clicked.

        Only override this for sidebars that keep their cards in sync with
        the visible page by themselves.
        """
        return False

    @abstractmethod
    async def open_sidebar(self, page: Any) -> bool:
        """Click the extension toggle. Returns False if it could not be found."""
        pass

    @abstractmethod
    async def is_logged_in(self, page: Any) -> bool:
        pass

    @abstractmethod
    async def wait_for_results(self, page: Any) -> None:
        """Raise if no result card appears within the provider's timeout."""
        pass

    @abstractmethod
    async def extract(self, page: Any) -> List[Any]:
        pass

    def pre_extract_delays_ms(self) -> Optional[Sequence[int]]:
        return None

    # === Shared cycle ===

    async def login(self, session: BrowserSession) -> bool:
        """
        Install the provider cookies and open its site in a dedicated tab.

        Returns:
            True unless the provider redirected to a login page.

        Raises:
            CredentialMissingError: if no cookie file is stored
        """
        cookies = self.credentials.load_credential()
        await session.add_cookies(cookies)
        page = await session.new_page()
        try:
            try:
                await page.goto(self.login_url, wait_until="domcontentloaded", timeout=LOGIN_TIMEOUT_MS)
            except PlaywrightError as e:
                logger.warning(f"[{self.name}] login page did not finish loading: {e}")
            logged_in = not is_provider_login_url(page.url)
        finally:
            try:
                await page.close()
            except PlaywrightError:
                pass
        logger.info(f"[{self.name}] login {'ok' if logged_in else 'FAILED'}")
        return logged_in

    async def ensure_ready(self, session: BrowserSession, page: Any) -> None:
        """
        Open the sidebar and wait for results, re-logging in once if needed.

        Raises:
            SidebarError: toggle not found or results never appeared
            SidebarLoginError: still logged out after the re-login
        """
        if not await is_lead_list_visible(page):
            await wait_for_lead_list(page, self.settings)

        if await self.is_open(page):
            logger.debug(f"[{self.name}] sidebar already open")
            return

        if not await self.open_sidebar(page):
            raise SidebarError(f"{self.name} toggle not found/clickable")

        if not await self.is_logged_in(page):
            logger.warning(f"[{self.name}] extension not logged in; attempting relogin")
            try:
                await self.login(session)
            except Exception as e:
                logger.warning(f"[{self.name}] relogin error: {e}")
            await safe_reload(page, self.settings)
            if not await self.open_sidebar(page):
                raise SidebarError(f"{self.name} toggle not found/clickable after relogin")
            if not await self.is_logged_in(page):
                raise SidebarLoginError(f"{self.name} login failed after relogin")

        await self.wait_for_results(page)

    async def collect(self, session: BrowserSession, page: Any) -> List[Any]:
        """
        Ready the sidebar and extract, retrying with a reload between attempts.

        Raises:
            SidebarError: when every attempt failed
        """
        async def attempt(n: int) -> List[Any]:
            logger.info(f"[{self.name}] attempt {n}/{self.settings.sidebar_retries}")
            await self.ensure_ready(session, page)
            await sleep_sequence_ms(self.pre_extract_delays_ms())
            rows = await self.extract(page)
            logger.info(f"[{self.name}] extracted {len(rows)} row(s)")
            return rows

        async def recover() -> None:
            logger.info(f"[{self.name}] reloading page and retrying")
            await safe_reload(page, self.settings)

        try:
            rows = await retry_with_recovery(
                attempt,
                succeeded=(lambda r: bool(r)) if self.require_results else (lambda r: True),
                max_attempts=self.settings.sidebar_retries,
                recover=recover,
                label=self.name,
            )
        except SidebarError:
            raise
        except Exception as e:
            raise SidebarError(f"{self.name} failed after {self.settings.sidebar_retries} attempt(s): {e}") from e

        if self.require_results and not rows:
            raise SidebarError(f"{self.name} found no profiles after {self.settings.sidebar_retries} attempt(s)")
        return rows
