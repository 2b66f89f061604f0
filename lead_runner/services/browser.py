"""
Playwright browser sessions.

A persistent Chromium context with both sidebar extensions loaded. The
profile directory keeps extension state and cookies between jobs.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from playwright.async_api import BrowserContext, Playwright, Route, async_playwright

from lead_runner.config import LeadRunnerSettings
from lead_runner.services.base import BrowserLauncher, BrowserSession

logger = logging.getLogger(__name__)

EXTENSION_NAMES = ("contactout", "signalhire")

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/118.0.0.0 Safari/537.36"
)

BLOCKED_RESOURCE_TYPES = {"image", "media", "font"}


def chromium_args(extension_dirs: List[Path]) -> List[str]:
    """Launch flags: hide automation markers and load the unpacked extensions."""
    args = [
        "--disable-blink-features=AutomationControlled",
        "--disable-infobars",
        "--test-type",
        "--no-first-run",
        "--no-default-browser-check",
        "--password-store=basic",
        "--use-mock-keychain",
    ]
    if extension_dirs:
        joined = ",".join(str(p) for p in extension_dirs)
        args.append(f"--disable-extensions-except={joined}")
        args.append(f"--load-extension={joined}")
    return args


async def _block_heavy_resources(route: Route) -> None:
    if route.request.resource_type in BLOCKED_RESOURCE_TYPES:
        await route.abort()
    else:
        await route.continue_()


class PlaywrightSession(BrowserSession):
    """Owns the Playwright driver and one persistent context."""

    def __init__(self, playwright: Playwright, context: BrowserContext):
        self._playwright = playwright
        self.context = context
        self._closed = False

    async def new_page(self) -> Any:
        return await self.context.new_page()

    async def add_cookies(self, cookies: List[Dict[str, Any]]) -> int:
        """Bulk add; if the browser rejects the batch, add one by one and skip bad cookies."""
        if not cookies:
            return 0
        try:
            await self.context.add_cookies(cookies)
            return len(cookies)
        except Exception as e:
            logger.warning(f"Bulk add_cookies failed, retrying one by one: {e}")

        accepted = 0
        for cookie in cookies:
            try:
                await self.context.add_cookies([cookie])
                accepted += 1
            except Exception as e:
                logger.error(f"Rejected cookie {cookie.get('name')}: {e}")
        return accepted

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self.context.close()
        except Exception as e:
            logger.warning(f"Error closing browser context: {e}")
        try:
            await self._playwright.stop()
        except Exception as e:
            logger.warning(f"Error stopping Playwright: {e}")
        logger.info("Browser session closed")


class PlaywrightLauncher(BrowserLauncher):
    """
    Launch the persistent Chromium profile configured in settings.

    Usage:
        session = await PlaywrightLauncher(settings).launch()
        try:
            page = await session.new_page()
        finally:
            await session.close()
    """

    def __init__(self, settings: LeadRunnerSettings):
        self.settings = settings

    def extension_dirs(self) -> List[Path]:
        dirs = []
        for name in EXTENSION_NAMES:
            path = (Path(self.settings.extensions_dir) / name).resolve()
            if path.exists():
                dirs.append(path)
            else:
                logger.warning(f"Extension directory missing: {path}")
        return dirs

    async def launch(self) -> PlaywrightSession:
        user_data_dir = Path(self.settings.user_data_dir)
        user_data_dir.mkdir(parents=True, exist_ok=True)

        playwright = await async_playwright().start()
        context: Optional[BrowserContext] = None
        try:
            logger.info(f"Launching Chromium (headless={self.settings.headless}, profile={user_data_dir})")
            context = await playwright.chromium.launch_persistent_context(
                str(user_data_dir),
                headless=self.settings.headless,
                args=chromium_args(self.extension_dirs()),
                ignore_default_args=["--enable-automation"],
                viewport={"width": 1920, "height": 1080},
                user_agent=USER_AGENT,
            )
            if self.settings.block_resources:
                await context.route("**/*", _block_heavy_resources)
        except Exception:
            if context is not None:
                await context.close()
            await playwright.stop()
            raise

        return PlaywrightSession(playwright, context)
