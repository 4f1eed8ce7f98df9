import re
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from playwright.async_api import async_playwright, Browser, BrowserContext, Page

from ..core.base import ResourceContext
from ..core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

SUPPORTED_BROWSERS = ('chromium', 'firefox', 'webkit')


class PlaywrightResourceContext(ResourceContext):
    """One browser context and page for one scenario attempt"""

    def __init__(
            self,
            browser: Browser,
            viewport: Optional[Dict[str, int]] = None,
            screenshot_dir: str = "screenshots"
    ):
        self.browser = browser
        self.viewport = viewport or {"width": 1280, "height": 720}
        self.screenshot_dir = Path(screenshot_dir)
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None

    async def acquire(self) -> Dict[str, Any]:
        self.context = await self.browser.new_context(viewport=self.viewport)
        self.page = await self.context.new_page()
        return {'context': self.context, 'page': self.page}

    async def release(self) -> None:
        if self.context is not None:
            await self.context.close()
        self.context = None
        self.page = None

    async def screenshot(self, name: str) -> Optional[str]:
        """Take a screenshot and return the path"""
        if self.page is None:
            return None
        self.screenshot_dir.mkdir(parents=True, exist_ok=True)
        safe_name = re.sub(r'[^\w-]+', '_', name)
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S_%f')
        path = self.screenshot_dir / f"{safe_name}_{timestamp}.png"
        await self.page.screenshot(path=str(path))
        return str(path)


class PlaywrightResources:
    """
    Owns a Playwright browser for the run and hands out a fresh
    PlaywrightResourceContext per scenario attempt

    Use as an async context manager, then call the instance as a factory.
    """

    def __init__(
            self,
            browser: str = "chromium",
            headless: bool = True,
            slow_mo: int = 0,
            viewport: Optional[Dict[str, int]] = None,
            screenshot_dir: str = "screenshots"
    ):
        if browser not in SUPPORTED_BROWSERS:
            raise ConfigurationError(f"Unsupported browser: {browser}")
        self.browser_name = browser
        self.headless = headless
        self.slow_mo = slow_mo
        self.viewport = viewport
        self.screenshot_dir = screenshot_dir
        self._playwright = None
        self.browser: Optional[Browser] = None

    async def start(self) -> None:
        """Launch browser with configuration"""
        self._playwright = await async_playwright().start()
        browser_type = getattr(self._playwright, self.browser_name)
        self.browser = await browser_type.launch(headless=self.headless, slow_mo=self.slow_mo)
        logger.info(f"Launched {self.browser_name} (headless={self.headless})")

    async def stop(self) -> None:
        if self.browser is not None:
            await self.browser.close()
            self.browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    async def __aenter__(self) -> "PlaywrightResources":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    def __call__(self) -> PlaywrightResourceContext:
        if self.browser is None:
            raise RuntimeError("Browser is not running; use PlaywrightResources as an async context manager")
        return PlaywrightResourceContext(self.browser, self.viewport, self.screenshot_dir)
