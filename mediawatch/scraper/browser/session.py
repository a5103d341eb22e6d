"""
Playwright-backed browser session.

One Chromium instance is launched per worker loop and shared by every worker
unit. Each job runs in its own ``BrowsingContext`` (a Playwright
``BrowserContext``) so cookies and storage never leak between jobs.
"""

import logging
from typing import Any, Dict, List, Optional

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from ..core.exceptions import ExtractionError, NavigationError

logger = logging.getLogger(__name__)


class BrowsingContext:
    """An isolated browsing context for a single job"""

    def __init__(self, context: BrowserContext, stats: Optional[Dict[str, int]] = None):
        self._context = context
        self._stats = stats
        self._closed = False

    async def navigate(self, url: str, *, timeout_ms: int, wait_until: str = "networkidle") -> Page:
        """
        Open a page and navigate it to ``url``.

        Raises:
            NavigationError: If the page fails to load or the document responds with status >= 400
        """
        try:
            page = await self._context.new_page()
            response = await page.goto(url, timeout=timeout_ms, wait_until=wait_until)  # type: ignore[arg-type]
        except PlaywrightError as e:
            raise NavigationError(url, str(e).splitlines()[0] if str(e) else type(e).__name__, original_error=e) from e

        if response is not None and response.status >= 400:
            raise NavigationError(url, f"HTTP {response.status}", status_code=response.status)

        return page

    async def evaluate(self, page: Page, script: str) -> Any:
        """
        Run an extraction script in the page.

        Raises:
            ExtractionError: If the script throws or the page went away
        """
        try:
            return await page.evaluate(script)
        except PlaywrightError as e:
            raise ExtractionError(f"Extraction script failed on {page.url}: {e}", original_error=e) from e

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._context.close()
        if self._stats is not None:
            self._stats["contexts_closed"] += 1


class BrowserSession:
    """
    Shared headless Chromium session.

    Launched once by ``launch()``, torn down by ``close()``.
    """

    def __init__(
        self,
        headless: bool = True,
        executable_path: Optional[str] = None,
        args: Optional[List[str]] = None,
    ):
        self.headless = headless
        self.executable_path = executable_path
        self.args = args or []

        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self.stats: Dict[str, int] = {"contexts_opened": 0, "contexts_closed": 0}

    @property
    def is_connected(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    async def launch(self) -> None:
        if self._browser is not None:
            return

        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self.headless,
            executable_path=self.executable_path,
            args=self.args,
        )
        logger.info("Browser session launched", extra={"headless": self.headless})

    async def new_context(self, *, user_agent: str, viewport: Dict[str, int]) -> BrowsingContext:
        """Create an isolated context with its own identity string and viewport"""
        if self._browser is None:
            raise RuntimeError("Browser session must be launched before creating contexts")

        context = await self._browser.new_context(user_agent=user_agent, viewport=viewport)  # type: ignore[arg-type]
        self.stats["contexts_opened"] += 1
        return BrowsingContext(context, self.stats)

    async def close(self) -> None:
        try:
            if self._browser is not None:
                await self._browser.close()
        finally:
            self._browser = None
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None
        logger.info("Browser session closed")
