"""Immo Harvester — Scripted Browser Retriever.

The heavyweight retrieval strategy for JavaScript-rendered pages, driving
headless Chromium through Playwright. Every session gets:
  - an isolated, disposable profile directory, removed on every exit path
  - a randomized viewport and User-Agent
  - explicit timeout budgets for navigation, selector and pagination waits

Waits never raise: a timeout is logged and reported as False / None so
callers can carry on with whatever was captured.
"""

from __future__ import annotations

import asyncio
import random
import re
import tempfile
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from immo_harvester.config import BrowserConfig
from immo_harvester.scraper.client import DEFAULT_HEADERS, NO_RESPONSE, FetchResult
from immo_harvester.utils.logger import get_logger

logger = get_logger(__name__)

__all__ = ["BrowserRetriever", "BrowserSession", "PlaywrightError", "bot_detected"]

# ── Bot Detection ─────────────────────────────────────────
SUSPICIOUS_STATUS_CODES = frozenset({403, 429})
BOT_DETECTION_PATTERNS = (
    re.compile(r"verify you are human", re.IGNORECASE),
    re.compile(r"access denied", re.IGNORECASE),
    re.compile(r"x-amz-cf-id", re.IGNORECASE),
)

PROFILE_PREFIX = "immo-harvester-profile-"


def bot_detected(content: Optional[str], status_code: int) -> bool:
    """Whether a response looks like a challenge page instead of content."""
    if status_code in SUSPICIOUS_STATUS_CODES:
        return True
    if not content:
        return False
    return any(pattern.search(content) for pattern in BOT_DETECTION_PATTERNS)


class BrowserSession:
    """One open browser page with bounded-wait operations.

    Attributes:
        page: The underlying Playwright page.
        config: Browser configuration holding the timeout budgets.
    """

    def __init__(self, page: Page, config: BrowserConfig) -> None:
        self.page = page
        self.config = config

    async def settle(self) -> None:
        """Sleep for a randomized delay within the configured range."""
        low, high = self.config.settle_delay_ms
        if high <= 0:
            return
        await asyncio.sleep(random.uniform(low, high) / 1000)

    async def goto(self, url: str, wait_for_selector: Optional[str] = None) -> FetchResult:
        """Navigate to a URL and return the rendered markup.

        Args:
            url: Page to load.
            wait_for_selector: Optional selector signalling the content is
                rendered. A timeout here is logged; the markup is still read.

        Returns:
            FetchResult with None content on timeout, error or bot detection.
        """
        try:
            response = await self.page.goto(
                url,
                wait_until="domcontentloaded",
                timeout=self.config.navigation_timeout_ms,
            )
        except PlaywrightTimeoutError:
            logger.warning(
                "Navigation timed out after %dms: %s",
                self.config.navigation_timeout_ms, url,
            )
            return FetchResult(None, NO_RESPONSE)
        except PlaywrightError as e:
            logger.warning("Navigation failed for %s: %s", url, e)
            return FetchResult(None, NO_RESPONSE)

        status_code = response.status if response is not None else NO_RESPONSE
        await self.settle()

        if wait_for_selector:
            await self.wait_for_selector(wait_for_selector)

        content = await self.content()
        if bot_detected(content, status_code):
            logger.warning("Bot detection triggered (status %d) for %s", status_code, url)
            return FetchResult(None, status_code)
        return FetchResult(content, status_code)

    async def content(self) -> Optional[str]:
        """Current rendered markup, or None if the page is gone."""
        try:
            return await self.page.content()
        except PlaywrightError as e:
            logger.warning("Could not read page content: %s", e)
            return None

    async def wait_for_selector(self, selector: str, timeout_ms: Optional[int] = None) -> bool:
        """Wait for a selector within the selector budget. False on timeout."""
        timeout = timeout_ms if timeout_ms is not None else self.config.selector_timeout_ms
        try:
            await self.page.wait_for_selector(selector, timeout=timeout)
            return True
        except PlaywrightTimeoutError:
            logger.warning("Timed out after %dms waiting for %s", timeout, selector)
            return False
        except PlaywrightError as e:
            logger.warning("Waiting for %s failed: %s", selector, e)
            return False

    async def exists(self, selector: str) -> bool:
        try:
            return await self.page.query_selector(selector) is not None
        except PlaywrightError:
            return False

    async def click_and_wait_for(
        self,
        selector: str,
        js_predicate: str,
        arg: Any = None,
    ) -> bool:
        """Click an element and wait until a JS predicate holds.

        Both the click and the wait share the pagination budget.

        Returns:
            True once the predicate is satisfied, False when the element is
            missing, the click fails or the wait times out.
        """
        timeout = self.config.pagination_timeout_ms
        try:
            element = await self.page.query_selector(selector)
            if element is None:
                return False
            await element.click(timeout=timeout)
            await self.page.wait_for_function(js_predicate, arg=arg, timeout=timeout)
            return True
        except PlaywrightTimeoutError:
            logger.warning("Timed out after %dms after clicking %s", timeout, selector)
            return False
        except PlaywrightError as e:
            logger.warning("Click on %s failed: %s", selector, e)
            return False


class BrowserRetriever:
    """Launches short-lived, isolated Chromium sessions.

    Attributes:
        config: Browser configuration from settings.yaml.
    """

    def __init__(self, config: BrowserConfig) -> None:
        self.config = config

    def _random_viewport(self) -> dict[str, int]:
        return {
            "width": 1920 + random.randrange(100),
            "height": 1080 + random.randrange(100),
        }

    @asynccontextmanager
    async def session(self) -> AsyncIterator[BrowserSession]:
        """Open a browser with a throwaway profile and yield a session.

        The browser is closed and the profile directory removed on every
        exit path, including launch failures and cancellation.

        Raises:
            PlaywrightError: If the browser cannot be launched.
        """
        user_agent = random.choice(self.config.user_agents)
        viewport = self._random_viewport()

        with tempfile.TemporaryDirectory(
            prefix=PROFILE_PREFIX, ignore_cleanup_errors=True,
        ) as profile_dir:
            async with async_playwright() as playwright:
                logger.debug(
                    "Launching browser (viewport %dx%d, profile %s)",
                    viewport["width"], viewport["height"], profile_dir,
                )
                context = await playwright.chromium.launch_persistent_context(
                    profile_dir,
                    headless=self.config.headless,
                    args=list(self.config.launch_args),
                    timeout=self.config.launch_timeout_ms,
                    viewport=viewport,
                    user_agent=user_agent,
                    locale="de-DE",
                    extra_http_headers={**DEFAULT_HEADERS, "User-Agent": user_agent},
                )
                try:
                    page = context.pages[0] if context.pages else await context.new_page()
                    page.set_default_timeout(self.config.selector_timeout_ms)
                    page.set_default_navigation_timeout(self.config.navigation_timeout_ms)
                    yield BrowserSession(page, self.config)
                finally:
                    try:
                        await context.close()
                    except PlaywrightError as e:
                        logger.debug("Browser close failed: %s", e)
                    logger.debug("Browser session closed")

    async def fetch(self, url: str, wait_for_selector: Optional[str] = None) -> FetchResult:
        """One-shot retrieval: open a session, load one page, tear down."""
        try:
            async with self.session() as session:
                return await session.goto(url, wait_for_selector)
        except PlaywrightError as e:
            logger.warning("Browser retrieval failed for %s: %s", url, e)
            return FetchResult(None, NO_RESPONSE)
