"""
Browser resource pool.

One Chromium process is shared by every concurrent analysis. Callers never
hold the browser itself: they take a lease, open pages through it and give
it back. The process is launched lazily on the first lease and closed when
the last lease is returned.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Route, async_playwright

from uisnap.errors import InternalError

logger = logging.getLogger(__name__)


CHROMIUM_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--disable-gpu",
    "--window-size=1920,1080",
]

TRACKER_DOMAINS = (
    "google-analytics.com",
    "googletagmanager.com",
    "facebook.com",
    "twitter.com",
    "doubleclick.net",
    "analytics",
)


@dataclass(frozen=True)
class ResourceBlocker:
    """Deny-list predicate evaluated for every request a page makes."""

    resource_types: frozenset = frozenset({"font"})
    domains: tuple = TRACKER_DOMAINS

    def __call__(self, resource_type: str, url: str) -> bool:
        if resource_type in self.resource_types:
            return True
        return any(domain in url for domain in self.domains)


@dataclass(frozen=True)
class PageSettings:
    width: int = 1920
    height: int = 1080
    user_agent: str = ""
    blocker: ResourceBlocker = field(default_factory=ResourceBlocker)


# ---------------------------------------------------------------------------
# Playwright adapters
# ---------------------------------------------------------------------------

class PlaywrightPage:
    """The page operations the pipeline relies on, over a Playwright page."""

    def __init__(self, page, context):
        self._page = page
        self._context = context
        self._cdp = None

    async def goto(self, url: str, timeout_ms: int, wait_until: str = "networkidle") -> Optional[int]:
        response = await self._page.goto(url, timeout=timeout_ms, wait_until=wait_until)
        return response.status if response is not None else None

    async def reload(self, timeout_ms: int, wait_until: str = "domcontentloaded"):
        await self._page.reload(timeout=timeout_ms, wait_until=wait_until)

    async def screenshot(self, full_page: bool = True) -> bytes:
        return await self._page.screenshot(full_page=full_page, type="png")

    async def evaluate(self, script: str, arg=None):
        return await self._page.evaluate(script, arg)

    async def set_javascript_enabled(self, enabled: bool):
        # Chromium only; Playwright fixes this per context otherwise.
        if self._cdp is None:
            self._cdp = await self._context.new_cdp_session(self._page)
        await self._cdp.send("Emulation.setScriptExecutionDisabled", {"value": not enabled})

    @property
    def is_closed(self) -> bool:
        return self._page.is_closed()

    async def close(self):
        try:
            await self._context.close()
        except PlaywrightError as e:
            logger.warning("Error closing page: %s", e)


class ChromiumBrowser:
    def __init__(self, playwright, browser):
        self._playwright = playwright
        self._browser = browser

    def is_connected(self) -> bool:
        return self._browser.is_connected()

    def on_disconnect(self, callback: Callable[[], None]):
        self._browser.on("disconnected", lambda _browser: callback())

    async def new_page(self, settings: PageSettings) -> PlaywrightPage:
        context = await self._browser.new_context(
            viewport={"width": settings.width, "height": settings.height},
            device_scale_factor=1,
            user_agent=settings.user_agent or None,
        )
        page = await context.new_page()
        blocker = settings.blocker

        async def handle_route(route: Route):
            request = route.request
            if blocker(request.resource_type, request.url):
                await route.abort()
            else:
                await route.continue_()

        await page.route("**/*", handle_route)
        return PlaywrightPage(page, context)

    async def close(self):
        try:
            await self._browser.close()
        finally:
            await self._playwright.stop()


async def launch_chromium(headless: bool = True) -> ChromiumBrowser:
    playwright = await async_playwright().start()
    try:
        browser = await playwright.chromium.launch(headless=headless, args=CHROMIUM_ARGS)
    except BaseException:
        await playwright.stop()
        raise
    return ChromiumBrowser(playwright, browser)


# ---------------------------------------------------------------------------
# Pool
# ---------------------------------------------------------------------------

class BrowserLease:
    """A counted reference to the pooled browser. Releasing twice is a no-op."""

    def __init__(self, pool: "BrowserPool", browser):
        self._pool = pool
        self._browser = browser
        self._released = False

    async def new_page(self):
        if self._released:
            raise InternalError("browser lease already released")
        try:
            return await self._browser.new_page(self._pool.page_settings)
        except PlaywrightError as e:
            logger.error("Failed to create page: %s", e)
            raise InternalError("Failed to create page")

    async def release(self):
        if self._released:
            return
        self._released = True
        await self._pool._release(self._browser)


class BrowserPool:
    def __init__(
        self,
        launcher: Optional[Callable[[], Awaitable]] = None,
        page_settings: Optional[PageSettings] = None,
        headless: bool = True,
    ):
        self._launcher = launcher or (lambda: launch_chromium(headless=headless))
        self.page_settings = page_settings or PageSettings()
        self._browser = None
        self._ref_count = 0
        self._closing: set[asyncio.Task] = set()
        self.lock = asyncio.Lock()

    @property
    def ref_count(self) -> int:
        return self._ref_count

    def status(self) -> dict:
        return {
            "active": self._browser is not None and self._browser.is_connected(),
            "refCount": self._ref_count,
        }

    async def acquire(self) -> BrowserLease:
        async with self.lock:
            if self._browser is not None and self._browser.is_connected():
                self._ref_count += 1
                logger.info("Reusing browser instance ref_count=%d", self._ref_count)
                return BrowserLease(self, self._browser)

            logger.info("Launching browser instance")
            try:
                browser = await self._launcher()
            except Exception as e:
                logger.error("Failed to launch browser: %s", e)
                raise InternalError("Failed to launch browser")

            self._browser = browser
            self._ref_count = 1
            browser.on_disconnect(lambda: self._on_disconnect(browser))
            logger.info("Browser instance launched")
            return BrowserLease(self, browser)

    def _on_disconnect(self, browser):
        if self._browser is not browser:
            return
        logger.warning("Browser disconnected unexpectedly")
        self._browser = None
        self._ref_count = 0
        # Outstanding leases on the dead browser release as no-ops, so the
        # driver process is stopped here.
        task = asyncio.get_running_loop().create_task(self._close_disconnected(browser))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    async def _close_disconnected(self, browser):
        try:
            await browser.close()
            logger.info("Disconnected browser cleaned up")
        except Exception as e:
            logger.error("Error closing disconnected browser: %s", e)

    async def _release(self, browser):
        async with self.lock:
            # A lease on a browser that already died has nothing to give back.
            if self._browser is not browser:
                return
            self._ref_count = max(0, self._ref_count - 1)
            logger.debug("Browser reference released ref_count=%d", self._ref_count)
            if self._ref_count == 0:
                await self._close_current()

    async def _close_current(self):
        browser, self._browser = self._browser, None
        self._ref_count = 0
        if browser is None:
            return
        try:
            await browser.close()
            logger.info("Browser instance closed")
        except Exception as e:
            logger.error("Error closing browser: %s", e)

    @asynccontextmanager
    async def lease(self):
        lease = await self.acquire()
        try:
            yield lease
        finally:
            await lease.release()

    @asynccontextmanager
    async def page(self):
        """A fresh page for the duration of the block; page and lease always returned."""
        async with self.lease() as lease:
            page = await lease.new_page()
            try:
                yield page
            finally:
                await page.close()

    async def shutdown(self):
        async with self.lock:
            await self._close_current()
        if self._closing:
            await asyncio.gather(*self._closing)
