"""Rendered page fetching on a shared headless Chromium.

One browser process serves every concurrent crawl; each fetch gets its own
context and page so cookies and viewport never leak between crawls. The pool
relaunches the browser if it has disconnected and refuses work once shut down.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any
from urllib.parse import urlparse

from playwright.async_api import Browser, Page, Playwright, Route, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from emailsleuth.config import CrawlConfig, get_config, get_settings
from emailsleuth.core.exceptions import BrowserUnavailableError, FetchError
from emailsleuth.core.logging import get_logger
from emailsleuth.fetch.base import (
    DESKTOP_USER_AGENT,
    MOBILE_USER_AGENT,
    BasePageFetcher,
    Device,
    FetchMode,
    FetchResult,
)
from emailsleuth.fetch.blocked import detect_blocked
from emailsleuth.pipeline.decoder import decode_candidates
from emailsleuth.pipeline.tables import get_tables
from emailsleuth.schemas.extraction import CandidateEmail, ExtractionMethod

logger = get_logger(__name__)

BLOCKED_RESOURCE_TYPES = frozenset({"image", "media", "font"})

DEVICE_PROFILES: dict[Device, dict[str, Any]] = {
    Device.DESKTOP: {
        "user_agent": DESKTOP_USER_AGENT,
        "viewport": {"width": 1366, "height": 900},
    },
    Device.MOBILE: {
        "user_agent": MOBILE_USER_AGENT,
        "viewport": {"width": 390, "height": 844},
        "device_scale_factor": 3,
        "is_mobile": True,
        "has_touch": True,
    },
}

# Resolves once the page's framework reports it has rendered.
HYDRATION_SIGNAL_JS = """
() => {
    const text = (document.body && document.body.innerText) || "";
    if (window.__NEXT_DATA__ && window.next && window.next.router) return true;
    if (window.$nuxt && window.$nuxt.$el) return true;
    if (typeof window.getAllAngularRootElements === "function"
        && window.getAllAngularRootElements().length > 0
        && text.length > 200) return true;
    const root = document.querySelector("#root, #app, #__next, #__nuxt, [data-reactroot]");
    return !!root && root.children.length > 0 && text.length > 200;
}
"""

SCROLL_JS = """
async ([full, stepPx, pauseMs, maxSteps]) => {
    const sleep = (ms) => new Promise((r) => setTimeout(r, ms));
    if (!full) {
        window.scrollTo(0, document.body.scrollHeight);
        await sleep(pauseMs * 3);
        return 1;
    }
    let steps = 0;
    while (steps < maxSteps && window.scrollY + window.innerHeight < document.body.scrollHeight) {
        window.scrollBy(0, stepPx);
        await sleep(pauseMs);
        steps += 1;
    }
    window.scrollTo(0, document.body.scrollHeight);
    return steps;
}
"""

DOM_QUIET_JS = """
([quietMs, timeoutMs]) => new Promise((resolve) => {
    let quiet = null;
    let hard = null;
    const observer = new MutationObserver(() => {
        clearTimeout(quiet);
        quiet = setTimeout(done, quietMs);
    });
    function done() {
        observer.disconnect();
        clearTimeout(quiet);
        clearTimeout(hard);
        resolve(true);
    }
    observer.observe(document.documentElement, {
        childList: true, subtree: true, attributes: true, characterData: true,
    });
    quiet = setTimeout(done, quietMs);
    hard = setTimeout(done, timeoutMs);
})
"""

SHADOW_DOM_JS = """
() => {
    const chunks = [];
    const visit = (root, depth) => {
        if (depth > 10) return;
        for (const el of root.querySelectorAll("*")) {
            if (el.shadowRoot) {
                chunks.push(el.shadowRoot.innerHTML);
                visit(el.shadowRoot, depth + 1);
            }
        }
    };
    visit(document, 0);
    return chunks.join("\\n");
}
"""


async def _block_heavy_resources(route: Route) -> None:
    if route.request.resource_type in BLOCKED_RESOURCE_TYPES:
        await route.abort()
    else:
        await route.continue_()


def _same_origin(a: str, b: str) -> bool:
    host_a = urlparse(a).netloc.lower().removeprefix("www.")
    host_b = urlparse(b).netloc.lower().removeprefix("www.")
    return bool(host_a) and host_a == host_b


class BrowserPool:
    """Lazily launched, shared Chromium with an explicit lifecycle.

    acquire() opens an isolated page, release() closes it, is_healthy()
    reports whether the browser is connected, shutdown() closes everything
    and makes further acquire() calls fail.
    """

    def __init__(self, headless: bool | None = None) -> None:
        self._headless = get_settings().browser_headless if headless is None else headless
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._lock = asyncio.Lock()
        self._shut_down = False
        self._open_pages: set[Page] = set()

    async def _ensure_browser(self) -> Browser:
        async with self._lock:
            if self._shut_down:
                raise BrowserUnavailableError("Browser pool has been shut down")
            if self._browser is not None and self._browser.is_connected():
                return self._browser

            if self._browser is not None:
                logger.warning("browser_disconnected_relaunching")

            try:
                if self._playwright is None:
                    self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(
                    headless=self._headless,
                    args=["--disable-dev-shm-usage", "--no-sandbox"],
                )
            except PlaywrightError as e:
                raise BrowserUnavailableError(str(e)) from e

            logger.info("browser_launched", headless=self._headless)
            return self._browser

    async def acquire(self, device: Device = Device.DESKTOP) -> Page:
        """Open a new page with the device profile and resource blocking applied."""
        browser = await self._ensure_browser()
        try:
            context = await browser.new_context(
                ignore_https_errors=True,
                java_script_enabled=True,
                **DEVICE_PROFILES[device],
            )
            page = await context.new_page()
            await page.route("**/*", _block_heavy_resources)
        except PlaywrightError as e:
            raise BrowserUnavailableError(str(e)) from e

        self._open_pages.add(page)
        return page

    async def release(self, page: Page) -> None:
        self._open_pages.discard(page)
        try:
            await page.context.close()
        except PlaywrightError as e:
            logger.debug("browser_page_release_failed", error=str(e))

    def is_healthy(self) -> bool:
        return not self._shut_down and self._browser is not None and self._browser.is_connected()

    @asynccontextmanager
    async def page(self, device: Device = Device.DESKTOP) -> AsyncIterator[Page]:
        page = await self.acquire(device)
        try:
            yield page
        finally:
            await self.release(page)

    async def shutdown(self) -> None:
        """Close open pages, then the browser, then the driver."""
        async with self._lock:
            self._shut_down = True
            for page in list(self._open_pages):
                await self.release(page)
            if self._browser is not None:
                try:
                    await self._browser.close()
                except PlaywrightError as e:
                    logger.debug("browser_close_failed", error=str(e))
                self._browser = None
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None
        logger.info("browser_shutdown")


class RenderedFetcher(BasePageFetcher):
    """Fetch through a real browser: scripts run, lazy content is scrolled in."""

    mode = FetchMode.RENDERED

    def __init__(self, pool: BrowserPool, config: CrawlConfig | None = None) -> None:
        self._pool = pool
        self._config = config or get_config().crawl

    async def fetch(
        self,
        url: str,
        device: Device = Device.DESKTOP,
        full_scroll: bool = False,
        settle_ms: int = 0,
    ) -> FetchResult:
        log = logger.bind(url=url, device=device.value)
        try:
            page = await self._pool.acquire(device)
        except BrowserUnavailableError as e:
            log.bind(error=str(e)).warning("browser_unavailable")
            return FetchResult(url=url, error=f"Browser unavailable: {e}")

        try:
            status_code = await self._navigate(page, url)
            html = await page.content()
            if self._looks_like_spa(html):
                await self._wait_for_hydration(page)
            if settle_ms:
                await page.wait_for_timeout(settle_ms)
            await self._scroll(page, full_scroll)
            await self._wait_for_dom_quiet(page)

            html = await page.content()
            extra = await self._harvest_frames(page, url)
            extra.extend(await self._harvest_shadow_roots(page, url))

            return FetchResult(
                url=url,
                html=html,
                status_code=status_code,
                final_url=page.url,
                blocked_status=detect_blocked(html, status_code),
                extra_emails=extra,
            )
        except FetchError as e:
            log.bind(reason=e.reason).info("rendered_fetch_failed")
            return FetchResult(url=url, error=e.reason)
        except PlaywrightError as e:
            log.bind(error=str(e)).warning("rendered_fetch_error")
            return FetchResult(url=url, error=str(e))
        finally:
            await self._pool.release(page)

    async def _navigate(self, page: Page, url: str) -> int | None:
        """
        Try each wait strategy in turn: network idle, load, then DOM ready.

        Returns the response status (None for same-document navigations).
        Raises FetchError once every strategy has failed.
        """
        last_error = "no navigation strategies configured"
        for wait_until, timeout_seconds in self._config.navigation_timeouts_seconds.items():
            try:
                response = await page.goto(
                    url,
                    wait_until=wait_until,  # type: ignore[arg-type]
                    timeout=timeout_seconds * 1000,
                )
                return response.status if response is not None else None
            except PlaywrightTimeoutError:
                last_error = f"{wait_until} timed out"
                logger.bind(url=url, wait_until=wait_until).debug("navigation_timeout")
            except PlaywrightError as e:
                last_error = str(e)
                logger.bind(url=url, wait_until=wait_until, error=last_error).debug("navigation_error")
        raise FetchError(url, f"All navigation strategies failed ({last_error})")

    def _looks_like_spa(self, html: str) -> bool:
        return any(marker in html for marker in get_tables().spa_markers)

    async def _wait_for_hydration(self, page: Page) -> None:
        try:
            await page.wait_for_function(
                HYDRATION_SIGNAL_JS,
                timeout=self._config.hydration_wait_seconds * 1000,
            )
        except PlaywrightTimeoutError:
            logger.bind(url=page.url).debug("hydration_wait_timeout")

    async def _scroll(self, page: Page, full_scroll: bool) -> None:
        try:
            await page.evaluate(SCROLL_JS, [full_scroll, 600, 150, 40])
        except PlaywrightError as e:
            logger.bind(url=page.url, error=str(e)).debug("scroll_failed")

    async def _wait_for_dom_quiet(self, page: Page) -> None:
        timeout = self._config.dom_stability_timeout_seconds
        try:
            async with asyncio.timeout(timeout + 2):
                await page.evaluate(DOM_QUIET_JS, [self._config.dom_quiet_ms, timeout * 1000])
        except (TimeoutError, PlaywrightError) as e:
            logger.bind(url=page.url, error=str(e) or type(e).__name__).debug("dom_quiet_wait_failed")

    async def _harvest_frames(self, page: Page, url: str) -> list[CandidateEmail]:
        found: list[CandidateEmail] = []
        for frame in page.frames:
            if frame == page.main_frame or not _same_origin(frame.url, url):
                continue
            try:
                content = await frame.content()
            except PlaywrightError as e:
                logger.bind(frame_url=frame.url, error=str(e)).debug("iframe_read_failed")
                continue
            found.extend(
                c.model_copy(update={"extraction_method": ExtractionMethod.IFRAME})
                for c in decode_candidates(content, frame.url)
            )
        return found

    async def _harvest_shadow_roots(self, page: Page, url: str) -> list[CandidateEmail]:
        try:
            markup = await page.evaluate(SHADOW_DOM_JS)
        except PlaywrightError as e:
            logger.bind(url=url, error=str(e)).debug("shadow_dom_read_failed")
            return []
        return [
            c.model_copy(update={"extraction_method": ExtractionMethod.SHADOW_DOM})
            for c in decode_candidates(markup, url)
        ]


_pool_instance: BrowserPool | None = None


def get_browser_pool() -> BrowserPool:
    """Get the process-wide browser pool, created on first use."""
    global _pool_instance
    if _pool_instance is None:
        _pool_instance = BrowserPool()
    return _pool_instance


async def shutdown_browser_pool() -> None:
    """Shut down and forget the process-wide pool."""
    global _pool_instance
    if _pool_instance is not None:
        await _pool_instance.shutdown()
        _pool_instance = None
