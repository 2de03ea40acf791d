import logging
from typing import Any, Dict, List, Optional, Set

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout
from playwright.async_api import async_playwright

from ankabot.core.config import settings
from ankabot.errors import BrowserContextError, BrowserLaunchError
from ankabot.fetch.base import BrowserSession, Navigation, PageHandle

logger = logging.getLogger(__name__)

_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-features=VizDisplayCompositor",
]


class PlaywrightPage(PageHandle):
    """
    Wraps a Playwright page and counts requests in flight.
    Counting is driven by the request / requestfinished / requestfailed events.
    """

    def __init__(self, page) -> None:
        self._page = page
        self._inflight: Set[Any] = set()
        self._started = 0
        page.on("request", self._on_request)
        page.on("requestfinished", self._on_request_done)
        page.on("requestfailed", self._on_request_done)

    @property
    def raw(self):
        return self._page

    def _on_request(self, request) -> None:
        self._inflight.add(request)
        self._started += 1

    def _on_request_done(self, request) -> None:
        self._inflight.discard(request)

    def inflight_requests(self) -> int:
        return len(self._inflight)

    def request_counter(self) -> int:
        return self._started

    async def ready_state(self) -> str:
        try:
            return await self._page.evaluate("document.readyState")
        except PlaywrightError as e:
            # execution context is replaced while a navigation commits
            logger.debug("readyState unavailable: %s", e)
            return "loading"

    async def has_selector(self, selector: str) -> bool:
        return await self._page.query_selector(selector) is not None


class PlaywrightSession(BrowserSession):
    """
    Headless Chromium with a single context and page.
    Emulation (locale, timezone, geolocation) has to be known when the
    context is created, so the context is opened lazily on first use.
    """

    def __init__(self, headless: Optional[bool] = None, navigation_timeout_ms: Optional[int] = None) -> None:
        self.headless = settings.PLAYWRIGHT_HEADLESS if headless is None else headless
        self.navigation_timeout_ms = navigation_timeout_ms or settings.NAVIGATION_TIMEOUT_MS
        self._playwright = None
        self._browser = None
        self._context = None
        self._page: Optional[PlaywrightPage] = None
        self._emulation: Dict[str, Any] = {}
        self._pending_cookies: List[Dict[str, Any]] = []

    async def start(self) -> None:
        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(headless=self.headless, args=_LAUNCH_ARGS)
        except Exception as e:
            await self.close()
            raise BrowserLaunchError(f"Could not launch headless Chromium: {e}")
        logger.info("browser launched (headless=%s)", self.headless)

    async def close(self) -> None:
        if self._context is not None:
            try:
                await self._context.close()
            except PlaywrightError as e:
                logger.debug("context close failed: %s", e)
        if self._browser is not None:
            try:
                await self._browser.close()
            except PlaywrightError as e:
                logger.debug("browser close failed: %s", e)
        if self._playwright is not None:
            await self._playwright.stop()
        self._context = self._browser = self._playwright = None
        self._page = None

    async def set_emulation(self, locale: Optional[str] = None, timezone: Optional[str] = None,
                            geolocation: Optional[Dict[str, float]] = None) -> None:
        if self._context is not None:
            raise RuntimeError("emulation must be configured before navigation")
        if locale:
            self._emulation["locale"] = locale
        if timezone:
            self._emulation["timezone_id"] = timezone
        if geolocation:
            self._emulation["geolocation"] = geolocation
            self._emulation["permissions"] = ["geolocation"]

    async def add_cookies(self, cookies: List[Dict[str, Any]]) -> None:
        if self._context is None:
            self._pending_cookies.extend(cookies)
        elif cookies:
            await self._context.add_cookies(cookies)

    async def cookies(self) -> List[Dict[str, Any]]:
        if self._context is None:
            return list(self._pending_cookies)
        return await self._context.cookies()

    async def _ensure_page(self) -> PlaywrightPage:
        if self._page is not None:
            return self._page
        if self._browser is None:
            raise RuntimeError("browser session not started")
        try:
            self._context = await self._browser.new_context(
                user_agent=settings.USER_AGENT,
                viewport={"width": settings.VIEWPORT_WIDTH, "height": settings.VIEWPORT_HEIGHT},
                **self._emulation,
            )
            if self._pending_cookies:
                await self._context.add_cookies(self._pending_cookies)
                self._pending_cookies = []
            self._page = PlaywrightPage(await self._context.new_page())
        except PlaywrightError as e:
            options = ", ".join(f"{k}={v!r}" for k, v in self._emulation.items() if k != "permissions")
            raise BrowserContextError(f"Browser rejected the page context ({options or 'no emulation'}): {e}")
        return self._page

    async def navigate(self, url: str) -> Navigation:
        handle = await self._ensure_page()
        page = handle.raw
        try:
            # "commit" returns as soon as the response starts; the wait protocol does the rest
            response = await page.goto(url, timeout=self.navigation_timeout_ms, wait_until="commit")
        except PlaywrightTimeout:
            error = f"navigation did not commit within {self.navigation_timeout_ms} ms"
            logger.warning("%s: %s", url, error)
            return Navigation(final_url=page.url, status_code=None, error=error)
        except PlaywrightError as e:
            logger.warning("navigation to %s failed: %s", url, e)
            return Navigation(final_url=page.url, status_code=None, error=str(e))
        if response is None:
            return Navigation(final_url=page.url, status_code=None)
        return Navigation(final_url=page.url, status_code=response.status, headers=dict(response.headers))

    @property
    def page(self) -> PageHandle:
        if self._page is None:
            raise RuntimeError("no page open; call navigate() first")
        return self._page

    async def title(self) -> Optional[str]:
        if self._page is None:
            return None
        return (await self._page.raw.title()) or None

    async def current_url(self) -> Optional[str]:
        return self._page.raw.url if self._page is not None else None

    async def content(self) -> str:
        if self._page is None:
            return ""
        return await self._page.raw.content()

    async def pdf(self) -> bytes:
        page = (await self._ensure_page()).raw
        await page.emulate_media(media="screen")
        return await page.pdf(print_background=True, format="A4")

    async def screenshot(self) -> bytes:
        page = (await self._ensure_page()).raw
        return await page.screenshot(full_page=True, type="png")
