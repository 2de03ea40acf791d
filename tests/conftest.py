import os
import tempfile
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

from ankabot.errors import BrowserContextError, BrowserLaunchError, HttpFetchError
from ankabot.fetch.base import BrowserSession, HttpClient, Navigation, PageHandle, RawResponse
from ankabot.profiles import db as profile_db


@pytest.fixture(autouse=True)
def setup_test_environment():
    """Point the profile store at a throwaway database for every test"""
    original_db_path = profile_db.DATABASE_PATH

    temp_dir = tempfile.mkdtemp(prefix="ankabot-test-")
    profile_db.DATABASE_PATH = os.path.join(temp_dir, "profiles.sqlite")
    profile_db.init_db()

    yield

    profile_db.DATABASE_PATH = original_db_path
    try:
        os.unlink(os.path.join(temp_dir, "profiles.sqlite"))
        os.rmdir(temp_dir)
    except OSError:
        # If cleanup fails, it's not critical for tests
        pass


class FakeClock:
    """Monotonic clock whose sleep() just moves time forward."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: List[float] = []

    def time(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += max(seconds, 0.0)


class FakePage(PageHandle):
    """
    Page whose state is a function of the fake clock.
    requests: (start, end) intervals in seconds; end=None never finishes.
    """

    def __init__(
        self,
        clock: FakeClock,
        interactive_at: float = 0.0,
        complete_at: float = 0.0,
        requests: Sequence[Tuple[float, Optional[float]]] = (),
        selector_at: Optional[float] = None,
    ):
        self.clock = clock
        self.interactive_at = interactive_at
        self.complete_at = complete_at
        self.requests = list(requests)
        self.selector_at = selector_at
        self.selector_queries = 0
        self.ready_state_calls = 0

    async def ready_state(self) -> str:
        self.ready_state_calls += 1
        now = self.clock.now
        if now >= self.complete_at:
            return "complete"
        if now >= self.interactive_at:
            return "interactive"
        return "loading"

    def inflight_requests(self) -> int:
        now = self.clock.now
        return sum(1 for start, end in self.requests if start <= now and (end is None or now < end))

    def request_counter(self) -> int:
        now = self.clock.now
        return sum(1 for start, _ in self.requests if start <= now)

    async def has_selector(self, selector: str) -> bool:
        self.selector_queries += 1
        return self.selector_at is not None and self.clock.now >= self.selector_at


def perpetual_polling(every: float = 0.2, duration: float = 0.05, until: float = 3600.0):
    """Background requests fired forever, like a page polling an API."""
    requests = []
    t = 0.0
    while t < until:
        requests.append((t, t + duration))
        t += every
    return requests


class FakeBrowserSession(BrowserSession):
    def __init__(
        self,
        page: PageHandle,
        fail_launch: bool = False,
        fail_context: Optional[str] = None,
        fail_pdf: bool = False,
        fail_screenshot: bool = False,
        title: Optional[str] = "Rendered page",
        final_url: Optional[str] = None,
        status_code: Optional[int] = 200,
        site_cookies: Optional[List[Dict[str, Any]]] = None,
        deleted_cookies: Sequence[str] = (),
        html: str = "<html><body>rendered</body></html>",
        headers: Optional[Dict[str, str]] = None,
    ):
        self._page = page
        self.fail_launch = fail_launch
        self.fail_context = fail_context
        self.fail_pdf = fail_pdf
        self.fail_screenshot = fail_screenshot
        self._title = title
        self._final_url = final_url
        self.status_code = status_code
        self.site_cookies = list(site_cookies or [])
        self.deleted_cookies = set(deleted_cookies)
        self.html = html
        self.headers = dict(headers or {})
        self.started = False
        self.closed = False
        self.emulation: Dict[str, Any] = {}
        self.injected_cookies: List[Dict[str, Any]] = []
        self.navigated_to: Optional[str] = None
        self.calls: List[str] = []

    async def start(self) -> None:
        self.calls.append("start")
        if self.fail_launch:
            raise BrowserLaunchError("Could not launch headless Chromium: executable missing")
        self.started = True

    async def close(self) -> None:
        self.calls.append("close")
        self.closed = True

    async def set_emulation(self, locale=None, timezone=None, geolocation=None) -> None:
        self.calls.append("set_emulation")
        self.emulation = {"locale": locale, "timezone": timezone, "geolocation": geolocation}

    async def add_cookies(self, cookies) -> None:
        self.calls.append("add_cookies")
        self.injected_cookies.extend(cookies)

    async def cookies(self):
        # names in deleted_cookies were cleared by the site during the visit
        kept = [c for c in self.injected_cookies if c["name"] not in self.deleted_cookies]
        return kept + self.site_cookies

    async def navigate(self, url: str) -> Navigation:
        self.calls.append("navigate")
        if self.fail_context:
            raise BrowserContextError(f"Browser rejected the page context: {self.fail_context}")
        self.navigated_to = url
        return Navigation(final_url=self._final_url or url, status_code=self.status_code, headers=self.headers)

    @property
    def page(self) -> PageHandle:
        return self._page

    async def title(self):
        return self._title

    async def current_url(self):
        return self._final_url or self.navigated_to

    async def content(self) -> str:
        return self.html

    async def pdf(self) -> bytes:
        self.calls.append("pdf")
        if self.fail_pdf:
            raise RuntimeError("printToPDF is not implemented")
        return b"%PDF-1.4 fake" + b"0" * 2048

    async def screenshot(self) -> bytes:
        self.calls.append("screenshot")
        if self.fail_screenshot:
            raise RuntimeError("screenshot failed")
        return b"\x89PNG fake"


class FakeHttpClient(HttpClient):
    def __init__(self, response: Optional[RawResponse] = None, error: Optional[str] = None):
        self.response = response
        self.error = error
        self.calls: List[str] = []

    async def fetch(self, url: str) -> RawResponse:
        self.calls.append(url)
        if self.error:
            raise HttpFetchError(self.error, url)
        return self.response


FULL_HTML = """
<!doctype html>
<html>
<head><title>Example Article</title></head>
<body>
  <header><nav>Home | News | About</nav></header>
  <main>
    <h1>Example Article</h1>
    <p>This page is rendered entirely on the server. It carries plenty of readable text,
    so a plain HTTP fetch already returns everything a reader would see in a browser.</p>
    <p>Second paragraph with more words, a list of facts and a short conclusion that makes
    the visible text a large share of the whole document.</p>
    <ul><li>First fact about the topic</li><li>Second fact about the topic</li></ul>
  </main>
</body>
</html>
"""

SPA_SHELL = """
<!doctype html>
<html>
<head>
  <meta charset="utf-8">
  <title>App</title>
  <link rel="stylesheet" href="/static/css/main.3f2a1c.css">
  <script defer="defer" src="/static/js/main.8d9e7b.js"></script>
  <script>(self.webpackChunkapp=self.webpackChunkapp||[]).push([[179],{}]);</script>
</head>
<body>
  <noscript>You need to enable JavaScript to run this app.</noscript>
  <div id="root"></div>
</body>
</html>
"""


def make_response(body: str, url: str = "https://example.com/", final_url: Optional[str] = None,
                  status_code: int = 200, content_type: str = "text/html; charset=utf-8",
                  headers: Optional[Dict[str, str]] = None) -> RawResponse:
    return RawResponse(
        url=url,
        final_url=final_url or url,
        status_code=status_code,
        headers={"content-type": content_type, **(headers or {})},
        body=body,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fakes():
    """Access to the fake collaborators from test modules"""
    class _Fakes:
        Clock = FakeClock
        Page = FakePage
        Browser = FakeBrowserSession
        Http = FakeHttpClient
        response = staticmethod(make_response)
        polling = staticmethod(perpetual_polling)
        full_html = FULL_HTML
        spa_shell = SPA_SHELL

    return _Fakes
