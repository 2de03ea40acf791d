from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ankabot.fetch.utils import same_url


@dataclass
class RawResponse:
    url: str
    final_url: str
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: str = ""
    elapsed_ms: int = 0

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "").lower()

    @property
    def redirected(self) -> bool:
        return not same_url(self.url, self.final_url)


@dataclass
class Navigation:
    final_url: str
    status_code: Optional[int]
    error: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)


class HttpClient:
    async def fetch(self, url: str) -> RawResponse:
        raise NotImplementedError


class PageHandle:
    """What the wait protocol needs to observe on a live page."""

    async def ready_state(self) -> str:
        raise NotImplementedError

    def inflight_requests(self) -> int:
        raise NotImplementedError

    def request_counter(self) -> int:
        """Total requests started so far; grows whenever the page fires one."""
        raise NotImplementedError

    async def has_selector(self, selector: str) -> bool:
        raise NotImplementedError


class BrowserSession:
    """One headless page. Used as an async context manager."""

    async def start(self) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError

    async def set_emulation(self, locale: Optional[str] = None, timezone: Optional[str] = None,
                            geolocation: Optional[Dict[str, float]] = None) -> None:
        raise NotImplementedError

    async def add_cookies(self, cookies: List[Dict[str, Any]]) -> None:
        raise NotImplementedError

    async def cookies(self) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def navigate(self, url: str) -> Navigation:
        raise NotImplementedError

    @property
    def page(self) -> PageHandle:
        raise NotImplementedError

    async def title(self) -> Optional[str]:
        raise NotImplementedError

    async def current_url(self) -> Optional[str]:
        raise NotImplementedError

    async def content(self) -> str:
        """Serialized DOM of the page as it is now."""
        raise NotImplementedError

    async def pdf(self) -> bytes:
        raise NotImplementedError

    async def screenshot(self) -> bytes:
        raise NotImplementedError

    async def __aenter__(self) -> "BrowserSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
