import logging
import time
from typing import Dict, Optional

import httpx

from ankabot.core.config import settings
from ankabot.errors import HttpFetchError
from ankabot.fetch.base import HttpClient, RawResponse
from ankabot.fetch.utils import elapsed_ms

logger = logging.getLogger(__name__)


def default_headers() -> Dict[str, str]:
    headers = {
        "User-Agent": settings.USER_AGENT,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
        "Accept-Encoding": "gzip, deflate",
        "DNT": "1",
        "Upgrade-Insecure-Requests": "1",
    }
    if settings.ACCEPT_LANGUAGE:
        headers["Accept-Language"] = settings.ACCEPT_LANGUAGE
    return headers


class HttpxClient(HttpClient):
    """
    Plain HTTP retrieval with redirects followed.
    Any HTTP status is returned as a response; only transport level
    problems (DNS, refused connection, TLS, timeout, redirect loops)
    raise HttpFetchError.
    """

    def __init__(
        self,
        timeout_sec: Optional[float] = None,
        max_redirects: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.timeout_sec = timeout_sec if timeout_sec is not None else settings.REQUEST_TIMEOUT
        self.max_redirects = max_redirects if max_redirects is not None else settings.MAX_REDIRECTS
        self._transport = transport

    async def fetch(self, url: str) -> RawResponse:
        started = time.monotonic()
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_sec,
                headers=default_headers(),
                follow_redirects=True,
                max_redirects=self.max_redirects,
                transport=self._transport,
            ) as client:
                response = await client.get(url)
        except httpx.TimeoutException as e:
            raise HttpFetchError(f"Timeout while fetching: {e}", url)
        except httpx.HTTPError as e:
            raise HttpFetchError(f"Failed to fetch: {e}", url)

        raw = RawResponse(
            url=url,
            final_url=str(response.url),
            status_code=int(response.status_code),
            headers={k.lower(): v for k, v in response.headers.items()},
            body=response.text or "",
            elapsed_ms=elapsed_ms(started),
        )
        logger.info("HTTP %s %s -> %s (%d chars, %d ms)", raw.status_code, url, raw.final_url, len(raw.body), raw.elapsed_ms)
        return raw
