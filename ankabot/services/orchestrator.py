import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse

from ankabot.artifacts import ArtifactWriter
from ankabot.errors import HttpFetchError
from ankabot.fetch import classifier, waf
from ankabot.fetch.base import BrowserSession, HttpClient, RawResponse
from ankabot.fetch.browser import PlaywrightSession
from ankabot.fetch.http_client import HttpxClient
from ankabot.fetch.utils import default_artifact_path, elapsed_ms, extract_title, resolve_artifact_path, same_url
from ankabot.fetch.wait import WaitProtocol
from ankabot.profiles.session import ProfileManager
from ankabot.schemas import (
    ArtifactResult,
    ClassificationVerdict,
    FetchRequest,
    FetchResult,
    OnTimeout,
    OutputKind,
    OutputSpec,
    WaitState,
)

logger = logging.getLogger(__name__)

BROWSER_NOT_USED = "browser not used: page was served over plain HTTP (use --force-browser to render it)"


class FetchOrchestrator:
    """
    Main pipeline for one fetch.

    1. Plain HTTP attempt (skipped when the browser is forced)
    2. Fallback decision on the HTTP response
    3. HTTP result as-is, or: profile -> browser -> navigate -> wait -> capture
    4. Cookie sync/export and profile save
    5. Artifacts written, timings recorded
    """

    def __init__(
        self,
        http_client: Optional[HttpClient] = None,
        browser_factory: Optional[Callable[[], BrowserSession]] = None,
        writer: Optional[ArtifactWriter] = None,
        policy: Optional[classifier.ClassifierPolicy] = None,
        wait_options: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.http_client = http_client or HttpxClient()
        self.browser_factory = browser_factory or PlaywrightSession
        self.writer = writer or ArtifactWriter()
        self.policy = policy or classifier.ClassifierPolicy.from_settings()
        self.wait_options = dict(wait_options or {})

    async def run(self, request: FetchRequest) -> FetchResult:
        total_started = time.monotonic()
        timings: Dict[str, int] = {}
        raw: Optional[RawResponse] = None

        if not request.force_browser:
            started = time.monotonic()
            try:
                raw = await self.http_client.fetch(request.url)
            except HttpFetchError as e:
                if request.force_http:
                    raise
                logger.warning("HTTP attempt failed (%s), falling back to browser", e.message)
            timings["http"] = elapsed_ms(started)

        started = time.monotonic()
        verdict = classifier.decide(raw, request.force_http, request.force_browser, self.policy)
        timings["classify"] = elapsed_ms(started)
        logger.info("verdict for %s: %s", request.url, verdict.label)

        if verdict.requires_browser:
            result = await self._run_browser(request, verdict, raw, timings)
        else:
            result = self._from_http(request, verdict, raw)
            self._handle_cookie_files(request)

        self._write_artifacts(request, result)

        if (
            request.on_timeout == OnTimeout.REPORT
            and result.wait_outcome is not None
            and result.wait_outcome.state == WaitState.TIMED_OUT
        ):
            result.status = "timeout"

        timings["total"] = elapsed_ms(total_started)
        result.timings = timings
        return result

    def _from_http(self, request: FetchRequest, verdict: ClassificationVerdict, raw: RawResponse) -> FetchResult:
        artifacts: Dict[OutputKind, ArtifactResult] = {}
        for spec in request.outputs:
            if spec.kind == OutputKind.JSON:
                artifacts[spec.kind] = ArtifactResult(
                    kind=spec.kind,
                    content=_page_metadata(extract_title(raw.body), raw.final_url, raw.status_code),
                )
            else:
                artifacts[spec.kind] = ArtifactResult(kind=spec.kind, error=BROWSER_NOT_USED)

        signals = waf.detect(raw.body, raw.headers, raw.status_code)
        return FetchResult(
            input_url=request.url,
            final_url=raw.final_url,
            http_status=raw.status_code,
            redirected=raw.redirected,
            used_browser=False,
            verdict=verdict,
            artifacts=artifacts,
            waf_detected=signals.waf_detected,
            anti_bot_vendor=signals.anti_bot_vendor,
            js_challenge_page=signals.js_challenge_page,
            html=raw.body,
        )

    async def _run_browser(
        self,
        request: FetchRequest,
        verdict: ClassificationVerdict,
        raw: Optional[RawResponse],
        timings: Dict[str, int],
    ) -> FetchResult:
        manager = ProfileManager.load(request.profile_name)
        run_profile = manager.with_overrides(request.locale, request.timezone, request.geo)
        if request.import_cookies:
            manager.import_cookies(request.import_cookies)

        artifacts: Dict[OutputKind, ArtifactResult] = {}
        started = time.monotonic()
        async with self.browser_factory() as session:
            timings["browser_launch"] = elapsed_ms(started)

            injected = await manager.apply_to(session, profile=run_profile)
            logger.debug("profile %r applied, %d cookies injected", manager.name, injected)

            started = time.monotonic()
            navigation = await session.navigate(request.url)
            timings["navigate"] = elapsed_ms(started)
            if navigation.error:
                logger.warning("navigation problem, capturing best-effort state: %s", navigation.error)

            started = time.monotonic()
            protocol = WaitProtocol(request.wait_config, **self.wait_options)
            outcome = await protocol.run(session.page)
            timings["wait"] = elapsed_ms(started)

            final_url = await session.current_url() or navigation.final_url or request.url
            status = navigation.status_code
            if status is None and raw is not None:
                status = raw.status_code

            for spec in request.outputs:
                started = time.monotonic()
                artifacts[spec.kind] = await self._capture(session, spec, final_url, status)
                timings[f"capture_{spec.kind.value}"] = elapsed_ms(started)

            html = await self._rendered_html(session)
            browser_cookies = await session.cookies()
            signals = waf.detect(
                html,
                navigation.headers,
                status,
                cookie_names=_site_cookie_names(browser_cookies, final_url),
            )
            manager.sync_from_browser(browser_cookies)

        if request.export_cookies:
            manager.export_cookies(request.export_cookies)
        manager.save()

        return FetchResult(
            input_url=request.url,
            final_url=final_url,
            http_status=status,
            redirected=not same_url(request.url, final_url),
            used_browser=True,
            verdict=verdict,
            wait_outcome=outcome,
            artifacts=artifacts,
            profile=manager.name,
            waf_detected=signals.waf_detected,
            anti_bot_vendor=signals.anti_bot_vendor,
            js_challenge_page=signals.js_challenge_page,
            html=html,
        )

    async def _capture(self, session: BrowserSession, spec: OutputSpec, final_url: str, status: Optional[int]) -> ArtifactResult:
        # one output failing never aborts the others
        try:
            if spec.kind == OutputKind.PDF:
                data = await session.pdf()
            elif spec.kind == OutputKind.SCREENSHOT:
                data = await session.screenshot()
            else:
                content = _page_metadata(await session.title(), final_url, status)
                return ArtifactResult(kind=spec.kind, content=content)
        except Exception as e:
            logger.warning("%s capture failed: %s", spec.kind.value, e)
            return ArtifactResult(kind=spec.kind, error=f"{type(e).__name__}: {e}")
        return ArtifactResult(kind=spec.kind, data=data, size=len(data))

    async def _rendered_html(self, session: BrowserSession) -> str:
        try:
            return await session.content() or ""
        except Exception as e:
            logger.warning("could not read rendered HTML: %s", e)
            return ""

    def _handle_cookie_files(self, request: FetchRequest) -> None:
        """Cookie import/export requested on a run that never opened the browser."""
        if not (request.import_cookies or request.export_cookies):
            return
        manager = ProfileManager.load(request.profile_name)
        if request.import_cookies:
            manager.import_cookies(request.import_cookies)
        if request.export_cookies:
            manager.export_cookies(request.export_cookies)
        manager.save()

    def _write_artifacts(self, request: FetchRequest, result: FetchResult) -> None:
        if request.run_dir:
            self.writer.ensure_dir(request.run_dir)
        for spec in request.outputs:
            artifact = result.artifacts.get(spec.kind)
            if artifact is None or artifact.data is None:
                continue
            if spec.path:
                path = resolve_artifact_path(spec.path, request.run_dir)
            else:
                path = default_artifact_path(request.url, spec.kind.value, request.run_dir)
            artifact.path = self.writer.save(artifact.data, path)


def _site_cookie_names(cookies: List[Dict[str, Any]], url: str) -> List[str]:
    """Names of the cookies that apply to url's host."""
    host = (urlparse(url).hostname or "").lower()
    names = []
    for record in cookies:
        domain = str(record.get("domain", "")).lstrip(".").lower()
        if domain and (host == domain or host.endswith("." + domain)):
            names.append(str(record.get("name", "")))
    return names


def _page_metadata(title: Optional[str], final_url: str, status: Optional[int]) -> Dict[str, Any]:
    return {"title": title, "finalUrl": final_url, "httpStatus": status}


async def fetch(request: FetchRequest, **kwargs) -> FetchResult:
    """Run one request with default collaborators."""
    return await FetchOrchestrator(**kwargs).run(request)


def result_json(result: FetchResult) -> str:
    return json.dumps(result.to_summary(), indent=2, ensure_ascii=False)
