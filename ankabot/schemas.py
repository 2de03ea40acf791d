import time
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator

from ankabot.core.config import settings
from ankabot.errors import InvalidUrlError
from ankabot.fetch.utils import validate_url


class OutputKind(str, Enum):
    PDF = "pdf"
    SCREENSHOT = "screenshot"
    JSON = "json"


class ReadyState(str, Enum):
    NONE = "none"
    INTERACTIVE = "interactive"
    COMPLETE = "complete"


class OnTimeout(str, Enum):
    CONTINUE = "continue"
    REPORT = "report"


class WaitConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_wait_ms: int = Field(default=settings.MAX_WAIT_MS, gt=0, description="Overall wait deadline")
    ready_state: ReadyState = Field(default=ReadyState(settings.WAIT_READY))
    network_idle_ms: int = Field(
        default=settings.NETWORK_IDLE_MS,
        ge=0,
        validate_default=True,
        description="Required continuous quiet period; clamped to max_wait_ms",
    )
    selector: Optional[str] = Field(None, description="CSS selector that must be present")
    selector_poll_ms: int = Field(default=settings.SELECTOR_POLL_MS, gt=0)

    @field_validator("network_idle_ms")
    @classmethod
    def _clamp_idle(cls, value: int, info: ValidationInfo) -> int:
        max_wait = info.data.get("max_wait_ms")
        if max_wait is not None and value > max_wait:
            return max_wait
        return value

    @field_validator("selector")
    @classmethod
    def _blank_selector(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value


class GeoPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)

    @classmethod
    def parse(cls, text: str) -> "GeoPoint":
        """Parse 'lat,lon' as given on the command line."""
        parts = [p.strip() for p in str(text).split(",")]
        if len(parts) != 2:
            raise ValueError(f"expected 'lat,lon', got {text!r}")
        return cls(latitude=float(parts[0]), longitude=float(parts[1]))


class Cookie(BaseModel):
    """
    A single cookie record.
    Accepts both our own field names and Playwright/Selenium spellings
    (httpOnly, sameSite, expiry) so storage_state exports import as-is.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    domain: str
    path: str = "/"
    name: str
    value: str = ""
    expires: Optional[float] = Field(None, validation_alias=AliasChoices("expires", "expiry"))
    secure: bool = False
    http_only: bool = Field(False, validation_alias=AliasChoices("http_only", "httpOnly"))
    same_site: Optional[str] = Field(None, validation_alias=AliasChoices("same_site", "sameSite"))

    @field_validator("expires")
    @classmethod
    def _session_cookie(cls, value: Optional[float]) -> Optional[float]:
        # Playwright reports session cookies as expires=-1
        if value is not None and value < 0:
            return None
        return value

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.domain, self.path, self.name)

    def is_expired(self, now: Optional[float] = None) -> bool:
        if self.expires is None:
            return False
        return self.expires <= (time.time() if now is None else now)

    def to_playwright(self) -> Dict[str, Any]:
        cookie: Dict[str, Any] = {
            "name": self.name,
            "value": self.value,
            "domain": self.domain,
            "path": self.path,
            "secure": self.secure,
            "httpOnly": self.http_only,
            "expires": self.expires if self.expires is not None else -1,
        }
        if self.same_site in ("Strict", "Lax", "None"):
            cookie["sameSite"] = self.same_site
        return cookie


class SessionProfile(BaseModel):
    name: str
    locale: Optional[str] = Field(None, description="BCP-47 tag, e.g. cs-CZ")
    timezone: Optional[str] = Field(None, description="IANA zone id, e.g. Europe/Prague")
    geo: Optional[GeoPoint] = None
    cookies: List[Cookie] = Field(default_factory=list)


class OutputSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: OutputKind
    path: Optional[str] = None


class FetchRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    profile_name: str = Field(default=settings.DEFAULT_PROFILE, min_length=1)
    wait_config: WaitConfig = Field(default_factory=WaitConfig)
    outputs: Tuple[OutputSpec, ...] = (OutputSpec(kind=OutputKind.JSON),)
    force_http: bool = False
    force_browser: bool = False
    locale: Optional[str] = None
    timezone: Optional[str] = None
    geo: Optional[GeoPoint] = None
    import_cookies: Optional[str] = None
    export_cookies: Optional[str] = None
    run_dir: Optional[str] = None
    on_timeout: OnTimeout = OnTimeout.CONTINUE

    @field_validator("url")
    @classmethod
    def _valid_url(cls, value: str) -> str:
        try:
            return validate_url(value)
        except InvalidUrlError as e:
            raise ValueError(e.message)

    @model_validator(mode="after")
    def _check_flags(self) -> "FetchRequest":
        if self.force_http and self.force_browser:
            raise ValueError("force_http and force_browser are mutually exclusive")
        kinds = [o.kind for o in self.outputs]
        if len(kinds) != len(set(kinds)):
            raise ValueError("each output kind may be requested once")
        return self

    def output(self, kind: OutputKind) -> Optional[OutputSpec]:
        for spec in self.outputs:
            if spec.kind == kind:
                return spec
        return None


class ClassificationReason(str, Enum):
    EMPTY_BODY = "empty_body"
    NON_HTML_SHELL_WITH_SCRIPT_MARKERS = "non_html_shell_with_script_markers"
    EXPLICIT_FORCE = "explicit_force"
    HTTP_ERROR = "http_error"


class ClassificationVerdict(BaseModel):
    """Either UseHttpResult (reason is None) or RequiresBrowser(reason)."""

    model_config = ConfigDict(frozen=True)

    requires_browser: bool
    reason: Optional[ClassificationReason] = None

    @model_validator(mode="after")
    def _reason_matches(self) -> "ClassificationVerdict":
        if self.requires_browser != (self.reason is not None):
            raise ValueError("RequiresBrowser needs a reason and UseHttpResult must not have one")
        return self

    @classmethod
    def use_http(cls) -> "ClassificationVerdict":
        return cls(requires_browser=False)

    @classmethod
    def requires_browser_for(cls, reason: ClassificationReason) -> "ClassificationVerdict":
        return cls(requires_browser=True, reason=reason)

    @property
    def label(self) -> str:
        if not self.requires_browser:
            return "UseHttpResult"
        return f"RequiresBrowser({self.reason.value})"


class WaitState(str, Enum):
    START = "start"
    AWAITING_READY_STATE = "awaiting_ready_state"
    AWAITING_NETWORK_IDLE = "awaiting_network_idle"
    AWAITING_SELECTOR = "awaiting_selector"
    SETTLED = "settled"
    TIMED_OUT = "timed_out"


class WaitOutcome(BaseModel):
    state: WaitState
    timed_out_in: Optional[WaitState] = None
    elapsed_ms: int = 0
    phases: Dict[str, int] = Field(default_factory=dict)

    @property
    def settled(self) -> bool:
        return self.state == WaitState.SETTLED


class ArtifactResult(BaseModel):
    kind: OutputKind
    path: Optional[str] = None
    size: Optional[int] = None
    data: Optional[bytes] = Field(None, exclude=True, repr=False)
    content: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def summary(self) -> Dict[str, Any]:
        if self.error is not None:
            return {"error": self.error}
        out: Dict[str, Any] = {}
        if self.path is not None:
            out["path"] = self.path
        if self.size is not None:
            out["size"] = self.size
        if self.content is not None:
            out["content"] = self.content
        return out


class FetchResult(BaseModel):
    input_url: str
    final_url: str
    http_status: Optional[int] = None
    redirected: bool = False
    used_browser: bool = False
    verdict: ClassificationVerdict
    wait_outcome: Optional[WaitOutcome] = None
    artifacts: Dict[OutputKind, ArtifactResult] = Field(default_factory=dict)
    timings: Dict[str, int] = Field(default_factory=dict)
    status: str = "ok"
    profile: Optional[str] = None
    waf_detected: bool = False
    anti_bot_vendor: Optional[str] = None
    js_challenge_page: bool = False
    html: str = Field("", description="Body as fetched over HTTP, or the rendered DOM")

    def to_summary(self) -> Dict[str, Any]:
        """JSON summary as printed by the CLI."""
        wait = None
        if self.wait_outcome is not None:
            wait = {
                "state": self.wait_outcome.state.value,
                "timedOutIn": self.wait_outcome.timed_out_in.value if self.wait_outcome.timed_out_in else None,
                "elapsedMs": self.wait_outcome.elapsed_ms,
                "phases": self.wait_outcome.phases,
            }
        return {
            "inputUrl": self.input_url,
            "finalUrl": self.final_url,
            "httpStatus": self.http_status,
            "redirected": self.redirected,
            "usedBrowser": self.used_browser,
            "verdict": self.verdict.label,
            "wafDetected": self.waf_detected,
            "antiBotVendor": self.anti_bot_vendor,
            "jsChallengePage": self.js_challenge_page,
            "waitOutcome": wait,
            "artifacts": {kind.value: artifact.summary() for kind, artifact in self.artifacts.items()},
            "timings": self.timings,
            "status": self.status,
            "profile": self.profile,
            "html": self.html,
        }
