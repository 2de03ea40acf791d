"""
Fallback decision: is the plain HTTP response good enough, or does the
page need a real browser to execute its JavaScript first?

The decision is made from the already fetched response only. Thresholds
and marker patterns live in ClassifierPolicy so they can be tuned through
settings without touching the logic.
"""

import re
from dataclasses import dataclass, field
from typing import Optional, Pattern, Tuple

from bs4 import BeautifulSoup

from ankabot.core.config import settings
from ankabot.fetch.base import RawResponse
from ankabot.fetch.utils import normalize_text
from ankabot.schemas import ClassificationReason, ClassificationVerdict

_HTML_SHAPE = re.compile(r"<\s*(?:!doctype\s+html|html|head|body|div)\b", re.IGNORECASE)

# Script framework fingerprints found in client-rendered shells
DEFAULT_MARKERS: Tuple[Tuple[str, Pattern[str]], ...] = (
    ("empty_root_mount", re.compile(
        r"<div[^>]*\bid\s*=\s*[\"'](?:root|app|__next|__nuxt|svelte|main-app)[\"'][^>]*>\s*</div>",
        re.IGNORECASE,
    )),
    ("empty_app_root", re.compile(r"<app-root[^>]*>\s*</app-root>", re.IGNORECASE)),
    ("next_data", re.compile(r"__NEXT_DATA__")),
    ("nuxt_state", re.compile(r"window\.__NUXT__")),
    ("angular", re.compile(r"\bng-version\s*=")),
    ("react_root", re.compile(r"data-reactroot", re.IGNORECASE)),
    ("webpack_bundle", re.compile(r"webpackJsonp|webpackChunk")),
    ("vite_bundle", re.compile(r"/@vite/client|/assets/index-[\w-]+\.js")),
    ("noscript_notice", re.compile(
        r"<noscript[^>]*>[^<]*(?:enable|requires?|need)[^<]*javascript",
        re.IGNORECASE,
    )),
)


@dataclass(frozen=True)
class ClassifierPolicy:
    min_body_chars: int = 256
    min_text_ratio: float = 0.05
    markers: Tuple[Tuple[str, Pattern[str]], ...] = field(default=DEFAULT_MARKERS)

    @classmethod
    def from_settings(cls) -> "ClassifierPolicy":
        return cls(min_body_chars=settings.MIN_BODY_CHARS, min_text_ratio=settings.MIN_TEXT_RATIO)


@dataclass(frozen=True)
class PageSignals:
    body_chars: int
    text_chars: int
    text_ratio: float
    html_shaped: bool
    markers: Tuple[str, ...]


def visible_text(html: str) -> str:
    """Text a reader would see without running any script."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript", "template", "svg"]):
        tag.decompose()
    return normalize_text(soup.get_text("\n"))


def inspect(raw: RawResponse, policy: Optional[ClassifierPolicy] = None) -> PageSignals:
    """Measure the response without deciding anything."""
    policy = policy or ClassifierPolicy.from_settings()
    body = raw.body or ""
    stripped = body.strip()
    html_shaped = "html" in raw.content_type or bool(_HTML_SHAPE.search(stripped[:4096]))

    text_chars = len(visible_text(body)) if html_shaped and stripped else len(stripped)
    ratio = (text_chars / len(stripped)) if stripped else 0.0
    found = tuple(name for name, pattern in policy.markers if pattern.search(body))

    return PageSignals(
        body_chars=len(stripped),
        text_chars=text_chars,
        text_ratio=ratio,
        html_shaped=html_shaped,
        markers=found,
    )


def decide(
    raw: Optional[RawResponse],
    force_http: bool = False,
    force_browser: bool = False,
    policy: Optional[ClassifierPolicy] = None,
) -> ClassificationVerdict:
    """
    Decide between UseHttpResult and RequiresBrowser(reason).

    raw may be None when the HTTP attempt was skipped (force_browser) or
    failed at the network level; the latter is a fallback signal.
    """
    if force_http and force_browser:
        raise ValueError("force_http and force_browser are mutually exclusive")
    if force_browser:
        return ClassificationVerdict.requires_browser_for(ClassificationReason.EXPLICIT_FORCE)
    if force_http:
        return ClassificationVerdict.use_http()
    if raw is None:
        return ClassificationVerdict.requires_browser_for(ClassificationReason.HTTP_ERROR)

    policy = policy or ClassifierPolicy.from_settings()
    signals = inspect(raw, policy)

    if signals.body_chars < policy.min_body_chars:
        return ClassificationVerdict.requires_browser_for(ClassificationReason.EMPTY_BODY)

    if signals.html_shaped and signals.text_ratio < policy.min_text_ratio and signals.markers:
        return ClassificationVerdict.requires_browser_for(ClassificationReason.NON_HTML_SHELL_WITH_SCRIPT_MARKERS)

    return ClassificationVerdict.use_http()
