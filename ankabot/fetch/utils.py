import os
import re
import time
from typing import Optional
from urllib.parse import urlsplit

from bs4 import BeautifulSoup

from ankabot.errors import InvalidUrlError

_EXTENSIONS = {"pdf": ".pdf", "screenshot": ".png", "json": ".json"}


def validate_url(url: str) -> str:
    """
    Check that url is an absolute http(s) URL with a host.
    Returns the stripped URL, raises InvalidUrlError otherwise.
    """
    if not url or not str(url).strip():
        raise InvalidUrlError("URL is required")
    url = str(url).strip()
    parts = urlsplit(url)
    if parts.scheme.lower() not in ("http", "https"):
        raise InvalidUrlError("URL must start with http:// or https://", url)
    if not parts.netloc or not parts.hostname:
        raise InvalidUrlError("URL has no host", url)
    return url


def same_url(a: Optional[str], b: Optional[str]) -> bool:
    """True when two URLs point at the same resource ('https://x.org' == 'https://X.org/')."""
    if a is None or b is None:
        return a == b
    pa, pb = urlsplit(a), urlsplit(b)
    return (
        pa.scheme.lower() == pb.scheme.lower()
        and (pa.netloc or "").lower() == (pb.netloc or "").lower()
        and (pa.path or "/") == (pb.path or "/")
        and pa.query == pb.query
    )


def slug_from_url(url: str, max_length: int = 80) -> str:
    """
    Turn a URL into a filesystem friendly name.
    Examples: 'https://example.com/' -> 'example.com', 'https://a.io/x/y?q=1' -> 'a.io_x_y_q_1'
    """
    parts = urlsplit(url)
    raw = (parts.hostname or "page") + parts.path
    if parts.query:
        raw += "_" + parts.query
    slug = re.sub(r"[^A-Za-z0-9.\-]+", "_", raw).strip("_.")
    return (slug or "page")[:max_length]


def default_artifact_path(url: str, kind: str, run_dir: Optional[str] = None) -> str:
    """Default destination for an artifact when the user gave none."""
    name = slug_from_url(url) + _EXTENSIONS.get(kind, "." + kind)
    return os.path.join(run_dir, name) if run_dir else name


def resolve_artifact_path(path: str, run_dir: Optional[str] = None) -> str:
    """Relative paths land inside run_dir when one is configured."""
    if run_dir and not os.path.isabs(path):
        return os.path.join(run_dir, path)
    return path


def normalize_text(s: str) -> str:
    s = re.sub(r"\u00a0", " ", s)
    s = re.sub(r"[ \t\x0b\x0c\r]+", " ", s)
    s = re.sub(r"\n\s*\n+", "\n\n", s)
    return s.strip()


def extract_title(html: Optional[str]) -> Optional[str]:
    """Page <title> text, or None when the document has none."""
    if not html:
        return None
    soup = BeautifulSoup(html, "html.parser")
    if soup.title and soup.title.string:
        title = normalize_text(soup.title.string)
        return title or None
    return None


def elapsed_ms(started: float) -> int:
    """Milliseconds since a time.monotonic() reading."""
    return int(round((time.monotonic() - started) * 1000))
