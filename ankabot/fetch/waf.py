"""
Anti-bot and WAF detection on a fetched or rendered page.

Looks at response headers, cookies set by the response and the page body.
A vendor fingerprint alone only names the vendor: plenty of ordinary pages
sit behind Cloudflare or Akamai. waf_detected needs an active challenge,
an explicit block header, or a vendor fingerprint on a blocking status.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

BLOCKING_STATUSES = frozenset({403, 429, 503})

# (vendor, headers, cookie names, body markers); all lowercase
VENDOR_FINGERPRINTS: Tuple[Tuple[str, Tuple[str, ...], Tuple[str, ...], Tuple[str, ...]], ...] = (
    ("cloudflare",
     ("cf-ray", "cf-mitigated", "cf-cache-status"),
     ("__cf_bm", "cf_clearance", "__cflb"),
     ("/cdn-cgi/challenge-platform/", "_cf_chl_opt", "cf-chl-")),
    ("akamai",
     ("akamai-grn", "x-akamai-transformed"),
     ("_abck", "bm_sz", "ak_bmsc"),
     ("akamai bot manager", "/akam/")),
    ("perimeterx",
     ("x-px-authorization",),
     ("_px3", "_pxhd", "_pxvid"),
     ("px-captcha", "_pxappid", "client.perimeterx.net")),
    ("datadome",
     ("x-datadome", "x-datadome-cid"),
     ("datadome",),
     ("captcha-delivery.com", "js.datadome.co")),
    ("imperva",
     ("x-iinfo",),
     ("incap_ses_", "visid_incap_"),
     ("_incapsula_resource", "incapsula incident id")),
    ("aws_waf",
     ("x-amzn-waf-action",),
     ("aws-waf-token",),
     ("awswafintegration", "awswafcookiedomainlist")),
    ("sucuri",
     ("x-sucuri-id", "x-sucuri-block"),
     (),
     ("sucuri website firewall",)),
)

# headers that are only present when the request itself was blocked or challenged
BLOCK_HEADERS = ("cf-mitigated", "x-amzn-waf-action", "x-sucuri-block")

# Active challenge pages, not references to a vendor
CHALLENGE_MARKERS: Tuple[Tuple[str, str], ...] = (
    ("cloudflare", "cf-browser-verification"),
    ("cloudflare", "_cf_chl_opt"),
    ("cloudflare", "checking your browser before accessing"),
    ("cloudflare", "please wait while we verify your browser"),
    ("cloudflare", "challenges.cloudflare.com/turnstile"),
    ("cloudflare", 'class="cf-turnstile"'),
    ("perimeterx", 'id="px-captcha"'),
    ("datadome", "geo.captcha-delivery.com/captcha"),
    ("akamai", 'id="sec-if-cpt-container"'),
    ("akamai", "bm-verify"),
    ("imperva", "request unsuccessful. incapsula incident id"),
    ("aws_waf", "awswafintegration.checkforcerefresh"),
)


@dataclass(frozen=True)
class WafSignals:
    waf_detected: bool = False
    anti_bot_vendor: Optional[str] = None
    js_challenge_page: bool = False


def _challenge_vendor(body: str) -> Optional[str]:
    for vendor, marker in CHALLENGE_MARKERS:
        if marker in body:
            return vendor
    # Cloudflare's interstitial title, only meaningful next to a Cloudflare reference
    if "just a moment" in body and ("cloudflare" in body or "_cf_" in body):
        return "cloudflare"
    return None


def _fingerprint_vendor(body: str, headers: Dict[str, str], cookie_names: Iterable[str]) -> Optional[str]:
    set_cookie = headers.get("set-cookie", "")
    cookies = {name.lower() for name in cookie_names}
    server = headers.get("server", "")
    for vendor, header_names, cookie_prefixes, body_markers in VENDOR_FINGERPRINTS:
        if any(name in headers for name in header_names):
            return vendor
        if vendor == "cloudflare" and "cloudflare" in server:
            return vendor
        if vendor == "akamai" and "akamaighost" in server:
            return vendor
        for prefix in cookie_prefixes:
            if prefix in set_cookie or any(name.startswith(prefix) for name in cookies):
                return vendor
        if any(marker in body for marker in body_markers):
            return vendor
    return None


def detect(
    body: str,
    headers: Optional[Dict[str, str]] = None,
    status_code: Optional[int] = None,
    cookie_names: Iterable[str] = (),
) -> WafSignals:
    """Anti-bot signals for one page. Pure: nothing is fetched."""
    body_lower = (body or "").lower()
    lowered = {k.lower(): (v or "").lower() for k, v in (headers or {}).items()}

    challenge_vendor = _challenge_vendor(body_lower)
    vendor = challenge_vendor or _fingerprint_vendor(body_lower, lowered, cookie_names)
    blocked = any(name in lowered for name in BLOCK_HEADERS)

    waf_detected = (
        challenge_vendor is not None
        or blocked
        or (vendor is not None and status_code in BLOCKING_STATUSES)
    )
    return WafSignals(
        waf_detected=waf_detected,
        anti_bot_vendor=vendor,
        js_challenge_page=challenge_vendor is not None,
    )
