import pytest

from ankabot.fetch.waf import WafSignals, detect


CLOUDFLARE_INTERSTITIAL = """
<!DOCTYPE html>
<html><head><title>Just a moment...</title></head>
<body>
  <div id="challenge-running">Checking your browser before accessing example.com.</div>
  <script>window._cf_chl_opt = {cvId: '3', cType: 'managed'};</script>
  <script src="/cdn-cgi/challenge-platform/h/g/orchestrate/chl_page/v1"></script>
</body></html>
"""

PERIMETERX_BLOCK = """
<html><head><script>window._pxAppId = 'PXabc123';</script></head>
<body><div id="px-captcha"></div><p>Press &amp; Hold to confirm you are a human</p></body></html>
"""


class TestChallengePages:
    """Active challenge pages"""

    def test_cloudflare_interstitial(self):
        signals = detect(CLOUDFLARE_INTERSTITIAL, {"server": "cloudflare", "cf-ray": "8a1b"}, 403)
        assert signals == WafSignals(waf_detected=True, anti_bot_vendor="cloudflare", js_challenge_page=True)

    def test_challenge_detected_even_on_200(self):
        """Some challenges are served with a 200 status"""
        signals = detect(PERIMETERX_BLOCK, {}, 200)
        assert signals.js_challenge_page is True
        assert signals.waf_detected is True
        assert signals.anti_bot_vendor == "perimeterx"

    def test_datadome_captcha(self):
        body = '<iframe src="https://geo.captcha-delivery.com/captcha/?initialCid=abc"></iframe>'
        signals = detect(body, {"x-datadome": "protected"}, 403)
        assert signals.anti_bot_vendor == "datadome"
        assert signals.js_challenge_page is True

    def test_just_a_moment_needs_cloudflare_reference(self):
        """A blog post titled 'Just a moment' is not a challenge"""
        body = "<html><title>Just a moment of silence</title><body><p>Poem.</p></body></html>"
        assert detect(body, {}, 200) == WafSignals()


class TestVendorFingerprints:
    """Vendor present but the request went through"""

    @pytest.mark.parametrize("headers, vendor", [
        ({"Server": "cloudflare", "CF-RAY": "8a1b-PRG"}, "cloudflare"),
        ({"set-cookie": "__cf_bm=abc; path=/; HttpOnly"}, "cloudflare"),
        ({"server": "AkamaiGHost"}, "akamai"),
        ({"set-cookie": "_abck=F00~0~YAAQ; Domain=.example.com"}, "akamai"),
        ({"set-cookie": "_pxhd=xyz; path=/"}, "perimeterx"),
        ({"x-datadome-cid": "AHrlqAAAAAMA"}, "datadome"),
        ({"x-iinfo": "9-123-0 NNNN CT(0 0 0)"}, "imperva"),
        ({"x-sucuri-id": "17001"}, "sucuri"),
    ])
    def test_vendor_from_headers(self, headers, vendor):
        signals = detect("<html><body><p>Welcome</p></body></html>", headers, 200)
        assert signals.anti_bot_vendor == vendor
        assert signals.waf_detected is False
        assert signals.js_challenge_page is False

    def test_vendor_from_browser_cookie_names(self):
        signals = detect("<html></html>", {}, 200, cookie_names=["datadome", "lang"])
        assert signals.anti_bot_vendor == "datadome"

    @pytest.mark.parametrize("status", [403, 429, 503])
    def test_blocking_status_with_vendor(self, status):
        signals = detect("<html><body>Access denied</body></html>", {"x-iinfo": "1"}, status)
        assert signals.waf_detected is True
        assert signals.js_challenge_page is False

    def test_blocking_status_without_vendor(self):
        """A plain 403 from the origin is not a WAF"""
        assert detect("<html>Forbidden</html>", {"server": "nginx"}, 403).waf_detected is False

    def test_block_header(self):
        signals = detect("", {"x-amzn-waf-action": "captcha"}, 405)
        assert signals.waf_detected is True
        assert signals.anti_bot_vendor == "aws_waf"


class TestCleanPages:
    def test_ordinary_page(self):
        body = "<html><head><title>News</title></head><body><p>Article text</p></body></html>"
        assert detect(body, {"server": "nginx", "content-type": "text/html"}, 200) == WafSignals()

    def test_missing_inputs(self):
        assert detect("") == WafSignals()
