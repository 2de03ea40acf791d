import os

import pytest

from ankabot.errors import InvalidUrlError
from ankabot.fetch.utils import (
    default_artifact_path,
    extract_title,
    normalize_text,
    resolve_artifact_path,
    same_url,
    slug_from_url,
    validate_url,
)


class TestValidateUrl:
    """Unit tests for URL validation"""

    def test_accepts_http_and_https(self):
        assert validate_url("https://example.com") == "https://example.com"
        assert validate_url("  http://example.com/a?b=1  ") == "http://example.com/a?b=1"

    @pytest.mark.parametrize("url", ["", "   ", None])
    def test_missing(self, url):
        with pytest.raises(InvalidUrlError):
            validate_url(url)

    @pytest.mark.parametrize("url", ["example.com", "ftp://example.com/x", "javascript:alert(1)", "file:///etc/hosts"])
    def test_bad_scheme(self, url):
        """Only http(s) URLs are fetched"""
        with pytest.raises(InvalidUrlError):
            validate_url(url)

    def test_missing_host(self):
        with pytest.raises(InvalidUrlError) as exc:
            validate_url("https://")
        assert "https://" in str(exc.value)


class TestArtifactPaths:
    """Unit tests for output file naming"""

    def test_slug(self):
        assert slug_from_url("https://example.com/") == "example.com"
        assert slug_from_url("https://a.io/x/y?q=1") == "a.io_x_y_q_1"

    def test_slug_is_bounded(self):
        assert len(slug_from_url("https://example.com/" + "a" * 500)) == 80

    def test_default_paths_by_kind(self):
        assert default_artifact_path("https://example.com/", "pdf") == "example.com.pdf"
        assert default_artifact_path("https://example.com/", "screenshot") == "example.com.png"
        assert default_artifact_path("https://example.com/", "json", "runs/1") == os.path.join("runs/1", "example.com.json")

    def test_relative_paths_land_in_run_dir(self, tmp_path):
        assert resolve_artifact_path("page.pdf", str(tmp_path)) == os.path.join(str(tmp_path), "page.pdf")
        absolute = str(tmp_path / "elsewhere.pdf")
        assert resolve_artifact_path(absolute, "/runs") == absolute
        assert resolve_artifact_path("page.pdf") == "page.pdf"


class TestTextHelpers:
    def test_extract_title(self):
        assert extract_title("<html><head><title>  Hello World </title></head></html>") == "Hello World"

    @pytest.mark.parametrize("html", [None, "", "<html><body>no title</body></html>", "<title></title>"])
    def test_extract_title_missing(self, html):
        assert extract_title(html) is None

    def test_normalize_text(self):
        """Test whitespace normalization"""
        assert normalize_text("  a\t b \n\n\n c  ") == "a b \n\n c"

    def test_same_url(self):
        """Trailing root slash and host case do not count as a redirect"""
        assert same_url("https://example.com", "https://Example.com/") is True
        assert same_url("https://example.com/a", "https://example.com/b") is False
        assert same_url("http://example.com/", "https://example.com/") is False
