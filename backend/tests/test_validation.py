"""Tests for request validation and URL normalization."""

import pytest

from uisnap.errors import InvalidInputError
from uisnap.models import AnalysisRequest
from uisnap.validation import normalize_url, validate_config, validate_request, validate_url


class TestValidateUrl:
    def test_accepts_public_https_url(self):
        assert validate_url("  https://example.com/page  ") == "https://example.com/page"

    @pytest.mark.parametrize(
        "url",
        [
            "http://localhost:3000",
            "http://LOCALHOST",
            "http://app.localhost",
            "http://0.0.0.0",
            "http://127.0.0.1",
            "http://10.0.0.5",
            "http://192.168.1.1/admin",
            "http://172.16.0.1",
            "http://169.254.169.254/latest/meta-data",
            "http://[::1]/",
        ],
    )
    def test_rejects_local_and_private_hosts(self, url):
        with pytest.raises(InvalidInputError) as exc:
            validate_url(url)
        assert exc.value.code == "INVALID_URL"

    @pytest.mark.parametrize(
        "url",
        ["ftp://example.com", "file:///etc/passwd", "data:text/html,hi", "javascript:alert(1)", "example.com"],
    )
    def test_rejects_non_http_schemes(self, url):
        with pytest.raises(InvalidInputError) as exc:
            validate_url(url)
        assert exc.value.code == "INVALID_URL"

    def test_rejects_empty_and_missing(self):
        for url in ("", "   ", None):
            with pytest.raises(InvalidInputError):
                validate_url(url)

    def test_rejects_non_string_url(self):
        with pytest.raises(InvalidInputError) as exc:
            validate_url(123)
        assert exc.value.code == "INVALID_URL"
        assert exc.value.details["reason"] == "URL must be a string"

    def test_rejects_overlong_url(self):
        with pytest.raises(InvalidInputError) as exc:
            validate_url("https://example.com/" + "a" * 2048)
        assert "maximum length" in exc.value.message

    def test_rejects_malformed_port(self):
        with pytest.raises(InvalidInputError):
            validate_url("https://example.com:notaport/")


class TestValidateConfig:
    def test_defaults_enable_every_flag(self):
        config = validate_config("react", "tailwind")
        assert (config.typescript, config.responsive, config.accessibility) == (True, True, True)

    def test_explicit_flags_are_kept(self):
        config = validate_config("vue", "css", {"typescript": False})
        assert config.typescript is False
        assert config.responsive is True

    def test_unknown_framework(self):
        with pytest.raises(InvalidInputError) as exc:
            validate_config("ember", "css")
        assert exc.value.code == "UNSUPPORTED_FRAMEWORK"

    def test_unknown_styling(self):
        with pytest.raises(InvalidInputError) as exc:
            validate_config("react", "less")
        assert exc.value.code == "UNSUPPORTED_STYLING"

    def test_styled_components_requires_react(self):
        assert validate_config("react", "styled-components").styling == "styled-components"
        with pytest.raises(InvalidInputError) as exc:
            validate_config("vue", "styled-components")
        assert exc.value.code == "UNSUPPORTED_STYLING"
        assert "only compatible with React" in exc.value.suggestion

    def test_non_boolean_flag(self):
        with pytest.raises(InvalidInputError) as exc:
            validate_config("react", "css", {"typescript": "yes"})
        assert exc.value.code == "VALIDATION_ERROR"

    def test_options_must_be_mapping(self):
        with pytest.raises(InvalidInputError):
            validate_config("react", "css", ["typescript"])


class TestValidateRequest:
    def test_url_checked_before_config(self):
        request = AnalysisRequest(url="http://localhost", framework="ember", styling="css")
        with pytest.raises(InvalidInputError) as exc:
            validate_request(request)
        assert exc.value.code == "INVALID_URL"

    def test_returns_url_and_config(self):
        request = AnalysisRequest(url="https://example.com", framework="svelte", styling="scss")
        url, config = validate_request(request)
        assert url == "https://example.com"
        assert config.framework == "svelte"


class TestNormalizeUrl:
    def test_tracking_params_are_dropped(self):
        assert normalize_url("https://x.com?utm_source=a") == normalize_url("https://x.com")
        assert normalize_url("https://x.com") == "https://x.com/"

    def test_query_sorted_and_fragment_dropped(self):
        assert normalize_url("https://x.com/p?b=2&a=1&fbclid=z#top") == "https://x.com/p?a=1&b=2"

    def test_scheme_and_host_lowercased(self):
        assert normalize_url("HTTPS://Example.COM/Path") == "https://example.com/Path"

    def test_default_port_dropped(self):
        assert normalize_url("https://x.com:443/") == normalize_url("https://x.com/")
        assert normalize_url("http://x.com:80/a?b=1") == "http://x.com/a?b=1"

    def test_non_default_port_kept(self):
        assert normalize_url("https://x.com:8443/") == "https://x.com:8443/"
        assert normalize_url("http://x.com:443/") == "http://x.com:443/"
