"""Tests for request validators"""

import pytest

from ltipapi.validators import (
    is_allowed_redirect,
    validate_avatar_url,
    validate_email,
    validate_name,
)


class TestValidateEmail:
    def test_normalizes(self):
        assert validate_email("  User@Test.COM ") == "user@test.com"

    @pytest.mark.parametrize("value", ["", None, "plainaddress", "a@b", 42])
    def test_rejects_invalid(self, value):
        with pytest.raises(ValueError):
            validate_email(value)

    def test_rejects_overlong(self):
        with pytest.raises(ValueError, match="too long"):
            validate_email("a" * 250 + "@test.com")


class TestValidateName:
    def test_keeps_international_names(self):
        assert validate_name("  José O'Neil-Åström ") == "José O'Neil-Åström"

    def test_optional(self):
        assert validate_name(None) is None
        assert validate_name("   ") is None

    def test_rejects_markup(self):
        with pytest.raises(ValueError):
            validate_name("<script>")


class TestValidateAvatarUrl:
    def test_accepts_https(self):
        url = "https://cdn.example.com/a.png"
        assert validate_avatar_url(f" {url} ") == url

    def test_none_clears(self):
        assert validate_avatar_url(None) is None

    @pytest.mark.parametrize(
        "value", ["javascript:alert(1)", "/relative.png", "ftp://host/a.png", 7]
    )
    def test_rejects_non_http(self, value):
        with pytest.raises(ValueError):
            validate_avatar_url(value)

    def test_rejects_overlong(self):
        with pytest.raises(ValueError, match="too long"):
            validate_avatar_url("https://example.com/" + "a" * 2048)


@pytest.fixture
def trusted_origins(app, monkeypatch):
    monkeypatch.setitem(app.config, "CORS_ORIGINS", ["https://app.example.com"])
    monkeypatch.setitem(
        app.config,
        "OAUTH",
        {**app.config["OAUTH"], "ALLOW_LOCALHOST_REDIRECTS": False},
    )


class TestIsAllowedRedirect:
    def test_no_redirect_is_allowed(self, trusted_origins):
        assert is_allowed_redirect(None)
        assert is_allowed_redirect("")

    def test_trusted_origin(self, trusted_origins):
        assert is_allowed_redirect("https://app.example.com/dashboard?tab=1")
        assert is_allowed_redirect("HTTPS://APP.EXAMPLE.COM/")

    @pytest.mark.parametrize(
        "url",
        [
            "https://evil.example.net/",
            "https://app.example.com.evil.net/",
            "https://app.example.com@evil.net/",
            "http://app.example.com/",
            "https://app.example.com:8443/",
            "javascript:alert(1)",
            "//evil.net/",
            "https://[::1/",
            "https://app.example.com:99999/",
        ],
    )
    def test_untrusted_or_malformed(self, trusted_origins, url):
        assert not is_allowed_redirect(url)

    def test_localhost_only_when_enabled(self, app, trusted_origins, monkeypatch):
        assert not is_allowed_redirect("http://localhost:5173/callback")
        monkeypatch.setitem(
            app.config,
            "OAUTH",
            {**app.config["OAUTH"], "ALLOW_LOCALHOST_REDIRECTS": True},
        )
        assert is_allowed_redirect("http://localhost:5173/callback")
