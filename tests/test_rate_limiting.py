"""Tests for rate limit keys and configuration helpers"""

from unittest.mock import patch

from ltipapi.utils.rate_limiting import (
    RateLimitConfig,
    get_rate_limit_key_for_auth,
    get_user_id_or_ip,
    is_rate_limiting_disabled,
)


def test_auth_key_hashes_email(app):
    with app.test_request_context(
        json={"email": " User@Test.com "}, environ_base={"REMOTE_ADDR": "192.0.2.1"}
    ):
        key = get_rate_limit_key_for_auth()
    assert key.startswith("auth:")
    assert key.endswith(":192.0.2.1")
    assert "user@test.com" not in key


def test_auth_key_is_case_insensitive(app):
    keys = set()
    for email in ("user@test.com", "USER@test.com"):
        with app.test_request_context(json={"email": email}):
            keys.add(get_rate_limit_key_for_auth())
    assert len(keys) == 1


def test_auth_key_without_email(app):
    with app.test_request_context(
        data="not json", environ_base={"REMOTE_ADDR": "192.0.2.1"}
    ):
        assert get_rate_limit_key_for_auth() == "auth:anon:192.0.2.1"


def test_anonymous_requests_keyed_by_ip(app):
    with app.test_request_context(environ_base={"REMOTE_ADDR": "192.0.2.9"}):
        assert get_user_id_or_ip() == "ip:192.0.2.9"


def test_admins_are_exempt(app, admin_user, admin_headers):
    with app.test_request_context(headers=admin_headers):
        assert get_user_id_or_ip() is None


def test_users_keyed_by_account(app, regular_user, user_headers):
    with app.test_request_context(headers=user_headers):
        assert get_user_id_or_ip() == f"user:{regular_user.id}"


def test_disabled_in_tests_by_default(app):
    assert is_rate_limiting_disabled()


def test_config_reads_app_config(app):
    with patch.dict(
        app.config, {"RATE_LIMITING": {"ENABLED": True, "AUTH_LIMITS": ["1 per day"]}}
    ):
        assert RateLimitConfig.is_enabled()
        assert RateLimitConfig.get_auth_limits() == ["1 per day"]
        assert RateLimitConfig.get_default_limits() == ["1000 per hour"]
