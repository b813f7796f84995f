"""Tests for app-level endpoints, error handlers and headers"""

from unittest.mock import MagicMock, patch


def test_ping(client):
    response = client.get("/ping")
    assert response.status_code == 200
    assert response.json["message"] == "pong"


def test_health_reports_cache_status(client):
    cache = MagicMock()
    cache.is_available.return_value = False
    with patch("ltipapi.utils.redis_cache.get_redis_cache", return_value=cache):
        response = client.get("/api-health")
    assert response.status_code == 200
    assert response.json["database"] == "healthy"
    assert response.json["cache"] == "unhealthy"


def test_not_found_uses_error_body(client):
    response = client.get("/api/v1/auth/nothing-here")
    assert response.status_code == 404
    assert response.json == {"error": "not_found", "message": "Not Found"}


def test_method_not_allowed(client):
    response = client.get("/api/v1/auth/login")
    assert response.status_code == 405
    assert response.json["error"] == "method_not_allowed"


def test_security_headers(client):
    response = client.get("/ping")
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"
    assert response.headers["Cache-Control"] == "no-store"


def test_unreachable_cache_is_unavailable():
    from ltipapi.utils.redis_cache import RedisCache

    cache = RedisCache(url="redis://127.0.0.1:1/0", timeout=0.5)
    assert cache.is_available() is False
