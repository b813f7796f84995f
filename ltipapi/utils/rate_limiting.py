"""Rate limiting utilities for the LTIP API"""

import hashlib
import logging

from flask import current_app, jsonify, request
from flask_jwt_extended import get_current_user, verify_jwt_in_request
from flask_limiter.util import get_remote_address

from ltipapi.config import SETTINGS
from ltipapi.utils.security_events import log_rate_limit_exceeded

logger = logging.getLogger(__name__)


def is_rate_limiting_disabled():
    """Helper for exempt_when to check if rate limiting is disabled"""
    if bypass_rate_limiting():
        return True

    enabled = RateLimitConfig.is_enabled()
    from ltipapi import limiter

    if hasattr(limiter, "enabled"):
        enabled = enabled and limiter.enabled
    return not enabled


def _current_account():
    try:
        verify_jwt_in_request(optional=True)
        return get_current_user()
    except Exception as e:
        logger.debug(f"Failed to get current account for rate limiting: {e}")
    return None


def get_user_id_or_ip():
    """
    Get account ID for authenticated requests, IP address for anonymous requests.
    Returns None if the caller should be exempt from rate limiting.
    """
    account = _current_account()
    if account:
        if account.role == "ADMIN":
            return None
        return f"user:{account.id}"
    return f"ip:{get_remote_address()}"


def get_rate_limit_key_for_auth():
    """
    Key function for authentication endpoints.
    Uses email + IP so one address cannot be used to try many accounts
    and the raw email never reaches the limiter storage.
    """
    body = request.get_json(silent=True) or {}
    email = str(body.get("email") or "").strip().lower()
    ip = get_remote_address()
    if email:
        email_hash = hashlib.sha256(email.encode()).hexdigest()[:16]
        return f"auth:{email_hash}:{ip}"
    return f"auth:anon:{ip}"


def create_rate_limit_response(retry_after=None):
    """Create a standardized rate limit exceeded response"""
    endpoint = request.path or request.endpoint
    account = _current_account()
    log_rate_limit_exceeded(
        limit_type=endpoint or "unknown_endpoint",
        user_id=str(account.id) if account else None,
    )

    response = jsonify(
        {
            "error": "rate_limited",
            "message": "Rate limit exceeded. Please try again later.",
        }
    )
    response.status_code = 429
    if retry_after:
        response.headers["Retry-After"] = str(retry_after)
    return response


class RateLimitConfig:
    """Helper class to centralize rate limit configuration."""

    @classmethod
    def _get_config(cls):
        """Get rate limiting config from Flask app config or fallback to SETTINGS"""
        try:
            return current_app.config.get("RATE_LIMITING", {})
        except RuntimeError:
            return SETTINGS.get("RATE_LIMITING", {})

    @classmethod
    def is_enabled(cls):
        return cls._get_config().get("ENABLED", True)

    @classmethod
    def get_storage_uri(cls):
        config = cls._get_config()
        return (
            config.get("STORAGE_URI")
            or SETTINGS.get("REDIS_URL")
            or SETTINGS.get("CELERY_BROKER_URL")
        )

    @classmethod
    def get_default_limits(cls):
        return cls._get_config().get("DEFAULT_LIMITS", ["1000 per hour"])

    @classmethod
    def get_auth_limits(cls):
        """Get rate limits for authentication endpoints."""
        return cls._get_config().get("AUTH_LIMITS", ["20 per minute"])


def bypass_rate_limiting():
    """Rate limiting is skipped in tests unless explicitly enabled."""
    try:
        config = current_app.config
        if config.get("TESTING", False):
            if not config.get("RATE_LIMITING", {}).get("ENABLED", True):
                return True
    except RuntimeError:
        pass

    return not RateLimitConfig.is_enabled()


def rate_limit_error_handler(error):
    """Custom error handler for rate limit exceeded"""
    retry_after = getattr(error, "retry_after", None)
    logger.info(f"Rate limit exceeded: {error}")
    return create_rate_limit_response(retry_after=retry_after)
