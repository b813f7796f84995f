"""Security event logging utilities for the LTIP API"""

from datetime import datetime
import logging
from typing import Any, Optional

from flask import has_request_context, request
from flask_limiter.util import get_remote_address
import rollbar

logger = logging.getLogger(__name__)

# Security event types for consistent logging
SECURITY_EVENTS = {
    "LOGIN_SUCCESS": "Account login successful",
    "LOGIN_FAILURE": "Account login failed",
    "LOGIN_BLOCKED": "Login attempted while locked out",
    "ACCOUNT_LOCKED": "Account locked after repeated failures",
    "ACCOUNT_UNLOCKED": "Account lockout cleared by an administrator",
    "LOCKOUT_UNAVAILABLE": "Lockout cache unavailable, login refused",
    "TOKEN_REUSE_DETECTED": "Revoked refresh token presented, family revoked",
    "PASSWORD_CHANGE": "Account password changed",
    "SESSION_INVALIDATED": "Account sessions invalidated",
    "CSRF_REJECTED": "Mutating request rejected by CSRF check",
    "RATE_LIMIT_HIT": "Rate limit exceeded",
    "OAUTH_STATE_REJECTED": "OAuth callback with an unknown or reused state",
    "OAUTH_ACCOUNT_LINKED": "Social sign-in linked to an existing account",
}


def log_security_event(
    event_type: str,
    user_id: Optional[str] = None,
    user_email: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
    level: str = "warning",
) -> None:
    """
    Centralized security event logging function.

    Never pass raw tokens or passwords in ``details``.

    Args:
        event_type: Type of security event (should be from SECURITY_EVENTS)
        user_id: ID of the account involved (if applicable)
        user_email: Email of the account involved (if applicable)
        details: Additional details about the event
        level: Log level ('info', 'warning', 'error')
    """
    if event_type not in SECURITY_EVENTS:
        logger.warning(f"Unknown security event type: {event_type}")

    request_data = {}
    if has_request_context():
        try:
            request_data = {
                "ip_address": get_remote_address(),
                "user_agent": request.headers.get("User-Agent", "Unknown"),
                "endpoint": request.endpoint,
                "method": request.method,
                "path": request.path,
            }
        except Exception as e:
            logger.debug(f"Failed to gather request context: {e}")

    event_data = {
        "event_type": event_type,
        "event_description": SECURITY_EVENTS.get(event_type, "Unknown security event"),
        "timestamp": datetime.utcnow().isoformat(),
        "user_id": user_id,
        "user_email": user_email,
        "details": details or {},
        "request_info": request_data,
    }
    event_data = {k: v for k, v in event_data.items() if v is not None}

    log_message = f"SECURITY_EVENT: {event_type}"
    if user_id:
        log_message += f" - Account: {user_id}"
    if details:
        log_message += f" - Details: {details}"

    getattr(logger, level)(log_message, extra=event_data)

    # Send to Rollbar for centralized monitoring
    try:
        rollbar_level = {"info": "info", "error": "error"}.get(level, "warning")
        rollbar.report_message(
            message=f"Security Event: {event_type}",
            level=rollbar_level,
            extra_data=event_data,
        )
    except Exception as e:
        logger.error(f"Failed to send security event to Rollbar: {e}")


def log_authentication_event(
    success: bool,
    email: str,
    user_id: Optional[str] = None,
    reason: Optional[str] = None,
) -> None:
    """Convenience wrapper for login outcomes."""
    if success:
        log_security_event(
            "LOGIN_SUCCESS", user_id=user_id, user_email=email, level="info"
        )
    else:
        log_security_event(
            "LOGIN_FAILURE",
            user_id=user_id,
            user_email=email,
            details={"reason": reason},
            level="warning",
        )


def log_rate_limit_exceeded(limit_type: str, user_id: Optional[str] = None) -> None:
    log_security_event(
        "RATE_LIMIT_HIT",
        user_id=user_id,
        details={"limit_type": limit_type},
        level="warning",
    )


def log_password_event(user_id: str, user_email: str, sessions_revoked: int) -> None:
    log_security_event(
        "PASSWORD_CHANGE",
        user_id=user_id,
        user_email=user_email,
        details={"sessions_revoked": sessions_revoked},
        level="info",
    )
