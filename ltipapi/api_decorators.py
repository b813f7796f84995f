"""Request guards shared by the auth routes"""

from functools import wraps
import logging

from flask import g, make_response, request
from flask_jwt_extended import current_user

from ltipapi.config import get_setting
from ltipapi.errors import CsrfError
from ltipapi.routes.api.v1 import error
from ltipapi.services.csrf_service import get_csrf_token_service
from ltipapi.services.token_service import TokenService
from ltipapi.utils.security_events import log_security_event

logger = logging.getLogger()

SAFE_METHODS = ("GET", "HEAD", "OPTIONS")


def refresh_cookie_name():
    return (get_setting("REFRESH_COOKIE") or {}).get("NAME", "refreshToken")


def csrf_header_name():
    return (get_setting("CSRF") or {}).get("HEADER_NAME", "X-CSRF-Token")


def current_session_id():
    """Family id of the refresh cookie, which names the browser session."""
    return TokenService.family_id_from(request.cookies.get(refresh_cookie_name()))


def csrf_protected(func):
    """Require the session's current CSRF token on state-changing requests.

    The presented token is consumed before the route runs, so a concurrent
    or later request carrying it is rejected. A fresh token is issued after
    the route returns and travels back in the CSRF header. If issuing fails
    the session is left without a token and the client has to fetch one.

    A route that ends the session sets ``g.csrf_session_closed`` so no token
    is issued for it.
    """

    @wraps(func)
    def wrapper(*args, **kwargs):
        if not (get_setting("CSRF") or {}).get("ENABLED", False):
            return func(*args, **kwargs)
        if request.method in SAFE_METHODS:
            return func(*args, **kwargs)

        header = csrf_header_name()
        session_id = current_session_id()
        service = get_csrf_token_service()
        try:
            valid = session_id is not None and service.consume(
                session_id, request.headers.get(header)
            )
        except CsrfError as e:
            logger.error("[ROUTER]: " + e.message)
            return error(
                status=503,
                detail="Authentication is temporarily unavailable",
                kind="service_unavailable",
            )

        if not valid:
            log_security_event(
                "CSRF_REJECTED",
                details={
                    "path": request.path,
                    "method": request.method,
                    "has_session": session_id is not None,
                },
            )
            return error(
                status=403, detail="Invalid or missing CSRF token", kind="csrf_invalid"
            )

        response = make_response(func(*args, **kwargs))
        if g.get("csrf_session_closed"):
            return response
        try:
            response.headers[header] = service.generate(session_id)
        except CsrfError as e:
            logger.error("[ROUTER]: CSRF token not reissued: " + e.message)
        return response

    return wrapper


def admin_required(func):
    """Must be placed below ``jwt_required``"""

    @wraps(func)
    def wrapper(*args, **kwargs):
        if current_user is None or current_user.role != "ADMIN":
            return error(status=403, detail="Forbidden", kind="forbidden")
        return func(*args, **kwargs)

    return wrapper
