"""AUTH ROUTES

Thin transport over ``AuthService``: the refresh token travels in an
HTTP-only cookie, the access token in the JSON body and the CSRF token in
the CSRF response header.
"""

import logging

from flask import current_app, g, jsonify, make_response, redirect, request
from flask_jwt_extended import current_user, jwt_required
from flask_limiter.util import get_remote_address

from ltipapi import limiter
from ltipapi.api_decorators import (
    csrf_header_name,
    csrf_protected,
    current_session_id,
    refresh_cookie_name,
)
from ltipapi.config import get_setting
from ltipapi.errors import CsrfError, OAuthStateError
from ltipapi.routes.api.v1 import auth_endpoints, error
from ltipapi.services import AuthService
from ltipapi.services.csrf_service import get_csrf_token_service
from ltipapi.services.oauth_service import get_oauth_service
from ltipapi.services.results import AuthErrorKind, AuthFailure
from ltipapi.services.token_service import TokenService
from ltipapi.utils.rate_limiting import (
    RateLimitConfig,
    get_rate_limit_key_for_auth,
    is_rate_limiting_disabled,
)
from ltipapi.validators import (
    validate_credentials,
    validate_oauth_redirect,
    validate_password_change,
    validate_profile_update,
    validate_registration,
)

logger = logging.getLogger()

STATUS_BY_ERROR = {
    AuthErrorKind.EMAIL_EXISTS: 409,
    AuthErrorKind.PASSWORD_WEAK: 400,
    AuthErrorKind.PASSWORD_COMMON: 400,
    AuthErrorKind.INVALID_CREDENTIALS: 401,
    AuthErrorKind.EXPIRED_TOKEN: 401,
    AuthErrorKind.REVOKED_TOKEN: 401,
    AuthErrorKind.INVALID_TOKEN: 401,
    AuthErrorKind.ACCOUNT_INACTIVE: 403,
    AuthErrorKind.ACCOUNT_LOCKED: 429,
    AuthErrorKind.SERVICE_UNAVAILABLE: 503,
    AuthErrorKind.INTERNAL: 500,
    AuthErrorKind.PROVIDER_DISABLED: 503,
    AuthErrorKind.INVALID_STATE: 400,
    AuthErrorKind.TOKEN_EXCHANGE_FAILED: 502,
    AuthErrorKind.USER_INFO_FAILED: 502,
    AuthErrorKind.EMAIL_NOT_VERIFIED: 403,
    AuthErrorKind.EMAIL_REQUIRED: 403,
}


def auth_limits():
    return ";".join(RateLimitConfig.get_auth_limits())


def failure_response(result: AuthFailure):
    response, status = error(
        status=STATUS_BY_ERROR.get(result.error, 500),
        detail=result.message,
        kind=result.error.value,
    )
    retry_after = result.details.get("retry_after")
    if result.error == AuthErrorKind.ACCOUNT_LOCKED and retry_after:
        response.headers["Retry-After"] = str(max(1, int(retry_after)))
    return response, status


def client_context():
    return request.headers.get("User-Agent"), get_remote_address()


def presented_refresh_token():
    """Refresh token from the cookie, or the JSON body for non-browser clients"""
    token = request.cookies.get(refresh_cookie_name())
    if token:
        return token
    body = request.get_json(silent=True)
    if isinstance(body, dict) and isinstance(body.get("refreshToken"), str):
        return body["refreshToken"]
    return None


def set_refresh_cookie(response, refresh_token):
    cookie = get_setting("REFRESH_COOKIE") or {}
    response.set_cookie(
        cookie.get("NAME", "refreshToken"),
        refresh_token,
        max_age=int(current_app.config["JWT_REFRESH_TOKEN_EXPIRES"].total_seconds()),
        path=cookie.get("PATH", "/api/v1/auth"),
        secure=cookie.get("SECURE", False),
        httponly=True,
        samesite=cookie.get("SAMESITE", "Strict"),
    )


def clear_refresh_cookie(response):
    cookie = get_setting("REFRESH_COOKIE") or {}
    response.delete_cookie(
        cookie.get("NAME", "refreshToken"),
        path=cookie.get("PATH", "/api/v1/auth"),
        secure=cookie.get("SECURE", False),
        httponly=True,
        samesite=cookie.get("SAMESITE", "Strict"),
    )


def clear_csrf(session_id):
    if not session_id:
        return
    try:
        get_csrf_token_service().clear(session_id)
    except CsrfError as e:
        logger.error("[ROUTER]: " + e.message)


def session_response(result, status=200):
    """Body with the access token, refresh cookie and a fresh CSRF token"""
    tokens = result.tokens
    response = make_response(
        jsonify(
            data={"account": result.account, **tokens.serialize(), **result.details}
        ),
        status,
    )
    set_refresh_cookie(response, tokens.refresh_token)
    if (get_setting("CSRF") or {}).get("ENABLED", False):
        try:
            response.headers[csrf_header_name()] = get_csrf_token_service().generate(
                tokens.family_id
            )
        except CsrfError as e:
            logger.error("[ROUTER]: " + e.message)
    return response


# REGISTER
@auth_endpoints.route("/register", strict_slashes=False, methods=["POST"])
@limiter.limit(
    auth_limits,
    key_func=get_rate_limit_key_for_auth,
    exempt_when=is_rate_limiting_disabled,
)
@validate_registration
def register():
    """
    Create an account and start a session.

    **Request Schema**: `{"email": str, "password": str, "name": str?}`

    **Error Responses**:
    - `400 Bad Request`: Weak or common password, malformed body
    - `409 Conflict`: Email already registered
    """
    logger.info("[ROUTER]: Registering account")
    body = request.get_json(silent=True)
    user_agent, ip_address = client_context()
    result = AuthService.register(
        body["email"],
        body["password"],
        name=body.get("name"),
        user_agent=user_agent,
        ip_address=ip_address,
    )
    if isinstance(result, AuthFailure):
        return failure_response(result)
    return session_response(result, status=201)


# LOGIN
@auth_endpoints.route("/login", strict_slashes=False, methods=["POST"])
@limiter.limit(
    auth_limits,
    key_func=get_rate_limit_key_for_auth,
    exempt_when=is_rate_limiting_disabled,
)
@validate_credentials
def login():
    """
    Authenticate with email and password.

    **Rate Limited**: Subject to auth limits keyed by email and IP

    **Success Response Schema**:
    ```json
    {
      "data": {
        "account": {"id": "...", "email": "user@example.com"},
        "accessToken": "eyJ...",
        "accessTokenExpiresAt": "2025-01-15T10:45:00",
        "refreshTokenExpiresAt": "2025-01-22T10:30:00"
      }
    }
    ```
    The refresh token is set as an HTTP-only cookie.

    **Error Responses**:
    - `401 Unauthorized`: Invalid email or password
    - `403 Forbidden`: Account disabled
    - `429 Too Many Requests`: Account or address locked, see `Retry-After`
    - `503 Service Unavailable`: Lockout store unreachable
    """
    body = request.get_json(silent=True)
    user_agent, ip_address = client_context()
    result = AuthService.login(
        body["email"], body["password"], user_agent=user_agent, ip_address=ip_address
    )
    if isinstance(result, AuthFailure):
        logger.info(f"[ROUTER]: Login rejected: {result.error.value}")
        return failure_response(result)
    return session_response(result)


# REFRESH
@auth_endpoints.route("/refresh", strict_slashes=False, methods=["POST"])
@limiter.limit(
    auth_limits,
    key_func=get_rate_limit_key_for_auth,
    exempt_when=is_rate_limiting_disabled,
)
def refresh():
    """Exchange the refresh cookie for a new token pair (rotation)"""
    token = presented_refresh_token()
    if not token:
        return error(status=401, detail="Refresh token required", kind="invalid_token")
    user_agent, ip_address = client_context()
    result = AuthService.refresh(token, user_agent=user_agent, ip_address=ip_address)
    if isinstance(result, AuthFailure):
        response, status = failure_response(result)
        clear_refresh_cookie(response)
        return response, status
    return session_response(result)


# LOGOUT
@auth_endpoints.route("/logout", strict_slashes=False, methods=["POST"])
def logout():
    """Revoke the current session. Always succeeds and clears the cookie."""
    token = presented_refresh_token()
    revoked = AuthService.logout(token) if token else False
    clear_csrf(TokenService.family_id_from(token))
    response = make_response(jsonify(data={"loggedOut": True, "revoked": revoked}))
    clear_refresh_cookie(response)
    return response


@auth_endpoints.route("/logout-all", strict_slashes=False, methods=["POST"])
@jwt_required()
def logout_all():
    """Revoke every session of the authenticated account"""
    logger.info(f"[ROUTER]: Logging out account {current_user.id} everywhere")
    count = AuthService.logout_all(current_user.id)
    if count is None:
        return error(status=500, detail="Generic Error", kind="internal")
    clear_csrf(current_session_id())
    response = make_response(jsonify(data={"sessionsRevoked": count}))
    clear_refresh_cookie(response)
    return response


@auth_endpoints.route("/me", strict_slashes=False, methods=["GET"])
@jwt_required()
def get_me():
    profile = AuthService.get_profile(current_user.id)
    if profile is None:
        return error(status=404, detail="Account not found", kind="not_found")
    return jsonify(data=profile), 200


@auth_endpoints.route("/me", strict_slashes=False, methods=["PATCH"])
@jwt_required()
@csrf_protected
@validate_profile_update
def update_me():
    """
    Update the profile of the authenticated account.

    **Request Schema**: `{"name": str?, "avatarUrl": str | null?}`. Fields left
    out of the body are not changed; `avatarUrl: null` removes the avatar.
    """
    body = request.get_json(silent=True)
    changes = {}
    if "name" in body:
        changes["name"] = body["name"]
    if "avatarUrl" in body:
        changes["avatar_url"] = body["avatarUrl"]
    profile = AuthService.update_profile(current_user.id, changes)
    if profile is None:
        return error(status=404, detail="Account not found", kind="not_found")
    return jsonify(data=profile), 200


@auth_endpoints.route("/change-password", strict_slashes=False, methods=["POST"])
@jwt_required()
@csrf_protected
@validate_password_change
def change_password():
    """
    Change the password of the authenticated account.

    Every refresh token of the account is revoked, this session included,
    so the client has to log in again.

    **Request Schema**: `{"currentPassword": str, "newPassword": str}`
    """
    logger.info(f"[ROUTER]: Changing password of account {current_user.id}")
    body = request.get_json(silent=True)
    result = AuthService.change_password(
        current_user.id, body["currentPassword"], body["newPassword"]
    )
    if isinstance(result, AuthFailure):
        return failure_response(result)

    g.csrf_session_closed = True
    clear_csrf(current_session_id())
    response = make_response(
        jsonify(data={"account": result.account, "reauthenticate": True})
    )
    clear_refresh_cookie(response)
    return response


@auth_endpoints.route("/sessions", strict_slashes=False, methods=["GET"])
@jwt_required()
def get_sessions():
    sessions = AuthService.get_sessions(current_user.id)
    if sessions is None:
        return error(status=500, detail="Generic Error", kind="internal")
    return jsonify(data=sessions), 200


@auth_endpoints.route(
    "/sessions/<session_id>", strict_slashes=False, methods=["DELETE"]
)
@jwt_required()
@csrf_protected
def revoke_session(session_id):
    """Revoke one of the account's own sessions"""
    logger.info(f"[ROUTER]: Revoking session {session_id}")
    revoked = AuthService.revoke_session(current_user.id, session_id)
    if revoked is None:
        return error(status=500, detail="Generic Error", kind="internal")
    if not revoked:
        return error(status=404, detail="Session not found", kind="not_found")
    return jsonify(data={"id": session_id, "revoked": True}), 200


@auth_endpoints.route("/csrf-token", strict_slashes=False, methods=["GET"])
def get_csrf_token():
    """Issue a CSRF token for the session named by the refresh cookie"""
    session_id = current_session_id()
    if session_id is None:
        return error(status=401, detail="No active session", kind="invalid_token")
    try:
        token = get_csrf_token_service().generate(session_id)
    except CsrfError as e:
        logger.error("[ROUTER]: " + e.message)
        return error(
            status=503,
            detail="Authentication is temporarily unavailable",
            kind="service_unavailable",
        )
    response = make_response(jsonify(data={"csrfToken": token}))
    response.headers[csrf_header_name()] = token
    return response


# SOCIAL SIGN-IN
@auth_endpoints.route("/providers", strict_slashes=False, methods=["GET"])
def get_providers():
    """Which social sign-in providers are configured"""
    return jsonify(data=get_oauth_service().enabled_providers()), 200


@auth_endpoints.route(
    "/<any(google, github):provider>", strict_slashes=False, methods=["GET"]
)
@validate_oauth_redirect
def start_oauth(provider):
    """
    Redirect to the provider's consent screen.

    **Query Parameters**: `redirectUrl` (optional), must be a trusted origin

    **Error Responses**:
    - `400 Bad Request`: Untrusted redirect URL
    - `503 Service Unavailable`: Provider not configured or state store down
    """
    try:
        url = get_oauth_service().authorization_url(
            provider, redirect_url=request.args.get("redirectUrl")
        )
    except OAuthStateError as e:
        logger.error("[ROUTER]: " + e.message)
        return error(
            status=503,
            detail="Authentication is temporarily unavailable",
            kind="service_unavailable",
        )
    if url is None:
        return error(
            status=503,
            detail=f"{provider.title()} sign-in is not configured",
            kind="provider_disabled",
        )
    return redirect(url)


@auth_endpoints.route(
    "/<any(google, github):provider>/callback", strict_slashes=False, methods=["GET"]
)
@limiter.limit(
    auth_limits,
    key_func=get_rate_limit_key_for_auth,
    exempt_when=is_rate_limiting_disabled,
)
def oauth_callback(provider):
    """
    Finish social sign-in: same body, cookie and CSRF header as login, plus
    `isNewUser` and the `redirectUrl` given when the flow started.

    **Query Parameters**: `code`, `state`, or `error` from the provider
    """
    provider_error = request.args.get("error")
    if provider_error:
        return error(
            status=400, detail=f"OAuth error: {provider_error}", kind="oauth_error"
        )
    code = request.args.get("code")
    state = request.args.get("state")
    if not code or not state:
        return error(
            status=400,
            detail="Missing code or state parameter",
            kind="invalid_request",
        )

    user_agent, ip_address = client_context()
    result = get_oauth_service().complete(
        provider, code, state, user_agent=user_agent, ip_address=ip_address
    )
    if isinstance(result, AuthFailure):
        logger.info(f"[ROUTER]: {provider} sign-in rejected: {result.error.value}")
        return failure_response(result)
    return session_response(result)
