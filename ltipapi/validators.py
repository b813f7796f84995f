"""LTIPAPI VALIDATORS"""

from functools import wraps
import logging
import re
import unicodedata
from urllib.parse import urlsplit

from flask import request

from ltipapi.config import get_setting
from ltipapi.routes.api.v1 import error

logger = logging.getLogger()

EMAIL_REGEX = re.compile(r"^[A-Za-z0-9\.\+_-]+@[A-Za-z0-9\._-]+\.[a-zA-Z]*$")


def validate_email(email):
    """
    Validate email addresses
    """
    if not email or not isinstance(email, str):
        raise ValueError("Email is required")

    email = email.strip().lower()

    if len(email) > 254:  # RFC 5321 limit
        raise ValueError("Email address too long")

    if not EMAIL_REGEX.match(email):
        raise ValueError("Invalid email format")

    return email


def validate_name(name):
    """
    Validate display names with international character support
    """
    if name is None:
        return None
    if not isinstance(name, str):
        raise ValueError("Name must be a string")

    clean_name = unicodedata.normalize("NFC", name.strip())[:120]
    if not clean_name:
        return None

    for char in clean_name:
        if not (
            unicodedata.category(char).startswith("L")  # Letters
            or unicodedata.category(char).startswith("M")  # Marks (accents, etc.)
            or char in " '-."  # Allowed punctuation
            or unicodedata.category(char) == "Zs"
        ):  # Spaces
            raise ValueError("Name contains invalid characters")

    return clean_name


def _json_body():
    json_data = request.get_json(silent=True)
    return json_data if isinstance(json_data, dict) else None


def validate_registration(func):
    """Registration Validation"""

    @wraps(func)
    def wrapper(*args, **kwargs):
        json_data = _json_body()
        if json_data is None:
            return error(status=400, detail="JSON body required")

        try:
            json_data["email"] = validate_email(json_data.get("email"))
            json_data["name"] = validate_name(json_data.get("name"))
        except ValueError as e:
            return error(status=400, detail=str(e))

        if not isinstance(json_data.get("password"), str) or not json_data["password"]:
            return error(status=400, detail="Password is required")

        return func(*args, **kwargs)

    return wrapper


def validate_credentials(func):
    """Login Validation

    Only the shape is checked here; a malformed email is simply an unknown
    account to the login flow.
    """

    @wraps(func)
    def wrapper(*args, **kwargs):
        json_data = _json_body()
        if json_data is None:
            return error(status=400, detail="JSON body required")

        email = json_data.get("email")
        password = json_data.get("password")
        if not isinstance(email, str) or not email.strip():
            return error(status=400, detail="Email is required")
        if not isinstance(password, str) or not password:
            return error(status=400, detail="Password is required")

        return func(*args, **kwargs)

    return wrapper


def validate_password_change(func):
    """Password Change Validation"""

    @wraps(func)
    def wrapper(*args, **kwargs):
        json_data = _json_body()
        if json_data is None:
            return error(status=400, detail="JSON body required")

        if "currentPassword" not in json_data or "newPassword" not in json_data:
            return error(
                status=400, detail="Current password and new password are required"
            )

        current_password = json_data.get("currentPassword")
        new_password = json_data.get("newPassword")
        if not isinstance(current_password, str) or not current_password:
            return error(status=400, detail="Current password is required")
        if not isinstance(new_password, str) or not new_password:
            return error(status=400, detail="New password is required")

        if current_password == new_password:
            return error(
                status=400, detail="New password must differ from the current one"
            )

        return func(*args, **kwargs)

    return wrapper


def validate_unlock_request(func):
    """Admin Unlock Validation"""

    @wraps(func)
    def wrapper(*args, **kwargs):
        json_data = _json_body()
        if json_data is None:
            return error(status=400, detail="JSON body required")

        try:
            json_data["email"] = validate_email(json_data.get("email"))
        except ValueError as e:
            return error(status=400, detail=str(e))

        return func(*args, **kwargs)

    return wrapper


def validate_avatar_url(url):
    """An absolute http(s) URL, or None to clear the avatar"""
    if url is None:
        return None
    if not isinstance(url, str):
        raise ValueError("Avatar URL must be a string")
    url = url.strip()
    if len(url) > 2048:
        raise ValueError("Avatar URL too long")
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ValueError("Avatar URL must be an absolute http(s) URL")
    return url


def validate_profile_update(func):
    """Profile Update Validation

    Only the keys present in the body are validated and later applied.
    """

    @wraps(func)
    def wrapper(*args, **kwargs):
        json_data = _json_body()
        if json_data is None:
            return error(status=400, detail="JSON body required")

        unknown = set(json_data) - {"name", "avatarUrl"}
        if unknown:
            return error(
                status=400, detail=f"Unknown fields: {', '.join(sorted(unknown))}"
            )

        try:
            if "name" in json_data:
                json_data["name"] = validate_name(json_data["name"])
                if json_data["name"] is None:
                    raise ValueError("Name cannot be empty")
            if "avatarUrl" in json_data:
                json_data["avatarUrl"] = validate_avatar_url(json_data["avatarUrl"])
        except ValueError as e:
            return error(status=400, detail=str(e))

        return func(*args, **kwargs)

    return wrapper


def is_allowed_redirect(url):
    """Whether an OAuth redirect target is a trusted frontend origin.

    No URL is allowed (the client falls back to its default page). Localhost
    is allowed on any port outside production, everything else must match
    one of the CORS origins exactly.
    """
    if not url:
        return True
    if not isinstance(url, str):
        return False

    try:
        parts = urlsplit(url)
        hostname, _ = parts.hostname, parts.port
    except ValueError:
        hostname = None
    if hostname is None or parts.scheme not in ("http", "https"):
        logger.warning(f"[VALIDATOR]: Invalid redirect URL format: {url!r}")
        return False

    oauth = get_setting("OAUTH") or {}
    if oauth.get("ALLOW_LOCALHOST_REDIRECTS", False) and hostname == "localhost":
        return True

    origin = f"{parts.scheme}://{parts.netloc}".lower()
    allowed = [o.rstrip("/").lower() for o in get_setting("CORS_ORIGINS") or []]
    if origin not in allowed:
        logger.warning(
            f"[VALIDATOR]: Rejected untrusted redirect origin {origin} "
            "(possible open redirect)"
        )
        return False
    return True


def validate_oauth_redirect(func):
    """Reject OAuth starts whose ``redirectUrl`` is not a trusted origin"""

    @wraps(func)
    def wrapper(*args, **kwargs):
        if not is_allowed_redirect(request.args.get("redirectUrl")):
            return error(
                status=400,
                detail="Invalid redirect URL. Must be a trusted domain.",
                kind="invalid_redirect",
            )
        return func(*args, **kwargs)

    return wrapper
