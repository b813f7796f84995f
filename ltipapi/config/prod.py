import os

SETTINGS = {
    "logging": {"level": "INFO"},
    "CSRF": {"ENABLED": True},
    "REFRESH_COOKIE": {"SECURE": True},
    "OAUTH": {"ALLOW_LOCALHOST_REDIRECTS": False},
}

if os.getenv("ENVIRONMENT") == "prod" and not os.getenv("JWT_SECRET_KEY"):
    raise RuntimeError("JWT_SECRET_KEY must be set in production")
