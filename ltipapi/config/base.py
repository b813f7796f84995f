from datetime import timedelta
import logging
import os

logger = logging.getLogger(__name__)


def _redis_url():
    return os.getenv("REDIS_URL") or (
        "redis://"
        + (os.getenv("REDIS_PORT_6379_TCP_ADDR") or "localhost")
        + ":"
        + (os.getenv("REDIS_PORT_6379_TCP_PORT") or "6379")
    )


SETTINGS = {
    "logging": {"level": os.getenv("LOG_LEVEL", "INFO")},
    "service": {"port": int(os.getenv("PORT", "4000"))},
    "environment": {
        "ROLLBAR_SERVER_TOKEN": os.getenv("ROLLBAR_SERVER_TOKEN"),
    },
    "ROLES": ["ADMIN", "USER"],
    # Trusted frontend origins: CORS allowlist and OAuth redirect allowlist
    "CORS_ORIGINS": [
        origin.strip()
        for origin in (
            os.getenv("CORS_ORIGINS") or "http://localhost:3000,http://localhost:8080"
        ).split(",")
        if origin.strip()
    ],
    "SQLALCHEMY_DATABASE_URI": os.getenv("DATABASE_URL")
    or (
        "postgresql://"
        + (os.getenv("DATABASE_ENV_POSTGRES_USER") or "postgres")
        + ":"
        + (os.getenv("DATABASE_ENV_POSTGRES_PASSWORD") or "postgres")
        + "@"
        + (os.getenv("DATABASE_PORT_5432_TCP_ADDR") or "localhost")
        + ":"
        + (os.getenv("DATABASE_PORT_5432_TCP_PORT") or "5432")
        + "/"
        + (os.getenv("DATABASE_ENV_POSTGRES_DB") or "ltip_dev")
    ),
    "SECRET_KEY": os.getenv("SECRET_KEY"),
    "JWT_SECRET_KEY": os.getenv("JWT_SECRET_KEY") or os.getenv("SECRET_KEY"),
    "JWT_ALGORITHM": os.getenv("JWT_ALGORITHM", "HS256"),
    "JWT_ISSUER": os.getenv("JWT_ISSUER", "ltip-api"),
    "JWT_AUDIENCE": os.getenv("JWT_AUDIENCE", "ltip-client"),
    "JWT_ACCESS_TOKEN_EXPIRES": timedelta(
        minutes=int(os.getenv("JWT_ACCESS_TOKEN_MINUTES", "15"))
    ),
    "JWT_REFRESH_TOKEN_EXPIRES": timedelta(
        days=int(os.getenv("JWT_REFRESH_TOKEN_DAYS", "7"))
    ),
    "JWT_TOKEN_LOCATION": ["headers"],
    # Revoked refresh tokens are kept this long for reuse detection
    "REFRESH_TOKEN_RETENTION_DAYS": 30,
    # Per-account counter stored on the account row
    "ACCOUNT_LOCKOUT": {
        "MAX_ATTEMPTS": 5,
        "DURATION_SECONDS": 900,
    },
    # Distributed, cache-backed lockout keyed by identity and source IP
    "LOCKOUT": {
        "MAX_ATTEMPTS": 5,
        "ATTEMPT_WINDOW_SECONDS": 900,
        # 1st, 2nd, 3rd and every later lockout
        "DURATIONS": [900, 3600, 21600, 86400],
        "STRIKE_TTL_SECONDS": 30 * 24 * 60 * 60,
        "USE_ATOMIC_SCRIPT": os.getenv("LOCKOUT_ATOMIC_SCRIPT", "true").lower()
        == "true",
    },
    "CSRF": {
        "ENABLED": os.getenv("CSRF_PROTECTION_ENABLED", "false").lower() == "true",
        "HEADER_NAME": "X-CSRF-Token",
        "TTL_SECONDS": 3600,
        "TOKEN_BYTES": 32,
    },
    "PASSWORD_HASH_METHOD": os.getenv("PASSWORD_HASH_METHOD", "scrypt"),
    "REFRESH_COOKIE": {
        "NAME": "refreshToken",
        "PATH": "/api/v1/auth",
        "SECURE": os.getenv("ENVIRONMENT") == "prod",
        "SAMESITE": "Strict",
    },
    # Social sign-in. A provider is enabled when both its credentials are set.
    "OAUTH": {
        "CALLBACK_BASE_URL": os.getenv("OAUTH_CALLBACK_BASE_URL")
        or f"http://localhost:{os.getenv('PORT', '4000')}",
        "STATE_TTL_SECONDS": 600,
        "HTTP_TIMEOUT_SECONDS": float(os.getenv("OAUTH_HTTP_TIMEOUT", "10")),
        "ALLOW_LOCALHOST_REDIRECTS": os.getenv("ENVIRONMENT", "dev")
        not in ("prod", "staging"),
        "GOOGLE": {
            "CLIENT_ID": os.getenv("GOOGLE_OAUTH_CLIENT_ID"),
            "CLIENT_SECRET": os.getenv("GOOGLE_OAUTH_CLIENT_SECRET"),
        },
        "GITHUB": {
            "CLIENT_ID": os.getenv("GITHUB_OAUTH_CLIENT_ID"),
            "CLIENT_SECRET": os.getenv("GITHUB_OAUTH_CLIENT_SECRET"),
        },
    },
    "REDIS_URL": _redis_url(),
    "REDIS_SOCKET_TIMEOUT": float(os.getenv("REDIS_SOCKET_TIMEOUT", "2")),
    "TRUSTED_PROXY_COUNT": int(os.getenv("TRUSTED_PROXY_COUNT", "0")),
    "CELERY_BROKER_URL": _redis_url(),
    "CELERY_RESULT_BACKEND": _redis_url(),
    # Celery also expects lowercase versions
    "broker_url": _redis_url(),
    "result_backend": _redis_url(),
    # Rate limiting configuration
    "RATE_LIMITING": {
        "ENABLED": os.getenv("RATE_LIMITING_ENABLED", "true").lower() == "true",
        "STORAGE_URI": os.getenv("RATE_LIMIT_STORAGE_URI") or os.getenv("REDIS_URL"),
        "DEFAULT_LIMITS": [
            s.strip()
            for s in (
                os.getenv("DEFAULT_LIMITS") or "1000 per hour,100 per minute"
            ).split(",")
        ],
        "AUTH_LIMITS": [
            s.strip()
            for s in (os.getenv("AUTH_LIMITS") or "20 per minute,200 per hour").split(
                ","
            )
        ],
    },
}

if not SETTINGS["JWT_SECRET_KEY"]:
    logger.warning(
        "JWT_SECRET_KEY is not set. Token signing will fail until it is configured."
    )
