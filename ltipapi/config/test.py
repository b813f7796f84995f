"""Configuration for testing environment"""

import os

SETTINGS = {
    # Override database URL for testing - fall back to SQLite in conftest
    "SQLALCHEMY_DATABASE_URI": os.getenv("DATABASE_URL", "sqlite://"),
    # Testing flags
    "testing": True,
    "TESTING": True,
    "DEBUG": False,
    "JWT_SECRET_KEY": os.getenv("JWT_SECRET_KEY", "test-jwt-secret-key-for-ci"),
    # Cheap hashes keep the suite fast; production uses scrypt
    "PASSWORD_HASH_METHOD": "pbkdf2:sha256:1000",
    "CSRF": {"ENABLED": True},
    # Rate limiting configuration for testing
    "RATE_LIMITING": {
        "ENABLED": os.getenv("RATE_LIMITING_ENABLED", "false").lower() == "true",
        # Use in-memory storage for testing instead of Redis
        "STORAGE_URI": os.getenv("RATE_LIMIT_STORAGE_URI", "memory://"),
        "DEFAULT_LIMITS": ["100 per hour", "10 per minute"],
        "AUTH_LIMITS": ["2 per minute", "5 per hour"],
    },
    "REDIS_URL": os.getenv("REDIS_URL", "redis://localhost:6379/2"),
    "CELERY_BROKER_URL": os.getenv("REDIS_URL", "redis://localhost:6379/2"),
    "CELERY_RESULT_BACKEND": os.getenv("REDIS_URL", "redis://localhost:6379/2"),
    "broker_url": os.getenv("REDIS_URL", "redis://localhost:6379/2"),
    "result_backend": os.getenv("REDIS_URL", "redis://localhost:6379/2"),
}
