"""The LTIP API MODULE"""

from datetime import datetime
import logging
import os
import sys
import uuid

from flask import Flask, got_request_exception, jsonify
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_limiter import Limiter
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
import rollbar
import rollbar.contrib.flask
from werkzeug.middleware.proxy_fix import ProxyFix

from ltipapi.celery import make_celery
from ltipapi.config import SETTINGS
from ltipapi.utils.rate_limiting import (
    RateLimitConfig,
    get_user_id_or_ip,
    rate_limit_error_handler,
)

# Flask App
app = Flask(__name__)

# Respect trusted proxy configuration for accurate client IP detection
trusted_proxy_count = SETTINGS.get("TRUSTED_PROXY_COUNT", 0)
if trusted_proxy_count:
    app.wsgi_app = ProxyFix(  # type: ignore[assignment]
        app.wsgi_app,
        x_for=trusted_proxy_count,
        x_proto=trusted_proxy_count,
        x_host=trusted_proxy_count,
        x_port=trusted_proxy_count,
        x_prefix=trusted_proxy_count,
    )

# The refresh token travels in a cookie and the CSRF token in a header, so
# credentials must be allowed and the CSRF header exposed to the browser
cors_origins = SETTINGS["CORS_ORIGINS"]
CORS(
    app,
    origins=cors_origins,
    supports_credentials=True,
    allow_headers=["Content-Type", "Authorization", "X-CSRF-Token"],
    expose_headers=["X-CSRF-Token", "Retry-After"],
    methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
)

logger = logging.getLogger()
log_level = SETTINGS.get("logging", {}).get("level", "INFO")
logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

logging.getLogger("urllib3.connectionpool").setLevel(logging.WARNING)

# Ensure all unhandled exceptions are logged, and reported to rollbar
formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
handler = logging.StreamHandler(stream=sys.stdout)
handler.setLevel(logging.INFO)
handler.setFormatter(formatter)
logger.addHandler(handler)

rollbar.init(
    SETTINGS.get("environment", {}).get("ROLLBAR_SERVER_TOKEN"),
    os.getenv("ENVIRONMENT"),
)
with app.app_context():
    got_request_exception.connect(rollbar.contrib.flask.report_exception, app)


def validate_cors_origins():
    """Reject localhost origins in production."""
    environment = os.getenv("ENVIRONMENT", "dev")
    logger.info(f"Validating CORS origins for environment: {environment}")

    if environment != "prod":
        return

    for origin in cors_origins:
        origin_lower = origin.lower()
        if "localhost" in origin_lower or "127.0.0.1" in origin_lower:
            error_msg = (
                f"Security Error: Localhost origin '{origin}' not allowed in production"
            )
            logger.error(error_msg)
            raise ValueError(error_msg)


validate_cors_origins()


@app.after_request
def set_security_headers(response):
    """Add security headers to all responses."""
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Cache-Control"] = "no-store"
    if os.getenv("ENVIRONMENT") == "prod":
        response.headers["Strict-Transport-Security"] = (
            "max-age=31536000; includeSubDomains"
        )
    return response


app.config["SQLALCHEMY_DATABASE_URI"] = SETTINGS.get("SQLALCHEMY_DATABASE_URI")
app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

# SQLite (used by the test suite) runs on a static pool that rejects sizing
# options, so the pool settings only apply to server databases
if not app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite"):
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {
        "pool_recycle": 3600,
        "pool_pre_ping": True,
        "pool_size": 10,
        "max_overflow": 20,
        "pool_timeout": 30,
    }

# Settings read by the services through ltipapi.config.get_setting
for key in (
    "TESTING",
    "RATE_LIMITING",
    "ACCOUNT_LOCKOUT",
    "LOCKOUT",
    "CSRF",
    "REFRESH_COOKIE",
    "PASSWORD_HASH_METHOD",
    "REFRESH_TOKEN_RETENTION_DAYS",
    "REDIS_URL",
    "REDIS_SOCKET_TIMEOUT",
    "CORS_ORIGINS",
    "OAUTH",
):
    if key in SETTINGS:
        app.config[key] = SETTINGS[key]

app.config["SECRET_KEY"] = SETTINGS.get("SECRET_KEY")
app.config["JWT_SECRET_KEY"] = SETTINGS.get("JWT_SECRET_KEY")
app.config["JWT_ALGORITHM"] = SETTINGS.get("JWT_ALGORITHM")
app.config["JWT_DECODE_ALGORITHMS"] = [SETTINGS.get("JWT_ALGORITHM")]
app.config["JWT_ENCODE_ISSUER"] = SETTINGS.get("JWT_ISSUER")
app.config["JWT_DECODE_ISSUER"] = SETTINGS.get("JWT_ISSUER")
app.config["JWT_ENCODE_AUDIENCE"] = SETTINGS.get("JWT_AUDIENCE")
app.config["JWT_DECODE_AUDIENCE"] = SETTINGS.get("JWT_AUDIENCE")
app.config["JWT_ACCESS_TOKEN_EXPIRES"] = SETTINGS.get("JWT_ACCESS_TOKEN_EXPIRES")
app.config["JWT_REFRESH_TOKEN_EXPIRES"] = SETTINGS.get("JWT_REFRESH_TOKEN_EXPIRES")
app.config["JWT_TOKEN_LOCATION"] = SETTINGS.get("JWT_TOKEN_LOCATION")
app.config["broker_url"] = SETTINGS.get("CELERY_BROKER_URL")
app.config["result_backend"] = SETTINGS.get("CELERY_RESULT_BACKEND")

app.config["MAX_CONTENT_LENGTH"] = 1 * 1024 * 1024

# Database
db = SQLAlchemy(app)
migrate = Migrate(app, db)

# Celery
celery = make_celery(app)

# Rate Limiting (must be after db and celery)
limiter = Limiter(
    app=app,
    key_func=get_user_id_or_ip,
    storage_uri=RateLimitConfig.get_storage_uri(),
    default_limits=RateLimitConfig.get_default_limits(),
    headers_enabled=True,
    enabled=True,  # Always enabled, but we'll check dynamically via exempt_when
    on_breach=rate_limit_error_handler,
)

jwt = JWTManager(app)

# DB has to be ready!
# Import tasks to register them with Celery
from ltipapi import tasks  # noqa: E402,F401
from ltipapi.models import Account  # noqa: E402
from ltipapi.routes.api.v1 import auth_endpoints, error  # noqa: E402

# Blueprint Flask Routing
app.register_blueprint(auth_endpoints, url_prefix="/api/v1/auth")

logger.info(
    f"Registered Flask app with {len(list(app.url_map.iter_rules()))} total routes"
)


@app.route("/api-health", methods=["GET"])
def health_check():
    """Health check with database and cache status"""
    from sqlalchemy import text

    from ltipapi.utils.redis_cache import get_redis_cache

    db_status = "unknown"
    try:
        result = db.session.execute(text("SELECT 1 as health_check")).fetchone()
        db_status = "healthy" if result and result[0] == 1 else "unhealthy"
    except Exception as e:
        logger.warning(f"Database health check failed: {str(e)}")
        db_status = "unhealthy"

    cache_status = "healthy" if get_redis_cache().is_available() else "unhealthy"

    return jsonify(
        {
            "status": "ok",
            "timestamp": datetime.utcnow().isoformat(),
            "database": db_status,
            "cache": cache_status,
        }
    ), 200


@app.route("/ping", methods=["GET"])
def ping():
    """Simple ping endpoint without database dependency"""
    return jsonify(
        {"status": "ok", "timestamp": datetime.utcnow().isoformat(), "message": "pong"}
    ), 200


@jwt.user_lookup_loader
def user_lookup_callback(_jwt_header, jwt_data):
    try:
        identity = uuid.UUID(jwt_data["sub"])
    except (KeyError, TypeError, ValueError):
        return None
    return Account.query.filter_by(id=identity, is_active=True).one_or_none()


@jwt.unauthorized_loader
def missing_token_callback(reason):
    return error(status=401, detail=reason, kind="invalid_token")


@jwt.invalid_token_loader
def invalid_token_callback(reason):
    return error(status=401, detail=reason, kind="invalid_token")


@jwt.expired_token_loader
def expired_token_callback(_jwt_header, _jwt_data):
    return error(status=401, detail="Token has expired", kind="expired_token")


@jwt.user_lookup_error_loader
def user_lookup_error_callback(_jwt_header, _jwt_data):
    return error(status=401, detail="Account not found", kind="invalid_token")


@app.errorhandler(403)
def forbidden(e):
    return error(status=403, detail="Forbidden", kind="forbidden")


@app.errorhandler(404)
def page_not_found(e):
    return error(status=404, detail="Not Found", kind="not_found")


@app.errorhandler(405)
def method_not_allowed(e):
    return error(status=405, detail="Method Not Allowed", kind="method_not_allowed")


@app.errorhandler(413)
def request_entity_too_large(e):
    return error(status=413, detail="Request too large", kind="payload_too_large")


@app.errorhandler(500)
def internal_server_error(e):
    return error(status=500, detail="Internal Server Error", kind="internal")
