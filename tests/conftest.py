"""
Test configuration and fixtures for LTIP API tests
"""

import fnmatch
import os

import pytest
import redis

# Set environment variables for testing before importing the app
os.environ["ENVIRONMENT"] = "testing"
os.environ["TESTING"] = "true"

# Set minimal required environment variables for testing if not already set
if not os.environ.get("JWT_SECRET_KEY"):
    os.environ["JWT_SECRET_KEY"] = "test-jwt-secret-key-for-ci"
if not os.environ.get("SECRET_KEY"):
    os.environ["SECRET_KEY"] = "test-secret-key-for-ci"

from ltipapi import app as flask_app  # noqa: E402
from ltipapi import db, limiter  # noqa: E402
from ltipapi.models import Account  # noqa: E402
from ltipapi.services import (  # noqa: E402
    account_lockout_service,
    csrf_service,
    oauth_service,
)
from ltipapi.services.account_lockout_service import (  # noqa: E402
    RECORD_ATTEMPT_SCRIPT,
    AccountLockoutService,
)
from ltipapi.services.csrf_service import (  # noqa: E402
    CONSUME_TOKEN_SCRIPT,
    CsrfTokenService,
)
from ltipapi.services.oauth_service import OAuthService  # noqa: E402
from ltipapi.services.password_service import PasswordService  # noqa: E402
from ltipapi.services.token_service import TokenService  # noqa: E402

# Strong password values for test fixtures
STRONG_GENERIC_PASSWORD = "ValidPass123!"
USER_TEST_PASSWORD = "UserPass123!"
ADMIN_TEST_PASSWORD = "AdminPass123!"
NEW_STRONG_PASSWORD = "NewStrong123!"

USER_EMAIL = "user@test.com"
ADMIN_EMAIL = "admin@test.com"
CLIENT_IP = "203.0.113.7"


class FakeRedis:
    """In-memory stand-in for the redis client with a controllable clock.

    Covers the subset of commands used by the lockout, CSRF and OAuth
    services. Registered Lua scripts run as their Python equivalents.
    Values are stored as strings, like a client with decode_responses=True.
    """

    def __init__(self, now=1_700_000_000.0):
        self.now = now
        self.store = {}
        self.expiry = {}

    def clock(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds

    def _alive(self, key):
        expires_at = self.expiry.get(key)
        if expires_at is not None and expires_at <= self.now:
            self.store.pop(key, None)
            self.expiry.pop(key, None)
        return key in self.store

    def ping(self):
        return True

    def get(self, key):
        return self.store[key] if self._alive(key) else None

    def mget(self, keys):
        return [self.get(key) for key in keys]

    def set(self, key, value, ex=None):
        self.store[key] = str(value)
        if ex is None:
            self.expiry.pop(key, None)
        else:
            self.expiry[key] = self.now + ex
        return True

    def getdel(self, key):
        value = self.get(key)
        self.delete(key)
        return value

    def incr(self, key):
        value = int(self.get(key) or 0) + 1
        self.store[key] = str(value)
        return value

    def expire(self, key, seconds):
        if not self._alive(key):
            return False
        self.expiry[key] = self.now + seconds
        return True

    def ttl(self, key):
        if not self._alive(key):
            return -2
        if key not in self.expiry:
            return -1
        return int(self.expiry[key] - self.now)

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if self._alive(key):
                removed += 1
            self.store.pop(key, None)
            self.expiry.pop(key, None)
        return removed

    def scan_iter(self, match=None):
        for key in list(self.store):
            if self._alive(key) and (match is None or fnmatch.fnmatch(key, match)):
                yield key

    def _record_attempt(self, keys=None, args=None):
        window = int(args[0])
        counts = []
        for key in keys:
            counts.append(self.incr(key))
            self.expire(key, window)
        return counts

    def _consume_token(self, keys=None, args=None):
        if self.get(keys[0]) == args[0]:
            return self.delete(keys[0])
        return 0

    def register_script(self, script):
        scripts = {
            RECORD_ATTEMPT_SCRIPT: self._record_attempt,
            CONSUME_TOKEN_SCRIPT: self._consume_token,
        }
        return scripts[script]


class UnavailableRedis:
    """Every command fails the way an unreachable server does"""

    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise redis.exceptions.ConnectionError("Error 111 connecting. Refused.")

        return fail


@pytest.fixture(scope="function")
def app():
    """Create application for testing"""
    test_config = {
        "TESTING": True,
        "PASSWORD_HASH_METHOD": "pbkdf2:sha256:1000",
        "CSRF": {**flask_app.config.get("CSRF", {}), "ENABLED": True},
        "RATE_LIMITING": {
            **flask_app.config.get("RATE_LIMITING", {}),
            "ENABLED": False,
        },
    }

    with flask_app.app_context():
        # Temporarily store original config
        original_config = {key: flask_app.config.get(key) for key in test_config}
        flask_app.config.update(test_config)

        original_limiter_enabled = limiter.enabled
        limiter.enabled = False

        db.create_all()
        try:
            yield flask_app
        finally:
            db.session.remove()
            db.drop_all()
            limiter.enabled = original_limiter_enabled
            limiter.reset()
            flask_app.config.update(original_config)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def lockout_service(fake_redis):
    return AccountLockoutService(cache=fake_redis, clock=fake_redis.clock)


@pytest.fixture
def csrf_token_service(fake_redis):
    return CsrfTokenService(cache=fake_redis)


@pytest.fixture
def oauth_state_service(fake_redis):
    return OAuthService(cache=fake_redis)


@pytest.fixture(autouse=True)
def cache_backed_services(
    monkeypatch, lockout_service, csrf_token_service, oauth_state_service
):
    """Route the service singletons to the in-memory cache"""
    monkeypatch.setattr(
        account_lockout_service, "_account_lockout_service", lockout_service
    )
    monkeypatch.setattr(csrf_service, "_csrf_token_service", csrf_token_service)
    monkeypatch.setattr(oauth_service, "_oauth_service", oauth_state_service)


@pytest.fixture
def cache_down(monkeypatch):
    """Point every cache-backed service at an unreachable server"""
    broken = UnavailableRedis()
    monkeypatch.setattr(
        account_lockout_service,
        "_account_lockout_service",
        AccountLockoutService(cache=broken),
    )
    monkeypatch.setattr(
        csrf_service, "_csrf_token_service", CsrfTokenService(cache=broken)
    )
    monkeypatch.setattr(oauth_service, "_oauth_service", OAuthService(cache=broken))
    return broken


@pytest.fixture
def client(app):
    """Create test client"""
    return app.test_client()


def create_account(email, password, role="USER", **fields):
    account = Account(
        email=email, password_hash=PasswordService.hash(password), role=role
    )
    for key, value in fields.items():
        setattr(account, key, value)
    db.session.add(account)
    db.session.commit()
    db.session.refresh(account)
    return account


@pytest.fixture
def regular_user(app):
    """Create regular user for testing"""
    return create_account(USER_EMAIL, USER_TEST_PASSWORD, name="Regular User")


@pytest.fixture
def admin_user(app):
    """Create admin user for testing"""
    return create_account(
        ADMIN_EMAIL, ADMIN_TEST_PASSWORD, role="ADMIN", name="Admin User"
    )


@pytest.fixture
def oauth_only_user(app):
    """Account created through a social login: no password hash"""
    account = Account(email="oauth@test.com", name="OAuth User")
    db.session.add(account)
    db.session.commit()
    return account


def auth_headers(account):
    """Bearer header for an account, backed by a real session"""
    tokens = TokenService.issue(account.id, account.email)
    return {"Authorization": f"Bearer {tokens.access_token}"}


@pytest.fixture
def user_headers(regular_user):
    return auth_headers(regular_user)


@pytest.fixture
def admin_headers(admin_user):
    return auth_headers(admin_user)
