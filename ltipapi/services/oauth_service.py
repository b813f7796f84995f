"""OAUTH SERVICE

Authorization-code sign-in with Google and GitHub. The ``state`` sent to the
provider is stored hashed in the cache and consumed on the first callback
that presents it. A successful callback signs in the account that carries
the provider id, links the provider to an account with the same email, or
creates a password-less account.
"""

import hashlib
import json
import logging
import secrets

from oauthlib.oauth2 import OAuth2Error
import requests
from requests_oauthlib import OAuth2Session

from ltipapi import db
from ltipapi.config import get_setting
from ltipapi.errors import OAuthStateError
from ltipapi.models import Account, utcnow
from ltipapi.services.audit_service import AuditService
from ltipapi.services.auth_service import guarded, normalize_email
from ltipapi.services.results import (
    AuthErrorKind,
    AuthFailure,
    AuthSuccess,
    OAuthIdentity,
)
from ltipapi.services.token_service import TokenService
from ltipapi.utils.redis_cache import get_redis_cache
from ltipapi.utils.security_events import (
    log_authentication_event,
    log_security_event,
)

logger = logging.getLogger(__name__)

PROVIDERS = {
    "google": {
        "title": "Google",
        "authorize_url": "https://accounts.google.com/o/oauth2/v2/auth",
        "token_url": "https://oauth2.googleapis.com/token",
        "userinfo_url": "https://www.googleapis.com/oauth2/v2/userinfo",
        "scope": ["openid", "email", "profile"],
        "authorize_params": {"access_type": "offline", "prompt": "consent"},
        "account_field": "google_id",
    },
    "github": {
        "title": "GitHub",
        "authorize_url": "https://github.com/login/oauth/authorize",
        "token_url": "https://github.com/login/oauth/access_token",
        "userinfo_url": "https://api.github.com/user",
        "emails_url": "https://api.github.com/user/emails",
        "scope": ["read:user", "user:email"],
        "authorize_params": {},
        "account_field": "github_id",
    },
}

GITHUB_HEADERS = {"Accept": "application/vnd.github+json", "User-Agent": "LTIP-API"}


def _state_key(state):
    return "oauth:state:" + hashlib.sha256(state.encode("utf-8")).hexdigest()


class OAuthService:
    """Social sign-in through the OAuth 2.0 authorization code flow"""

    def __init__(self, cache=None):
        self._cache = cache

    @property
    def cache(self):
        if self._cache is None:
            self._cache = get_redis_cache().client
        return self._cache

    @property
    def config(self):
        return {
            "STATE_TTL_SECONDS": 600,
            "HTTP_TIMEOUT_SECONDS": 10.0,
            "CALLBACK_BASE_URL": "http://localhost:4000",
            **(get_setting("OAUTH") or {}),
        }

    def _credentials(self, provider):
        return self.config.get(provider.upper()) or {}

    def is_enabled(self, provider):
        credentials = self._credentials(provider)
        return bool(credentials.get("CLIENT_ID") and credentials.get("CLIENT_SECRET"))

    def enabled_providers(self):
        return {provider: self.is_enabled(provider) for provider in PROVIDERS}

    def callback_url(self, provider):
        base = self.config["CALLBACK_BASE_URL"].rstrip("/")
        return f"{base}/api/v1/auth/{provider}/callback"

    def _session(self, provider, **kwargs):
        return OAuth2Session(
            self._credentials(provider)["CLIENT_ID"],
            redirect_uri=self.callback_url(provider),
            **kwargs,
        )

    def _store_state(self, state, data):
        try:
            self.cache.set(
                _state_key(state),
                json.dumps(data),
                ex=self.config["STATE_TTL_SECONDS"],
            )
        except Exception as error:
            logger.error(f"[SERVICE]: Failed to store OAuth state: {error}")
            raise OAuthStateError("OAuth state store unavailable") from error

    def _consume_state(self, state):
        """Stored data for a state, deleting it in the same step. None if unknown."""
        if not state:
            return None
        try:
            raw = self.cache.getdel(_state_key(state))
        except Exception as error:
            logger.error(f"[SERVICE]: Failed to read OAuth state: {error}")
            raise OAuthStateError("OAuth state store unavailable") from error
        return json.loads(raw) if raw else None

    def authorization_url(self, provider, redirect_url=None):
        """Provider consent URL, or None when the provider is not configured.

        Raises ``OAuthStateError`` when the state cannot be stored.
        """
        if provider not in PROVIDERS or not self.is_enabled(provider):
            return None
        spec = PROVIDERS[provider]
        state = secrets.token_urlsafe(32)
        self._store_state(state, {"provider": provider, "redirectUrl": redirect_url})
        url, _ = self._session(provider, scope=spec["scope"]).authorization_url(
            spec["authorize_url"], state=state, **spec["authorize_params"]
        )
        logger.info(f"[SERVICE]: Starting {provider} sign-in")
        return url

    def complete(self, provider, code, state, user_agent=None, ip_address=None):
        """Finish a sign-in from the provider callback"""
        if provider not in PROVIDERS or not self.is_enabled(provider):
            return AuthFailure(
                AuthErrorKind.PROVIDER_DISABLED,
                f"{PROVIDERS.get(provider, {}).get('title', provider)} sign-in "
                "is not configured",
            )

        try:
            saved = self._consume_state(state)
        except OAuthStateError:
            return AuthFailure(
                AuthErrorKind.SERVICE_UNAVAILABLE,
                "Authentication is temporarily unavailable",
            )
        if saved is None or saved.get("provider") != provider:
            log_security_event("OAUTH_STATE_REJECTED", details={"provider": provider})
            return AuthFailure(
                AuthErrorKind.INVALID_STATE, "Invalid or expired OAuth state"
            )

        session = self._exchange_code(provider, code)
        if session is None:
            return AuthFailure(
                AuthErrorKind.TOKEN_EXCHANGE_FAILED,
                "Failed to exchange authorization code",
            )

        identity = self._fetch_identity(provider, session)
        if isinstance(identity, AuthFailure):
            return identity

        return self.sign_in(
            identity,
            redirect_url=saved.get("redirectUrl"),
            user_agent=user_agent,
            ip_address=ip_address,
        )

    def _exchange_code(self, provider, code):
        # No scope on this session: providers echo scopes back in their own
        # spelling and oauthlib would reject the difference
        session = self._session(provider)
        try:
            session.fetch_token(
                PROVIDERS[provider]["token_url"],
                code=code,
                client_secret=self._credentials(provider)["CLIENT_SECRET"],
                include_client_id=True,
                timeout=self.config["HTTP_TIMEOUT_SECONDS"],
            )
        except (OAuth2Error, requests.RequestException, ValueError) as error:
            logger.error(f"[SERVICE]: {provider} token exchange failed: {error}")
            return None
        return session

    def _get_json(self, session, url, headers=None):
        response = session.get(
            url, headers=headers, timeout=self.config["HTTP_TIMEOUT_SECONDS"]
        )
        response.raise_for_status()
        return response.json()

    def _fetch_identity(self, provider, session):
        try:
            if provider == "google":
                return self._google_identity(session)
            return self._github_identity(session)
        except (requests.RequestException, ValueError, KeyError) as error:
            logger.error(f"[SERVICE]: {provider} user info failed: {error}")
            return AuthFailure(
                AuthErrorKind.USER_INFO_FAILED, "Failed to fetch user information"
            )

    def _google_identity(self, session):
        info = self._get_json(session, PROVIDERS["google"]["userinfo_url"])
        if not info.get("verified_email"):
            return AuthFailure(
                AuthErrorKind.EMAIL_NOT_VERIFIED, "Google email must be verified"
            )
        return OAuthIdentity(
            provider="google",
            provider_id=str(info["id"]),
            email=info["email"],
            name=info.get("name"),
            avatar_url=info.get("picture"),
        )

    def _github_identity(self, session):
        spec = PROVIDERS["github"]
        user = self._get_json(session, spec["userinfo_url"], headers=GITHUB_HEADERS)
        email = user.get("email")
        if not email:
            emails = self._get_json(session, spec["emails_url"], headers=GITHUB_HEADERS)
            primary = next(
                (e for e in emails if e.get("primary") and e.get("verified")), None
            )
            if primary is None:
                logger.warning("[SERVICE]: GitHub user has no verified primary email")
                return AuthFailure(
                    AuthErrorKind.EMAIL_REQUIRED,
                    "A verified primary GitHub email is required",
                )
            email = primary["email"]
        return OAuthIdentity(
            provider="github",
            provider_id=str(user["id"]),
            email=email,
            name=user.get("name") or user.get("login"),
            avatar_url=user.get("avatar_url"),
        )

    @staticmethod
    @guarded("oauth_sign_in")
    def sign_in(identity, redirect_url=None, user_agent=None, ip_address=None):
        """Sign in the account behind a provider identity, creating it if needed.

        Lookup order: provider id, then email (the provider gets linked), then
        a new account without a password.
        """
        field = PROVIDERS[identity.provider]["account_field"]
        email = normalize_email(identity.email)
        is_new = False

        account = Account.query.filter(
            getattr(Account, field) == identity.provider_id
        ).first()
        if account is None:
            account = Account.query.filter_by(email=email).first()
            if account is not None and account.is_active:
                setattr(account, field, identity.provider_id)
                log_security_event(
                    "OAUTH_ACCOUNT_LINKED",
                    user_id=str(account.id),
                    details={"provider": identity.provider},
                    level="info",
                )
                AuditService.record(
                    "OAUTH_LINKED",
                    account_id=account.id,
                    email=email,
                    metadata={"provider": identity.provider},
                )

        if account is not None and not account.is_active:
            return AuthFailure(AuthErrorKind.ACCOUNT_INACTIVE, "Account is disabled")

        if account is None:
            account = Account(email=email, name=(identity.name or "")[:120] or None)
            account.avatar_url = identity.avatar_url
            account.email_verified = True
            setattr(account, field, identity.provider_id)
            logger.info("[DB]: ADD")
            db.session.add(account)
            is_new = True

        account.last_login_at = utcnow()
        db.session.commit()

        tokens = TokenService.issue(
            account.id, account.email, user_agent=user_agent, ip_address=ip_address
        )
        log_authentication_event(True, email, user_id=str(account.id))
        AuditService.record(
            "LOGIN_SUCCESS",
            account_id=account.id,
            email=email,
            ip_address=ip_address,
            metadata={"method": identity.provider, "new_account": is_new},
        )
        return AuthSuccess(
            account=account.serialize(),
            tokens=tokens,
            details={"isNewUser": is_new, "redirectUrl": redirect_url},
        )


_oauth_service = None


def get_oauth_service():
    global _oauth_service
    if _oauth_service is None:
        _oauth_service = OAuthService()
    return _oauth_service
