"""Typed results returned by the token and authentication services"""

from dataclasses import dataclass, field
import datetime
from enum import Enum
from typing import Any, Optional, Union


class AuthErrorKind(str, Enum):
    EMAIL_EXISTS = "email_exists"
    PASSWORD_WEAK = "password_weak"
    PASSWORD_COMMON = "password_common"
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_INACTIVE = "account_inactive"
    ACCOUNT_LOCKED = "account_locked"
    EXPIRED_TOKEN = "expired_token"
    REVOKED_TOKEN = "revoked_token"
    INVALID_TOKEN = "invalid_token"
    SERVICE_UNAVAILABLE = "service_unavailable"
    INTERNAL = "internal"
    # Social sign-in
    PROVIDER_DISABLED = "provider_disabled"
    INVALID_STATE = "invalid_state"
    TOKEN_EXCHANGE_FAILED = "token_exchange_failed"
    USER_INFO_FAILED = "user_info_failed"
    EMAIL_NOT_VERIFIED = "email_not_verified"
    EMAIL_REQUIRED = "email_required"


class TokenInvalidReason(str, Enum):
    EXPIRED = "expired"
    MALFORMED = "malformed"
    INVALID = "invalid"
    REVOKED = "revoked"


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    access_token_expires_at: datetime.datetime
    refresh_token_expires_at: datetime.datetime
    family_id: str

    def serialize(self):
        return {
            "accessToken": self.access_token,
            "accessTokenExpiresAt": self.access_token_expires_at.isoformat(),
            "refreshTokenExpiresAt": self.refresh_token_expires_at.isoformat(),
        }


@dataclass(frozen=True)
class TokenValid:
    payload: dict[str, Any]


@dataclass(frozen=True)
class TokenInvalid:
    reason: TokenInvalidReason


TokenVerification = Union[TokenValid, TokenInvalid]


@dataclass(frozen=True)
class LockoutInfo:
    is_locked: bool
    remaining_seconds: int = 0
    attempt_count: int = 0
    # Epoch milliseconds, 0 when not locked
    lockout_expires_at: int = 0


@dataclass(frozen=True)
class AuthSuccess:
    account: dict[str, Any]
    tokens: Optional[TokenPair] = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AuthFailure:
    error: AuthErrorKind
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class OAuthIdentity:
    """Who the provider says signed in"""

    provider: str
    provider_id: str
    email: str
    name: Optional[str] = None
    avatar_url: Optional[str] = None


AuthResult = Union[AuthSuccess, AuthFailure]

TOKEN_REASON_TO_ERROR = {
    TokenInvalidReason.EXPIRED: AuthErrorKind.EXPIRED_TOKEN,
    TokenInvalidReason.REVOKED: AuthErrorKind.REVOKED_TOKEN,
    TokenInvalidReason.MALFORMED: AuthErrorKind.INVALID_TOKEN,
    TokenInvalidReason.INVALID: AuthErrorKind.INVALID_TOKEN,
}
