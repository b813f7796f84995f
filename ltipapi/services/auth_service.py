"""AUTH SERVICE

Orchestrates register, login, refresh, logout and password changes on top
of the token, lockout and password services. Every outcome is returned as
``AuthSuccess`` or ``AuthFailure``; unexpected exceptions are logged,
reported to Rollbar and collapsed to ``internal``.
"""

import datetime
from functools import wraps
import logging
import uuid

import rollbar
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ltipapi import db
from ltipapi.config import get_setting
from ltipapi.errors import LockoutServiceError
from ltipapi.models import Account, utcnow
from ltipapi.services.account_lockout_service import get_account_lockout_service
from ltipapi.services.audit_service import AuditService
from ltipapi.services.password_service import PasswordService
from ltipapi.services.results import (
    TOKEN_REASON_TO_ERROR,
    AuthErrorKind,
    AuthFailure,
    AuthSuccess,
    TokenInvalid,
)
from ltipapi.services.token_service import TokenService
from ltipapi.utils.security_events import (
    log_authentication_event,
    log_password_event,
    log_security_event,
)

logger = logging.getLogger(__name__)

INTERNAL_MESSAGE = "An internal error occurred"
_INTERNAL = object()
PROFILE_FIELDS = ("name", "avatar_url")


def normalize_email(email):
    return (email or "").strip().lower()


def _as_uuid(value):
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


def guarded(operation, fallback=_INTERNAL):
    """Map any unexpected exception to ``internal`` (or ``fallback``)."""

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Exception as error:
                db.session.rollback()
                logger.error(f"[AUTH]: {operation} failed: {error}", exc_info=True)
                rollbar.report_exc_info(extra_data={"operation": operation})
                if fallback is _INTERNAL:
                    return AuthFailure(AuthErrorKind.INTERNAL, INTERNAL_MESSAGE)
                return fallback

        return wrapper

    return decorator


def _password_policy_failure(password):
    """AuthFailure naming the first policy violation, or None if acceptable"""
    violations = PasswordService.validate(password or "")
    if not violations:
        return None
    kind = (
        AuthErrorKind.PASSWORD_COMMON
        if any("common" in v.lower() for v in violations)
        else AuthErrorKind.PASSWORD_WEAK
    )
    return AuthFailure(kind, violations[0], {"violations": violations})


def _lockout_settings():
    return {"MAX_ATTEMPTS": 5, "DURATION_SECONDS": 900, **(
        get_setting("ACCOUNT_LOCKOUT") or {}
    )}


class AuthService:
    """Authentication orchestrator"""

    @staticmethod
    @guarded("register")
    def register(email, password, name=None, user_agent=None, ip_address=None):
        email = normalize_email(email)
        logger.info(f"[AUTH]: Registering account {email}")

        failure = _password_policy_failure(password)
        if failure is not None:
            return failure

        if Account.query.filter_by(email=email).first() is not None:
            return AuthFailure(
                AuthErrorKind.EMAIL_EXISTS, "An account with this email already exists"
            )

        account = Account(
            email=email, password_hash=PasswordService.hash(password), name=name
        )
        try:
            logger.info("[DB]: ADD")
            db.session.add(account)
            db.session.commit()
        except IntegrityError:
            # Lost a race with a concurrent registration of the same email
            db.session.rollback()
            return AuthFailure(
                AuthErrorKind.EMAIL_EXISTS, "An account with this email already exists"
            )

        tokens = TokenService.issue(
            account.id, account.email, user_agent=user_agent, ip_address=ip_address
        )
        logger.info(f"[AUTH]: Account {account.id} registered")
        return AuthSuccess(account=account.serialize(), tokens=tokens)

    @staticmethod
    @guarded("login")
    def login(email, password, user_agent=None, ip_address=None):
        """Authenticate with email and password.

        Wrong password, unknown email, password-less account and locked
        account all spend exactly one password hash before answering.
        """
        email = normalize_email(email)
        ip = ip_address or "unknown"
        password = password or ""
        lockout_service = get_account_lockout_service()
        logger.info(f"[AUTH]: Authentication attempt for {email}")

        try:
            lockout = lockout_service.check_lockout(email, ip)
        except LockoutServiceError as error:
            PasswordService.dummy_verify(password)
            log_security_event(
                "LOCKOUT_UNAVAILABLE",
                user_email=email,
                details={"operation": error.operation},
                level="error",
            )
            return AuthFailure(
                AuthErrorKind.SERVICE_UNAVAILABLE,
                "Authentication is temporarily unavailable",
            )

        if lockout.is_locked:
            PasswordService.dummy_verify(password)
            log_security_event(
                "LOGIN_BLOCKED",
                user_email=email,
                details={"ip": ip, "remaining_seconds": lockout.remaining_seconds},
            )
            AuditService.record(
                "LOGIN_FAILURE",
                email=email,
                ip_address=ip,
                metadata={"reason": "locked"},
            )
            return AuthFailure(
                AuthErrorKind.ACCOUNT_LOCKED,
                "Too many failed attempts. Try again later.",
                {"retry_after": lockout.remaining_seconds},
            )

        account = Account.query.filter_by(email=email).first()

        if account is None or not account.password_hash:
            PasswordService.dummy_verify(password)
            return AuthService._reject_credentials(
                lockout_service, email, ip, account, "unknown_account"
            )

        if not account.is_active:
            return AuthFailure(AuthErrorKind.ACCOUNT_INACTIVE, "Account is disabled")

        now = utcnow()
        if account.is_locked(now):
            PasswordService.dummy_verify(password)
            remaining = int((account.account_locked_until - now).total_seconds())
            log_security_event(
                "LOGIN_BLOCKED",
                user_id=str(account.id),
                details={"locked_until": account.account_locked_until.isoformat()},
            )
            return AuthFailure(
                AuthErrorKind.ACCOUNT_LOCKED,
                "Too many failed attempts. Try again later.",
                {"retry_after": remaining},
            )

        if account.account_locked_until is not None:
            # Lock has expired: start over with a fresh counter
            account.account_locked_until = None
            account.failed_login_attempts = 0
            db.session.commit()

        check = PasswordService.verify(password, account.password_hash)
        if not check.valid:
            AuthService._count_row_failure(account, now)
            return AuthService._reject_credentials(
                lockout_service, email, ip, account, "invalid_password"
            )

        values = {
            "failed_login_attempts": 0,
            "last_failed_login_at": None,
            "account_locked_until": None,
            "last_login_at": now,
        }
        if check.needs_rehash:
            values["password_hash"] = PasswordService.hash(password)
            logger.debug(f"[AUTH]: Rehashing password for account {account.id}")
        db.session.execute(
            update(Account).where(Account.id == account.id).values(**values)
        )
        db.session.commit()

        try:
            lockout_service.reset_lockout(email, ip)
        except LockoutServiceError as error:
            logger.warning(f"[AUTH]: Could not reset lockout for {email}: {error}")

        tokens = TokenService.issue(
            account.id, account.email, user_agent=user_agent, ip_address=ip_address
        )
        log_authentication_event(True, email, user_id=str(account.id))
        AuditService.record(
            "LOGIN_SUCCESS", account_id=account.id, email=email, ip_address=ip
        )
        return AuthSuccess(account=account.serialize(), tokens=tokens)

    @staticmethod
    def _count_row_failure(account, now):
        """Atomically bump the account-row counter, locking at the threshold."""
        settings = _lockout_settings()
        db.session.execute(
            update(Account)
            .where(Account.id == account.id)
            .values(
                failed_login_attempts=Account.failed_login_attempts + 1,
                last_failed_login_at=now,
            )
        )
        db.session.commit()
        db.session.refresh(account)

        if account.failed_login_attempts >= settings["MAX_ATTEMPTS"]:
            locked_until = now + datetime.timedelta(
                seconds=settings["DURATION_SECONDS"]
            )
            db.session.execute(
                update(Account)
                .where(Account.id == account.id)
                .values(account_locked_until=locked_until)
            )
            db.session.commit()
            log_security_event(
                "ACCOUNT_LOCKED",
                user_id=str(account.id),
                details={
                    "failed_attempts": account.failed_login_attempts,
                    "locked_until": locked_until.isoformat(),
                },
            )
            AuditService.record(
                "ACCOUNT_LOCKED",
                account_id=account.id,
                email=account.email,
                metadata={
                    "failed_attempts": account.failed_login_attempts,
                    "scope": "account",
                },
            )

    @staticmethod
    def _reject_credentials(lockout_service, email, ip, account, reason):
        try:
            lockout_service.record_failed_attempt(email, ip)
        except LockoutServiceError as error:
            logger.error(
                f"[AUTH]: Could not record failed attempt for {email}: {error}"
            )
        account_id = str(account.id) if account is not None else None
        log_authentication_event(False, email, user_id=account_id, reason=reason)
        AuditService.record(
            "LOGIN_FAILURE",
            account_id=account.id if account is not None else None,
            email=email,
            ip_address=ip,
            metadata={"reason": reason},
        )
        return AuthFailure(
            AuthErrorKind.INVALID_CREDENTIALS, "Invalid email or password"
        )

    @staticmethod
    @guarded("refresh")
    def refresh(refresh_token, user_agent=None, ip_address=None):
        tokens = TokenService.exchange(
            refresh_token, user_agent=user_agent, ip_address=ip_address
        )
        if isinstance(tokens, TokenInvalid):
            return AuthFailure(
                TOKEN_REASON_TO_ERROR[tokens.reason], "Refresh token is not valid"
            )

        payload = TokenService.verify_access(tokens.access_token).payload
        account = db.session.get(Account, _as_uuid(payload["sub"]))
        AuditService.record(
            "TOKEN_REFRESH",
            account_id=account.id,
            email=account.email,
            ip_address=ip_address,
            metadata={"family_id": tokens.family_id},
        )
        return AuthSuccess(account=account.serialize(), tokens=tokens)

    @staticmethod
    @guarded("logout", fallback=False)
    def logout(refresh_token):
        """Revoke the presented refresh token. Safe to call repeatedly.

        An already revoked token is a retried logout, not a replay.
        """
        result = TokenService.verify_refresh(refresh_token, detect_reuse=False)
        if isinstance(result, TokenInvalid):
            return False
        return TokenService.revoke(result.payload["jti"])

    @staticmethod
    @guarded("logout_all", fallback=None)
    def logout_all(account_id):
        account_id = _as_uuid(account_id)
        count = TokenService.revoke_all_for_account(account_id)
        log_security_event(
            "SESSION_INVALIDATED",
            user_id=str(account_id),
            details={"sessions_revoked": count},
            level="info",
        )
        AuditService.record(
            "LOGOUT_ALL", account_id=account_id, metadata={"sessions_revoked": count}
        )
        return count

    @staticmethod
    @guarded("change_password")
    def change_password(account_id, current_password, new_password):
        """Change the password and log the account out everywhere."""
        account = db.session.get(Account, _as_uuid(account_id))
        if account is None or not account.password_hash:
            PasswordService.dummy_verify(current_password)
            return AuthFailure(
                AuthErrorKind.INVALID_CREDENTIALS, "Current password is incorrect"
            )

        failure = _password_policy_failure(new_password)
        if failure is not None:
            return failure

        check = PasswordService.verify(current_password or "", account.password_hash)
        if not check.valid:
            return AuthFailure(
                AuthErrorKind.INVALID_CREDENTIALS, "Current password is incorrect"
            )

        account.password_hash = PasswordService.hash(new_password)
        db.session.commit()

        revoked = TokenService.revoke_all_for_account(account.id)
        log_password_event(str(account.id), account.email, revoked)
        AuditService.record(
            "PASSWORD_CHANGE",
            account_id=account.id,
            email=account.email,
            metadata={"sessions_revoked": revoked},
        )
        return AuthSuccess(account=account.serialize())

    @staticmethod
    @guarded("get_sessions", fallback=None)
    def get_sessions(account_id):
        return TokenService.list_sessions(_as_uuid(account_id))

    @staticmethod
    @guarded("revoke_session", fallback=None)
    def revoke_session(account_id, session_id):
        """Revoke one of the account's own sessions. False if not found."""
        record = TokenService.get_session(_as_uuid(account_id), session_id)
        if record is None or record.is_revoked:
            return False
        return TokenService.revoke(record.id)

    @staticmethod
    @guarded("get_profile", fallback=None)
    def get_profile(account_id):
        account = db.session.get(Account, _as_uuid(account_id))
        return account.serialize() if account is not None else None

    @staticmethod
    @guarded("update_profile", fallback=None)
    def update_profile(account_id, changes):
        """Apply ``name`` and/or ``avatar_url``. Keys that are absent are kept."""
        account = db.session.get(Account, _as_uuid(account_id))
        if account is None:
            return None
        for field in PROFILE_FIELDS:
            if field in changes:
                setattr(account, field, changes[field])
        db.session.commit()
        logger.info(f"[AUTH]: Profile of account {account.id} updated")
        return account.serialize()

    @staticmethod
    @guarded("unlock_account", fallback=None)
    def unlock_account(email, admin_email):
        """Clear both lockouts for an account on an administrator's request."""
        email = normalize_email(email)
        try:
            get_account_lockout_service().admin_unlock(email, admin_email)
        except LockoutServiceError as error:
            logger.error(f"[AUTH]: Could not unlock {email}: {error}")
            return False
        account = Account.query.filter_by(email=email).first()
        if account is not None:
            account.failed_login_attempts = 0
            account.account_locked_until = None
            db.session.commit()
        return True
