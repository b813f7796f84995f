"""TOKEN SERVICE"""

import datetime
import hashlib
import hmac
import logging
import uuid

from flask import current_app
from flask_jwt_extended import (
    create_access_token,
    create_refresh_token,
    decode_token,
)
from flask_jwt_extended.exceptions import JWTDecodeError
import jwt
from sqlalchemy import or_

from ltipapi import db
from ltipapi.config import get_setting
from ltipapi.models import Account, RefreshToken, utcnow
from ltipapi.services.audit_service import AuditService
from ltipapi.services.results import (
    TokenInvalid,
    TokenInvalidReason,
    TokenPair,
    TokenValid,
)
from ltipapi.utils.security_events import log_security_event

logger = logging.getLogger(__name__)

ACCESS_CLAIMS = ("sub", "email", "type", "exp")
REFRESH_CLAIMS = ("sub", "jti", "familyId", "type", "exp")


def hash_token(token):
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class _RefreshTokenBuilder:
    """Two-step creation of a refresh token record.

    The record id is embedded in the signed token as its ``jti``, so the
    row has to exist before the token can be signed. ``create`` writes the
    row with an empty hash and ``seal`` stores the hash of the final token.
    Until sealed, the row cannot validate any presented token.
    """

    def __init__(self, record):
        self.record = record

    @classmethod
    def create(
        cls,
        account_id,
        family_id,
        expires_at,
        user_agent=None,
        ip_address=None,
        token_id=None,
    ):
        record = RefreshToken(
            id=token_id or str(uuid.uuid4()),
            account_id=account_id,
            family_id=family_id,
            token_hash="",
            user_agent=user_agent[:500] if user_agent else None,
            ip_address=ip_address[:45] if ip_address else None,
            expires_at=expires_at,
        )
        try:
            db.session.add(record)
            db.session.commit()
        except Exception as error:
            db.session.rollback()
            logger.error(f"[SERVICE]: Error creating refresh token record: {error}")
            raise error
        return cls(record)

    def seal(self, token):
        self.record.token_hash = hash_token(token)
        try:
            db.session.commit()
        except Exception as error:
            db.session.rollback()
            logger.error(f"[SERVICE]: Error sealing refresh token record: {error}")
            raise error
        return self.record


class TokenService:
    """Issue, verify, rotate and revoke access/refresh token pairs"""

    @staticmethod
    def issue(
        account_id,
        email,
        user_agent=None,
        ip_address=None,
        family_id=None,
        token_id=None,
    ):
        """Issue a token pair, starting a new family unless one is given."""
        logger.info(f"[SERVICE]: Issuing token pair for account {account_id}")
        access_delta = current_app.config["JWT_ACCESS_TOKEN_EXPIRES"]
        refresh_delta = current_app.config["JWT_REFRESH_TOKEN_EXPIRES"]
        now = utcnow()
        family_id = family_id or str(uuid.uuid4())

        builder = _RefreshTokenBuilder.create(
            account_id=account_id,
            family_id=family_id,
            expires_at=now + refresh_delta,
            user_agent=user_agent,
            ip_address=ip_address,
            token_id=token_id,
        )
        record = builder.record

        access_token = create_access_token(
            identity=str(account_id),
            additional_claims={"email": email},
            expires_delta=access_delta,
        )
        refresh_token = create_refresh_token(
            identity=str(account_id),
            additional_claims={"jti": record.id, "familyId": family_id},
            expires_delta=refresh_delta,
        )
        builder.seal(refresh_token)

        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            access_token_expires_at=now + access_delta,
            refresh_token_expires_at=record.expires_at,
            family_id=family_id,
        )

    @staticmethod
    def _decode(token, token_type, required_claims):
        try:
            payload = decode_token(token)
        except jwt.ExpiredSignatureError:
            return TokenInvalid(TokenInvalidReason.EXPIRED)
        except (jwt.InvalidTokenError, JWTDecodeError) as error:
            logger.debug(f"[SERVICE]: Rejected {token_type} token: {error}")
            return TokenInvalid(TokenInvalidReason.MALFORMED)

        if payload.get("type") != token_type:
            return TokenInvalid(TokenInvalidReason.INVALID)
        if any(payload.get(claim) in (None, "") for claim in required_claims):
            return TokenInvalid(TokenInvalidReason.INVALID)
        return TokenValid(payload)

    @staticmethod
    def verify_access(token):
        if not token:
            return TokenInvalid(TokenInvalidReason.MALFORMED)
        return TokenService._decode(token, "access", ACCESS_CLAIMS)

    @staticmethod
    def verify_refresh(token, detect_reuse=True):
        """Verify a refresh token against its signature and its store record.

        Presenting a token whose record is already revoked means the token
        was replayed after rotation: the whole family is revoked. With
        ``detect_reuse=False`` a revoked record is only reported as revoked.
        """
        if not token:
            return TokenInvalid(TokenInvalidReason.MALFORMED)
        result = TokenService._decode(token, "refresh", REFRESH_CLAIMS)
        if isinstance(result, TokenInvalid):
            return result

        payload = result.payload
        record = db.session.get(RefreshToken, payload["jti"])

        if record is None:
            logger.warning(f"[SERVICE]: Refresh token {payload['jti']} not found")
            return TokenInvalid(TokenInvalidReason.INVALID)

        if record.is_revoked and not detect_reuse:
            return TokenInvalid(TokenInvalidReason.REVOKED)

        if record.is_revoked:
            revoked = TokenService.revoke_family(record.family_id)
            log_security_event(
                "TOKEN_REUSE_DETECTED",
                user_id=str(record.account_id),
                details={"family_id": record.family_id, "tokens_revoked": revoked},
                level="error",
            )
            AuditService.record(
                "TOKEN_REUSE_DETECTED",
                account_id=record.account_id,
                metadata={"family_id": record.family_id, "tokens_revoked": revoked},
            )
            return TokenInvalid(TokenInvalidReason.REVOKED)

        if not hmac.compare_digest(record.token_hash, hash_token(token)):
            logger.warning(f"[SERVICE]: Refresh token {record.id} hash mismatch")
            return TokenInvalid(TokenInvalidReason.INVALID)

        if record.account is None or not record.account.is_active:
            logger.info(f"[SERVICE]: Account {record.account_id} is inactive")
            return TokenInvalid(TokenInvalidReason.REVOKED)

        if record.is_expired():
            return TokenInvalid(TokenInvalidReason.EXPIRED)

        return result

    @staticmethod
    def rotate(old_token, user_agent=None, ip_address=None):
        """Exchange a valid refresh token for a new pair in the same family.

        Returns None when the old token does not verify or its account is gone.
        """
        result = TokenService.exchange(
            old_token, user_agent=user_agent, ip_address=ip_address
        )
        return None if isinstance(result, TokenInvalid) else result

    @staticmethod
    def exchange(old_token, user_agent=None, ip_address=None):
        """Like ``rotate`` but a refusal comes back as ``TokenInvalid``.

        The store is consulted once, so a replay is detected and audited once.
        """
        result = TokenService.verify_refresh(old_token)
        if isinstance(result, TokenInvalid):
            logger.warning(
                f"[SERVICE]: Cannot rotate refresh token: {result.reason.value}"
            )
            return result

        payload = result.payload
        account = db.session.get(Account, uuid.UUID(payload["sub"]))
        if account is None:
            logger.error(f"[SERVICE]: Account {payload['sub']} not found on rotation")
            return TokenInvalid(TokenInvalidReason.INVALID)

        new_id = str(uuid.uuid4())
        try:
            # Conditional on the row still being active: of two concurrent
            # rotations of the same token only one can win
            updated = (
                RefreshToken.query.filter(
                    RefreshToken.id == payload["jti"],
                    RefreshToken.revoked_at.is_(None),
                )
                .update(
                    {"revoked_at": utcnow(), "replaced_by": new_id},
                    synchronize_session=False,
                )
            )
            db.session.commit()
        except Exception as error:
            db.session.rollback()
            logger.error(f"[SERVICE]: Error revoking rotated token: {error}")
            raise error

        if updated == 0:
            revoked = TokenService.revoke_family(payload["familyId"])
            log_security_event(
                "TOKEN_REUSE_DETECTED",
                user_id=str(account.id),
                details={"family_id": payload["familyId"], "tokens_revoked": revoked},
                level="error",
            )
            AuditService.record(
                "TOKEN_REUSE_DETECTED",
                account_id=account.id,
                email=account.email,
                metadata={"family_id": payload["familyId"], "tokens_revoked": revoked},
            )
            return TokenInvalid(TokenInvalidReason.REVOKED)

        pair = TokenService.issue(
            account.id,
            account.email,
            user_agent=user_agent,
            ip_address=ip_address,
            family_id=payload["familyId"],
            token_id=new_id,
        )
        logger.debug(
            f"[SERVICE]: Rotated refresh token {payload['jti']} -> {new_id} "
            f"in family {payload['familyId']}"
        )
        return pair

    @staticmethod
    def _revoke_where(*criteria):
        try:
            count = RefreshToken.query.filter(
                RefreshToken.revoked_at.is_(None), *criteria
            ).update({"revoked_at": utcnow()}, synchronize_session=False)
            db.session.commit()
        except Exception as error:
            db.session.rollback()
            logger.error(f"[SERVICE]: Error revoking refresh tokens: {error}")
            raise error
        return count

    @staticmethod
    def revoke(token_id):
        logger.info(f"[SERVICE]: Revoking refresh token {token_id}")
        return TokenService._revoke_where(RefreshToken.id == token_id) > 0

    @staticmethod
    def revoke_family(family_id):
        count = TokenService._revoke_where(RefreshToken.family_id == family_id)
        logger.info(f"[SERVICE]: Revoked {count} tokens in family {family_id}")
        return count

    @staticmethod
    def revoke_all_for_account(account_id):
        count = TokenService._revoke_where(RefreshToken.account_id == account_id)
        logger.info(f"[SERVICE]: Revoked {count} tokens for account {account_id}")
        return count

    @staticmethod
    def cleanup_expired():
        """Delete expired records and records revoked past the retention window"""
        logger.info("[SERVICE]: Cleaning up expired refresh tokens")
        now = utcnow()
        retention = datetime.timedelta(
            days=get_setting("REFRESH_TOKEN_RETENTION_DAYS", 30)
        )
        try:
            count = RefreshToken.query.filter(
                or_(
                    RefreshToken.expires_at < now,
                    RefreshToken.revoked_at < now - retention,
                )
            ).delete(synchronize_session=False)
            db.session.commit()
        except Exception as error:
            db.session.rollback()
            logger.error(f"[SERVICE]: Error cleaning up expired tokens: {error}")
            raise error
        logger.info(f"[SERVICE]: Cleaned up {count} refresh tokens")
        return count

    @staticmethod
    def list_sessions(account_id):
        """Active sessions for an account, newest first"""
        records = (
            RefreshToken.query.filter(
                RefreshToken.account_id == account_id,
                RefreshToken.revoked_at.is_(None),
                RefreshToken.expires_at > utcnow(),
            )
            .order_by(RefreshToken.created_at.desc())
            .all()
        )
        return [record.serialize() for record in records]

    @staticmethod
    def get_session(account_id, session_id):
        return RefreshToken.query.filter_by(
            id=session_id, account_id=account_id
        ).one_or_none()

    @staticmethod
    def family_id_from(token):
        """Family id of a signature-valid refresh token, without a store lookup.

        The family id names the browser session for CSRF binding.
        """
        if not token:
            return None
        result = TokenService._decode(token, "refresh", REFRESH_CLAIMS)
        if isinstance(result, TokenInvalid):
            return None
        return result.payload["familyId"]
