"""REFRESH TOKEN MODEL"""

import uuid

from ltipapi import db
from ltipapi.models import GUID, utcnow

db.GUID = GUID


class RefreshToken(db.Model):
    """Refresh Token Model

    One row per issued refresh token. The row id is embedded in the signed
    token as its ``jti`` and rows descended from one login share a
    ``family_id``. Only the SHA-256 of the serialized token is stored.
    """

    __tablename__ = "refresh_tokens"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    account_id = db.Column(
        GUID(), db.ForeignKey("accounts.id"), nullable=False, index=True
    )
    family_id = db.Column(db.String(36), nullable=False, index=True)
    # Empty until the signed token exists and the row is sealed
    token_hash = db.Column(db.String(64), nullable=False, default="")
    user_agent = db.Column(db.String(500))
    ip_address = db.Column(db.String(45))
    created_at = db.Column(db.DateTime(), default=utcnow, nullable=False)
    expires_at = db.Column(db.DateTime(), nullable=False, index=True)
    revoked_at = db.Column(db.DateTime(), nullable=True)
    replaced_by = db.Column(db.String(36), nullable=True)

    account = db.relationship("Account", back_populates="refresh_tokens")

    def __repr__(self):
        return f"<RefreshToken {self.id}>"

    @property
    def is_revoked(self):
        return self.revoked_at is not None

    def is_expired(self, now=None):
        return self.expires_at <= (now or utcnow())

    def serialize(self):
        """Session view of the record. Never includes the token hash."""
        return {
            "id": self.id,
            "userAgent": self.user_agent,
            "ipAddress": self.ip_address,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
        }
