"""ACCOUNT MODEL"""

import uuid

from ltipapi import db
from ltipapi.config import SETTINGS
from ltipapi.models import GUID, utcnow

db.GUID = GUID

ROLES = SETTINGS.get("ROLES")


class Account(db.Model):
    """Account Model"""

    __tablename__ = "accounts"

    id = db.Column(GUID(), primary_key=True, default=uuid.uuid4, nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    name = db.Column(db.String(120))
    avatar_url = db.Column(db.String(2048), nullable=True)
    # Identity-provider-only accounts have no local password
    password_hash = db.Column(db.String(255), nullable=True)
    google_id = db.Column(db.String(64), unique=True, nullable=True)
    github_id = db.Column(db.String(64), unique=True, nullable=True)
    is_active = db.Column(db.Boolean(), default=True, nullable=False)
    role = db.Column(db.String(10), default="USER", nullable=False)
    email_verified = db.Column(db.Boolean(), default=False, nullable=False)
    failed_login_attempts = db.Column(db.Integer(), default=0, nullable=False)
    last_failed_login_at = db.Column(db.DateTime(), nullable=True)
    account_locked_until = db.Column(db.DateTime(), nullable=True)
    last_login_at = db.Column(db.DateTime(), nullable=True)
    created_at = db.Column(db.DateTime(), default=utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime(), default=utcnow, onupdate=utcnow, nullable=False
    )

    refresh_tokens = db.relationship(
        "RefreshToken",
        cascade="all, delete-orphan",
        lazy="dynamic",
        back_populates="account",
    )

    def __init__(self, email, password_hash=None, name=None, role="USER"):
        self.email = email.strip().lower()
        self.password_hash = password_hash
        self.name = name
        self.role = role if role in ROLES else "USER"
        self.is_active = True
        self.email_verified = False
        self.failed_login_attempts = 0

    def __repr__(self):
        return f"<Account {self.email!r}>"

    def is_locked(self, now=None):
        """True while the account-row lock is in the future."""
        now = now or utcnow()
        return self.account_locked_until is not None and self.account_locked_until > now

    def serialize(self):
        """Return object data in easily serializeable format"""
        return {
            "id": str(self.id),
            "email": self.email,
            "name": self.name,
            "avatarUrl": self.avatar_url,
            "role": self.role,
            "emailVerified": self.email_verified,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
