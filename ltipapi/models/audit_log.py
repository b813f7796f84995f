"""AUDIT LOG MODEL"""

import uuid

from ltipapi import db
from ltipapi.models import GUID, utcnow

db.GUID = GUID

AUDIT_ACTIONS = (
    "LOGIN_SUCCESS",
    "LOGIN_FAILURE",
    "TOKEN_REFRESH",
    "TOKEN_REUSE_DETECTED",
    "ACCOUNT_LOCKED",
    "ACCOUNT_UNLOCKED",
    "PASSWORD_CHANGE",
    "LOGOUT_ALL",
    "ADMIN_ACTION",
    "OAUTH_LINKED",
)


class AuditLog(db.Model):
    """Append-only record of authentication events"""

    __tablename__ = "audit_logs"

    id = db.Column(GUID(), primary_key=True, default=uuid.uuid4, nullable=False)
    action = db.Column(db.String(40), nullable=False, index=True)
    account_id = db.Column(GUID(), nullable=True, index=True)
    email = db.Column(db.String(255), nullable=True, index=True)
    ip_address = db.Column(db.String(45), nullable=True)
    # "metadata" is reserved on declarative models
    event_metadata = db.Column("metadata", db.JSON(), nullable=True)
    created_at = db.Column(db.DateTime(), default=utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog {self.action} {self.email!r}>"

    def serialize(self):
        return {
            "id": str(self.id),
            "action": self.action,
            "accountId": str(self.account_id) if self.account_id else None,
            "email": self.email,
            "ipAddress": self.ip_address,
            "metadata": self.event_metadata or {},
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
