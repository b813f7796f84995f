"""AUDIT SERVICE"""

import logging

from flask import has_request_context
from flask_limiter.util import get_remote_address

from ltipapi import db
from ltipapi.models import AuditLog
from ltipapi.models.audit_log import AUDIT_ACTIONS

logger = logging.getLogger(__name__)


class AuditService:
    """Fire-and-forget writer for the audit log"""

    @staticmethod
    def record(action, account_id=None, email=None, ip_address=None, metadata=None):
        """Persist an audit entry. Never raises.

        A failed write is rolled back and logged; the caller's flow carries on
        as if the write had succeeded.
        """
        try:
            if action not in AUDIT_ACTIONS:
                raise ValueError(f"Unknown audit action: {action}")
            if ip_address is None and has_request_context():
                ip_address = get_remote_address()
            entry = AuditLog(
                action=action,
                account_id=account_id,
                email=email,
                ip_address=ip_address,
                event_metadata=metadata or {},
            )
            db.session.add(entry)
            db.session.commit()
        except Exception as error:
            try:
                db.session.rollback()
            except Exception as rollback_error:
                logger.error(f"[SERVICE]: Audit rollback failed: {rollback_error}")
            logger.error(f"[SERVICE]: Failed to write audit log {action}: {error}")
