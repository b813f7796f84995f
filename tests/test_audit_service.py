"""Tests for the audit log writer"""

from unittest.mock import patch

from ltipapi import db
from ltipapi.models import AuditLog
from ltipapi.services.audit_service import AuditService


def test_record_persists_entry(app, regular_user):
    AuditService.record(
        "LOGIN_SUCCESS",
        account_id=regular_user.id,
        email=regular_user.email,
        ip_address="192.0.2.1",
        metadata={"via": "password"},
    )

    entry = AuditLog.query.one()
    assert entry.action == "LOGIN_SUCCESS"
    assert entry.account_id == regular_user.id
    assert entry.ip_address == "192.0.2.1"
    assert entry.event_metadata == {"via": "password"}
    assert entry.serialize()["action"] == "LOGIN_SUCCESS"


def test_record_takes_ip_from_request(app):
    with app.test_request_context(environ_base={"REMOTE_ADDR": "192.0.2.55"}):
        AuditService.record("LOGIN_FAILURE", email="ghost@test.com")
    assert AuditLog.query.one().ip_address == "192.0.2.55"


def test_unknown_action_is_dropped(app):
    AuditService.record("NOT_AN_ACTION")
    assert AuditLog.query.count() == 0


def test_database_failure_is_swallowed(app, regular_user):
    with patch.object(db.session, "commit", side_effect=RuntimeError("db down")):
        AuditService.record("LOGIN_SUCCESS", account_id=regular_user.id)

    assert AuditLog.query.count() == 0
    # The session is usable again after the failed write
    AuditService.record("LOGIN_SUCCESS", account_id=regular_user.id)
    assert AuditLog.query.count() == 1
