import logging

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from twofa_api.models.audit import AuditLog
from twofa_api.models.enums import SecurityEventType, Severity
from twofa_api.services.orchestrator import ClientInfo


def test_audit_write_failure_never_propagates(orchestrator, db: Session, monkeypatch, caplog):
    def _broken_commit():
        raise OperationalError("INSERT INTO audit_logs", {}, Exception("database is locked"))

    monkeypatch.setattr(db, "commit", _broken_commit)

    with caplog.at_level(logging.ERROR):
        orchestrator.audit.write(db, "login_failed", success=False, details={"email": "x@example.com"})

    assert "audit write failed" in caplog.text
    monkeypatch.undo()
    assert db.execute(select(AuditLog)).scalars().all() == []


def test_security_event_prefixes_action_and_alerts_on_high(orchestrator, db: Session, caplog):
    with caplog.at_level(logging.WARNING):
        orchestrator.audit.security_event(
            db,
            SecurityEventType.INVALID_TOKEN,
            Severity.HIGH,
            details={"reason": "user_id_mismatch"},
            ip_address="192.0.2.1",
        )
        orchestrator.audit.security_event(db, SecurityEventType.SUSPICIOUS_ACTIVITY, Severity.LOW)

    rows = db.execute(select(AuditLog).order_by(AuditLog.action)).scalars().all()
    assert [row.action for row in rows] == ["security_invalid_token", "security_suspicious_activity"]
    assert rows[0].details == {"type": "invalid_token", "severity": "high", "reason": "user_id_mismatch"}
    assert rows[0].success is False
    assert caplog.text.count("security event") == 1


def test_cleanup_respects_retention(orchestrator, db: Session, clock):
    orchestrator.audit.write(db, "old_entry", success=True)
    clock.advance(days=60)
    orchestrator.audit.write(db, "recent_entry", success=True)
    clock.advance(days=31)

    removed = orchestrator.audit.cleanup_old_logs(db, retention_days=90)

    assert removed == 1
    assert db.execute(select(AuditLog.action)).scalars().all() == ["recent_entry"]


def test_login_internal_error_is_audited_then_raised(orchestrator, db: Session, monkeypatch):
    def _broken_lookup(session, email):
        raise OperationalError("SELECT users", {}, Exception("connection reset"))

    monkeypatch.setattr(orchestrator.credentials, "find_by_email", _broken_lookup)

    with pytest.raises(OperationalError):
        orchestrator.login(
            db, email="Crash@Example.com", password="Abcd1234", client=ClientInfo(ip_address="192.0.2.9")
        )

    row = db.execute(select(AuditLog).where(AuditLog.action == "login_internal_error")).scalar_one()
    assert row.success is False
    assert row.details == {"email": "crash@example.com"}
    assert row.ip_address == "192.0.2.9"
