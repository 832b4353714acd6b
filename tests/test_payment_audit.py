# tests/test_payment_audit.py
"""
Unit tests for payment audit logging.
"""
import json
import pytest
from unittest.mock import patch

from paygate.payment.audit import (
    AuditEventType,
    AuditLog,
    create_audit_event,
    generate_request_id,
)


@pytest.fixture
def audit_log(tmp_path):
    return AuditLog(tmp_path / "logs" / "audit.jsonl")


class TestGenerateRequestId:
    """Test request ID generation."""

    def test_generates_string(self):
        request_id = generate_request_id()
        assert isinstance(request_id, str)
        assert len(request_id) == 8

    def test_unique_ids(self):
        ids = {generate_request_id() for _ in range(100)}
        assert len(ids) == 100


class TestCreateAuditEvent:
    """Test audit event creation."""

    def test_event_structure(self):
        event = create_audit_event(
            AuditEventType.PAYMENT_SETTLED,
            data={"path": "/api/weather"},
            client_ip="192.0.2.1",
            payer="0xpayer",
            request_id="abc12345",
        )

        assert event["event_type"] == "payment_settled"
        assert event["request_id"] == "abc12345"
        assert event["client_ip"] == "192.0.2.1"
        assert event["payer"] == "0xpayer"
        assert event["data"] == {"path": "/api/weather"}
        assert "timestamp" in event

    def test_generates_request_id(self):
        event = create_audit_event(AuditEventType.ERROR, data={})
        assert len(event["request_id"]) == 8


class TestAuditLog:
    """Test writing and reading the audit log."""

    def test_creates_directory(self, audit_log):
        assert audit_log.ensure_directory() is True
        assert audit_log.path.parent.is_dir()

    def test_log_event_writes_json_line(self, audit_log):
        request_id = audit_log.log_event(AuditEventType.REQUEST_RECEIVED, {"path": "/api/weather"})

        lines = audit_log.path.read_text().splitlines()
        assert len(lines) == 1
        event = json.loads(lines[0])
        assert event["request_id"] == request_id
        assert event["event_type"] == "request_received"

    def test_log_transition(self, audit_log):
        audit_log.log_transition(
            AuditEventType.PAYMENT_FAILED,
            method="POST",
            path="/api/weather",
            proof_present=True,
            request_id="abc12345",
            reason="expired",
        )

        event = audit_log.read()[0]
        assert event["data"] == {
            "method": "POST",
            "path": "/api/weather",
            "proof_present": True,
            "reason": "expired",
        }

    def test_read_most_recent_first(self, audit_log):
        for i in range(3):
            audit_log.log_event(AuditEventType.REQUEST_RECEIVED, {"n": i})

        events = audit_log.read()
        assert [e["data"]["n"] for e in events] == [2, 1, 0]

    def test_read_max_entries(self, audit_log):
        for i in range(5):
            audit_log.log_event(AuditEventType.REQUEST_RECEIVED, {"n": i})

        assert len(audit_log.read(max_entries=2)) == 2

    def test_read_filter_by_type(self, audit_log):
        audit_log.log_event(AuditEventType.REQUEST_RECEIVED, {})
        audit_log.log_event(AuditEventType.PAYMENT_SETTLED, {})

        events = audit_log.read(event_type=AuditEventType.PAYMENT_SETTLED)
        assert [e["event_type"] for e in events] == ["payment_settled"]

    def test_read_missing_file(self, audit_log):
        assert audit_log.read() == []

    def test_read_skips_corrupt_lines(self, audit_log):
        audit_log.log_event(AuditEventType.REQUEST_RECEIVED, {})
        with open(audit_log.path, "a") as f:
            f.write("not json\n\n")

        assert len(audit_log.read()) == 1

    def test_write_failure_does_not_raise(self, audit_log):
        with patch("builtins.open", side_effect=OSError("disk full")):
            assert audit_log.log_event(AuditEventType.ERROR, {}) is None

    def test_unserializable_data_does_not_raise(self, audit_log):
        assert audit_log.log_event(AuditEventType.ERROR, {"bad": object()}) is None
