# tests/test_x402_audit.py
"""
Unit tests for x402 audit logging.
"""
import json
from pathlib import Path
from unittest.mock import patch

import pytest

from app.x402.audit import (
    AuditEventType,
    create_audit_event,
    generate_request_id,
    get_audit_log_path,
    get_audit_stats,
    log_audit_event,
    log_bypass,
    log_error,
    log_payment_rejected,
    log_payment_required_sent,
    log_payment_verified,
    log_query_rejected,
    read_audit_log,
)
from conftest import PAY_TO, TX_HASH


@pytest.fixture
def audit_log(tmp_path):
    """Point the audit log at a temp file and enable it."""
    log_path = tmp_path / "logs" / "audit.jsonl"
    with patch("app.x402.audit.settings") as mock_settings:
        mock_settings.X402_AUDIT_ENABLED = True
        mock_settings.X402_AUDIT_LOG_PATH = str(log_path)
        yield log_path


def read_lines(path: Path):
    return [json.loads(line) for line in path.read_text().splitlines()]


class TestAuditEventType:
    """Test audit event type enumeration."""

    def test_event_types_exist(self):
        assert AuditEventType.PAYMENT_REQUIRED_SENT.value == "payment_required_sent"
        assert AuditEventType.PAYMENT_VERIFIED.value == "payment_verified"
        assert AuditEventType.PAYMENT_CACHE_HIT.value == "payment_cache_hit"
        assert AuditEventType.PAYMENT_REJECTED.value == "payment_rejected"
        assert AuditEventType.DEV_BYPASS_USED.value == "dev_bypass_used"
        assert AuditEventType.BYPASS_REJECTED.value == "bypass_rejected"
        assert AuditEventType.QUERY_REJECTED.value == "query_rejected"
        assert AuditEventType.ERROR.value == "error"


class TestEventCreation:

    def test_generate_request_id(self):
        request_id = generate_request_id()
        assert isinstance(request_id, str)
        assert len(request_id) == 8
        assert request_id != generate_request_id()

    def test_create_audit_event(self):
        event = create_audit_event(
            AuditEventType.PAYMENT_VERIFIED, {"amount": "0.01"}, client_ip="1.2.3.4", request_id="abcd1234"
        )

        assert event["event_type"] == "payment_verified"
        assert event["request_id"] == "abcd1234"
        assert event["client_ip"] == "1.2.3.4"
        assert event["data"] == {"amount": "0.01"}
        assert "timestamp" in event

    def test_log_path_from_settings(self, audit_log):
        assert get_audit_log_path() == audit_log


class TestLogAuditEvent:
    """Test writing events to the JSON-lines file."""

    def test_writes_event_and_creates_directory(self, audit_log):
        request_id = log_audit_event(AuditEventType.ERROR, {"x": 1}, client_ip="1.2.3.4")

        assert request_id is not None
        events = read_lines(audit_log)
        assert len(events) == 1
        assert events[0]["request_id"] == request_id
        assert events[0]["data"] == {"x": 1}

    def test_disabled(self, tmp_path):
        log_path = tmp_path / "audit.jsonl"
        with patch("app.x402.audit.settings") as mock_settings:
            mock_settings.X402_AUDIT_ENABLED = False
            mock_settings.X402_AUDIT_LOG_PATH = str(log_path)

            assert log_audit_event(AuditEventType.ERROR, {}) is None

        assert not log_path.exists()

    def test_write_failure_does_not_raise(self, audit_log):
        with patch("builtins.open", side_effect=OSError("disk full")):
            assert log_audit_event(AuditEventType.ERROR, {}) is None

    def test_convenience_loggers(self, audit_log):
        log_payment_required_sent("1.1.1.1", "/api/transfers", "0.01", "base", PAY_TO)
        log_payment_verified("1.1.1.1", TX_HASH, "0.01", "base")
        log_payment_verified("1.1.1.1", TX_HASH, "0.01", "base", from_cache=True)
        log_payment_rejected("2.2.2.2", TX_HASH, "pending", "not confirmed")
        log_bypass("3.3.3.3", allowed=True, path="/api/transfers")
        log_bypass("3.3.3.3", allowed=False, path="/api/transfers")
        log_query_rejected("4.4.4.4", "/api/transfers", "address required")
        log_error("5.5.5.5", "RuntimeError", "boom", {"path": "/api/transfers"})

        kinds = [e["event_type"] for e in read_lines(audit_log)]
        assert kinds == [
            "payment_required_sent",
            "payment_verified",
            "payment_cache_hit",
            "payment_rejected",
            "dev_bypass_used",
            "bypass_rejected",
            "query_rejected",
            "error",
        ]


class TestReadAuditLog:
    """Test reading and summarizing the audit log."""

    def test_read_missing_log(self, audit_log):
        assert read_audit_log() == []

    def test_read_most_recent_first(self, audit_log):
        log_payment_verified("1.1.1.1", "0x01", "0.01", "base")
        log_payment_rejected("2.2.2.2", "0x02", "not_found")
        log_payment_verified("1.1.1.1", "0x03", "0.01", "base")

        events = read_audit_log()

        assert [e["data"]["transaction_hash"] for e in events] == ["0x03", "0x02", "0x01"]

    def test_read_filters(self, audit_log):
        log_payment_verified("1.1.1.1", "0x01", "0.01", "base")
        log_payment_rejected("2.2.2.2", "0x02", "not_found")
        log_payment_verified("1.1.1.1", "0x03", "0.01", "base")

        assert len(read_audit_log(event_type=AuditEventType.PAYMENT_REJECTED)) == 1
        assert len(read_audit_log(client_ip="1.1.1.1")) == 2
        assert len(read_audit_log(max_entries=1)) == 1

    def test_read_skips_corrupt_lines(self, audit_log):
        log_error("1.1.1.1", "E", "m")
        with open(audit_log, "a") as f:
            f.write("not json\n\n")

        assert len(read_audit_log()) == 1

    def test_stats(self, audit_log):
        log_payment_verified("1.1.1.1", "0x01", "0.01", "base")
        log_payment_verified("1.1.1.1", "0x02", "0.01", "base")
        log_bypass("1.1.1.1", allowed=False, path="/api/transfers")

        stats = get_audit_stats()

        assert stats["total_events"] == 3
        assert stats["events_by_type"] == {"payment_verified": 2, "bypass_rejected": 1}
        assert stats["log_exists"] is True
        assert stats["first_event"] <= stats["last_event"]

    def test_stats_missing_log(self, audit_log):
        stats = get_audit_stats()

        assert stats["total_events"] == 0
        assert stats["log_exists"] is False
