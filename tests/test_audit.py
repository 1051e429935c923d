"""
Test suite for audit module

Tests hash-chained audit trail, tamper detection, integrity verification,
and audit event logging.
"""

from datetime import datetime, timezone

from token_ledger.storage import InMemoryStorage, SQLiteStorage
from token_ledger.audit import AuditTrail, AuditEvent, AuditEventType
from token_ledger.ledger import UINT256_MAX


class TestAuditEvent:
    """Test AuditEvent functionality"""

    def make_event(self, metadata=None):
        now = datetime.now(timezone.utc)
        return AuditEvent(
            id="AUDIT001",
            created_at=now,
            updated_at=now,
            event_type=AuditEventType.TRANSFER_APPLIED,
            entity_type="account",
            entity_id="alice",
            previous_hash="",
            current_hash="",
            caller="alice",
            metadata=metadata or {}
        )

    def test_amounts_stored_as_text(self):
        """Large integers must survive a JSON round trip exactly"""
        event = self.make_event({"amount": UINT256_MAX, "nested": {"value": 5}, "ok": True})
        assert event.metadata["amount"] == str(UINT256_MAX)
        assert event.metadata["nested"] == {"value": "5"}
        assert event.metadata["ok"] is True

    def test_hash_is_deterministic(self):
        event = self.make_event({"amount": 10})
        event.current_hash = event.calculate_hash()
        assert len(event.current_hash) == 64
        assert event.verify_hash()

    def test_tampering_breaks_hash(self):
        event = self.make_event({"amount": 10})
        event.current_hash = event.calculate_hash()
        event.metadata["amount"] = "1000"
        assert not event.verify_hash()

    def test_dict_round_trip(self):
        event = self.make_event({"amount": 10})
        event.current_hash = event.calculate_hash()
        restored = AuditEvent.from_dict(event.to_dict())
        assert restored.event_type == AuditEventType.TRANSFER_APPLIED
        assert restored.verify_hash()


class TestAuditTrail:
    """Test AuditTrail functionality"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.trail = AuditTrail(self.storage)

    def test_first_event_has_empty_previous_hash(self):
        event = self.trail.log_event(AuditEventType.TOKEN_DEPLOYED, "token", "TST", caller="alice")
        assert event.previous_hash == ""
        assert self.trail.get_latest_hash() == event.current_hash

    def test_events_are_chained(self):
        first = self.trail.log_event(AuditEventType.APPROVAL_SET, "account", "alice")
        second = self.trail.log_event(AuditEventType.TRANSFER_APPLIED, "account", "alice")
        assert second.previous_hash == first.current_hash

    def test_queries(self):
        self.trail.log_event(AuditEventType.TRANSFER_APPLIED, "account", "alice", {"amount": 1})
        self.trail.log_event(AuditEventType.TRANSFER_APPLIED, "account", "bob", {"amount": 2})
        self.trail.log_event(AuditEventType.REQUEST_REJECTED, "request", "transfer")

        assert self.trail.count_events() == 3
        assert len(self.trail.get_events_for_entity("account", "alice")) == 1
        assert len(self.trail.get_events_by_type(AuditEventType.TRANSFER_APPLIED)) == 2
        latest = self.trail.get_all_events(limit=1)
        assert [e.event_type for e in latest] == [AuditEventType.REQUEST_REJECTED]

    def test_integrity_valid(self):
        for i in range(5):
            self.trail.log_event(AuditEventType.TRANSFER_APPLIED, "account", f"acct{i}", {"amount": i})
        result = self.trail.verify_integrity()
        assert result["valid"] is True
        assert result["total_events"] == 5
        assert result["hash_errors"] == []
        assert result["chain_breaks"] == []

    def test_integrity_detects_tampering(self):
        self.trail.log_event(AuditEventType.TRANSFER_APPLIED, "account", "alice", {"amount": 1})
        target = self.trail.log_event(AuditEventType.TRANSFER_APPLIED, "account", "alice", {"amount": 2})
        self.trail.log_event(AuditEventType.TRANSFER_APPLIED, "account", "alice", {"amount": 3})

        stored = self.storage.load("audit_events", target.id)
        stored["metadata"]["amount"] = "2000"
        self.storage.save("audit_events", target.id, stored)

        result = self.trail.verify_integrity()
        assert result["valid"] is False
        assert [e["event_id"] for e in result["hash_errors"]] == [target.id]

    def test_chain_resumes_after_reopen(self, tmp_path):
        storage = SQLiteStorage(tmp_path / "audit.db")
        first = AuditTrail(storage).log_event(AuditEventType.DISPATCHER_STARTED, "token", "TST")

        reopened = AuditTrail(storage)
        second = reopened.log_event(AuditEventType.DISPATCHER_STOPPED, "token", "TST")
        assert second.previous_hash == first.current_hash
        assert reopened.verify_integrity()["valid"] is True
        storage.close()
