"""
Test suite for audit module

Tests hash-chained audit trail, tamper detection and that events roll back
with the unit of work they belong to.
"""

import pytest
from decimal import Decimal

from retail_banking.audit import AuditTrail, AuditEvent, AuditEventType
from retail_banking.clock import ManualClock
from retail_banking.storage import InMemoryStorage


class TestAuditTrail:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.clock = ManualClock()
        self.audit = AuditTrail(self.storage, self.clock)

    def test_chain_links_events(self):
        first = self.audit.log_event(AuditEventType.ACCOUNT_OPENED, "account", "A1", {"balance": Decimal("1000")})
        self.clock.advance(seconds=1)
        second = self.audit.log_event(AuditEventType.ACCOUNT_CREDITED, "account", "A1", {"amount": Decimal("5")})

        assert first.sequence == 1
        assert first.previous_hash == ""
        assert second.sequence == 2
        assert second.previous_hash == first.current_hash
        assert second.verify_hash()
        assert first.metadata == {"balance": "1000"}

    def test_verify_integrity(self):
        for i in range(5):
            self.audit.log_event(AuditEventType.TRANSACTION_CREATED, "transaction", f"T{i}")

        result = self.audit.verify_integrity()
        assert result["valid"]
        assert result["total_events"] == 5
        assert result["hash_errors"] == []
        assert result["chain_breaks"] == []

    def test_tampering_detected(self):
        event = self.audit.log_event(AuditEventType.ACCOUNT_DEBITED, "account", "A1", {"amount": "10.00"})
        self.audit.log_event(AuditEventType.ACCOUNT_DEBITED, "account", "A1", {"amount": "20.00"})

        stored = self.storage.load("audit_events", event.id)
        stored["metadata"]["amount"] = "1.00"
        self.storage.save("audit_events", event.id, stored)

        result = self.audit.verify_integrity()
        assert not result["valid"]
        assert result["hash_errors"][0]["event_id"] == event.id

    def test_event_rolls_back_with_unit(self):
        self.audit.log_event(AuditEventType.ACCOUNT_OPENED, "account", "A1")

        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self.audit.log_event(AuditEventType.ACCOUNT_FROZEN, "account", "A1")
                raise RuntimeError("abort")

        assert self.audit.count_events() == 1
        follow_up = self.audit.log_event(AuditEventType.ACCOUNT_UNFROZEN, "account", "A1")
        assert follow_up.sequence == 2
        assert self.audit.verify_integrity()["valid"]

    def test_queries(self):
        self.audit.log_event(AuditEventType.FD_CREATED, "fixed_deposit", "F1")
        self.audit.log_event(AuditEventType.RD_CREATED, "recurring_deposit", "R1")
        self.audit.log_event(AuditEventType.FD_MATURED, "fixed_deposit", "F1")

        assert [e.event_type for e in self.audit.get_events_for_entity("fixed_deposit", "F1")] == [
            AuditEventType.FD_CREATED, AuditEventType.FD_MATURED
        ]
        assert len(self.audit.get_events_by_type(AuditEventType.RD_CREATED)) == 1
        assert len(self.audit.get_all_events()) == 3

    def test_disabled_trail_records_nothing(self):
        audit = AuditTrail(self.storage, self.clock, enabled=False)
        assert audit.log_event(AuditEventType.ACCOUNT_OPENED, "account", "A1") is None
        assert audit.count_events() == 0

    def test_from_dict_round_trip_keeps_hash_valid(self):
        event = self.audit.log_event(AuditEventType.RD_MATURED, "recurring_deposit", "R1", {"payout": "13000"})
        restored = AuditEvent.from_dict(self.storage.load("audit_events", event.id))
        assert restored.verify_hash()
