"""
Test suite for transaction records

Tests the pending/completed/failed/reversed state machine, fee schedule and
account history queries.
"""

import random
import pytest
from decimal import Decimal

from retail_banking.audit import AuditTrail, AuditEventType
from retail_banking.clock import ManualClock
from retail_banking.config import BankConfig
from retail_banking.currency import money
from retail_banking.errors import InvalidAmount, InvalidState, NotFound, ValidationError
from retail_banking.identifiers import IdentifierGenerator
from retail_banking.storage import InMemoryStorage
from retail_banking.transactions import (
    FAILURE_REASON_MAX_LENGTH, TransactionLedger, TransactionStatus, TransactionType
)


class TestTransactionLedger:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.clock = ManualClock()
        self.audit = AuditTrail(self.storage, self.clock)
        self.ledger = TransactionLedger(
            self.storage, self.audit,
            IdentifierGenerator(self.storage, self.clock, random.Random(5)),
            self.clock, BankConfig()
        )

    def _transfer(self, amount=Decimal("1000")):
        return self.ledger.create(
            TransactionType.TRANSFER, money(amount),
            from_account_id="acct-a", to_account_id="acct-b",
            from_account_number="1001111111", to_account_number="1002222222"
        )

    def test_create_is_pending(self):
        transaction = self._transfer()
        assert transaction.status == TransactionStatus.PENDING
        assert transaction.transaction_id.startswith("TXN20240115")
        assert self.audit.get_events_by_type(AuditEventType.TRANSACTION_CREATED)

    def test_fee_schedule(self):
        assert self._transfer(Decimal("25000")).total_fees.is_zero()

        large = self._transfer(Decimal("30000"))
        assert large.transaction_fee == money(5)
        assert large.gst == money("0.90")

        deposit = self.ledger.create(TransactionType.DEPOSIT, money(90000), to_account_id="acct-b")
        assert deposit.total_fees.is_zero()

    def test_record_validation(self):
        with pytest.raises(ValidationError):
            self.ledger.create(TransactionType.DEPOSIT, money(10))
        with pytest.raises(InvalidAmount):
            self.ledger.create(TransactionType.DEPOSIT, money(0), to_account_id="acct-b")

    def test_complete_records_balances(self):
        completed = self.ledger.complete(self._transfer(), money(4000), money(6000))
        assert completed.is_completed
        assert completed.processed_at == self.clock.now()
        assert completed.from_balance_after == money(4000)
        assert completed.to_balance_after == money(6000)

        with pytest.raises(InvalidState):
            self.ledger.complete(completed)

    def test_fail_truncates_reason(self):
        failed = self.ledger.fail(self._transfer(), "x" * 500)
        assert failed.status == TransactionStatus.FAILED
        assert len(failed.failure_reason) == FAILURE_REASON_MAX_LENGTH
        assert failed.is_terminal

        with pytest.raises(InvalidState):
            self.ledger.fail(failed, "again")
        with pytest.raises(InvalidState):
            self.ledger.reverse(failed, "nope")

    def test_reverse_swaps_legs(self):
        original = self.ledger.complete(self._transfer())
        reversal = self.ledger.reverse(original, "Customer dispute", initiated_by="OPS1")

        assert reversal.transaction_type == TransactionType.REVERSAL
        assert reversal.is_completed
        assert reversal.from_account_id == "acct-b"
        assert reversal.to_account_id == "acct-a"
        assert reversal.reference == original.transaction_id
        assert reversal.original_transaction_id == original.id

        stored = self.ledger.get_transaction(original.id)
        assert stored.status == TransactionStatus.REVERSED
        assert stored.reversal_transaction_id == reversal.id

        with pytest.raises(InvalidState):
            self.ledger.reverse(stored, "twice")

    def test_lookup(self):
        transaction = self._transfer()
        assert self.ledger.get_by_transaction_id(transaction.transaction_id).id == transaction.id
        with pytest.raises(NotFound):
            self.ledger.get_by_transaction_id("TXN000")
        with pytest.raises(NotFound):
            self.ledger.get_transaction("missing")

    def test_account_history(self):
        first = self.ledger.complete(self._transfer())
        self.clock.advance(seconds=60)
        second = self._transfer()
        self.clock.advance(seconds=60)
        unrelated = self.ledger.create(TransactionType.DEPOSIT, money(10), to_account_id="acct-z")

        history = self.ledger.get_account_transactions("acct-b")
        assert [t.id for t in history] == [second.id, first.id]
        assert unrelated.id not in [t.id for t in history]

        completed = self.ledger.get_account_transactions("acct-a", TransactionStatus.COMPLETED)
        assert [t.id for t in completed] == [first.id]
