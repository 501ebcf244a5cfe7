"""
Test suite for accounts module

Tests account opening rules, limit windows, balance floors, freeze and
deactivation lifecycle.
"""

import random
import pytest
from decimal import Decimal

from retail_banking.accounts import (
    AccountManager, AccountStatus, AccountType, FreezeReason,
    DENIED_DAILY_LIMIT, DENIED_MINIMUM_BALANCE, DENIED_MONTHLY_LIMIT, DENIED_OVERDRAFT
)
from retail_banking.audit import AuditTrail, AuditEventType
from retail_banking.clock import ManualClock
from retail_banking.config import BankConfig
from retail_banking.currency import money
from retail_banking.errors import (
    BusinessRuleViolation, InvalidAmount, InvalidState, NotFound,
    TransactionDenied, ValidationError
)
from retail_banking.identifiers import IdentifierGenerator
from retail_banking.locking import LockManager, UnitOfWork
from retail_banking.storage import InMemoryStorage
from retail_banking.transactions import TransactionLedger, TransactionType


def build_accounts(config=None):
    storage = InMemoryStorage()
    clock = ManualClock()
    config = config or BankConfig()
    audit = AuditTrail(storage, clock)
    id_generator = IdentifierGenerator(storage, clock, random.Random(42))
    ledger = TransactionLedger(storage, audit, id_generator, clock, config)
    uow = UnitOfWork(storage, LockManager())
    accounts = AccountManager(storage, audit, ledger, id_generator, uow, clock, config)
    return accounts, ledger, audit, clock


class TestAccountOpening:

    def setup_method(self):
        self.accounts, self.ledger, self.audit, self.clock = build_accounts()

    def test_open_savings_account(self):
        account = self.accounts.open_account("CUST001", "savings", Decimal("5000"))

        assert account.account_number.startswith("100")
        assert account.balance == money(5000)
        assert account.minimum_balance == money(1000)
        assert account.status == AccountStatus.ACTIVE

        transactions = self.ledger.get_account_transactions(account.id)
        assert len(transactions) == 1
        assert transactions[0].transaction_type == TransactionType.DEPOSIT
        assert transactions[0].is_completed
        assert transactions[0].to_balance_after == money(5000)

    def test_open_current_account_without_deposit(self):
        account = self.accounts.open_account("CUST001", AccountType.CURRENT)

        assert account.account_number.startswith("200")
        assert account.balance.is_zero()
        assert account.available_balance == money(50000)
        assert self.ledger.get_account_transactions(account.id) == []

    def test_savings_requires_minimum_opening_deposit(self):
        with pytest.raises(ValidationError):
            self.accounts.open_account("CUST001", "savings", 500)

    def test_invalid_inputs(self):
        with pytest.raises(ValidationError):
            self.accounts.open_account("CUST001", "fixed")
        with pytest.raises(InvalidAmount):
            self.accounts.open_account("CUST001", "current", -1)

    def test_per_customer_limits(self):
        self.accounts.open_account("CUST001", "savings", 1000)
        self.accounts.open_account("CUST001", "savings", 1000)
        with pytest.raises(BusinessRuleViolation) as exc:
            self.accounts.open_account("CUST001", "savings", 1000)
        assert exc.value.message == "Maximum 2 savings accounts allowed per user"

        self.accounts.open_account("CUST001", "current")
        with pytest.raises(BusinessRuleViolation):
            self.accounts.open_account("CUST001", "current")

        # Another customer is unaffected
        self.accounts.open_account("CUST002", "savings", 1000)
        assert len(self.accounts.get_customer_accounts("CUST001")) == 3

    def test_lookup(self):
        account = self.accounts.open_account("CUST001", "savings", 2000)
        assert self.accounts.get_account_by_number(account.account_number).id == account.id
        with pytest.raises(NotFound):
            self.accounts.get_account_by_number("1000000000")


class TestLimitsAndFloors:

    def setup_method(self):
        self.accounts, self.ledger, self.audit, self.clock = build_accounts(
            BankConfig(savings_monthly_limit=Decimal("60000"))
        )
        self.savings = self.accounts.open_account("CUST001", "savings", Decimal("100000"))

    def test_minimum_balance_floor(self):
        small = self.accounts.open_account("CUST002", "savings", Decimal("5000"))
        assert self.accounts.can_transact(small, 4000).allowed

        decision = self.accounts.can_transact(small, Decimal("4000.01"))
        assert not decision.allowed
        assert decision.reason == DENIED_MINIMUM_BALANCE

    def test_overdraft_floor(self):
        current = self.accounts.open_account("CUST001", "current")
        current = self.accounts.debit(current.id, 50000)
        assert current.balance == money(-50000)

        decision = self.accounts.can_transact(current, Decimal("0.01"))
        assert decision.reason == DENIED_OVERDRAFT

    def test_daily_limit(self):
        decision = self.accounts.can_transact(self.savings, Decimal("50000.01"))
        assert decision.reason == DENIED_DAILY_LIMIT

        self.accounts.debit(self.savings.id, 30000)
        account = self.accounts.get_account(self.savings.id)
        assert self.accounts.can_transact(account, 20000).allowed
        assert not self.accounts.can_transact(account, Decimal("20000.01")).allowed

    def test_daily_window_resets_on_new_day(self):
        self.accounts.debit(self.savings.id, 40000)
        self.clock.advance(days=1)

        account = self.accounts.get_account(self.savings.id)
        assert self.accounts.can_transact(account, 15000).allowed
        assert self.accounts.get_account(self.savings.id).today_transaction_amount.is_zero()
        assert self.audit.get_events_by_type(AuditEventType.LIMIT_WINDOW_RESET)

    def test_window_reset_on_stale_copy_keeps_later_debits(self):
        stale = self.accounts.get_account(self.savings.id)
        self.accounts.debit(self.savings.id, 20000)
        self.clock.advance(days=1)

        assert self.accounts.reset_windows_if_needed(stale)
        assert self.accounts.can_transact(stale, 100).allowed

        stored = self.accounts.get_account(self.savings.id)
        assert stored.balance == money(80000)
        assert stored.today_transaction_amount.is_zero()
        assert stored.month_transaction_amount == money(20000)
        # Window fields are refreshed on the caller's copy, the balance is not
        assert stale.today_transaction_amount.is_zero()
        assert stale.month_transaction_amount == money(20000)
        assert stale.balance == money(100000)

    def test_monthly_limit(self):
        self.accounts.debit(self.savings.id, 40000)
        self.clock.advance(days=1)

        account = self.accounts.get_account(self.savings.id)
        decision = self.accounts.can_transact(account, Decimal("20000.01"))
        assert decision.reason == DENIED_MONTHLY_LIMIT

    def test_monthly_window_resets_on_new_month(self):
        self.accounts.debit(self.savings.id, 40000)
        self.clock.advance(days=20)

        account = self.accounts.get_account(self.savings.id)
        assert self.accounts.can_transact(account, 30000).allowed
        assert account.month_transaction_amount.is_zero()

    def test_denied_debit_changes_nothing(self):
        with pytest.raises(TransactionDenied):
            self.accounts.debit(self.savings.id, 99500)
        assert self.accounts.get_account(self.savings.id).balance == money(100000)

    def test_non_positive_amounts(self):
        with pytest.raises(InvalidAmount):
            self.accounts.credit(self.savings.id, 0)
        with pytest.raises(InvalidAmount):
            self.accounts.debit(self.savings.id, "-5")

    def test_credit_does_not_count_against_limits(self):
        account = self.accounts.credit(self.savings.id, 80000)
        assert account.balance == money(180000)
        assert account.today_transaction_amount.is_zero()


class TestAccountLifecycle:

    def setup_method(self):
        self.accounts, self.ledger, self.audit, self.clock = build_accounts()
        self.account = self.accounts.open_account("CUST001", "savings", Decimal("1000"))

    def test_freeze_and_unfreeze(self):
        frozen = self.accounts.freeze(self.account.id, "suspicious_activity")
        assert frozen.is_frozen
        assert not frozen.is_operational
        assert frozen.freeze_reason == FreezeReason.SUSPICIOUS_ACTIVITY

        restored = self.accounts.unfreeze(self.account.id)
        assert restored.is_operational
        assert restored.status == AccountStatus.ACTIVE

    def test_freeze_validation(self):
        with pytest.raises(ValidationError):
            self.accounts.freeze(self.account.id, "bored")
        with pytest.raises(ValidationError):
            self.accounts.freeze(self.account.id, FreezeReason.NONE)
        with pytest.raises(InvalidState):
            self.accounts.unfreeze(self.account.id)

    def test_deactivate(self):
        account = self.accounts.deactivate(self.account.id, "Moving abroad")
        assert account.is_deactivated
        assert account.status == AccountStatus.INACTIVE
        assert account.deactivation_reason == "Moving abroad"

        with pytest.raises(InvalidState):
            self.accounts.deactivate(self.account.id)
        with pytest.raises(InvalidState):
            self.accounts.freeze(self.account.id, "legal_hold")

        # Deactivated accounts free up the per-customer slot
        self.accounts.open_account("CUST001", "savings", 1000)
        self.accounts.open_account("CUST001", "savings", 1000)

    def test_debit_at_minimum_balance_is_rule_violation(self):
        with pytest.raises(BusinessRuleViolation) as exc:
            self.accounts.debit(self.account.id, 500)
        assert exc.value.message == DENIED_MINIMUM_BALANCE
        assert self.accounts.get_account(self.account.id).balance == money(1000)

    def test_deactivate_refuses_excess_balance(self):
        self.accounts.credit(self.account.id, 1)
        with pytest.raises(BusinessRuleViolation):
            self.accounts.deactivate(self.account.id)
        assert not self.accounts.get_account(self.account.id).is_deactivated
