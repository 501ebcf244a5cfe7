"""
Account Management Module

Savings and current accounts: balances, rolling daily/monthly limit windows,
freeze state and atomic credit/debit.

Balance floors:
    savings  balance >= minimum_balance
    current  balance >= -overdraft_limit
"""

from decimal import Decimal
from datetime import datetime
from dataclasses import dataclass
from typing import Dict, List, Optional, Union
from enum import Enum
import uuid

from .audit import AuditTrail, AuditEventType
from .clock import Clock, SystemClock, start_of_day, start_of_month
from .config import BankConfig, get_config
from .currency import Money, money
from .errors import (
    BusinessRuleViolation, InvalidAmount, InvalidState, NotFound,
    TransactionDenied, ValidationError
)
from .identifiers import IdentifierGenerator, IdentifierKind
from .locking import UnitOfWork
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord
from .transactions import TransactionChannel, TransactionLedger, TransactionType


class AccountType(Enum):
    """Retail account products"""
    SAVINGS = "savings"
    CURRENT = "current"


class FreezeReason(Enum):
    """Why an account is frozen (NONE when it is not)"""
    NONE = "none"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    CUSTOMER_REQUEST = "customer_request"
    ADMIN_ACTION = "admin_action"
    LEGAL_HOLD = "legal_hold"


class AccountStatus(Enum):
    """Effective status derived from is_active and freeze_reason"""
    ACTIVE = "active"
    FROZEN = "frozen"
    INACTIVE = "inactive"


DENIED_DAILY_LIMIT = "Daily transaction limit exceeded"
DENIED_MONTHLY_LIMIT = "Monthly transaction limit exceeded"
DENIED_MINIMUM_BALANCE = "Insufficient balance. Minimum balance requirement not met"
DENIED_OVERDRAFT = "Overdraft limit exceeded"

# Limit-window state copied back onto the caller's Account after a reset
WINDOW_FIELDS = (
    "today_transaction_amount",
    "month_transaction_amount",
    "last_transaction_reset",
    "last_monthly_reset",
)


@dataclass
class TransactDecision:
    """Outcome of a limit and balance-floor check"""
    allowed: bool
    reason: Optional[str] = None


@dataclass
class Account(StorageRecord):
    """
    Customer bank account
    """
    account_number: str
    customer_id: str
    account_type: AccountType
    balance: Money
    minimum_balance: Money
    overdraft_limit: Money
    interest_rate: Decimal
    daily_transaction_limit: Money
    monthly_transaction_limit: Money
    today_transaction_amount: Money
    month_transaction_amount: Money
    last_transaction_reset: datetime
    last_monthly_reset: datetime
    is_active: bool = True
    freeze_reason: FreezeReason = FreezeReason.NONE
    deactivated_at: Optional[datetime] = None
    deactivation_reason: Optional[str] = None

    @property
    def status(self) -> AccountStatus:
        if not self.is_active:
            return AccountStatus.INACTIVE
        if self.freeze_reason != FreezeReason.NONE:
            return AccountStatus.FROZEN
        return AccountStatus.ACTIVE

    @property
    def is_frozen(self) -> bool:
        return self.freeze_reason != FreezeReason.NONE and self.deactivated_at is None

    @property
    def is_deactivated(self) -> bool:
        return self.deactivated_at is not None

    @property
    def is_operational(self) -> bool:
        """Active and not frozen"""
        return self.is_active and self.freeze_reason == FreezeReason.NONE

    @property
    def available_balance(self) -> Money:
        if self.account_type == AccountType.CURRENT:
            return self.balance + self.overdraft_limit
        return self.balance

    @property
    def balance_floor(self) -> Money:
        if self.account_type == AccountType.CURRENT:
            return -self.overdraft_limit
        return self.minimum_balance


def positive_amount(amount: Union[Money, Decimal, int, str]) -> Money:
    try:
        value = amount if isinstance(amount, Money) else money(amount)
    except ValueError as e:
        raise InvalidAmount(str(e)) from e
    if not value.is_positive():
        raise InvalidAmount("Amount must be greater than zero")
    return value


class AccountManager:
    """
    Manages account lifecycle, limit windows and balance mutations

    Every mutator runs under the account's lock inside a unit of work and
    writes an audit event in the same unit.
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        transaction_ledger: TransactionLedger,
        id_generator: IdentifierGenerator,
        uow: UnitOfWork,
        clock: Optional[Clock] = None,
        config: Optional[BankConfig] = None
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.transaction_ledger = transaction_ledger
        self.id_generator = id_generator
        self.uow = uow
        self.clock = clock or SystemClock()
        self.config = config or get_config()
        self.accounts_table = "accounts"
        self.logger = get_logger("retail_banking.accounts")

        self.storage.add_unique_constraint(self.accounts_table, "account_number")

    def open_account(
        self,
        customer_id: str,
        account_type: Union[AccountType, str],
        initial_deposit: Union[Money, Decimal, int, str] = 0,
        channel: TransactionChannel = TransactionChannel.WEB
    ) -> Account:
        """
        Open a savings or current account

        Args:
            customer_id: Owner of the account
            account_type: savings or current
            initial_deposit: Opening balance; savings must meet the minimum balance
            channel: Channel recorded on the opening deposit transaction

        Returns:
            Created Account

        Raises:
            ValidationError: Unknown type, negative deposit, or savings deposit below minimum
            BusinessRuleViolation: Customer already holds the maximum accounts of this type
        """
        try:
            account_type = AccountType(account_type.value if isinstance(account_type, AccountType) else account_type)
        except ValueError:
            raise ValidationError(f"Unknown account type: {account_type}")

        try:
            deposit = initial_deposit if isinstance(initial_deposit, Money) else money(initial_deposit)
        except ValueError as e:
            raise InvalidAmount(str(e)) from e
        if deposit.is_negative():
            raise InvalidAmount("Initial deposit cannot be negative")

        if account_type == AccountType.SAVINGS:
            defaults = {
                "minimum_balance": money(self.config.savings_minimum_balance),
                "overdraft_limit": Money.zero(),
                "interest_rate": self.config.savings_interest_rate,
                "daily_transaction_limit": money(self.config.savings_daily_limit),
                "monthly_transaction_limit": money(self.config.savings_monthly_limit),
            }
            if deposit < defaults["minimum_balance"]:
                raise ValidationError(
                    f"Minimum opening deposit for a savings account is {defaults['minimum_balance'].to_string()}"
                )
            max_accounts = self.config.max_savings_accounts
            limit_message = f"Maximum {max_accounts} savings accounts allowed per user"
        else:
            defaults = {
                "minimum_balance": Money.zero(),
                "overdraft_limit": money(self.config.current_overdraft_limit),
                "interest_rate": Decimal("0"),
                "daily_transaction_limit": money(self.config.current_daily_limit),
                "monthly_transaction_limit": money(self.config.current_monthly_limit),
            }
            max_accounts = self.config.max_current_accounts
            limit_message = f"Only {max_accounts} current account allowed per user"

        with self.uow(f"customer:{customer_id}"):
            held = [
                a for a in self.get_customer_accounts(customer_id)
                if a.account_type == account_type and not a.is_deactivated
            ]
            if len(held) >= max_accounts:
                raise BusinessRuleViolation(limit_message)

            now = self.clock.now()
            account = Account(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                account_number=self.id_generator.generate(IdentifierKind.ACCOUNT, account_type.value),
                customer_id=customer_id,
                account_type=account_type,
                balance=deposit,
                today_transaction_amount=Money.zero(),
                month_transaction_amount=Money.zero(),
                last_transaction_reset=now,
                last_monthly_reset=now,
                **defaults
            )
            self._save_account(account)

            self.audit_trail.log_event(
                event_type=AuditEventType.ACCOUNT_OPENED,
                entity_type="account",
                entity_id=account.id,
                metadata={
                    "account_number": account.account_number,
                    "account_type": account_type.value,
                    "initial_deposit": deposit.amount
                },
                user_id=customer_id
            )

            if deposit.is_positive():
                opening = self.transaction_ledger.create(
                    transaction_type=TransactionType.DEPOSIT,
                    amount=deposit,
                    to_account_id=account.id,
                    to_account_number=account.account_number,
                    description="Account opening deposit",
                    channel=channel,
                    initiated_by=customer_id
                )
                self.transaction_ledger.complete(opening, to_balance=account.balance)

        log_action(
            self.logger, "info", f"Account opened: {account_type.value}",
            user_id=customer_id, action="open_account",
            resource=f"account:{account.account_number}",
            extra={"initial_deposit": deposit.to_string()}
        )

        return account

    def get_account(self, account_id: str) -> Account:
        """Get account by internal id"""
        data = self.storage.load(self.accounts_table, account_id)
        if not data:
            raise NotFound(f"Account {account_id} not found")
        return self._account_from_dict(data)

    def get_account_by_number(self, account_number: str) -> Account:
        """Get account by account number"""
        found = self.storage.find(self.accounts_table, {"account_number": account_number})
        if not found:
            raise NotFound(f"Account {account_number} not found")
        return self._account_from_dict(found[0])

    def get_customer_accounts(self, customer_id: str) -> List[Account]:
        """Get all accounts for a customer"""
        accounts = [
            self._account_from_dict(data)
            for data in self.storage.find(self.accounts_table, {"customer_id": customer_id})
        ]
        accounts.sort(key=lambda a: a.created_at)
        return accounts

    def reset_windows_if_needed(self, account: Account) -> bool:
        """
        Zero the daily/monthly counters when the clock has crossed a day or
        month boundary since the stored reset stamps.

        The reset is applied to the stored record under the account lock,
        then the window fields are copied onto ``account``. The caller's
        copy may be stale and is never saved.

        Returns:
            True if anything was reset
        """
        now = self.clock.now()
        day_start = start_of_day(now)
        month_start = start_of_month(now)
        if account.last_transaction_reset >= day_start and account.last_monthly_reset >= month_start:
            return False

        reset = []
        with self.uow(account.id):
            current = self.get_account(account.id)

            if current.last_transaction_reset < day_start:
                current.today_transaction_amount = Money.zero()
                current.last_transaction_reset = now
                reset.append("daily")

            if current.last_monthly_reset < month_start:
                current.month_transaction_amount = Money.zero()
                current.last_monthly_reset = now
                reset.append("monthly")

            if reset:
                current.updated_at = now
                self._save_account(current)
                self.audit_trail.log_event(
                    event_type=AuditEventType.LIMIT_WINDOW_RESET,
                    entity_type="account",
                    entity_id=current.id,
                    metadata={"windows": reset}
                )

        for field_name in WINDOW_FIELDS:
            setattr(account, field_name, getattr(current, field_name))
        return bool(reset)

    def can_transact(self, account: Account, amount: Union[Money, Decimal, int, str]) -> TransactDecision:
        """
        Check whether ``amount`` may leave the account

        Side effect: resets expired limit windows first (see
        reset_windows_if_needed). Checks run in order daily limit, monthly
        limit, balance floor; the first violation is returned.
        """
        amount = positive_amount(amount)
        self.reset_windows_if_needed(account)

        if account.today_transaction_amount + amount > account.daily_transaction_limit:
            return TransactDecision(False, DENIED_DAILY_LIMIT)

        if account.month_transaction_amount + amount > account.monthly_transaction_limit:
            return TransactDecision(False, DENIED_MONTHLY_LIMIT)

        if account.balance - amount < account.balance_floor:
            if account.account_type == AccountType.SAVINGS:
                return TransactDecision(False, DENIED_MINIMUM_BALANCE)
            return TransactDecision(False, DENIED_OVERDRAFT)

        return TransactDecision(True)

    def credit(self, account_id: str, amount: Union[Money, Decimal, int, str],
               reference: Optional[str] = None) -> Account:
        """
        Increase the balance (no limit counting)

        Raises:
            InvalidAmount: If amount is not positive
            NotFound: If the account does not exist
        """
        amount = positive_amount(amount)

        with self.uow(account_id):
            account = self.get_account(account_id)
            account.balance = account.balance + amount
            account.updated_at = self.clock.now()
            self._save_account(account)

            self.audit_trail.log_event(
                event_type=AuditEventType.ACCOUNT_CREDITED,
                entity_type="account",
                entity_id=account.id,
                metadata={
                    "amount": amount.amount,
                    "balance": account.balance.amount,
                    "reference": reference
                }
            )

        return account

    def debit(self, account_id: str, amount: Union[Money, Decimal, int, str],
              reference: Optional[str] = None) -> Account:
        """
        Decrease the balance and advance the limit counters

        Raises:
            InvalidAmount: If amount is not positive
            TransactionDenied: If can_transact rejects the amount; nothing changes
        """
        amount = positive_amount(amount)

        with self.uow(account_id):
            account = self.get_account(account_id)
            decision = self.can_transact(account, amount)
            if not decision.allowed:
                raise TransactionDenied(decision.reason)

            account.balance = account.balance - amount
            account.today_transaction_amount = account.today_transaction_amount + amount
            account.month_transaction_amount = account.month_transaction_amount + amount
            account.updated_at = self.clock.now()
            self._save_account(account)

            self.audit_trail.log_event(
                event_type=AuditEventType.ACCOUNT_DEBITED,
                entity_type="account",
                entity_id=account.id,
                metadata={
                    "amount": amount.amount,
                    "balance": account.balance.amount,
                    "reference": reference
                }
            )

        return account

    def freeze(self, account_id: str, reason: Union[FreezeReason, str]) -> Account:
        """Freeze an account; it can no longer send or receive customer transfers"""
        try:
            reason = FreezeReason(reason.value if isinstance(reason, FreezeReason) else reason)
        except ValueError:
            raise ValidationError(f"Unknown freeze reason: {reason}")
        if reason == FreezeReason.NONE:
            raise ValidationError("A freeze reason is required")

        with self.uow(account_id):
            account = self.get_account(account_id)
            if account.is_deactivated:
                raise InvalidState(f"Account {account.account_number} is deactivated")

            account.freeze_reason = reason
            account.is_active = False
            account.updated_at = self.clock.now()
            self._save_account(account)

            self.audit_trail.log_event(
                event_type=AuditEventType.ACCOUNT_FROZEN,
                entity_type="account",
                entity_id=account.id,
                metadata={"reason": reason.value}
            )

        log_action(
            self.logger, "warning", f"Account frozen: {reason.value}",
            user_id=account.customer_id, action="freeze_account",
            resource=f"account:{account.account_number}"
        )
        return account

    def unfreeze(self, account_id: str) -> Account:
        """Lift a freeze and reactivate the account"""
        with self.uow(account_id):
            account = self.get_account(account_id)
            if not account.is_frozen:
                raise InvalidState(f"Account {account.account_number} is not frozen")

            previous = account.freeze_reason
            account.freeze_reason = FreezeReason.NONE
            account.is_active = True
            account.updated_at = self.clock.now()
            self._save_account(account)

            self.audit_trail.log_event(
                event_type=AuditEventType.ACCOUNT_UNFROZEN,
                entity_type="account",
                entity_id=account.id,
                metadata={"previous_reason": previous.value}
            )

        log_action(
            self.logger, "info", "Account unfrozen",
            user_id=account.customer_id, action="unfreeze_account",
            resource=f"account:{account.account_number}"
        )
        return account

    def deactivate(self, account_id: str, reason: Optional[str] = None) -> Account:
        """
        Deactivate (never delete) an account at the customer's request

        Raises:
            BusinessRuleViolation: If the balance is above the minimum balance
            InvalidState: If the account is already deactivated
        """
        with self.uow(account_id):
            account = self.get_account(account_id)
            if account.is_deactivated:
                raise InvalidState(f"Account {account.account_number} is already deactivated")
            if account.balance > account.minimum_balance:
                raise BusinessRuleViolation(
                    "Cannot deactivate account with balance above minimum. Please withdraw excess funds first."
                )

            now = self.clock.now()
            account.is_active = False
            account.freeze_reason = FreezeReason.CUSTOMER_REQUEST
            account.deactivated_at = now
            account.deactivation_reason = reason or "Customer request"
            account.updated_at = now
            self._save_account(account)

            self.audit_trail.log_event(
                event_type=AuditEventType.ACCOUNT_DEACTIVATED,
                entity_type="account",
                entity_id=account.id,
                metadata={"reason": account.deactivation_reason},
                user_id=account.customer_id
            )

        log_action(
            self.logger, "info", "Account deactivated",
            user_id=account.customer_id, action="deactivate_account",
            resource=f"account:{account.account_number}"
        )
        return account

    def _save_account(self, account: Account) -> None:
        self.storage.save(self.accounts_table, account.id, account.to_dict())

    def _account_from_dict(self, data: Dict) -> Account:
        return Account(
            id=data['id'],
            created_at=Account.parse_datetime(data['created_at']),
            updated_at=Account.parse_datetime(data['updated_at']),
            account_number=data['account_number'],
            customer_id=data['customer_id'],
            account_type=AccountType(data['account_type']),
            balance=money(data['balance']),
            minimum_balance=money(data['minimum_balance']),
            overdraft_limit=money(data['overdraft_limit']),
            interest_rate=Decimal(data['interest_rate']),
            daily_transaction_limit=money(data['daily_transaction_limit']),
            monthly_transaction_limit=money(data['monthly_transaction_limit']),
            today_transaction_amount=money(data['today_transaction_amount']),
            month_transaction_amount=money(data['month_transaction_amount']),
            last_transaction_reset=Account.parse_datetime(data['last_transaction_reset']),
            last_monthly_reset=Account.parse_datetime(data['last_monthly_reset']),
            is_active=data.get('is_active', True),
            freeze_reason=FreezeReason(data.get('freeze_reason', "none")),
            deactivated_at=Account.parse_datetime(data.get('deactivated_at')),
            deactivation_reason=data.get('deactivation_reason')
        )
