"""
Banking System

Composition root: builds storage, audit trail, ledger, account manager,
money movement and both deposit engines from one BankConfig, and exposes
every operation as an OperationResult.

Domain errors become failed results carrying the error code; only
PersistenceFailure and unexpected exceptions propagate to the caller.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, Optional, Union
import random

from .accounts import Account, AccountManager, FreezeReason
from .audit import AuditTrail
from .clock import Clock, SystemClock
from .config import BankConfig, get_config
from .currency import Money
from .errors import BankingError, NotFound, PersistenceFailure, ValidationError
from .fixed_deposits import FixedDeposit, FixedDepositEngine
from .identifiers import IdentifierGenerator
from .locking import LockManager, UnitOfWork
from .logging_config import get_logger, log_action
from .money_movement import MoneyMovementService
from .recurring_deposits import Installment, RecurringDeposit, RecurringDepositEngine, InstallmentScheduler
from .storage import InMemoryStorage, SQLiteStorage, StorageInterface
from .transactions import Transaction, TransactionChannel, TransactionLedger, TransactionStatus


Amount = Union[Money, Decimal, int, str]


@dataclass
class OperationResult:
    """Typed outcome of a BankingSystem operation"""
    success: bool
    data: Dict[str, Any] = field(default_factory=dict)
    message: str = ""
    error_code: Optional[str] = None

    @classmethod
    def ok(cls, data: Dict[str, Any], message: str = "") -> 'OperationResult':
        return cls(True, data, message)

    @classmethod
    def failed(cls, error: BankingError) -> 'OperationResult':
        return cls(False, {}, error.message, error.code)


def account_view(account: Account) -> Dict[str, Any]:
    data = account.to_dict()
    data["status"] = account.status.value
    data["available_balance"] = str(account.available_balance.amount)
    return data


def transaction_view(transaction: Transaction) -> Dict[str, Any]:
    data = transaction.to_dict()
    data["total_fees"] = str(transaction.total_fees.amount)
    return data


def fixed_deposit_view(fd: FixedDeposit) -> Dict[str, Any]:
    data = fd.to_dict()
    data["total_interest"] = str(fd.total_interest.amount)
    return data


def recurring_deposit_view(rd: RecurringDeposit) -> Dict[str, Any]:
    data = rd.to_dict()
    data["expected_total_deposit"] = str(rd.expected_total_deposit.amount)
    return data


def installment_view(installment: Installment) -> Dict[str, Any]:
    return installment.to_dict()


def _channel(channel: Union[TransactionChannel, str]) -> TransactionChannel:
    if isinstance(channel, TransactionChannel):
        return channel
    try:
        return TransactionChannel(channel)
    except ValueError:
        raise ValidationError(f"Unknown channel: {channel}")


class BankingSystem:
    """Retail banking core with all components initialized"""

    def __init__(
        self,
        config: Optional[BankConfig] = None,
        storage: Optional[StorageInterface] = None,
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None
    ):
        self.config = config or get_config()
        self.clock = clock or SystemClock()
        self.logger = get_logger("retail_banking.system")

        if storage is not None:
            self.storage = storage
        elif self.config.storage_backend == "sqlite":
            self.storage = SQLiteStorage(self.config.database_path)
        else:
            self.storage = InMemoryStorage()

        self.audit_trail = AuditTrail(self.storage, self.clock, enabled=self.config.enable_audit_logging)
        self.lock_manager = LockManager(self.config.lock_timeout_seconds)
        self.uow = UnitOfWork(self.storage, self.lock_manager, self.config.unit_of_work_timeout_seconds)
        self.id_generator = IdentifierGenerator(
            self.storage, self.clock, rng, max_attempts=self.config.identifier_max_attempts
        )

        self.ledger = TransactionLedger(
            self.storage, self.audit_trail, self.id_generator, self.clock, self.config
        )
        self.accounts = AccountManager(
            self.storage, self.audit_trail, self.ledger, self.id_generator, self.uow,
            self.clock, self.config
        )
        self.money_movement = MoneyMovementService(self.accounts, self.ledger, self.uow)

        self.fd_rates = self.config.fd_rate_table()
        self.rd_rates = self.config.rd_rate_table()
        self.fixed_deposits = FixedDepositEngine(
            self.storage, self.accounts, self.ledger, self.audit_trail, self.id_generator,
            self.uow, self.fd_rates, self.clock, self.config
        )
        self.scheduler = InstallmentScheduler(self.storage, self.audit_trail, self.clock)
        self.recurring_deposits = RecurringDepositEngine(
            self.storage, self.accounts, self.ledger, self.audit_trail, self.id_generator,
            self.uow, self.rd_rates, self.scheduler, self.clock, self.config
        )

    def _execute(self, operation: str, action: Callable[[], Dict[str, Any]],
                 message: str = "") -> OperationResult:
        """Run action and fold domain errors into a failed OperationResult"""
        try:
            return OperationResult.ok(action(), message)
        except PersistenceFailure:
            raise
        except BankingError as e:
            log_action(
                self.logger, "warning", f"{operation} rejected: {e.message}",
                action=operation, extra={"error_code": e.code}
            )
            return OperationResult.failed(e)

    def _owned_account(self, account_number: str, customer_id: Optional[str]) -> Account:
        """Resolve an account, hiding accounts that belong to another customer"""
        account = self.accounts.get_account_by_number(account_number)
        if customer_id is not None and account.customer_id != customer_id:
            raise NotFound(f"Account {account_number} not found")
        return account

    def _owned_fd(self, fd_number: str, customer_id: Optional[str]) -> FixedDeposit:
        fd = self.fixed_deposits.get_fixed_deposit(fd_number)
        if customer_id is not None and fd.customer_id != customer_id:
            raise NotFound(f"Fixed Deposit {fd_number} not found")
        return fd

    def _owned_rd(self, rd_number: str, customer_id: Optional[str]) -> RecurringDeposit:
        rd = self.recurring_deposits.get_recurring_deposit(rd_number)
        if customer_id is not None and rd.customer_id != customer_id:
            raise NotFound(f"Recurring Deposit {rd_number} not found")
        return rd

    def _owned_transaction(self, transaction_id: str, customer_id: Optional[str]) -> Transaction:
        """Resolve a transaction the caller is a party to (owns either leg)"""
        transaction = self.ledger.get_by_transaction_id(transaction_id)
        if customer_id is None:
            return transaction
        for account_id in (transaction.from_account_id, transaction.to_account_id):
            if account_id and self.accounts.get_account(account_id).customer_id == customer_id:
                return transaction
        raise NotFound(f"Transaction {transaction_id} not found")

    # Accounts

    def open_account(self, customer_id: str, account_type: str, initial_deposit: Amount = 0,
                     channel: Union[TransactionChannel, str] = TransactionChannel.WEB) -> OperationResult:
        return self._execute(
            "open_account",
            lambda: account_view(self.accounts.open_account(
                customer_id, account_type, initial_deposit, _channel(channel)
            )),
            "Account created successfully"
        )

    def get_account(self, account_number: str, customer_id: Optional[str] = None) -> OperationResult:
        return self._execute(
            "get_account",
            lambda: account_view(self._owned_account(account_number, customer_id))
        )

    def get_customer_accounts(self, customer_id: str) -> OperationResult:
        return self._execute(
            "get_customer_accounts",
            lambda: {"accounts": [account_view(a) for a in self.accounts.get_customer_accounts(customer_id)]}
        )

    def get_account_transactions(self, account_number: str, customer_id: Optional[str] = None,
                                 status: Optional[str] = None) -> OperationResult:
        def action():
            account = self._owned_account(account_number, customer_id)
            try:
                wanted = TransactionStatus(status) if status else None
            except ValueError:
                raise ValidationError(f"Unknown transaction status: {status}")
            transactions = self.ledger.get_account_transactions(account.id, wanted)
            return {"transactions": [transaction_view(t) for t in transactions]}
        return self._execute("get_account_transactions", action)

    def can_transact(self, account_number: str, amount: Amount) -> OperationResult:
        def action():
            account = self.accounts.get_account_by_number(account_number)
            with self.uow(account.id):
                decision = self.accounts.can_transact(self.accounts.get_account(account.id), amount)
            return {"allowed": decision.allowed, "reason": decision.reason}
        return self._execute("can_transact", action)

    def credit(self, account_number: str, amount: Amount, reference: Optional[str] = None) -> OperationResult:
        def action():
            account = self.accounts.get_account_by_number(account_number)
            return account_view(self.accounts.credit(account.id, amount, reference))
        return self._execute("credit", action)

    def debit(self, account_number: str, amount: Amount, reference: Optional[str] = None) -> OperationResult:
        def action():
            account = self.accounts.get_account_by_number(account_number)
            return account_view(self.accounts.debit(account.id, amount, reference))
        return self._execute("debit", action)

    def freeze_account(self, account_number: str, reason: Union[FreezeReason, str]) -> OperationResult:
        def action():
            account = self.accounts.get_account_by_number(account_number)
            return account_view(self.accounts.freeze(account.id, reason))
        return self._execute("freeze_account", action, "Account frozen")

    def unfreeze_account(self, account_number: str) -> OperationResult:
        def action():
            account = self.accounts.get_account_by_number(account_number)
            return account_view(self.accounts.unfreeze(account.id))
        return self._execute("unfreeze_account", action, "Account unfrozen")

    def deactivate_account(self, account_number: str, customer_id: Optional[str] = None,
                           reason: Optional[str] = None) -> OperationResult:
        def action():
            account = self._owned_account(account_number, customer_id)
            return account_view(self.accounts.deactivate(account.id, reason))
        return self._execute("deactivate_account", action, "Account deactivated successfully")

    # Money movement

    def transfer(self, from_account_number: str, to_account_number: str, amount: Amount,
                 description: str = "", customer_id: Optional[str] = None,
                 channel: Union[TransactionChannel, str] = TransactionChannel.WEB) -> OperationResult:
        def action():
            self._owned_account(from_account_number, customer_id)
            return self.money_movement.transfer(
                from_account_number, to_account_number, amount, description,
                _channel(channel), initiated_by=customer_id
            ).to_dict()
        return self._execute("transfer", action, "Transfer completed successfully")

    def deposit(self, account_number: str, amount: Amount, method: str = "cash", description: str = "",
                customer_id: Optional[str] = None,
                channel: Union[TransactionChannel, str] = TransactionChannel.WEB) -> OperationResult:
        def action():
            self._owned_account(account_number, customer_id)
            return self.money_movement.deposit(
                account_number, amount, method, description, _channel(channel), initiated_by=customer_id
            ).to_dict()
        return self._execute("deposit", action, "Deposit completed successfully")

    def withdraw(self, account_number: str, amount: Amount, method: str = "cash", description: str = "",
                 customer_id: Optional[str] = None,
                 channel: Union[TransactionChannel, str] = TransactionChannel.WEB) -> OperationResult:
        def action():
            self._owned_account(account_number, customer_id)
            return self.money_movement.withdraw(
                account_number, amount, method, description, _channel(channel), initiated_by=customer_id
            ).to_dict()
        return self._execute("withdraw", action, "Withdrawal completed successfully")

    def reverse_transaction(self, transaction_id: str, reason: str,
                            customer_id: Optional[str] = None) -> OperationResult:
        def action():
            self._owned_transaction(transaction_id, customer_id)
            result = self.money_movement.reverse_transaction(transaction_id, reason, initiated_by=customer_id)
            data = result.to_dict()
            data["original_transaction_id"] = transaction_id
            return data
        return self._execute("reverse_transaction", action, "Transaction reversed")

    def get_transaction(self, transaction_id: str, customer_id: Optional[str] = None) -> OperationResult:
        return self._execute(
            "get_transaction",
            lambda: transaction_view(self._owned_transaction(transaction_id, customer_id))
        )

    # Fixed deposits

    def create_fixed_deposit(self, source_account_number: str, principal: Amount, tenure: int,
                             payout_mode: str = "cumulative", payout_account_number: Optional[str] = None,
                             nominee: Optional[Dict[str, Any]] = None,
                             customer_id: Optional[str] = None) -> OperationResult:
        def action():
            self._owned_account(source_account_number, customer_id)
            if payout_account_number:
                self._owned_account(payout_account_number, customer_id)
            return fixed_deposit_view(self.fixed_deposits.create(
                source_account_number, principal, tenure, payout_mode,
                payout_account_number, nominee, initiated_by=customer_id
            ))
        return self._execute("create_fixed_deposit", action, "Fixed deposit created successfully")

    def get_fixed_deposit(self, fd_number: str, customer_id: Optional[str] = None) -> OperationResult:
        def action():
            fd = self._owned_fd(fd_number, customer_id)
            data = fixed_deposit_view(fd)
            data["current_value"] = str(self.fixed_deposits.current_value(fd).amount)
            return data
        return self._execute("get_fixed_deposit", action)

    def get_customer_fixed_deposits(self, customer_id: str) -> OperationResult:
        return self._execute(
            "get_customer_fixed_deposits",
            lambda: {"fixed_deposits": [
                fixed_deposit_view(fd) for fd in self.fixed_deposits.get_customer_fixed_deposits(customer_id)
            ]}
        )

    def process_fd_payout(self, fd_number: str, customer_id: Optional[str] = None) -> OperationResult:
        def action():
            self._owned_fd(fd_number, customer_id)
            payout = self.fixed_deposits.process_interest_payout(fd_number)
            return {
                "paid": payout.paid,
                "amount": str(payout.amount.amount) if payout.amount else None,
                "transaction_id": payout.transaction_id,
                "message": payout.message
            }
        return self._execute("process_fd_payout", action)

    def close_fixed_deposit(self, fd_number: str, reason: str = "Customer request",
                            customer_id: Optional[str] = None) -> OperationResult:
        def action():
            self._owned_fd(fd_number, customer_id)
            return fixed_deposit_view(self.fixed_deposits.close_premature(fd_number, reason))
        return self._execute("close_fixed_deposit", action, "FD closed successfully")

    def mature_fixed_deposit(self, fd_number: str, customer_id: Optional[str] = None) -> OperationResult:
        def action():
            self._owned_fd(fd_number, customer_id)
            return fixed_deposit_view(self.fixed_deposits.process_maturity(fd_number))
        return self._execute("mature_fixed_deposit", action, "FD maturity processed")

    def fixed_deposit_rates(self) -> OperationResult:
        return OperationResult.ok({"rates": self.fd_rates.as_list()})

    # Recurring deposits

    def create_recurring_deposit(self, source_account_number: str, monthly_amount: Amount, tenure: int,
                                 nominee: Optional[Dict[str, Any]] = None, auto_debit_enabled: bool = True,
                                 customer_id: Optional[str] = None) -> OperationResult:
        def action():
            self._owned_account(source_account_number, customer_id)
            return recurring_deposit_view(self.recurring_deposits.create(
                source_account_number, monthly_amount, tenure, nominee, auto_debit_enabled,
                initiated_by=customer_id
            ))
        return self._execute("create_recurring_deposit", action, "Recurring deposit created successfully")

    def get_recurring_deposit(self, rd_number: str, customer_id: Optional[str] = None) -> OperationResult:
        return self._execute(
            "get_recurring_deposit",
            lambda: recurring_deposit_view(self._owned_rd(rd_number, customer_id))
        )

    def get_customer_recurring_deposits(self, customer_id: str) -> OperationResult:
        return self._execute(
            "get_customer_recurring_deposits",
            lambda: {"recurring_deposits": [
                recurring_deposit_view(rd)
                for rd in self.recurring_deposits.get_customer_recurring_deposits(customer_id)
            ]}
        )

    def get_installments(self, rd_number: str, customer_id: Optional[str] = None) -> OperationResult:
        def action():
            self._owned_rd(rd_number, customer_id)
            return {"installments": [installment_view(i) for i in self.recurring_deposits.get_installments(rd_number)]}
        return self._execute("get_installments", action)

    def get_overdue_recurring_deposits(self, customer_id: Optional[str] = None) -> OperationResult:
        return self._execute(
            "get_overdue_recurring_deposits",
            lambda: {"recurring_deposits": [
                recurring_deposit_view(rd)
                for rd in self.recurring_deposits.get_overdue_recurring_deposits(customer_id)
            ]}
        )

    def pay_rd_installment(self, rd_number: str, method: str = "manual",
                           customer_id: Optional[str] = None) -> OperationResult:
        def action():
            self._owned_rd(rd_number, customer_id)
            paid = self.recurring_deposits.process_installment(rd_number, method=method)
            return {
                "installment_number": paid.installment_number,
                "amount_paid": str(paid.amount_paid.amount),
                "penalty_amount": str(paid.penalty_amount.amount),
                "transaction_id": paid.transaction_id,
                "next_due_date": paid.next_due_date.isoformat() if paid.next_due_date else None,
                "matured": paid.matured
            }
        return self._execute("pay_rd_installment", action, "Installment paid successfully")

    def close_recurring_deposit(self, rd_number: str, reason: str = "Customer request",
                                customer_id: Optional[str] = None) -> OperationResult:
        def action():
            self._owned_rd(rd_number, customer_id)
            return recurring_deposit_view(self.recurring_deposits.close_premature(rd_number, reason))
        return self._execute("close_recurring_deposit", action, "RD closed successfully")

    def mature_recurring_deposit(self, rd_number: str, customer_id: Optional[str] = None) -> OperationResult:
        def action():
            self._owned_rd(rd_number, customer_id)
            return recurring_deposit_view(self.recurring_deposits.process_maturity(rd_number))
        return self._execute("mature_recurring_deposit", action, "RD maturity processed")

    def toggle_rd_auto_debit(self, rd_number: str, enabled: bool,
                             customer_id: Optional[str] = None) -> OperationResult:
        def action():
            self._owned_rd(rd_number, customer_id)
            return recurring_deposit_view(self.recurring_deposits.toggle_auto_debit(rd_number, enabled))
        return self._execute(
            "toggle_rd_auto_debit", action, f"Auto-debit {'enabled' if enabled else 'disabled'} successfully"
        )

    def process_rd_auto_due(self) -> OperationResult:
        return self._execute(
            "process_rd_auto_due",
            lambda: {"results": [vars(r) for r in self.recurring_deposits.process_auto_due()]}
        )

    def recurring_deposit_rates(self) -> OperationResult:
        return OperationResult.ok({"rates": self.rd_rates.as_list()})

    # Batch

    def run_daily_sweeps(self) -> OperationResult:
        """
        Daily batch: flag overdue installments, collect due RD installments,
        pay due FD interest, then mature FDs past their maturity date
        """
        def action():
            overdue = self.recurring_deposits.mark_overdue_installments()
            installments = self.recurring_deposits.process_auto_due()
            payouts = self.fixed_deposits.process_due_payouts()
            maturities = self.fixed_deposits.process_due_maturities()
            return {
                "overdue_installments": overdue,
                "rd_installments": [vars(r) for r in installments],
                "fd_payouts": [vars(r) for r in payouts],
                "fd_maturities": [vars(r) for r in maturities],
            }

        result = self._execute("run_daily_sweeps", action, "Daily sweeps completed")
        log_action(
            self.logger, "info", "Daily sweeps completed",
            action="run_daily_sweeps",
            extra={key: len(value) for key, value in result.data.items() if isinstance(value, list)}
        )
        return result

    def verify_audit_trail(self) -> Dict[str, Any]:
        return self.audit_trail.verify_integrity()

    def close(self) -> None:
        self.storage.close()
