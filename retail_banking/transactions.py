"""
Transaction Record Module

Every movement of money is described by a Transaction record with a strict
state machine:

    pending -> completed -> reversed
    pending -> failed

The ledger only records; balances are moved by AccountManager and composed
into atomic units by the money movement service and deposit engines.
"""

from datetime import datetime
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any, Tuple
from enum import Enum
import uuid

from .audit import AuditTrail, AuditEventType
from .clock import Clock, SystemClock
from .config import BankConfig, get_config
from .currency import Money, money
from .errors import InvalidAmount, InvalidState, NotFound, ValidationError
from .identifiers import IdentifierGenerator, IdentifierKind
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord


FAILURE_REASON_MAX_LENGTH = 200


class TransactionType(Enum):
    """Types of ledger transactions"""
    TRANSFER = "transfer"
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    FD_DEPOSIT = "fd_deposit"
    FD_MATURITY = "fd_maturity"
    RD_DEPOSIT = "rd_deposit"
    RD_MATURITY = "rd_maturity"
    INTEREST_CREDIT = "interest_credit"
    FEE_DEBIT = "fee_debit"
    PENALTY_DEBIT = "penalty_debit"
    REVERSAL = "reversal"


class TransactionStatus(Enum):
    """States of a transaction"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REVERSED = "reversed"


class TransactionChannel(Enum):
    """Channels through which transactions can originate"""
    WEB = "web"
    MOBILE = "mobile"
    ATM = "atm"
    BRANCH = "branch"
    SYSTEM = "system"  # Deposit engines, sweeps, reversals


@dataclass
class Transaction(StorageRecord):
    """
    Ledger transaction record
    """
    transaction_id: str
    transaction_type: TransactionType
    amount: Money
    from_account_id: Optional[str] = None
    to_account_id: Optional[str] = None
    from_account_number: Optional[str] = None
    to_account_number: Optional[str] = None
    description: str = ""
    reference: Optional[str] = None
    channel: TransactionChannel = TransactionChannel.WEB
    status: TransactionStatus = TransactionStatus.PENDING
    transaction_fee: Money = field(default_factory=Money.zero)
    gst: Money = field(default_factory=Money.zero)

    # Post-transaction balance snapshots
    from_balance_after: Optional[Money] = None
    to_balance_after: Optional[Money] = None

    processed_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    reversal_transaction_id: Optional[str] = None
    original_transaction_id: Optional[str] = None
    initiated_by: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.from_account_id and not self.to_account_id:
            raise ValidationError("Transaction must have at least one account leg")

        if not self.amount.is_positive():
            raise InvalidAmount("Transaction amount must be positive")

    @property
    def total_fees(self) -> Money:
        return self.transaction_fee + self.gst

    @property
    def is_pending(self) -> bool:
        return self.status == TransactionStatus.PENDING

    @property
    def is_completed(self) -> bool:
        return self.status == TransactionStatus.COMPLETED

    @property
    def is_terminal(self) -> bool:
        return self.status in (TransactionStatus.FAILED, TransactionStatus.REVERSED)


class TransactionLedger:
    """
    Creates transaction records and drives their state machine
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        id_generator: IdentifierGenerator,
        clock: Optional[Clock] = None,
        config: Optional[BankConfig] = None,
        accounts_table: str = "accounts"
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.id_generator = id_generator
        self.clock = clock or SystemClock()
        self.config = config or get_config()
        self.table_name = "transactions"
        self.accounts_table = accounts_table
        self.logger = get_logger("retail_banking.transactions")

        self.storage.add_unique_constraint(self.table_name, "transaction_id")

    def calculate_fees(self, transaction_type: TransactionType, amount: Money) -> Tuple[Money, Money]:
        """
        Fee schedule: transfers above the threshold carry a flat fee plus GST
        on that fee. Everything else is free.

        Returns:
            (transaction_fee, gst)
        """
        if transaction_type == TransactionType.TRANSFER and amount.amount > self.config.transfer_fee_threshold:
            fee = money(self.config.transfer_fee)
            return fee, fee * self.config.gst_rate
        return Money.zero(), Money.zero()

    def _account_number(self, account_id: Optional[str]) -> Optional[str]:
        if not account_id:
            return None
        data = self.storage.load(self.accounts_table, account_id)
        return data['account_number'] if data else None

    def create(
        self,
        transaction_type: TransactionType,
        amount: Money,
        from_account_id: Optional[str] = None,
        to_account_id: Optional[str] = None,
        description: str = "",
        reference: Optional[str] = None,
        channel: TransactionChannel = TransactionChannel.WEB,
        metadata: Optional[Dict[str, Any]] = None,
        initiated_by: Optional[str] = None,
        from_account_number: Optional[str] = None,
        to_account_number: Optional[str] = None
    ) -> Transaction:
        """
        Create a new transaction in PENDING status

        Account-number snapshots are resolved from the account ids when not
        supplied.

        Raises:
            ValidationError: If both legs are absent
            InvalidAmount: If amount is not positive
        """
        if not isinstance(amount, Money):
            amount = money(amount)

        now = self.clock.now()
        fee, gst = self.calculate_fees(transaction_type, amount)

        transaction = Transaction(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            transaction_id=self.id_generator.generate(IdentifierKind.TRANSACTION),
            transaction_type=transaction_type,
            amount=amount,
            from_account_id=from_account_id,
            to_account_id=to_account_id,
            from_account_number=from_account_number or self._account_number(from_account_id),
            to_account_number=to_account_number or self._account_number(to_account_id),
            description=description,
            reference=reference,
            channel=channel,
            transaction_fee=fee,
            gst=gst,
            initiated_by=initiated_by,
            metadata=metadata or {}
        )

        with self.storage.atomic():
            self._save_transaction(transaction)
            self.audit_trail.log_event(
                event_type=AuditEventType.TRANSACTION_CREATED,
                entity_type="transaction",
                entity_id=transaction.id,
                metadata={
                    "transaction_id": transaction.transaction_id,
                    "transaction_type": transaction_type.value,
                    "amount": amount.amount,
                    "from_account": transaction.from_account_number,
                    "to_account": transaction.to_account_number,
                    "reference": reference
                },
                user_id=initiated_by
            )

        log_action(
            self.logger, "info", f"Transaction created: {transaction_type.value}",
            user_id=initiated_by, action="create_transaction",
            resource=f"transaction:{transaction.transaction_id}",
            extra={
                "amount": amount.to_string(),
                "from_account": transaction.from_account_number,
                "to_account": transaction.to_account_number,
                "channel": channel.value
            }
        )

        return transaction

    def complete(
        self,
        transaction: Transaction,
        from_balance: Optional[Money] = None,
        to_balance: Optional[Money] = None
    ) -> Transaction:
        """
        Mark a pending transaction completed and store the balance snapshots

        Raises:
            InvalidState: If the stored transaction is not pending
        """
        current = self.get_transaction(transaction.id)
        if not current.is_pending:
            raise InvalidState(
                f"Transaction {current.transaction_id} is {current.status.value}, only pending transactions can be completed"
            )

        now = self.clock.now()
        current.status = TransactionStatus.COMPLETED
        current.processed_at = now
        current.updated_at = now
        current.from_balance_after = from_balance
        current.to_balance_after = to_balance
        with self.storage.atomic():
            self._save_transaction(current)
            self.audit_trail.log_event(
                event_type=AuditEventType.TRANSACTION_COMPLETED,
                entity_type="transaction",
                entity_id=current.id,
                metadata={
                    "transaction_id": current.transaction_id,
                    "from_balance": from_balance.amount if from_balance else None,
                    "to_balance": to_balance.amount if to_balance else None
                }
            )

        return current

    def fail(self, transaction: Transaction, reason: str) -> Transaction:
        """
        Mark a pending transaction failed

        Raises:
            InvalidState: If the stored transaction is not pending
        """
        current = self.get_transaction(transaction.id)
        if not current.is_pending:
            raise InvalidState(
                f"Transaction {current.transaction_id} is {current.status.value}, only pending transactions can fail"
            )

        now = self.clock.now()
        current.status = TransactionStatus.FAILED
        current.failure_reason = (reason or "")[:FAILURE_REASON_MAX_LENGTH]
        current.processed_at = now
        current.updated_at = now
        with self.storage.atomic():
            self._save_transaction(current)
            self.audit_trail.log_event(
                event_type=AuditEventType.TRANSACTION_FAILED,
                entity_type="transaction",
                entity_id=current.id,
                metadata={
                    "transaction_id": current.transaction_id,
                    "reason": current.failure_reason
                }
            )

        log_action(
            self.logger, "warning", f"Transaction failed: {current.failure_reason}",
            user_id=current.initiated_by, action="fail_transaction",
            resource=f"transaction:{current.transaction_id}"
        )

        return current

    def reverse(
        self,
        transaction: Transaction,
        reason: str,
        channel: TransactionChannel = TransactionChannel.SYSTEM,
        from_balance: Optional[Money] = None,
        to_balance: Optional[Money] = None,
        initiated_by: Optional[str] = None
    ) -> Transaction:
        """
        Record the reversal of a completed transaction

        Creates a completed REVERSAL record with the legs swapped and links it
        to the original, which becomes REVERSED. Balances are not touched here.

        Args:
            from_balance / to_balance: Snapshots for the reversal's own legs

        Returns:
            The reversal Transaction

        Raises:
            InvalidState: If the original is not completed
        """
        original = self.get_transaction(transaction.id)
        if not original.is_completed:
            raise InvalidState(
                f"Transaction {original.transaction_id} is {original.status.value}, only completed transactions can be reversed"
            )

        with self.storage.atomic():
            reversal = self.create(
                transaction_type=TransactionType.REVERSAL,
                amount=original.amount,
                from_account_id=original.to_account_id,
                to_account_id=original.from_account_id,
                from_account_number=original.to_account_number,
                to_account_number=original.from_account_number,
                description=f"Reversal of {original.transaction_id}: {reason}",
                reference=original.transaction_id,
                channel=channel,
                metadata={"reversal_reason": reason},
                initiated_by=initiated_by
            )
            reversal.original_transaction_id = original.id
            self._save_transaction(reversal)
            reversal = self.complete(reversal, from_balance=from_balance, to_balance=to_balance)

            original.status = TransactionStatus.REVERSED
            original.reversal_transaction_id = reversal.id
            original.updated_at = self.clock.now()
            self._save_transaction(original)

            self.audit_trail.log_event(
                event_type=AuditEventType.TRANSACTION_REVERSED,
                entity_type="transaction",
                entity_id=original.id,
                metadata={
                    "transaction_id": original.transaction_id,
                    "reversal_transaction_id": reversal.transaction_id,
                    "reason": reason
                },
                user_id=initiated_by
            )

        log_action(
            self.logger, "info", f"Transaction reversed: {reason}",
            user_id=initiated_by, action="reverse_transaction",
            resource=f"transaction:{original.transaction_id}",
            extra={"reversal_transaction_id": reversal.transaction_id}
        )

        return reversal

    def get_transaction(self, transaction_id: str) -> Transaction:
        """Get transaction by internal id"""
        data = self.storage.load(self.table_name, transaction_id)
        if not data:
            raise NotFound(f"Transaction {transaction_id} not found")
        return self._transaction_from_dict(data)

    def get_by_transaction_id(self, txn_id: str) -> Transaction:
        """Get transaction by its TXN... business identifier"""
        found = self.storage.find(self.table_name, {"transaction_id": txn_id})
        if not found:
            raise NotFound(f"Transaction {txn_id} not found")
        return self._transaction_from_dict(found[0])

    def get_account_transactions(
        self,
        account_id: str,
        status: Optional[TransactionStatus] = None
    ) -> List[Transaction]:
        """
        All transactions touching an account, newest first

        Args:
            account_id: Internal account id (either leg)
            status: Optional status filter
        """
        records = {}
        for leg in ("from_account_id", "to_account_id"):
            filters = {leg: account_id}
            if status:
                filters["status"] = status.value
            for data in self.storage.find(self.table_name, filters):
                records[data["id"]] = data

        transactions = [self._transaction_from_dict(data) for data in records.values()]
        transactions.sort(key=lambda t: t.created_at, reverse=True)
        return transactions

    def _save_transaction(self, transaction: Transaction) -> None:
        self.storage.save(self.table_name, transaction.id, transaction.to_dict())

    def _transaction_from_dict(self, data: Dict) -> Transaction:
        def optional_money(key: str) -> Optional[Money]:
            return money(data[key]) if data.get(key) is not None else None

        return Transaction(
            id=data['id'],
            created_at=Transaction.parse_datetime(data['created_at']),
            updated_at=Transaction.parse_datetime(data['updated_at']),
            transaction_id=data['transaction_id'],
            transaction_type=TransactionType(data['transaction_type']),
            amount=money(data['amount']),
            from_account_id=data.get('from_account_id'),
            to_account_id=data.get('to_account_id'),
            from_account_number=data.get('from_account_number'),
            to_account_number=data.get('to_account_number'),
            description=data.get('description', ""),
            reference=data.get('reference'),
            channel=TransactionChannel(data['channel']),
            status=TransactionStatus(data['status']),
            transaction_fee=money(data.get('transaction_fee', "0")),
            gst=money(data.get('gst', "0")),
            from_balance_after=optional_money('from_balance_after'),
            to_balance_after=optional_money('to_balance_after'),
            processed_at=Transaction.parse_datetime(data.get('processed_at')),
            failure_reason=data.get('failure_reason'),
            reversal_transaction_id=data.get('reversal_transaction_id'),
            original_transaction_id=data.get('original_transaction_id'),
            initiated_by=data.get('initiated_by'),
            metadata=data.get('metadata') or {}
        )
