"""
Money Movement Service

Transfers, deposits, withdrawals and reversals. Each movement follows the
same shape:

    1. validate accounts and amount, check limits under the account locks
    2. persist a PENDING transaction record on its own
    3. debit / credit / complete inside one unit of work
    4. on any failure the unit rolls back and the record is marked FAILED

so a failed movement leaves balances untouched and a failed record behind.

Account locks are taken before the first storage unit opens and held to
the end, so the pending record can commit on its own without another
thread touching either account in between.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional, Union

from .accounts import Account, AccountManager, positive_amount
from .currency import Money
from .errors import (
    BusinessRuleViolation, InvalidAmount, InvalidState, StateConflict, TransactionDenied,
    ValidationError
)
from .locking import UnitOfWork
from .logging_config import get_logger, log_action
from .transactions import (
    Transaction, TransactionChannel, TransactionLedger, TransactionType
)


REVERSIBLE_TYPES = (
    TransactionType.TRANSFER,
    TransactionType.DEPOSIT,
    TransactionType.WITHDRAWAL,
)


@dataclass
class MovementResult:
    """Outcome of a completed money movement"""
    transaction_id: str
    from_balance: Optional[Money] = None
    to_balance: Optional[Money] = None
    transaction: Optional[Transaction] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "from_balance": str(self.from_balance.amount) if self.from_balance else None,
            "to_balance": str(self.to_balance.amount) if self.to_balance else None,
        }


class MoneyMovementService:
    """
    Composes AccountManager and TransactionLedger into atomic movements
    """

    def __init__(self, accounts: AccountManager, ledger: TransactionLedger, uow: UnitOfWork):
        self.accounts = accounts
        self.ledger = ledger
        self.uow = uow
        self.logger = get_logger("retail_banking.money_movement")

    def _require_operational(self, account: Account, role: str) -> None:
        if account.is_frozen:
            raise StateConflict(f"{role} account is frozen. Please contact support.")
        if not account.is_active:
            raise StateConflict(f"{role} account is inactive")

    def _amount(self, amount: Union[Money, Decimal, int, str], label: str) -> Money:
        try:
            return positive_amount(amount)
        except InvalidAmount:
            raise InvalidAmount(f"{label} amount must be greater than zero")

    def _run(self, transaction: Transaction, lock_keys, body) -> MovementResult:
        """Run body() in one unit of work; mark the pending record failed if it raises"""
        try:
            with self.uow(*lock_keys):
                return body()
        except Exception as e:
            self.ledger.fail(transaction, getattr(e, "message", str(e)))
            log_action(
                self.logger, "warning", f"{transaction.transaction_type.value} failed: {e}",
                user_id=transaction.initiated_by, action=f"{transaction.transaction_type.value}_failed",
                resource=f"transaction:{transaction.transaction_id}"
            )
            raise

    def transfer(
        self,
        from_account_number: str,
        to_account_number: str,
        amount: Union[Money, Decimal, int, str],
        description: str = "",
        channel: TransactionChannel = TransactionChannel.WEB,
        initiated_by: Optional[str] = None
    ) -> MovementResult:
        """
        Move money between two accounts

        Raises:
            InvalidAmount: Amount not positive
            NotFound: Either account missing
            StateConflict: Either account inactive or frozen
            ValidationError: Same account on both legs
            TransactionDenied: Source limits or balance floor
        """
        amount = self._amount(amount, "Transfer")
        source = self.accounts.get_account_by_number(from_account_number)
        destination = self.accounts.get_account_by_number(to_account_number)
        if source.id == destination.id:
            raise ValidationError("Cannot transfer to the same account")

        # Entity locks before any storage unit; state is read under them
        with self.uow.lock_manager.acquire(source.id, destination.id):
            source = self.accounts.get_account(source.id)
            destination = self.accounts.get_account(destination.id)
            self._require_operational(source, "Source")
            self._require_operational(destination, "Beneficiary")

            decision = self.accounts.can_transact(source, amount)
            if not decision.allowed:
                raise TransactionDenied(decision.reason)

            transaction = self.ledger.create(
                transaction_type=TransactionType.TRANSFER,
                amount=amount,
                from_account_id=source.id,
                to_account_id=destination.id,
                description=description or f"Transfer to {destination.account_number}",
                channel=channel,
                initiated_by=initiated_by
            )

            def body() -> MovementResult:
                debited = self.accounts.debit(source.id, amount, reference=transaction.transaction_id)
                credited = self.accounts.credit(destination.id, amount, reference=transaction.transaction_id)
                completed = self.ledger.complete(transaction, debited.balance, credited.balance)
                return MovementResult(completed.transaction_id, debited.balance, credited.balance, completed)

            result = self._run(transaction, (source.id, destination.id), body)

        log_action(
            self.logger, "info", f"Transfer completed: {amount.to_string()}",
            user_id=initiated_by, action="transfer",
            resource=f"account:{source.account_number}",
            correlation_id=result.transaction_id,
            extra={"to_account": destination.account_number}
        )
        return result

    def deposit(
        self,
        account_number: str,
        amount: Union[Money, Decimal, int, str],
        method: str = "cash",
        description: str = "",
        channel: TransactionChannel = TransactionChannel.WEB,
        initiated_by: Optional[str] = None
    ) -> MovementResult:
        """Credit money into an account from outside the bank"""
        amount = self._amount(amount, "Deposit")
        account = self.accounts.get_account_by_number(account_number)

        with self.uow.lock_manager.acquire(account.id):
            account = self.accounts.get_account(account.id)
            self._require_operational(account, "Account")

            transaction = self.ledger.create(
                transaction_type=TransactionType.DEPOSIT,
                amount=amount,
                to_account_id=account.id,
                to_account_number=account.account_number,
                description=description or f"Deposit via {method}",
                channel=channel,
                metadata={"method": method},
                initiated_by=initiated_by
            )

            def body() -> MovementResult:
                credited = self.accounts.credit(account.id, amount, reference=transaction.transaction_id)
                completed = self.ledger.complete(transaction, None, credited.balance)
                return MovementResult(completed.transaction_id, None, credited.balance, completed)

            result = self._run(transaction, (account.id,), body)

        log_action(
            self.logger, "info", f"Deposit completed: {amount.to_string()}",
            user_id=initiated_by, action="deposit",
            resource=f"account:{account.account_number}",
            correlation_id=result.transaction_id
        )
        return result

    def withdraw(
        self,
        account_number: str,
        amount: Union[Money, Decimal, int, str],
        method: str = "cash",
        description: str = "",
        channel: TransactionChannel = TransactionChannel.WEB,
        initiated_by: Optional[str] = None
    ) -> MovementResult:
        """Debit money out of an account"""
        amount = self._amount(amount, "Withdrawal")
        account = self.accounts.get_account_by_number(account_number)

        with self.uow.lock_manager.acquire(account.id):
            account = self.accounts.get_account(account.id)
            self._require_operational(account, "Account")

            transaction = self.ledger.create(
                transaction_type=TransactionType.WITHDRAWAL,
                amount=amount,
                from_account_id=account.id,
                from_account_number=account.account_number,
                description=description or f"Withdrawal via {method}",
                channel=channel,
                metadata={"method": method},
                initiated_by=initiated_by
            )

            decision = self.accounts.can_transact(account, amount)
            if not decision.allowed:
                self.ledger.fail(transaction, decision.reason)
                raise TransactionDenied(decision.reason)

            def body() -> MovementResult:
                debited = self.accounts.debit(account.id, amount, reference=transaction.transaction_id)
                completed = self.ledger.complete(transaction, debited.balance, None)
                return MovementResult(completed.transaction_id, debited.balance, None, completed)

            result = self._run(transaction, (account.id,), body)

        log_action(
            self.logger, "info", f"Withdrawal completed: {amount.to_string()}",
            user_id=initiated_by, action="withdraw",
            resource=f"account:{account.account_number}",
            correlation_id=result.transaction_id
        )
        return result

    def reverse_transaction(
        self,
        transaction_id: str,
        reason: str,
        initiated_by: Optional[str] = None
    ) -> MovementResult:
        """
        Undo a completed transfer, deposit or withdrawal

        Moves the money back and records the reversal in one unit of work.
        The account that gives the money back is re-validated with
        can_transact; a denial leaves everything unchanged.

        Returns:
            MovementResult for the reversal record (its from leg is the
            original's to leg)

        Raises:
            InvalidState: Original is not completed
            BusinessRuleViolation: Transaction type cannot be reversed
            TransactionDenied: Debited leg fails limits or balance floor
        """
        original = self.ledger.get_by_transaction_id(transaction_id)
        if not original.is_completed:
            raise InvalidState(
                f"Transaction {original.transaction_id} is {original.status.value}, only completed transactions can be reversed"
            )
        if original.transaction_type not in REVERSIBLE_TYPES:
            raise BusinessRuleViolation(
                f"{original.transaction_type.value} transactions cannot be reversed"
            )

        debit_leg = original.to_account_id
        credit_leg = original.from_account_id

        with self.uow(debit_leg, credit_leg):
            debited = self.accounts.debit(debit_leg, original.amount, reference=original.transaction_id) if debit_leg else None
            credited = self.accounts.credit(credit_leg, original.amount, reference=original.transaction_id) if credit_leg else None
            reversal = self.ledger.reverse(
                original,
                reason,
                from_balance=debited.balance if debited else None,
                to_balance=credited.balance if credited else None,
                initiated_by=initiated_by
            )

        log_action(
            self.logger, "info", f"Transaction {original.transaction_id} reversed: {reason}",
            user_id=initiated_by, action="reverse_transaction",
            resource=f"transaction:{original.transaction_id}",
            correlation_id=reversal.transaction_id
        )
        return MovementResult(
            reversal.transaction_id,
            debited.balance if debited else None,
            credited.balance if credited else None,
            reversal
        )
