"""
Recurring Deposit Engine

Fixed monthly installments debited from a source account for ``tenure``
months. Each installment compounds monthly until maturity, so

    maturity = sum(monthly * (1 + rate/1200) ** (tenure - i) for i in 0..tenure-1)

rounded to whole rupees. Late installments carry a penalty of 10 per overdue
day capped at 10% of the monthly amount; accumulated penalties are deducted
from the maturity payout.

The InstallmentScheduler owns the per-RD schedule: one row per installment,
unique on (rd id, installment number).
"""

from decimal import Decimal
from datetime import datetime
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union
from enum import Enum
import uuid

from .accounts import Account, AccountManager
from .audit import AuditTrail, AuditEventType
from .clock import Clock, SystemClock, add_months
from .config import BankConfig, get_config
from .currency import Money, money, round_rupees
from .deposits import Nominee, SweepOutcome, elapsed_seconds, SECONDS_PER_DAY
from .errors import (
    BankingError, BusinessRuleViolation, InvalidAmount, InvalidState, InvalidTenure,
    NotFound, PaymentFailed, PrematureClosureNotAllowed, StateConflict, TransactionDenied,
    ValidationError
)
from .identifiers import IdentifierGenerator, IdentifierKind
from .locking import UnitOfWork
from .logging_config import get_logger, log_action
from .rates import RateTable
from .storage import StorageInterface, StorageRecord
from .transactions import TransactionChannel, TransactionLedger, TransactionType


class RecurringDepositStatus(Enum):
    ACTIVE = "active"
    MATURED = "matured"
    CLOSED = "closed"
    DEFAULTED = "defaulted"


class InstallmentStatus(Enum):
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"
    DEFAULTED = "defaulted"


class PaymentMethod(Enum):
    AUTO_DEBIT = "auto_debit"
    MANUAL = "manual"
    CASH = "cash"
    CHEQUE = "cheque"
    ONLINE = "online"


UNPAID_STATUSES = (InstallmentStatus.PENDING, InstallmentStatus.OVERDUE)


@dataclass
class AutoDebitSettings:
    enabled: bool = True
    failure_count: int = 0
    last_failure_date: Optional[datetime] = None
    last_failure_reason: Optional[str] = None


@dataclass
class RDMaturityDetails:
    processed_date: datetime
    credited_account_id: str
    transaction_id: str
    total_interest_earned: Money


@dataclass
class RDClosureDetails:
    closure_date: datetime
    reason: str
    penalty_applied: Money
    net_amount: Money
    transaction_id: str


@dataclass
class Installment(StorageRecord):
    """One scheduled monthly payment"""
    rd_id: str
    installment_number: int
    due_date: datetime
    amount: Money
    installment_key: str = ""
    penalty_amount: Money = field(default_factory=Money.zero)
    total_amount: Optional[Money] = None
    status: InstallmentStatus = InstallmentStatus.PENDING
    paid_date: Optional[datetime] = None
    transaction_id: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None

    def __post_init__(self):
        if not self.installment_key:
            self.installment_key = f"{self.rd_id}:{self.installment_number}"

    @property
    def is_unpaid(self) -> bool:
        return self.status in UNPAID_STATUSES


@dataclass
class RecurringDeposit(StorageRecord):
    """
    Recurring deposit contract
    """
    rd_number: str
    customer_id: str
    source_account_id: str
    source_account_number: str
    monthly_amount: Money
    interest_rate: Decimal
    tenure: int
    start_date: datetime
    maturity_date: datetime
    maturity_amount: Money
    next_due_date: Optional[datetime]
    nominee: Optional[Nominee] = None
    auto_debit: AutoDebitSettings = field(default_factory=AutoDebitSettings)
    status: RecurringDepositStatus = RecurringDepositStatus.ACTIVE
    installments_paid: int = 0
    total_deposited: Money = field(default_factory=Money.zero)
    penalty_amount: Money = field(default_factory=Money.zero)
    maturity_details: Optional[RDMaturityDetails] = None
    closure_details: Optional[RDClosureDetails] = None

    @property
    def is_active(self) -> bool:
        return self.status == RecurringDepositStatus.ACTIVE

    @property
    def expected_total_deposit(self) -> Money:
        return self.monthly_amount * Decimal(self.tenure)

    def is_overdue(self, now: datetime) -> bool:
        return self.is_active and self.next_due_date is not None and now > self.next_due_date


@dataclass
class InstallmentResult:
    """Outcome of a paid installment"""
    installment_number: int
    amount_paid: Money
    penalty_amount: Money
    transaction_id: str
    next_due_date: Optional[datetime]
    matured: bool = False


def calculate_maturity_amount(monthly_amount: Money, rate: Decimal, tenure: int) -> Money:
    monthly_rate = rate / Decimal("1200")
    total = sum(
        (monthly_amount.amount * (1 + monthly_rate) ** (tenure - i) for i in range(tenure)),
        Decimal("0")
    )
    return money(round_rupees(total))


class InstallmentScheduler:
    """Creates and tracks the installment schedule of each RD"""

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail,
                 clock: Optional[Clock] = None):
        self.storage = storage
        self.audit_trail = audit_trail
        self.clock = clock or SystemClock()
        self.table_name = "rd_installments"

        self.storage.add_unique_constraint(self.table_name, "installment_key")

    def create_schedule(self, rd_id: str, amount: Money, start: datetime, tenure: int) -> List[Installment]:
        """
        Persist ``tenure`` pending installments due start + i months, each
        clamped to month end from the original start day
        """
        now = self.clock.now()
        schedule = []
        with self.storage.atomic():
            for i in range(tenure):
                installment = Installment(
                    id=str(uuid.uuid4()),
                    created_at=now,
                    updated_at=now,
                    rd_id=rd_id,
                    installment_number=i + 1,
                    due_date=add_months(start, i),
                    amount=amount
                )
                self._save(installment)
                schedule.append(installment)
        return schedule

    def get_schedule(self, rd_id: str) -> List[Installment]:
        schedule = [self._from_dict(data) for data in self.storage.find(self.table_name, {"rd_id": rd_id})]
        schedule.sort(key=lambda i: i.installment_number)
        return schedule

    def next_unpaid(self, rd_id: str) -> Optional[Installment]:
        for installment in self.get_schedule(rd_id):
            if installment.is_unpaid:
                return installment
        return None

    def mark_paid(self, installment: Installment, paid_date: datetime, penalty: Money,
                  transaction_id: str, method: PaymentMethod) -> Installment:
        if not installment.is_unpaid:
            raise InvalidState(f"Installment {installment.installment_number} is already {installment.status.value}")

        installment.status = InstallmentStatus.PAID
        installment.paid_date = paid_date
        installment.penalty_amount = penalty
        installment.total_amount = installment.amount + penalty
        installment.transaction_id = transaction_id
        installment.payment_method = method
        installment.updated_at = self.clock.now()
        self._save(installment)
        return installment

    def mark_overdue(self, now: datetime, rd_id: Optional[str] = None) -> List[Installment]:
        """Flag pending installments whose due date has passed; they stay payable"""
        filters = {"status": InstallmentStatus.PENDING.value}
        if rd_id:
            filters["rd_id"] = rd_id

        flagged = []
        with self.storage.atomic():
            for data in self.storage.find(self.table_name, filters):
                installment = self._from_dict(data)
                if installment.due_date >= now:
                    continue
                installment.status = InstallmentStatus.OVERDUE
                installment.updated_at = now
                self._save(installment)
                self.audit_trail.log_event(
                    event_type=AuditEventType.RD_INSTALLMENT_OVERDUE,
                    entity_type="rd_installment",
                    entity_id=installment.id,
                    metadata={
                        "rd_id": installment.rd_id,
                        "installment_number": installment.installment_number,
                        "due_date": installment.due_date
                    }
                )
                flagged.append(installment)
        return flagged

    def _save(self, installment: Installment) -> None:
        self.storage.save(self.table_name, installment.id, installment.to_dict())

    def _from_dict(self, data: Dict) -> Installment:
        parse = Installment.parse_datetime
        return Installment(
            id=data['id'],
            created_at=parse(data['created_at']),
            updated_at=parse(data['updated_at']),
            rd_id=data['rd_id'],
            installment_number=data['installment_number'],
            due_date=parse(data['due_date']),
            amount=money(data['amount']),
            installment_key=data['installment_key'],
            penalty_amount=money(data.get('penalty_amount', "0")),
            total_amount=money(data['total_amount']) if data.get('total_amount') else None,
            status=InstallmentStatus(data['status']),
            paid_date=parse(data.get('paid_date')),
            transaction_id=data.get('transaction_id'),
            payment_method=PaymentMethod(data['payment_method']) if data.get('payment_method') else None
        )


class RecurringDepositEngine:
    """
    Creates recurring deposits and drives installments, maturity and closure
    """

    def __init__(
        self,
        storage: StorageInterface,
        accounts: AccountManager,
        ledger: TransactionLedger,
        audit_trail: AuditTrail,
        id_generator: IdentifierGenerator,
        uow: UnitOfWork,
        rate_table: RateTable,
        scheduler: Optional[InstallmentScheduler] = None,
        clock: Optional[Clock] = None,
        config: Optional[BankConfig] = None
    ):
        self.storage = storage
        self.accounts = accounts
        self.ledger = ledger
        self.audit_trail = audit_trail
        self.id_generator = id_generator
        self.uow = uow
        self.rate_table = rate_table
        self.clock = clock or SystemClock()
        self.scheduler = scheduler or InstallmentScheduler(storage, audit_trail, self.clock)
        self.config = config or get_config()
        self.table_name = "recurring_deposits"
        self.logger = get_logger("retail_banking.recurring_deposits")

        self.storage.add_unique_constraint(self.table_name, "rd_number")

    def calculate_penalty(self, monthly_amount: Money, due_date: datetime, payment_date: datetime) -> Money:
        """10 per whole overdue day, capped at 10% of the monthly amount"""
        if payment_date <= due_date:
            return Money.zero()
        overdue_days = int(elapsed_seconds(due_date, payment_date) // SECONDS_PER_DAY)
        by_days = money(self.config.rd_penalty_per_day * overdue_days)
        cap = monthly_amount * self.config.rd_penalty_cap_rate
        return min(by_days, cap)

    def create(
        self,
        source_account_number: str,
        monthly_amount: Union[Money, Decimal, int, str],
        tenure: int,
        nominee: Union[Nominee, Dict[str, Any], None] = None,
        auto_debit_enabled: bool = True,
        initiated_by: Optional[str] = None
    ) -> RecurringDeposit:
        """
        Open a recurring deposit and pay its first installment

        Everything happens in one unit of work: if the first installment
        cannot be paid no RD, schedule or transaction is left behind.

        Raises:
            InvalidAmount: Monthly amount outside the allowed range
            InvalidTenure: Tenure below the lowest rate band or above the maximum
            NotFound / StateConflict: Source account unusable
            TransactionDenied: Source cannot cover one installment
            PaymentFailed: First installment debit failed
        """
        try:
            monthly_amount = monthly_amount if isinstance(monthly_amount, Money) else money(monthly_amount)
        except ValueError as e:
            raise InvalidAmount(str(e)) from e
        if monthly_amount.amount < self.config.rd_min_installment:
            raise InvalidAmount(
                f"Minimum RD amount is {money(self.config.rd_min_installment).to_string()} per month"
            )
        if monthly_amount.amount > self.config.rd_max_installment:
            raise InvalidAmount(
                f"Maximum RD amount is {money(self.config.rd_max_installment).to_string()} per month"
            )

        tenure = int(tenure)
        if tenure > self.config.rd_max_tenure:
            raise InvalidTenure(f"Maximum tenure is {self.config.rd_max_tenure} months")
        rate = self.rate_table.resolve(tenure)
        nominee = Nominee.from_value(nominee)

        source = self._source_account(source_account_number)

        # The RD lock is held from the start because paying the first
        # installment re-enters it inside this unit
        rd_number = self.id_generator.generate(IdentifierKind.RECURRING_DEPOSIT)
        with self.uow(source.id, f"rd:{rd_number}"):
            decision = self.accounts.can_transact(self.accounts.get_account(source.id), monthly_amount)
            if not decision.allowed:
                raise TransactionDenied(decision.reason)

            now = self.clock.now()
            rd = RecurringDeposit(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                rd_number=rd_number,
                customer_id=source.customer_id,
                source_account_id=source.id,
                source_account_number=source.account_number,
                monthly_amount=monthly_amount,
                interest_rate=rate,
                tenure=tenure,
                start_date=now,
                maturity_date=add_months(now, tenure),
                maturity_amount=calculate_maturity_amount(monthly_amount, rate, tenure),
                next_due_date=now,
                nominee=nominee,
                auto_debit=AutoDebitSettings(enabled=auto_debit_enabled)
            )
            self._save(rd)
            self.scheduler.create_schedule(rd.id, monthly_amount, now, tenure)

            self.audit_trail.log_event(
                event_type=AuditEventType.RD_CREATED,
                entity_type="recurring_deposit",
                entity_id=rd.id,
                metadata={
                    "rd_number": rd.rd_number,
                    "monthly_amount": monthly_amount.amount,
                    "rate": rate,
                    "tenure": tenure,
                    "maturity_amount": rd.maturity_amount.amount
                },
                user_id=initiated_by
            )

            self.process_installment(rd.rd_number, payment_date=now, method=PaymentMethod.AUTO_DEBIT)
            rd = self.get_recurring_deposit(rd.rd_number)

        log_action(
            self.logger, "info", f"Recurring deposit created: {monthly_amount.to_string()} x {tenure}",
            user_id=initiated_by, action="rd_created",
            resource=f"rd:{rd.rd_number}",
            extra={"rate": str(rate), "maturity_amount": str(rd.maturity_amount.amount)}
        )
        return rd

    def process_installment(
        self,
        rd_number: str,
        payment_date: Optional[datetime] = None,
        method: Union[PaymentMethod, str] = PaymentMethod.AUTO_DEBIT
    ) -> InstallmentResult:
        """
        Pay the next unpaid installment, with the late penalty if overdue

        A denied debit increments the auto-debit failure count and records
        the reason and date; nothing else changes. Paying the last
        installment processes maturity in the same unit of work.

        Raises:
            InvalidState: RD not active or nothing left to pay
            PaymentFailed: Source account cannot cover monthly + penalty
        """
        try:
            method = PaymentMethod(method.value if isinstance(method, PaymentMethod) else method)
        except ValueError:
            raise ValidationError(f"Unknown payment method: {method}")
        rd = self.get_recurring_deposit(rd_number)

        # Locks stay held across the failure record and the payment unit
        with self.uow.lock_manager.acquire(f"rd:{rd_number}", rd.source_account_id):
            rd = self.get_recurring_deposit(rd_number)
            if not rd.is_active:
                raise InvalidState("RD is not active")
            installment = self.scheduler.next_unpaid(rd.id)
            if installment is None:
                raise InvalidState("All installments have been paid")

            payment_date = payment_date or self.clock.now()
            penalty = self.calculate_penalty(rd.monthly_amount, rd.next_due_date, payment_date)
            total = rd.monthly_amount + penalty

            source = self.accounts.get_account(rd.source_account_id)
            decision = self.accounts.can_transact(source, total)
            if not decision.allowed:
                self._record_failure(rd, decision.reason, payment_date)
                raise PaymentFailed(decision.reason)

            with self.uow(f"rd:{rd_number}", rd.source_account_id):
                debited = self.accounts.debit(source.id, total, reference=rd.rd_number)

                description = f"RD Installment payment for RD-{rd.rd_number}"
                if penalty.is_positive():
                    description += f" (includes penalty: {penalty.to_string()})"
                transaction = self.ledger.create(
                    transaction_type=TransactionType.RD_DEPOSIT,
                    amount=total,
                    from_account_id=source.id,
                    from_account_number=source.account_number,
                    description=description,
                    reference=rd.rd_number,
                    channel=TransactionChannel.SYSTEM,
                    metadata={"installment_number": installment.installment_number, "method": method.value}
                )
                self.ledger.complete(transaction, from_balance=debited.balance)

                self.scheduler.mark_paid(installment, payment_date, penalty, transaction.transaction_id, method)

                following = self.scheduler.next_unpaid(rd.id)
                rd.installments_paid += 1
                rd.total_deposited = rd.total_deposited + rd.monthly_amount
                rd.penalty_amount = rd.penalty_amount + penalty
                rd.auto_debit.failure_count = 0
                rd.next_due_date = following.due_date if following else None
                rd.updated_at = self.clock.now()
                self._save(rd)

                self.audit_trail.log_event(
                    event_type=AuditEventType.RD_INSTALLMENT_PAID,
                    entity_type="recurring_deposit",
                    entity_id=rd.id,
                    metadata={
                        "rd_number": rd.rd_number,
                        "installment_number": installment.installment_number,
                        "amount": total.amount,
                        "penalty": penalty.amount,
                        "transaction_id": transaction.transaction_id
                    }
                )

                matured = rd.installments_paid >= rd.tenure
                if matured:
                    self.process_maturity(rd.rd_number)

        log_action(
            self.logger, "info", f"RD installment {installment.installment_number}/{rd.tenure} paid: {total.to_string()}",
            user_id=rd.customer_id, action="rd_installment_paid",
            resource=f"rd:{rd.rd_number}", correlation_id=transaction.transaction_id,
            extra={"penalty": str(penalty.amount), "method": method.value}
        )
        return InstallmentResult(
            installment_number=installment.installment_number,
            amount_paid=total,
            penalty_amount=penalty,
            transaction_id=transaction.transaction_id,
            next_due_date=rd.next_due_date,
            matured=matured
        )

    def process_maturity(self, rd_number: str) -> RecurringDeposit:
        """
        Credit maturity amount less accumulated penalties to the source account

        Raises:
            InvalidState: RD not active
            BusinessRuleViolation: Installments outstanding
        """
        with self._deposit_unit(rd_number):
            rd = self.get_recurring_deposit(rd_number)
            if not rd.is_active:
                raise InvalidState("RD is not active")
            if rd.installments_paid < rd.tenure:
                raise BusinessRuleViolation("RD has not completed all installments")

            payout = rd.maturity_amount - rd.penalty_amount
            transaction_id = self._credit_source(rd, payout, f"Maturity of RD-{rd.rd_number}")

            now = self.clock.now()
            rd.status = RecurringDepositStatus.MATURED
            rd.maturity_details = RDMaturityDetails(
                processed_date=now,
                credited_account_id=rd.source_account_id,
                transaction_id=transaction_id,
                total_interest_earned=payout - rd.total_deposited
            )
            rd.updated_at = now
            self._save(rd)

            self.audit_trail.log_event(
                event_type=AuditEventType.RD_MATURED,
                entity_type="recurring_deposit",
                entity_id=rd.id,
                metadata={
                    "rd_number": rd.rd_number,
                    "payout": payout.amount,
                    "total_interest_earned": rd.maturity_details.total_interest_earned.amount,
                    "transaction_id": transaction_id
                }
            )

        log_action(
            self.logger, "info", f"RD matured: {payout.to_string()}",
            user_id=rd.customer_id, action="rd_matured",
            resource=f"rd:{rd.rd_number}", correlation_id=transaction_id
        )
        return rd

    def close_premature(self, rd_number: str, reason: str = "Customer request") -> RecurringDeposit:
        """
        Refund deposits less a 1% penalty

        Raises:
            InvalidState: RD not active
            PrematureClosureNotAllowed: Fewer than the minimum installments paid
        """
        with self._deposit_unit(rd_number):
            rd = self.get_recurring_deposit(rd_number)
            if not rd.is_active:
                raise InvalidState("RD is not active")
            minimum = self.config.rd_min_installments_for_closure
            if rd.installments_paid < minimum:
                raise PrematureClosureNotAllowed(
                    f"RD can only be closed after paying at least {minimum} installments"
                )

            penalty = money(round_rupees(
                rd.total_deposited.amount * self.config.rd_premature_penalty_rate / Decimal("100")
            ))
            net = rd.total_deposited - penalty
            transaction_id = self._credit_source(rd, net, f"Premature closure of RD-{rd.rd_number}")

            now = self.clock.now()
            rd.status = RecurringDepositStatus.CLOSED
            rd.closure_details = RDClosureDetails(
                closure_date=now,
                reason=reason,
                penalty_applied=penalty,
                net_amount=net,
                transaction_id=transaction_id
            )
            rd.updated_at = now
            self._save(rd)

            self.audit_trail.log_event(
                event_type=AuditEventType.RD_CLOSED,
                entity_type="recurring_deposit",
                entity_id=rd.id,
                metadata={
                    "rd_number": rd.rd_number,
                    "penalty": penalty.amount,
                    "net_amount": net.amount,
                    "reason": reason
                }
            )

        log_action(
            self.logger, "info", f"RD closed prematurely: net {net.to_string()}",
            user_id=rd.customer_id, action="rd_closed",
            resource=f"rd:{rd.rd_number}", correlation_id=transaction_id
        )
        return rd

    def toggle_auto_debit(self, rd_number: str, enabled: bool) -> RecurringDeposit:
        with self._deposit_unit(rd_number):
            rd = self.get_recurring_deposit(rd_number)
            if not rd.is_active:
                raise InvalidState("Can only modify auto-debit for active RDs")

            rd.auto_debit.enabled = bool(enabled)
            if enabled:
                rd.auto_debit.failure_count = 0
            rd.updated_at = self.clock.now()
            self._save(rd)

            self.audit_trail.log_event(
                event_type=AuditEventType.RD_AUTO_DEBIT_CHANGED,
                entity_type="recurring_deposit",
                entity_id=rd.id,
                metadata={"rd_number": rd.rd_number, "enabled": rd.auto_debit.enabled}
            )
        return rd

    def process_auto_due(self) -> List[SweepOutcome]:
        """
        Attempt the due installment of every eligible RD

        Eligible: active, next due date reached, auto-debit enabled and
        fewer consecutive failures than the configured maximum. Each RD runs
        in its own unit; one failure does not stop the sweep.
        """
        now = self.clock.now()
        results = []
        for rd in self._active():
            if rd.next_due_date is None or rd.next_due_date > now:
                continue
            if not rd.auto_debit.enabled or rd.auto_debit.failure_count >= self.config.rd_max_auto_debit_failures:
                continue
            try:
                paid = self.process_installment(rd.rd_number, method=PaymentMethod.AUTO_DEBIT)
                results.append(SweepOutcome(rd.rd_number, True, "Installment paid", {
                    "installment_number": paid.installment_number,
                    "amount_paid": str(paid.amount_paid.amount),
                    "penalty_amount": str(paid.penalty_amount.amount),
                    "transaction_id": paid.transaction_id
                }))
            except BankingError as e:
                log_action(
                    self.logger, "warning", f"RD auto-debit failed: {e.message}",
                    user_id=rd.customer_id, action="rd_auto_debit_failed", resource=f"rd:{rd.rd_number}"
                )
                results.append(SweepOutcome(rd.rd_number, False, e.message))
        return results

    def mark_overdue_installments(self) -> int:
        flagged = self.scheduler.mark_overdue(self.clock.now())
        if flagged:
            log_action(
                self.logger, "info", f"{len(flagged)} RD installments marked overdue",
                action="rd_mark_overdue", resource="rd_installments"
            )
        return len(flagged)

    def get_recurring_deposit(self, rd_number: str) -> RecurringDeposit:
        found = self.storage.find(self.table_name, {"rd_number": rd_number})
        if not found:
            raise NotFound(f"Recurring Deposit {rd_number} not found")
        return self._from_dict(found[0])

    def get_customer_recurring_deposits(self, customer_id: str,
                                        status: Optional[RecurringDepositStatus] = None) -> List[RecurringDeposit]:
        filters = {"customer_id": customer_id}
        if status:
            filters["status"] = status.value
        deposits = [self._from_dict(data) for data in self.storage.find(self.table_name, filters)]
        deposits.sort(key=lambda rd: rd.created_at, reverse=True)
        return deposits

    def get_installments(self, rd_number: str) -> List[Installment]:
        return self.scheduler.get_schedule(self.get_recurring_deposit(rd_number).id)

    def get_overdue_recurring_deposits(self, customer_id: Optional[str] = None) -> List[RecurringDeposit]:
        now = self.clock.now()
        return [
            rd for rd in self._active()
            if rd.is_overdue(now) and (customer_id is None or rd.customer_id == customer_id)
        ]

    def _source_account(self, account_number: str) -> Account:
        try:
            account = self.accounts.get_account_by_number(account_number)
        except NotFound:
            raise NotFound("Source account not found or inactive")
        if not account.is_operational:
            raise StateConflict("Source account not found or inactive")
        return account

    def _deposit_unit(self, rd_number: str):
        """Unit of work over the RD and its source account, locked together up front"""
        rd = self.get_recurring_deposit(rd_number)
        return self.uow(f"rd:{rd_number}", rd.source_account_id)

    def _record_failure(self, rd: RecurringDeposit, reason: str, when: datetime) -> None:
        with self.uow(f"rd:{rd.rd_number}"):
            rd.auto_debit.failure_count += 1
            rd.auto_debit.last_failure_date = when
            rd.auto_debit.last_failure_reason = reason
            rd.updated_at = self.clock.now()
            self._save(rd)

            self.audit_trail.log_event(
                event_type=AuditEventType.RD_INSTALLMENT_FAILED,
                entity_type="recurring_deposit",
                entity_id=rd.id,
                metadata={
                    "rd_number": rd.rd_number,
                    "reason": reason,
                    "failure_count": rd.auto_debit.failure_count
                }
            )

        log_action(
            self.logger, "warning", f"RD installment failed: {reason}",
            user_id=rd.customer_id, action="rd_installment_failed",
            resource=f"rd:{rd.rd_number}",
            extra={"failure_count": rd.auto_debit.failure_count}
        )

    def _credit_source(self, rd: RecurringDeposit, amount: Money, description: str) -> str:
        credited = self.accounts.credit(rd.source_account_id, amount, reference=rd.rd_number)
        transaction = self.ledger.create(
            transaction_type=TransactionType.RD_MATURITY,
            amount=amount,
            to_account_id=rd.source_account_id,
            to_account_number=rd.source_account_number,
            description=description,
            reference=rd.rd_number,
            channel=TransactionChannel.SYSTEM
        )
        self.ledger.complete(transaction, to_balance=credited.balance)
        return transaction.transaction_id

    def _active(self) -> List[RecurringDeposit]:
        return [
            self._from_dict(data)
            for data in self.storage.find(self.table_name, {"status": RecurringDepositStatus.ACTIVE.value})
        ]

    def _save(self, rd: RecurringDeposit) -> None:
        self.storage.save(self.table_name, rd.id, rd.to_dict())

    def _from_dict(self, data: Dict) -> RecurringDeposit:
        parse = RecurringDeposit.parse_datetime

        auto = data.get('auto_debit') or {}
        auto_debit = AutoDebitSettings(
            enabled=auto.get('enabled', True),
            failure_count=auto.get('failure_count', 0),
            last_failure_date=parse(auto.get('last_failure_date')),
            last_failure_reason=auto.get('last_failure_reason')
        )

        maturity = None
        if data.get('maturity_details'):
            m = data['maturity_details']
            maturity = RDMaturityDetails(
                processed_date=parse(m['processed_date']),
                credited_account_id=m['credited_account_id'],
                transaction_id=m['transaction_id'],
                total_interest_earned=money(m['total_interest_earned'])
            )

        closure = None
        if data.get('closure_details'):
            c = data['closure_details']
            closure = RDClosureDetails(
                closure_date=parse(c['closure_date']),
                reason=c['reason'],
                penalty_applied=money(c['penalty_applied']),
                net_amount=money(c['net_amount']),
                transaction_id=c['transaction_id']
            )

        return RecurringDeposit(
            id=data['id'],
            created_at=parse(data['created_at']),
            updated_at=parse(data['updated_at']),
            rd_number=data['rd_number'],
            customer_id=data['customer_id'],
            source_account_id=data['source_account_id'],
            source_account_number=data['source_account_number'],
            monthly_amount=money(data['monthly_amount']),
            interest_rate=Decimal(data['interest_rate']),
            tenure=data['tenure'],
            start_date=parse(data['start_date']),
            maturity_date=parse(data['maturity_date']),
            maturity_amount=money(data['maturity_amount']),
            next_due_date=parse(data.get('next_due_date')),
            nominee=Nominee.from_value(data.get('nominee')),
            auto_debit=auto_debit,
            status=RecurringDepositStatus(data['status']),
            installments_paid=data.get('installments_paid', 0),
            total_deposited=money(data.get('total_deposited', "0")),
            penalty_amount=money(data.get('penalty_amount', "0")),
            maturity_details=maturity,
            closure_details=closure
        )
