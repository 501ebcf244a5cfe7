"""
Fixed Deposit Engine

Lump-sum term deposits debited from a source account:

    cumulative    interest compounds monthly and is paid at maturity
    monthly | quarterly | half_yearly | yearly
                  simple interest paid out every period to a payout account,
                  principal returned at maturity

Maturity amount = round(principal * (1 + rate/1200) ** tenure) for cumulative
deposits, else the principal. Premature closure re-prices the deposit at
(rate - 1)% over the elapsed fraction of the tenure and charges 1% of that
value as penalty.
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
from .deposits import Nominee, SweepOutcome, elapsed_seconds, whole_average_months, SECONDS_PER_DAY
from .errors import (
    BankingError, BusinessRuleViolation, InvalidAmount, InvalidState, InvalidTenure,
    NotFound, PrematureClosureNotAllowed, StateConflict, ValidationError
)
from .identifiers import IdentifierGenerator, IdentifierKind
from .locking import UnitOfWork
from .logging_config import get_logger, log_action
from .rates import RateTable
from .storage import StorageInterface, StorageRecord
from .transactions import TransactionChannel, TransactionLedger, TransactionType


class PayoutMode(Enum):
    CUMULATIVE = "cumulative"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    HALF_YEARLY = "half_yearly"
    YEARLY = "yearly"

    @property
    def period_months(self) -> int:
        return PAYOUT_PERIODS[self]


PAYOUT_PERIODS = {
    PayoutMode.CUMULATIVE: 0,
    PayoutMode.MONTHLY: 1,
    PayoutMode.QUARTERLY: 3,
    PayoutMode.HALF_YEARLY: 6,
    PayoutMode.YEARLY: 12,
}


class FixedDepositStatus(Enum):
    ACTIVE = "active"
    MATURED = "matured"
    CLOSED = "closed"
    PREMATURE_CLOSED = "premature_closed"


@dataclass
class PrematureClosureDetails:
    closure_date: datetime
    penalty_rate: Decimal
    penalty_amount: Money
    net_amount: Money
    reason: str


@dataclass
class MaturityDetails:
    processed_date: datetime
    credited_account_id: str
    transaction_id: str


@dataclass
class PayoutResult:
    """Outcome of an interest payout attempt"""
    paid: bool
    amount: Optional[Money] = None
    transaction_id: Optional[str] = None
    message: str = ""


@dataclass
class FixedDeposit(StorageRecord):
    """
    Fixed deposit contract
    """
    fd_number: str
    customer_id: str
    source_account_id: str
    source_account_number: str
    principal: Money
    interest_rate: Decimal
    tenure: int
    payout_mode: PayoutMode
    start_date: datetime
    maturity_date: datetime
    maturity_amount: Money
    nominee: Optional[Nominee] = None
    payout_account_id: Optional[str] = None
    payout_account_number: Optional[str] = None
    status: FixedDepositStatus = FixedDepositStatus.ACTIVE
    total_interest_paid: Money = field(default_factory=Money.zero)
    last_interest_payout_date: Optional[datetime] = None
    deposit_transaction_id: Optional[str] = None
    premature_closure: Optional[PrematureClosureDetails] = None
    maturity_details: Optional[MaturityDetails] = None

    @property
    def is_active(self) -> bool:
        return self.status == FixedDepositStatus.ACTIVE

    @property
    def total_interest(self) -> Money:
        """Interest earned over the full tenure at maturity (cumulative) or so far (payout)"""
        if self.payout_mode == PayoutMode.CUMULATIVE:
            return self.maturity_amount - self.principal
        return self.total_interest_paid


def calculate_maturity_amount(principal: Money, rate: Decimal, tenure: int,
                              payout_mode: PayoutMode) -> Money:
    """Monthly compounding for cumulative deposits, principal otherwise"""
    if payout_mode != PayoutMode.CUMULATIVE:
        return principal
    monthly_rate = rate / Decimal("1200")
    return money(round_rupees(principal.amount * (1 + monthly_rate) ** tenure))


class FixedDepositEngine:
    """
    Creates fixed deposits and drives payouts, maturity and premature closure
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
        self.config = config or get_config()
        self.table_name = "fixed_deposits"
        self.logger = get_logger("retail_banking.fixed_deposits")

        self.storage.add_unique_constraint(self.table_name, "fd_number")

    def _operational_account(self, account_number: str, role: str) -> Account:
        try:
            account = self.accounts.get_account_by_number(account_number)
        except NotFound:
            raise NotFound(f"{role} account not found or inactive")
        if not account.is_operational:
            raise StateConflict(f"{role} account not found or inactive")
        return account

    def create(
        self,
        source_account_number: str,
        principal: Union[Money, Decimal, int, str],
        tenure: int,
        payout_mode: Union[PayoutMode, str] = PayoutMode.CUMULATIVE,
        payout_account_number: Optional[str] = None,
        nominee: Union[Nominee, Dict[str, Any], None] = None,
        initiated_by: Optional[str] = None
    ) -> FixedDeposit:
        """
        Open a fixed deposit funded from the source account

        Non-cumulative deposits pay interest to ``payout_account_number``,
        or to the source account when none is given.

        Raises:
            InvalidAmount: Principal outside the allowed range
            InvalidTenure: Tenure below the lowest rate band or above the maximum
            ValidationError: Payout account on a cumulative deposit, bad nominee
            NotFound / StateConflict: Source or payout account unusable
            TransactionDenied: Source limits or balance floor
        """
        try:
            principal = principal if isinstance(principal, Money) else money(principal)
        except ValueError as e:
            raise InvalidAmount(str(e)) from e
        if principal.amount < self.config.fd_min_principal:
            raise InvalidAmount(f"Minimum FD amount is {money(self.config.fd_min_principal).to_string()}")
        if principal.amount > self.config.fd_max_principal:
            raise InvalidAmount(f"Maximum FD amount is {money(self.config.fd_max_principal).to_string()}")

        tenure = int(tenure)
        if tenure > self.config.fd_max_tenure:
            raise InvalidTenure(f"Maximum tenure is {self.config.fd_max_tenure} months")
        rate = self.rate_table.resolve(tenure)

        try:
            payout_mode = PayoutMode(payout_mode.value if isinstance(payout_mode, PayoutMode) else payout_mode)
        except ValueError:
            raise ValidationError(f"Unknown interest payout mode: {payout_mode}")

        nominee = Nominee.from_value(nominee)
        source = self._operational_account(source_account_number, "Source")

        payout_account = None
        if payout_mode == PayoutMode.CUMULATIVE:
            if payout_account_number:
                raise ValidationError("Payout account is only used for non-cumulative deposits")
        elif payout_account_number:
            payout_account = self._operational_account(payout_account_number, "Payout")
        else:
            payout_account = source

        with self.uow(source.id, payout_account.id if payout_account else None):
            now = self.clock.now()
            debited = self.accounts.debit(source.id, principal)

            fd = FixedDeposit(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                fd_number=self.id_generator.generate(IdentifierKind.FIXED_DEPOSIT),
                customer_id=source.customer_id,
                source_account_id=source.id,
                source_account_number=source.account_number,
                principal=principal,
                interest_rate=rate,
                tenure=tenure,
                payout_mode=payout_mode,
                start_date=now,
                maturity_date=add_months(now, tenure),
                maturity_amount=calculate_maturity_amount(principal, rate, tenure, payout_mode),
                nominee=nominee,
                payout_account_id=payout_account.id if payout_account else None,
                payout_account_number=payout_account.account_number if payout_account else None
            )

            transaction = self.ledger.create(
                transaction_type=TransactionType.FD_DEPOSIT,
                amount=principal,
                from_account_id=source.id,
                from_account_number=source.account_number,
                description=f"Fixed deposit FD-{fd.fd_number}",
                reference=fd.fd_number,
                channel=TransactionChannel.SYSTEM,
                initiated_by=initiated_by
            )
            self.ledger.complete(transaction, from_balance=debited.balance)
            fd.deposit_transaction_id = transaction.transaction_id
            self._save(fd)

            self.audit_trail.log_event(
                event_type=AuditEventType.FD_CREATED,
                entity_type="fixed_deposit",
                entity_id=fd.id,
                metadata={
                    "fd_number": fd.fd_number,
                    "principal": principal.amount,
                    "rate": rate,
                    "tenure": tenure,
                    "payout_mode": payout_mode.value,
                    "maturity_amount": fd.maturity_amount.amount
                },
                user_id=initiated_by
            )

        log_action(
            self.logger, "info", f"Fixed deposit created: {principal.to_string()} for {tenure} months",
            user_id=initiated_by, action="fd_created",
            resource=f"fd:{fd.fd_number}",
            correlation_id=fd.deposit_transaction_id,
            extra={"rate": str(rate), "payout_mode": payout_mode.value}
        )
        return fd

    def current_value(self, fd: FixedDeposit, at: Optional[datetime] = None) -> Money:
        """
        Premature-closure value: principal compounded monthly at the reduced
        rate over the elapsed fraction of the tenure (fractional periods
        included), rounded to whole rupees.
        """
        if not fd.is_active:
            return fd.principal

        at = at or self.clock.now()
        total = elapsed_seconds(fd.start_date, fd.maturity_date)
        elapsed = max(elapsed_seconds(fd.start_date, at), Decimal("0"))
        completed_tenure = (elapsed / total) * Decimal(fd.tenure)

        reduced_rate = max(fd.interest_rate - self.config.fd_premature_rate_reduction, Decimal("0"))
        monthly_rate = reduced_rate / Decimal("1200")
        return money(round_rupees(fd.principal.amount * (1 + monthly_rate) ** completed_tenure))

    def process_interest_payout(self, fd_number: str) -> PayoutResult:
        """
        Pay one period of simple interest if a full period has elapsed since
        the last payout (or the start date)

        Raises:
            InvalidState: FD not active
            BusinessRuleViolation: Cumulative FD or no payout account
        """
        with self._deposit_unit(fd_number):
            fd = self.get_fixed_deposit(fd_number)
            if not fd.is_active:
                raise InvalidState(f"FD {fd_number} is not active")
            if fd.payout_mode == PayoutMode.CUMULATIVE or not fd.payout_account_id:
                raise BusinessRuleViolation("Interest payout not applicable for cumulative FDs")

            now = self.clock.now()
            period = fd.payout_mode.period_months
            months = whole_average_months(fd.last_interest_payout_date or fd.start_date, now)
            if months < period:
                return PayoutResult(paid=False, message="Interest payout not due yet")

            interest = fd.principal * (fd.interest_rate * Decimal(period) / Decimal("1200"))
            credited = self.accounts.credit(fd.payout_account_id, interest, reference=fd.fd_number)

            transaction = self.ledger.create(
                transaction_type=TransactionType.INTEREST_CREDIT,
                amount=interest,
                to_account_id=fd.payout_account_id,
                to_account_number=fd.payout_account_number,
                description=f"FD Interest payout for FD-{fd.fd_number}",
                reference=fd.fd_number,
                channel=TransactionChannel.SYSTEM
            )
            transaction = self.ledger.complete(transaction, to_balance=credited.balance)

            fd.total_interest_paid = fd.total_interest_paid + interest
            fd.last_interest_payout_date = now
            fd.updated_at = now
            self._save(fd)

            self.audit_trail.log_event(
                event_type=AuditEventType.FD_INTEREST_PAID,
                entity_type="fixed_deposit",
                entity_id=fd.id,
                metadata={
                    "fd_number": fd.fd_number,
                    "amount": interest.amount,
                    "transaction_id": transaction.transaction_id
                }
            )

        log_action(
            self.logger, "info", f"FD interest paid: {interest.to_string()}",
            user_id=fd.customer_id, action="fd_interest_paid",
            resource=f"fd:{fd.fd_number}", correlation_id=transaction.transaction_id
        )
        return PayoutResult(True, interest, transaction.transaction_id, "Interest payout processed successfully")

    def close_premature(self, fd_number: str, reason: str = "Customer request") -> FixedDeposit:
        """
        Close an active FD before maturity and credit the net value to the
        source account

        Raises:
            InvalidState: FD not active
            PrematureClosureNotAllowed: Within the minimum holding period
        """
        with self._deposit_unit(fd_number):
            fd = self.get_fixed_deposit(fd_number)
            if not fd.is_active:
                raise InvalidState(f"FD {fd_number} is not active")

            now = self.clock.now()
            held_days = elapsed_seconds(fd.start_date, now) / SECONDS_PER_DAY
            if held_days < self.config.fd_min_days_before_closure:
                raise PrematureClosureNotAllowed(
                    f"FD can only be closed after {self.config.fd_min_days_before_closure} days from start date"
                )

            value = self.current_value(fd, now)
            penalty_rate = self.config.fd_premature_penalty_rate
            penalty = money(round_rupees(value.amount * penalty_rate / Decimal("100")))
            net = value - penalty

            transaction_id = self._credit_source(fd, net, f"Premature closure of FD-{fd.fd_number}")

            fd.status = FixedDepositStatus.PREMATURE_CLOSED
            fd.premature_closure = PrematureClosureDetails(
                closure_date=now,
                penalty_rate=penalty_rate,
                penalty_amount=penalty,
                net_amount=net,
                reason=reason
            )
            fd.maturity_details = MaturityDetails(now, fd.source_account_id, transaction_id)
            fd.updated_at = now
            self._save(fd)

            self.audit_trail.log_event(
                event_type=AuditEventType.FD_PREMATURE_CLOSED,
                entity_type="fixed_deposit",
                entity_id=fd.id,
                metadata={
                    "fd_number": fd.fd_number,
                    "current_value": value.amount,
                    "penalty": penalty.amount,
                    "net_amount": net.amount,
                    "reason": reason
                }
            )

        log_action(
            self.logger, "info", f"FD closed prematurely: net {net.to_string()}",
            user_id=fd.customer_id, action="fd_premature_closed",
            resource=f"fd:{fd.fd_number}", correlation_id=transaction_id
        )
        return fd

    def process_maturity(self, fd_number: str) -> FixedDeposit:
        """
        Credit the maturity amount to the source account once the maturity
        date has passed

        Raises:
            InvalidState: FD not active
            BusinessRuleViolation: Maturity date not reached
        """
        with self._deposit_unit(fd_number):
            fd = self.get_fixed_deposit(fd_number)
            if not fd.is_active:
                raise InvalidState(f"FD {fd_number} is not active")

            now = self.clock.now()
            if now < fd.maturity_date:
                raise BusinessRuleViolation("FD has not reached maturity date")

            transaction_id = self._credit_source(fd, fd.maturity_amount, f"Maturity of FD-{fd.fd_number}")

            fd.status = FixedDepositStatus.MATURED
            fd.maturity_details = MaturityDetails(now, fd.source_account_id, transaction_id)
            fd.updated_at = now
            self._save(fd)

            self.audit_trail.log_event(
                event_type=AuditEventType.FD_MATURED,
                entity_type="fixed_deposit",
                entity_id=fd.id,
                metadata={
                    "fd_number": fd.fd_number,
                    "maturity_amount": fd.maturity_amount.amount,
                    "transaction_id": transaction_id
                }
            )

        log_action(
            self.logger, "info", f"FD matured: {fd.maturity_amount.to_string()}",
            user_id=fd.customer_id, action="fd_matured",
            resource=f"fd:{fd.fd_number}", correlation_id=transaction_id
        )
        return fd

    def process_due_maturities(self) -> List[SweepOutcome]:
        """Mature every active FD past its maturity date, one unit per FD"""
        now = self.clock.now()
        due = [fd for fd in self._active() if fd.maturity_date <= now]

        results = []
        for fd in due:
            try:
                matured = self.process_maturity(fd.fd_number)
                results.append(SweepOutcome(
                    fd.fd_number, True, "Matured",
                    {"transaction_id": matured.maturity_details.transaction_id,
                     "amount": str(matured.maturity_amount.amount)}
                ))
            except BankingError as e:
                log_action(
                    self.logger, "error", f"FD maturity failed: {e.message}",
                    user_id=fd.customer_id, action="fd_maturity_failed", resource=f"fd:{fd.fd_number}"
                )
                results.append(SweepOutcome(fd.fd_number, False, e.message))
        return results

    def process_due_payouts(self) -> List[SweepOutcome]:
        """Attempt an interest payout for every active non-cumulative FD"""
        results = []
        for fd in self._active():
            if fd.payout_mode == PayoutMode.CUMULATIVE:
                continue
            try:
                payout = self.process_interest_payout(fd.fd_number)
                data = {"transaction_id": payout.transaction_id, "amount": str(payout.amount.amount)} if payout.paid else {}
                results.append(SweepOutcome(fd.fd_number, payout.paid, payout.message, data))
            except BankingError as e:
                log_action(
                    self.logger, "error", f"FD interest payout failed: {e.message}",
                    user_id=fd.customer_id, action="fd_payout_failed", resource=f"fd:{fd.fd_number}"
                )
                results.append(SweepOutcome(fd.fd_number, False, e.message))
        return results

    def get_fixed_deposit(self, fd_number: str) -> FixedDeposit:
        found = self.storage.find(self.table_name, {"fd_number": fd_number})
        if not found:
            raise NotFound(f"Fixed Deposit {fd_number} not found")
        return self._from_dict(found[0])

    def get_customer_fixed_deposits(self, customer_id: str,
                                    status: Optional[FixedDepositStatus] = None) -> List[FixedDeposit]:
        filters = {"customer_id": customer_id}
        if status:
            filters["status"] = status.value
        deposits = [self._from_dict(data) for data in self.storage.find(self.table_name, filters)]
        deposits.sort(key=lambda fd: fd.created_at, reverse=True)
        return deposits

    def _active(self) -> List[FixedDeposit]:
        return [
            self._from_dict(data)
            for data in self.storage.find(self.table_name, {"status": FixedDepositStatus.ACTIVE.value})
        ]

    def _deposit_unit(self, fd_number: str):
        """
        Unit of work holding the FD lock together with the locks of every
        account the FD can credit, so nested account mutations only re-enter
        locks this thread already owns.
        """
        fd = self.get_fixed_deposit(fd_number)
        return self.uow(f"fd:{fd_number}", fd.source_account_id, fd.payout_account_id)

    def _credit_source(self, fd: FixedDeposit, amount: Money, description: str) -> str:
        """Credit the source account via a completed fd_maturity record"""
        credited = self.accounts.credit(fd.source_account_id, amount, reference=fd.fd_number)
        transaction = self.ledger.create(
            transaction_type=TransactionType.FD_MATURITY,
            amount=amount,
            to_account_id=fd.source_account_id,
            to_account_number=fd.source_account_number,
            description=description,
            reference=fd.fd_number,
            channel=TransactionChannel.SYSTEM
        )
        self.ledger.complete(transaction, to_balance=credited.balance)
        return transaction.transaction_id

    def _save(self, fd: FixedDeposit) -> None:
        self.storage.save(self.table_name, fd.id, fd.to_dict())

    def _from_dict(self, data: Dict) -> FixedDeposit:
        parse = FixedDeposit.parse_datetime

        closure = None
        if data.get('premature_closure'):
            c = data['premature_closure']
            closure = PrematureClosureDetails(
                closure_date=parse(c['closure_date']),
                penalty_rate=Decimal(c['penalty_rate']),
                penalty_amount=money(c['penalty_amount']),
                net_amount=money(c['net_amount']),
                reason=c['reason']
            )

        maturity = None
        if data.get('maturity_details'):
            m = data['maturity_details']
            maturity = MaturityDetails(parse(m['processed_date']), m['credited_account_id'], m['transaction_id'])

        return FixedDeposit(
            id=data['id'],
            created_at=parse(data['created_at']),
            updated_at=parse(data['updated_at']),
            fd_number=data['fd_number'],
            customer_id=data['customer_id'],
            source_account_id=data['source_account_id'],
            source_account_number=data['source_account_number'],
            principal=money(data['principal']),
            interest_rate=Decimal(data['interest_rate']),
            tenure=data['tenure'],
            payout_mode=PayoutMode(data['payout_mode']),
            start_date=parse(data['start_date']),
            maturity_date=parse(data['maturity_date']),
            maturity_amount=money(data['maturity_amount']),
            nominee=Nominee.from_value(data.get('nominee')),
            payout_account_id=data.get('payout_account_id'),
            payout_account_number=data.get('payout_account_number'),
            status=FixedDepositStatus(data['status']),
            total_interest_paid=money(data.get('total_interest_paid', "0")),
            last_interest_payout_date=parse(data.get('last_interest_payout_date')),
            deposit_transaction_id=data.get('deposit_transaction_id'),
            premature_closure=closure,
            maturity_details=maturity
        )
