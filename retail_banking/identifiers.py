"""
Identifier Generation

Human-readable business identifiers checked against storage for collisions:

    account number   100XXXXXXX (savings) / 200XXXXXXX (current)
    transaction id   TXN + YYYYMMDD + 6 digits
    FD / RD number   YYYY + 6 digits

The check is advisory; the unique constraint registered on each field is what
actually rejects a duplicate that slips through a race.
"""

import random
from enum import Enum
from typing import Optional

from .clock import Clock, SystemClock
from .errors import IdentifierExhausted
from .logging_config import get_logger, log_action
from .storage import StorageInterface


logger = get_logger("retail_banking.identifiers")


class IdentifierKind(Enum):
    """Kinds of identifier with their backing table and field"""
    ACCOUNT = ("accounts", "account_number")
    TRANSACTION = ("transactions", "transaction_id")
    FIXED_DEPOSIT = ("fixed_deposits", "fd_number")
    RECURRING_DEPOSIT = ("recurring_deposits", "rd_number")

    def __init__(self, table: str, field_name: str):
        self.table = table
        self.field_name = field_name


ACCOUNT_PREFIXES = {
    "savings": "100",
    "current": "200",
}


class IdentifierGenerator:
    """Collision-checked identifier generator with bounded retries"""

    def __init__(self, storage: StorageInterface, clock: Optional[Clock] = None,
                 rng: Optional[random.Random] = None, max_attempts: int = 10):
        self.storage = storage
        self.clock = clock or SystemClock()
        self.rng = rng or random.SystemRandom()
        self.max_attempts = max_attempts

    def _digits(self, count: int) -> str:
        return "".join(str(self.rng.randint(0, 9)) for _ in range(count))

    def _candidate(self, kind: IdentifierKind, account_type: Optional[str]) -> str:
        now = self.clock.now()
        if kind is IdentifierKind.ACCOUNT:
            if account_type not in ACCOUNT_PREFIXES:
                raise ValueError(f"Unknown account type for account number: {account_type}")
            return ACCOUNT_PREFIXES[account_type] + self._digits(7)
        if kind is IdentifierKind.TRANSACTION:
            return "TXN" + now.strftime("%Y%m%d") + self._digits(6)
        return now.strftime("%Y") + self._digits(6)

    def generate(self, kind: IdentifierKind, account_type: Optional[str] = None) -> str:
        """
        Generate an identifier not yet present in the backing table

        Args:
            kind: Which identifier to generate
            account_type: "savings" or "current" (ACCOUNT kind only)

        Raises:
            IdentifierExhausted: If every attempt collided
        """
        for attempt in range(1, self.max_attempts + 1):
            candidate = self._candidate(kind, account_type)
            if not self.storage.field_exists(kind.table, kind.field_name, candidate):
                return candidate
            logger.debug(f"{kind.name} identifier collision on attempt {attempt}: {candidate}")

        log_action(logger, "error", f"Exhausted {self.max_attempts} attempts generating {kind.name} identifier",
                   action="identifier_exhausted", resource=kind.table)
        raise IdentifierExhausted(
            f"Could not generate a unique {kind.name.lower()} identifier after {self.max_attempts} attempts"
        )
