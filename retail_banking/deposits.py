"""
Shared Term Deposit Types

Nominee details and sweep outcomes used by both the fixed and recurring
deposit engines, plus the elapsed-time helpers their interest maths uses.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal, ROUND_FLOOR
from enum import Enum
from typing import Any, Dict, Optional, Union

from .errors import ValidationError


# Average month length used for payout periods
AVERAGE_DAYS_PER_MONTH = Decimal("30.44")
SECONDS_PER_DAY = Decimal("86400")


class NomineeRelationship(Enum):
    SPOUSE = "spouse"
    SON = "son"
    DAUGHTER = "daughter"
    FATHER = "father"
    MOTHER = "mother"
    BROTHER = "brother"
    SISTER = "sister"
    OTHER = "other"


@dataclass
class Nominee:
    """Beneficiary of a term deposit"""
    name: str
    relationship: NomineeRelationship
    date_of_birth: Optional[date] = None
    share: int = 100

    def __post_init__(self):
        if isinstance(self.relationship, str):
            try:
                self.relationship = NomineeRelationship(self.relationship)
            except ValueError:
                raise ValidationError(f"Unknown nominee relationship: {self.relationship}")
        if isinstance(self.date_of_birth, str):
            try:
                self.date_of_birth = date.fromisoformat(self.date_of_birth)
            except ValueError:
                raise ValidationError(f"Invalid nominee date of birth: {self.date_of_birth}")

        self.name = (self.name or "").strip()
        if not self.name:
            raise ValidationError("Nominee name is required")

        try:
            self.share = int(self.share)
        except (TypeError, ValueError):
            raise ValidationError(f"Nominee share must be a whole number, got {self.share!r}")
        if not 1 <= self.share <= 100:
            raise ValidationError("Nominee share must be between 1 and 100")

    @classmethod
    def from_value(cls, value: Union['Nominee', Dict[str, Any], None]) -> Optional['Nominee']:
        if value is None or isinstance(value, Nominee):
            return value
        if not isinstance(value, dict):
            raise ValidationError("Nominee must be an object with name and relationship")
        return cls(
            name=value.get("name", ""),
            relationship=value.get("relationship", ""),
            date_of_birth=value.get("date_of_birth"),
            share=value.get("share", 100)
        )


@dataclass
class SweepOutcome:
    """Per-entity result of a batch sweep"""
    reference: str
    success: bool
    message: str = ""
    data: Dict[str, Any] = field(default_factory=dict)


def elapsed_seconds(start: datetime, end: datetime) -> Decimal:
    """Exact elapsed seconds as Decimal (negative if end precedes start)"""
    delta: timedelta = end - start
    return (Decimal(delta.days) * SECONDS_PER_DAY + Decimal(delta.seconds)
            + Decimal(delta.microseconds) / Decimal(1000000))


def whole_average_months(start: datetime, end: datetime) -> int:
    """Whole 30.44-day months between two instants"""
    months = elapsed_seconds(start, end) / (AVERAGE_DAYS_PER_MONTH * SECONDS_PER_DAY)
    return int(months.to_integral_value(rounding=ROUND_FLOOR))
