"""
Interest Rate Tables

Static tenure -> rate bands for term deposit products. Bands are half-open:
a band covers tenures from its own minimum up to (not including) the next
band's minimum, and the highest band catches everything above it.
"""

from decimal import Decimal
from dataclasses import dataclass
from typing import Iterable, List, Tuple

from .errors import InvalidTenure


@dataclass(frozen=True)
class RateBand:
    """Tenure band with an annual percentage rate (e.g. 7.5 for 7.5%)"""
    min_tenure: int
    rate: Decimal

    @property
    def description(self) -> str:
        if self.min_tenure % 12 == 0:
            years = self.min_tenure // 12
            return f"{years} year" if years == 1 else f"{years} years"
        return f"{self.min_tenure} months"


class RateTable:
    """
    Ordered set of rate bands for one product

    Bands are evaluated in ascending order of min_tenure and the first
    matching band wins.
    """

    def __init__(self, product: str, bands: Iterable[RateBand]):
        self.product = product
        self.bands: List[RateBand] = sorted(bands, key=lambda band: band.min_tenure)
        if not self.bands:
            raise ValueError(f"{product} rate table must have at least one band")

        tenures = [band.min_tenure for band in self.bands]
        if len(set(tenures)) != len(tenures):
            raise ValueError(f"{product} rate table has duplicate tenure bands")

    @classmethod
    def from_pairs(cls, product: str, pairs: Iterable[Tuple[int, Decimal]]) -> 'RateTable':
        return cls(product, [RateBand(int(tenure), Decimal(str(rate))) for tenure, rate in pairs])

    @property
    def minimum_tenure(self) -> int:
        return self.bands[0].min_tenure

    def resolve(self, tenure: int) -> Decimal:
        """
        Resolve the annual rate for a tenure in months

        Raises:
            InvalidTenure: If tenure is below the lowest band
        """
        if tenure < self.minimum_tenure:
            raise InvalidTenure(
                f"Invalid tenure. Minimum {self.minimum_tenure} months required."
            )

        for index, band in enumerate(self.bands):
            upper = self.bands[index + 1].min_tenure if index + 1 < len(self.bands) else None
            if upper is None or band.min_tenure <= tenure < upper:
                return band.rate

        # Unreachable: the last band has no upper bound
        raise InvalidTenure(f"No rate band for tenure {tenure}")

    def as_list(self) -> List[dict]:
        """Published rate card"""
        return [
            {"tenure": band.min_tenure, "rate": str(band.rate), "description": band.description}
            for band in self.bands
        ]
