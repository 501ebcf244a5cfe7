"""
Test suite for currency module

Tests Money rounding, arithmetic and conversion helpers. All monetary
calculations must use Decimal precision.
"""

import pytest
from decimal import Decimal

from retail_banking.currency import Money, Currency, to_decimal, round_rupees, money


class TestMoney:
    """Test Money class operations"""

    def test_money_creation_rounds_to_paise(self):
        amount = Money(Decimal('100.555'))
        assert amount.amount == Decimal('100.56')
        assert amount.currency == Currency.INR

        assert Money(Decimal('100.554')).amount == Decimal('100.55')

    def test_money_from_non_decimal(self):
        """Ints and strings are converted without float artefacts"""
        assert Money(10).amount == Decimal('10.00')
        assert Money('0.1').amount + Money('0.2').amount == Decimal('0.30')

    def test_money_arithmetic(self):
        a = money('100.50')
        b = money('50.25')

        assert (a + b).amount == Decimal('150.75')
        assert (a - b).amount == Decimal('50.25')
        assert (a * Decimal('2')).amount == Decimal('201.00')
        assert (-a).amount == Decimal('-100.50')
        assert abs(-a) == a

    def test_money_comparison(self):
        assert money(100) > money(50)
        assert money(50) <= money(50)
        assert money(0).is_zero()
        assert money(-1).is_negative()
        assert money(1).is_positive()
        assert money(100) != Decimal('100')

    def test_to_string(self):
        assert money('1234567.5').to_string() == "INR 1,234,567.50"


class TestHelpers:
    """Test conversion and rounding helpers"""

    def test_to_decimal(self):
        assert to_decimal("12.345") == Decimal("12.345")
        assert to_decimal(7) == Decimal("7")
        assert to_decimal(Decimal("1.1")) == Decimal("1.1")

    def test_to_decimal_rejects_garbage(self):
        with pytest.raises(ValueError):
            to_decimal("not-a-number")
        with pytest.raises(ValueError):
            to_decimal("Infinity")
        with pytest.raises(ValueError):
            to_decimal(Decimal("NaN"))

    def test_round_rupees_half_up(self):
        assert round_rupees(Decimal("125144.50")) == Decimal("125145")
        assert round_rupees(Decimal("125144.49")) == Decimal("125144")
        assert round_rupees(Decimal("0.5")) == Decimal("1")
