"""
Tests for business identifier generation
"""

import random
import re
import pytest
from datetime import datetime, timezone

from retail_banking.clock import ManualClock
from retail_banking.errors import IdentifierExhausted
from retail_banking.identifiers import IdentifierGenerator, IdentifierKind
from retail_banking.storage import InMemoryStorage


class FixedRandom(random.Random):
    """Always returns the same digit"""

    def randint(self, a, b):
        return 7


class TestIdentifierGenerator:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.clock = ManualClock(datetime(2024, 3, 5, 9, 30, tzinfo=timezone.utc))
        self.generator = IdentifierGenerator(self.storage, self.clock, random.Random(1234))

    def test_account_numbers(self):
        savings = self.generator.generate(IdentifierKind.ACCOUNT, "savings")
        current = self.generator.generate(IdentifierKind.ACCOUNT, "current")

        assert re.fullmatch(r"100\d{7}", savings)
        assert re.fullmatch(r"200\d{7}", current)

    def test_account_number_needs_type(self):
        with pytest.raises(ValueError):
            self.generator.generate(IdentifierKind.ACCOUNT)

    def test_transaction_id_embeds_date(self):
        txn_id = self.generator.generate(IdentifierKind.TRANSACTION)
        assert re.fullmatch(r"TXN20240305\d{6}", txn_id)

    def test_deposit_numbers_embed_year(self):
        assert re.fullmatch(r"2024\d{6}", self.generator.generate(IdentifierKind.FIXED_DEPOSIT))
        assert re.fullmatch(r"2024\d{6}", self.generator.generate(IdentifierKind.RECURRING_DEPOSIT))

    def test_collision_exhausts_after_bounded_attempts(self):
        generator = IdentifierGenerator(self.storage, self.clock, FixedRandom(), max_attempts=3)
        taken = generator.generate(IdentifierKind.FIXED_DEPOSIT)
        self.storage.save("fixed_deposits", "fd1", {"id": "fd1", "fd_number": taken})

        with pytest.raises(IdentifierExhausted):
            generator.generate(IdentifierKind.FIXED_DEPOSIT)

    def test_collision_retries_with_new_suffix(self):
        first = IdentifierGenerator(self.storage, self.clock, random.Random(99)).generate(
            IdentifierKind.RECURRING_DEPOSIT
        )
        self.storage.save("recurring_deposits", "rd1", {"id": "rd1", "rd_number": first})

        second = IdentifierGenerator(self.storage, self.clock, random.Random(99)).generate(
            IdentifierKind.RECURRING_DEPOSIT
        )
        assert second != first
