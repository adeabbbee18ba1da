"""Tests for spend filtering."""

import random
from datetime import date, timedelta
from decimal import Decimal

import pytest

from card_statements.models.core import CanonicalTransaction, Category, Direction
from card_statements.utils.spend_filter import CREDITS_REASON, SpendFilter


def canonical(description, amount, direction=Direction.DEBIT, vendor=None, sub=None,
              category=Category.OTHER_OFFLINE_SPENDS, excluded=False, reason=None):
    return CanonicalTransaction(
        date=date(2024, 1, 10),
        description=description,
        amount=Decimal(amount),
        direction=direction,
        category=category,
        vendor_category=vendor,
        vendor_sub_category=sub,
        excluded=excluded,
        exclusion_reason=reason,
    )


DESCRIPTIONS = [
    ("SWIGGY BANGALORE", None), ("PAYMENT RECEIVED THANK YOU", None),
    ("INTEREST CHARGED", "INTEREST"), ("IGST ON FEES", None), ("CROMA RETAIL", None),
    ("FOREIGN CURRENCY TRANSACTION FEE", None), ("CASHBACK CREDIT", None),
    ("EMI PRINCIPAL 3/12", "LOAN"), ("RAMESH STORES", None), ("REVERSAL OF FEE", None),
]


def random_transactions(rng, count):
    result = []
    for i in range(count):
        description, vendor = rng.choice(DESCRIPTIONS)
        amount = Decimal(rng.randint(1, 5000000)) / 100
        direction = Direction.CREDIT if rng.random() < 0.25 else Direction.DEBIT
        result.append(CanonicalTransaction(
            date=date(2024, 1, 1) + timedelta(days=i % 28),
            description=description,
            amount=amount,
            direction=direction,
            category=rng.choice(list(Category)),
            vendor_category=vendor,
        ))
    return result


@pytest.fixture
def spend_filter(merchant_tables):
    return SpendFilter(merchant_tables)


class TestSpendFilter:

    @pytest.mark.parametrize("seed", range(50))
    def test_totals_reconcile(self, spend_filter, seed):
        rng = random.Random(seed)
        transactions = random_transactions(rng, rng.randint(0, 60))

        result = spend_filter.apply(transactions)

        assert result.total_spend + result.total_excluded == result.total_in
        signed = [t.amount if t.direction == Direction.DEBIT else -t.amount for t in transactions]
        assert result.total_in == sum(signed, Decimal("0"))
        assert [t.description for t in result.transactions] == [t.description for t in transactions]
        assert sum(result.excluded_reasons.values()) == sum(1 for t in result.transactions if t.excluded)

    def test_reasons(self, spend_filter):
        transactions = [
            canonical("SWIGGY BANGALORE", "450", category=Category.ONLINE_FOOD_ORDERING),
            canonical("PAYMENT RECEIVED THANK YOU", "8000", Direction.CREDIT),
            canonical("INTEREST ON BALANCE", "80.50", vendor="INTEREST"),
            canonical("FOREIGN CURRENCY TRANSACTION FEE", "35.40"),
            canonical("LATE PAYMENT FEE", "500"),
            canonical("IGST ON LATE FEE", "90"),
            canonical("AUTOPAY PAYMENT", "1000"),
        ]

        result = spend_filter.apply(transactions)
        reasons = [t.exclusion_reason for t in result.transactions]

        assert reasons == [
            None, CREDITS_REASON, "EMI/Interest", "Forex Fees",
            "Fees/Charges", "Fees/Charges", "Payments/Transfers",
        ]
        assert result.excluded_reasons == {
            CREDITS_REASON: 1, "EMI/Interest": 1, "Forex Fees": 1,
            "Fees/Charges": 2, "Payments/Transfers": 1,
        }
        assert result.total_spend == Decimal("450")
        assert [t.description for t in result.spend_transactions] == ["SWIGGY BANGALORE"]

    def test_excluded_lines_keep_their_category(self, spend_filter):
        line = canonical("AMAZON EMI", "3000", vendor="EMI", category=Category.AMAZON_SPENDS)
        tagged = spend_filter.apply([line]).transactions[0]
        assert tagged.excluded
        assert tagged.exclusion_reason == "EMI/Interest"
        assert tagged.category == Category.AMAZON_SPENDS

    def test_reward_credit_is_not_excluded(self, spend_filter):
        result = spend_filter.apply([canonical("CASHBACK CREDIT", "150", Direction.CREDIT)])
        assert not result.transactions[0].excluded
        assert result.total_spend == Decimal("-150")

    def test_cashback_nets_against_spend(self, spend_filter):
        transactions = [
            canonical("SWIGGY BANGALORE", "1000", category=Category.ONLINE_FOOD_ORDERING),
            canonical("CASHBACK CREDIT", "100", Direction.CREDIT),
            canonical("PAYMENT RECEIVED THANK YOU", "5000", Direction.CREDIT),
        ]

        result = spend_filter.apply(transactions)

        assert result.total_spend == Decimal("900")
        assert result.total_excluded == Decimal("-5000")
        assert result.total_in == Decimal("-4100")

    def test_already_excluded_keeps_reason(self, spend_filter):
        line = canonical("LOAN BOOKING", "100", vendor="LOAN", excluded=True, reason="EMI/Interest")
        result = spend_filter.apply([line])
        assert result.transactions[0].exclusion_reason == "EMI/Interest"
        assert result.excluded_reasons == {"EMI/Interest": 1}

    def test_input_is_not_mutated(self, spend_filter):
        line = canonical("PAYMENT RECEIVED", "100", Direction.CREDIT)
        spend_filter.apply([line])
        assert not line.excluded

    def test_idempotent(self, spend_filter):
        rng = random.Random(7)
        transactions = random_transactions(rng, 40)

        once = spend_filter.apply(transactions)
        twice = spend_filter.apply(once.transactions)

        assert twice.transactions == once.transactions
        assert twice.excluded_reasons == once.excluded_reasons
        assert twice.total_spend == once.total_spend

    def test_empty_input(self, spend_filter):
        result = spend_filter.apply([])
        assert result.transactions == []
        assert result.total_in == Decimal("0")
        assert result.excluded_reasons == {}
