"""Tests for confidence scoring and statement sanity checks."""

from datetime import date
from decimal import Decimal

from card_statements.models.core import CardDetails, Direction, RawTransaction, StatementSummary
from card_statements.utils.confidence_scorer import ConfidenceScorer
from card_statements.utils.validation import ValidationEngine


def raw(day, amount, direction=Direction.DEBIT, hint=None, description="MERCHANT"):
    return RawTransaction(date=day, description=description, amount=Decimal(amount),
                          direction=direction, category_hint=hint)


FULL_CARD = CardDetails(bank="HDFC", masked_number="XXXX1234", card_type="Regalia",
                        credit_limit=Decimal("100000"), available_credit=Decimal("50000"))
FULL_SUMMARY = StatementSummary(
    statement_date=date(2024, 1, 31), due_date=date(2024, 2, 20),
    total_due=Decimal("1000"), min_due=Decimal("50"), opening_balance=Decimal("0"),
    payment_amount=Decimal("0"), purchase_amount=Decimal("1000"),
)


class TestConfidenceScorer:

    def setup_method(self):
        self.scorer = ConfidenceScorer()

    def test_perfect_statement(self):
        transactions = [raw(date(2024, 1, 5), "1000", hint="fuel")]
        result = self.scorer.assess(1, 3, FULL_CARD, FULL_SUMMARY, transactions, [])

        assert result['score'] == 100.0
        assert result['label'] == "High"
        assert [c['key'] for c in result['components']] == [
            'first_attempt', 'field_completeness', 'category_coverage',
        ]

    def test_retries_lower_the_score(self):
        transactions = [raw(date(2024, 1, 5), "1000", hint="fuel")]
        first = self.scorer.score(1, 3, FULL_CARD, FULL_SUMMARY, transactions, [])
        third = self.scorer.score(3, 3, FULL_CARD, FULL_SUMMARY, transactions, [])
        assert third < first
        assert third == 80.0

    def test_empty_statement(self):
        result = self.scorer.assess(1, 1, CardDetails(bank="X"), StatementSummary(), [], [])
        assert result['score'] == 30.0
        assert result['label'] == "Low"

    def test_warnings_are_penalized_with_a_cap(self):
        transactions = [raw(date(2024, 1, 5), "1000", hint="fuel")]
        one = self.scorer.score(1, 3, FULL_CARD, FULL_SUMMARY, transactions, ["V001: x"])
        many = self.scorer.score(1, 3, FULL_CARD, FULL_SUMMARY, transactions, ["w"] * 10)
        assert one == 95.0
        assert many == 80.0

    def test_custom_weights(self):
        scorer = ConfidenceScorer({'first_attempt': 0, 'field_completeness': 0})
        transactions = [raw(date(2024, 1, 5), "10", hint="fuel"), raw(date(2024, 1, 6), "10")]
        assert scorer.score(3, 3, CardDetails(bank="X"), StatementSummary(), transactions) == 50.0


class TestValidationEngine:

    def setup_method(self):
        self.engine = ValidationEngine()

    def test_clean_statement(self):
        transactions = [raw(date(2024, 1, 5), "600"), raw(date(2024, 1, 20), "400")]
        warnings = self.engine.validate_statement(
            transactions, FULL_SUMMARY, date(2024, 1, 1), date(2024, 1, 31))
        assert warnings == []

    def test_dates_outside_period(self):
        transactions = [raw(date(2024, 1, 5), "600"), raw(date(2023, 11, 2), "400")]
        warnings = self.engine.validate_statement(
            transactions, FULL_SUMMARY, date(2024, 1, 1), date(2024, 1, 31))
        assert any(w.startswith("V001") for w in warnings)

    def test_period_slack(self):
        transactions = [raw(date(2023, 12, 30), "1000")]
        warnings = self.engine.validate_statement(
            transactions, FULL_SUMMARY, date(2024, 1, 1), date(2024, 1, 31))
        assert not any(w.startswith("V001") for w in warnings)

    def test_transaction_count(self):
        warnings = self.engine.validate_statement([], StatementSummary())
        assert warnings == ["V002: Suspicious transaction count: 0"]

    def test_purchase_mismatch(self):
        transactions = [raw(date(2024, 1, 5), "500"), raw(date(2024, 1, 6), "9000", Direction.CREDIT)]
        warnings = self.engine.validate_statement(transactions, FULL_SUMMARY)
        assert any(w.startswith("V003") for w in warnings)

    def test_due_before_statement(self):
        summary = StatementSummary(statement_date=date(2024, 1, 31), due_date=date(2024, 1, 10))
        warnings = self.engine.validate_statement([raw(date(2024, 1, 5), "10")], summary)
        assert any(w.startswith("V004") for w in warnings)

    def test_transaction_warnings(self):
        warnings = self.engine.validate_transaction(raw(date(1995, 1, 1), "0", description="X"))
        assert len(warnings) == 3
        assert all(w.startswith("Warning:") for w in warnings)

    def test_transaction_warnings_are_numbered(self):
        transactions = [raw(date(2024, 1, 5), "1000"), raw(date(2024, 1, 6), "0")]
        warnings = self.engine.validate_statement(transactions, StatementSummary())
        assert warnings == ["Transaction 2: Warning: Transaction amount is zero"]
