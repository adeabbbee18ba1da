"""Sanity checks for parsed statements.

Checks here only ever produce warnings. They lower confidence but never fail
a parse that already satisfied the response schema.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import List, Optional

from ..models.core import Direction, RawTransaction, StatementSummary


class ValidationEngine:
    """Validates parsed statement data"""

    def __init__(self,
                 min_transactions: int = 1,
                 max_transactions: int = 500,
                 purchase_tolerance: Decimal = Decimal('0.10'),
                 period_slack_days: int = 3):
        self.min_transactions = min_transactions
        self.max_transactions = max_transactions
        self.purchase_tolerance = purchase_tolerance
        self.period_slack = timedelta(days=period_slack_days)

    def validate_transaction(self, transaction: RawTransaction) -> List[str]:
        """Validate individual transaction and return list of warnings"""
        warnings = []

        if transaction.amount == 0:
            warnings.append("Warning: Transaction amount is zero")
        elif transaction.amount > Decimal('10000000'):
            warnings.append("Warning: Transaction amount is very large")

        current_year = date.today().year
        if transaction.date.year < 2000 or transaction.date.year > current_year + 1:
            warnings.append(f"Warning: Date year {transaction.date.year} seems unreasonable")

        if len(transaction.description.strip()) < 2:
            warnings.append("Warning: Description too short (minimum 2 characters)")

        return warnings

    def validate_statement(self,
                           transactions: List[RawTransaction],
                           summary: StatementSummary,
                           period_start: Optional[date] = None,
                           period_end: Optional[date] = None) -> List[str]:
        """Cross-check transactions against the statement summary and period

        Returns:
            Warning messages prefixed with their validation code
        """
        warnings = []

        count = len(transactions)
        if count < self.min_transactions or count > self.max_transactions:
            warnings.append(f"V002: Suspicious transaction count: {count}")

        if period_start and period_end:
            low, high = period_start - self.period_slack, period_end + self.period_slack
            outside = [t for t in transactions if not low <= t.date <= high]
            if outside:
                warnings.append(
                    f"V001: {len(outside)} transaction(s) dated outside the statement period "
                    f"{period_start.isoformat()} to {period_end.isoformat()}"
                )

        if summary.purchase_amount:
            debits = sum((t.amount for t in transactions if t.direction == Direction.DEBIT), Decimal('0'))
            drift = abs(debits - summary.purchase_amount) / summary.purchase_amount
            if drift > self.purchase_tolerance:
                warnings.append(
                    f"V003: Debit total {debits} differs from summary purchases "
                    f"{summary.purchase_amount} by {drift:.0%}"
                )

        if summary.due_date and summary.statement_date and summary.due_date < summary.statement_date:
            warnings.append(
                f"V004: Due date {summary.due_date.isoformat()} is before statement date "
                f"{summary.statement_date.isoformat()}"
            )

        for i, transaction in enumerate(transactions):
            warnings.extend(f"Transaction {i + 1}: {w}" for w in self.validate_transaction(transaction))

        return warnings
