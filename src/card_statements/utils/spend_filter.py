"""Tag non-spend lines so rewards are computed on real purchases only."""

import logging
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Dict, List, Optional

from ..models.core import CanonicalTransaction, Direction
from .rule_tables import MerchantTables


logger = logging.getLogger(__name__)


CREDITS_REASON = "Credits/Reversals"


@dataclass
class FilterResult:
    """Same transactions, same order, with exclusions tagged.

    Totals are signed (credits negative) and reconcile exactly.
    """
    transactions: List[CanonicalTransaction]
    excluded_reasons: Dict[str, int] = field(default_factory=dict)
    total_in: Decimal = Decimal("0")
    total_spend: Decimal = Decimal("0")
    total_excluded: Decimal = Decimal("0")

    @property
    def spend_transactions(self) -> List[CanonicalTransaction]:
        return [t for t in self.transactions if not t.excluded]


class SpendFilter:
    """Marks credits, fees, interest, EMIs, payments and reversals as excluded.

    Nothing is ever removed; excluded lines keep their category.
    """

    def __init__(self, tables: MerchantTables):
        self.tables = tables

    def exclusion_reason(self, txn: CanonicalTransaction) -> Optional[str]:
        """Reason a transaction is not spend, or None if it is"""
        if txn.excluded:
            return txn.exclusion_reason or CREDITS_REASON

        if txn.direction == Direction.CREDIT:
            is_reward = (self.tables.reward_credit is not None
                         and self.tables.reward_credit.search(txn.description) is not None)
            if not is_reward:
                return CREDITS_REASON

        reason = self.tables.non_spend_reason(txn.vendor_category, txn.vendor_sub_category)
        if reason:
            return reason

        for rule in self.tables.description_rules:
            if rule.pattern.search(txn.description):
                return rule.reason
        return None

    def apply(self, transactions: List[CanonicalTransaction]) -> FilterResult:
        tagged: List[CanonicalTransaction] = []
        reasons: Dict[str, int] = {}
        total_in = total_spend = total_excluded = Decimal("0")

        for txn in transactions:
            reason = self.exclusion_reason(txn)
            # cashback kept in the spend set nets against purchases
            amount = txn.signed_amount
            total_in += amount
            if reason is None:
                total_spend += amount
                tagged.append(txn)
                continue

            total_excluded += amount
            reasons[reason] = reasons.get(reason, 0) + 1
            tagged.append(replace(txn, excluded=True, exclusion_reason=reason))

        if total_spend + total_excluded != total_in:
            raise AssertionError(
                f"Spend totals do not reconcile: {total_spend} + {total_excluded} != {total_in}"
            )
        assert len(tagged) == len(transactions)

        if reasons:
            logger.info(f"Excluded {sum(reasons.values())} of {len(tagged)} transaction(s): {reasons}")

        return FilterResult(
            transactions=tagged,
            excluded_reasons=reasons,
            total_in=total_in,
            total_spend=total_spend,
            total_excluded=total_excluded,
        )
