"""Map raw transactions onto the closed category enum.

The cascade is an ordered chain of pure tier functions. Each tier either
returns a decision or passes (None) to the next one; the last tier always
decides, so every transaction leaves with exactly one category.
"""

import logging
from dataclasses import dataclass, replace
from typing import Callable, List, Optional, Tuple

from ..models.core import CanonicalTransaction, Category, RawTransaction
from ..parsers.base import DataTransformer
from .rule_tables import MerchantTables


logger = logging.getLogger(__name__)


LEXICAL_CONFIDENCE = 0.95
VENDOR_CONFIDENCE = 0.85
MODEL_HINT_CONFIDENCE = 0.75
CONTEXT_CONFIDENCE = 0.70
AMOUNT_BAND_CONFIDENCE = 0.80
AGGREGATOR_FALLBACK_CONFIDENCE = 0.50
DEFAULT_CONFIDENCE = 0.30

# Model hints in these buckets carry no information beyond the default tier
GENERIC_HINTS = {Category.OTHER_ONLINE_SPENDS, Category.OTHER_OFFLINE_SPENDS}


@dataclass(frozen=True)
class CategoryDecision:
    """Outcome of the cascade for one transaction"""
    category: Optional[Category]
    tier: str
    confidence: float
    exclude: bool = False
    exclusion_reason: Optional[str] = None


TierFunction = Callable[[RawTransaction, MerchantTables, str], Optional[CategoryDecision]]


def lexical_tier(txn: RawTransaction, tables: MerchantTables, policy: str) -> Optional[CategoryDecision]:
    """Unambiguous merchant names. A hit here is final."""
    for entry in tables.lexical:
        if not entry.pattern.search(txn.description):
            continue
        if any(guard.search(txn.description) for guard in entry.guards):
            continue
        return CategoryDecision(entry.category, "lexical", LEXICAL_CONFIDENCE)
    return None


def vendor_hint_tier(txn: RawTransaction, tables: MerchantTables, policy: str) -> Optional[CategoryDecision]:
    vendor = (txn.vendor_category or "").upper()
    sub = (txn.vendor_sub_category or "").upper()

    reason = tables.non_spend_reason(vendor, sub)
    if reason:
        return CategoryDecision(None, "vendor_hint", VENDOR_CONFIDENCE,
                                exclude=True, exclusion_reason=reason)

    if sub and sub in tables.vendor_sub_categories:
        return CategoryDecision(tables.vendor_sub_categories[sub], "vendor_hint", VENDOR_CONFIDENCE)

    if vendor and vendor in tables.vendor_categories:
        category = tables.vendor_categories[vendor]
        if vendor == "GROCERY":
            lowered = txn.description.lower()
            if any(cue in lowered for cue in tables.online_grocery_cues):
                category = Category.GROCERY_SPENDS_ONLINE
        return CategoryDecision(category, "vendor_hint", VENDOR_CONFIDENCE)

    hint = Category.from_value(txn.category_hint)
    if hint is not None and hint not in GENERIC_HINTS:
        return CategoryDecision(hint, "vendor_hint", MODEL_HINT_CONFIDENCE)

    return None


def context_tier(txn: RawTransaction, tables: MerchantTables, policy: str) -> Optional[CategoryDecision]:
    """Short tokens like VI or OLA, only when something else backs them up"""
    vendor = (txn.vendor_category or "").upper()
    for rule in tables.context:
        if not rule.pattern.search(txn.description):
            continue
        if rule.vetoes is not None and rule.vetoes.search(txn.description):
            continue

        corroborated = (
            (vendor and vendor in rule.vendor_categories)
            or (rule.keywords is not None and rule.keywords.search(txn.description) is not None)
            or (rule.amount_range is not None
                and rule.amount_range[0] <= txn.amount <= rule.amount_range[1])
        )
        if corroborated:
            return CategoryDecision(rule.category, "context", CONTEXT_CONFIDENCE)
        logger.debug(f"Context rule {rule.name} matched without corroboration")
    return None


def amount_band_tier(txn: RawTransaction, tables: MerchantTables, policy: str) -> Optional[CategoryDecision]:
    if tables.aggregator_pattern is not None and tables.aggregator_pattern.search(txn.description):
        band = tables.aggregator_rent_band
        if policy == "rent_band" and band is not None and band[0] <= txn.amount <= band[1]:
            return CategoryDecision(Category.RENT, "amount_band", AMOUNT_BAND_CONFIDENCE)
        return CategoryDecision(Category.OTHER_ONLINE_SPENDS, "amount_band",
                                AGGREGATOR_FALLBACK_CONFIDENCE)

    for band in tables.amount_bands:
        if band.pattern.search(txn.description) and band.contains(txn.amount):
            return CategoryDecision(band.category, "amount_band", AMOUNT_BAND_CONFIDENCE)
    return None


def default_tier(txn: RawTransaction, tables: MerchantTables, policy: str) -> CategoryDecision:
    lowered = txn.description.lower()
    if any(cue in lowered for cue in tables.online_cues):
        return CategoryDecision(Category.OTHER_ONLINE_SPENDS, "default", DEFAULT_CONFIDENCE)
    return CategoryDecision(Category.OTHER_OFFLINE_SPENDS, "default", DEFAULT_CONFIDENCE)


TIERS: Tuple[TierFunction, ...] = (
    lexical_tier,
    vendor_hint_tier,
    context_tier,
    amount_band_tier,
    default_tier,
)


class CategoryNormalizer:
    """Runs the tier cascade over raw transactions.

    Holds only immutable tables, so one instance can be shared by every
    worker thread.
    """

    def __init__(self, tables: MerchantTables, aggregator_policy: str = "rent_band"):
        self.tables = tables
        self.aggregator_policy = aggregator_policy
        self.transformer = DataTransformer()

    def normalize(self, txn: RawTransaction) -> CategoryDecision:
        for tier in TIERS:
            decision = tier(txn, self.tables, self.aggregator_policy)
            if decision is None:
                continue
            if decision.category is None:
                # excluded by issuer label; still needs a category for reporting
                fallback = default_tier(txn, self.tables, self.aggregator_policy)
                decision = replace(decision, category=fallback.category)
            return decision
        # default_tier always decides
        raise AssertionError("category cascade produced no decision")

    def categorize(self, txn: RawTransaction, statement_id: str) -> CanonicalTransaction:
        decision = self.normalize(txn)
        return CanonicalTransaction(
            date=txn.date,
            description=txn.description,
            amount=txn.amount,
            direction=txn.direction,
            category=decision.category,
            vendor_category=txn.vendor_category,
            vendor_sub_category=txn.vendor_sub_category,
            excluded=decision.exclude,
            exclusion_reason=decision.exclusion_reason,
            tier=decision.tier,
            tier_confidence=decision.confidence,
            merchant_norm=self.transformer.normalize_merchant(txn.description),
            txn_id=self.transformer.transaction_id(statement_id, txn.date, txn.amount, txn.description),
        )

    def categorize_all(self, transactions: List[RawTransaction], statement_id: str) -> List[CanonicalTransaction]:
        categorized = [self.categorize(txn, statement_id) for txn in transactions]
        tiers = {}
        for txn in categorized:
            tiers[txn.tier] = tiers.get(txn.tier, 0) + 1
        logger.debug(f"Categorized {len(categorized)} transaction(s) by tier: {tiers}")
        return categorized
