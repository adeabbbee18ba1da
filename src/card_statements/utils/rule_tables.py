"""Immutable bank and merchant rule tables built from YAML data.

Tables are parsed once, compiled, and frozen (tuples, MappingProxyType,
frozen dataclasses) so they can be shared across worker threads.
"""

import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Pattern, Tuple

from ..models.core import BankRule, Category


logger = logging.getLogger(__name__)


KNOWN_CREDENTIAL_FIELDS = {"name", "dob", "card_last2", "card_last4", "card_last6"}


def keyword_pattern(keywords) -> Optional[Pattern]:
    """Compile keywords into one left-anchored, case-insensitive alternation"""
    cleaned = [str(k).strip().lower() for k in keywords if str(k).strip()]
    if not cleaned:
        return None
    alternation = "|".join(re.escape(k) for k in sorted(cleaned, key=len, reverse=True))
    return re.compile(rf"(?<![a-z0-9])(?:{alternation})", re.IGNORECASE)


@dataclass(frozen=True)
class BankRuleTable:
    """All issuer conventions, keyed by lower-case bank code"""
    rules: Mapping[str, BankRule]
    version: int
    default_max_attempts: int

    def get(self, bank_code: str) -> Optional[BankRule]:
        return self.rules.get((bank_code or "").strip().lower())

    def codes(self) -> List[str]:
        return sorted(self.rules)


@dataclass(frozen=True)
class LexicalEntry:
    category: Category
    pattern: Pattern
    guards: Tuple[Pattern, ...] = ()


@dataclass(frozen=True)
class NonSpendRule:
    reason: str
    category: Optional[str] = None
    sub_category: Optional[str] = None

    def matches(self, vendor_category: str, vendor_sub_category: str) -> bool:
        if self.category is not None and self.category != vendor_category:
            return False
        if self.sub_category is not None and self.sub_category != vendor_sub_category:
            return False
        return True


@dataclass(frozen=True)
class ContextRule:
    name: str
    pattern: Pattern
    category: Category
    vetoes: Optional[Pattern] = None
    vendor_categories: Tuple[str, ...] = ()
    keywords: Optional[Pattern] = None
    amount_range: Optional[Tuple[Decimal, Decimal]] = None


@dataclass(frozen=True)
class AmountBand:
    name: str
    pattern: Pattern
    category: Category
    minimum: Optional[Decimal] = None
    maximum: Optional[Decimal] = None

    def contains(self, amount: Decimal) -> bool:
        if self.minimum is not None and amount < self.minimum:
            return False
        if self.maximum is not None and amount > self.maximum:
            return False
        return True


@dataclass(frozen=True)
class DescriptionRule:
    reason: str
    pattern: Pattern


@dataclass(frozen=True)
class MerchantTables:
    """Compiled keyword tables shared by the normalizer and the spend filter"""
    version: int
    lexical: Tuple[LexicalEntry, ...]
    vendor_categories: Mapping[str, Category]
    vendor_sub_categories: Mapping[str, Category]
    online_grocery_cues: Tuple[str, ...]
    non_spend: Tuple[NonSpendRule, ...]
    context: Tuple[ContextRule, ...]
    amount_bands: Tuple[AmountBand, ...]
    aggregator_pattern: Optional[Pattern]
    aggregator_rent_band: Optional[Tuple[Decimal, Decimal]]
    online_cues: Tuple[str, ...]
    reward_credit: Optional[Pattern]
    description_rules: Tuple[DescriptionRule, ...]

    def non_spend_reason(self, vendor_category: Optional[str],
                         vendor_sub_category: Optional[str]) -> Optional[str]:
        """Exclusion reason for issuer labels marked non-spend, if any"""
        cat = (vendor_category or "").strip().upper()
        sub = (vendor_sub_category or "").strip().upper()
        if not cat and not sub:
            return None
        for rule in self.non_spend:
            if rule.matches(cat, sub):
                return rule.reason
        return None


def build_bank_rules(data: Dict[str, Any], default_max_attempts: Optional[int] = None) -> BankRuleTable:
    """Build the bank rule table from parsed YAML.

    default_max_attempts, when given, replaces the file's own default. It applies to
    banks that do not set max_password_attempts themselves.

    Raises:
        ValueError: If the document shape is wrong or a bank names an unknown field
    """
    if not isinstance(data, dict):
        raise ValueError("Bank rules must be a dictionary")
    banks = data.get("banks")
    if not isinstance(banks, dict) or not banks:
        raise ValueError("Bank rules must define a non-empty 'banks' mapping")

    if default_max_attempts is None:
        default_max_attempts = data.get("default_max_attempts", 10)
    default_max = int(default_max_attempts)
    if default_max < 1:
        raise ValueError(f"default_max_attempts must be positive, got {default_max}")
    rules: Dict[str, BankRule] = {}

    for code, props in banks.items():
        if not isinstance(props, dict):
            raise ValueError(f"Rule for bank '{code}' must be a dictionary")

        required = tuple(props.get("required_fields") or ())
        unknown = set(required) - KNOWN_CREDENTIAL_FIELDS
        if unknown:
            raise ValueError(f"Bank '{code}' requires unknown field(s): {', '.join(sorted(unknown))}")

        max_attempts = int(props.get("max_password_attempts", default_max))
        if max_attempts < 1:
            raise ValueError(f"max_password_attempts for bank '{code}' must be positive")

        hints = []
        for hint in props.get("hint_patterns") or ():
            try:
                re.compile(hint["pattern"])
            except (KeyError, TypeError, re.error) as e:
                raise ValueError(f"Invalid hint pattern for bank '{code}': {e}")
            hints.append((hint["pattern"], tuple(hint.get("fields") or ())))

        bank_code = str(code).strip().lower()
        rules[bank_code] = BankRule(
            bank_code=bank_code,
            required_fields=required,
            max_password_attempts=max_attempts,
            candidate_order=tuple(props.get("candidate_order") or ()),
            display_name=props.get("display_name", str(code).upper()),
            hint_patterns=tuple(hints),
        )
        logger.debug(f"Loaded password rule for bank: {bank_code}")

    return BankRuleTable(
        rules=MappingProxyType(rules),
        version=int(data.get("version", 1)),
        default_max_attempts=default_max,
    )


def _category(value: Any, where: str) -> Category:
    category = Category.from_value(value)
    if category is None:
        raise ValueError(f"{where}: '{value}' is not a canonical category")
    return category


def _decimal_range(value: Any, where: str) -> Optional[Tuple[Decimal, Decimal]]:
    if value is None:
        return None
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        raise ValueError(f"{where} must be a [min, max] pair")
    low, high = Decimal(str(value[0])), Decimal(str(value[1]))
    if low > high:
        raise ValueError(f"{where} has min greater than max")
    return (low, high)


def build_merchant_tables(data: Dict[str, Any]) -> MerchantTables:
    """Compile the merchant tables from parsed YAML.

    Raises:
        ValueError: If a section is malformed or names a category outside the enum
    """
    if not isinstance(data, dict):
        raise ValueError("Merchant tables must be a dictionary")

    lexical: List[LexicalEntry] = []
    for i, entry in enumerate(data.get("lexical") or ()):
        pattern = keyword_pattern(entry.get("keywords") or ())
        if pattern is None:
            raise ValueError(f"lexical[{i}] has no keywords")
        lexical.append(LexicalEntry(
            category=_category(entry.get("category"), f"lexical[{i}]"),
            pattern=pattern,
            guards=tuple(re.compile(g, re.IGNORECASE) for g in entry.get("guards") or ()),
        ))

    vendor_categories = {
        str(k).upper(): _category(v, f"vendor_categories.{k}")
        for k, v in (data.get("vendor_categories") or {}).items()
    }
    vendor_sub_categories = {
        str(k).upper(): _category(v, f"vendor_sub_categories.{k}")
        for k, v in (data.get("vendor_sub_categories") or {}).items()
    }

    non_spend = []
    for i, rule in enumerate(data.get("non_spend") or ()):
        if "reason" not in rule or not ("category" in rule or "sub_category" in rule):
            raise ValueError(f"non_spend[{i}] needs a reason and a category or sub_category")
        non_spend.append(NonSpendRule(
            reason=rule["reason"],
            category=str(rule["category"]).upper() if "category" in rule else None,
            sub_category=str(rule["sub_category"]).upper() if "sub_category" in rule else None,
        ))

    context = []
    for i, rule in enumerate(data.get("context") or ()):
        context.append(ContextRule(
            name=rule.get("name", f"context_{i}"),
            pattern=re.compile(rule["pattern"], re.IGNORECASE),
            category=_category(rule.get("category"), f"context[{i}]"),
            vetoes=keyword_pattern(rule.get("vetoes") or ()),
            vendor_categories=tuple(str(v).upper() for v in rule.get("vendor_categories") or ()),
            keywords=keyword_pattern(rule.get("keywords") or ()),
            amount_range=_decimal_range(rule.get("amount_range"), f"context[{i}].amount_range"),
        ))

    bands = []
    for i, band in enumerate(data.get("amount_bands") or ()):
        bands.append(AmountBand(
            name=band.get("name", f"band_{i}"),
            pattern=re.compile(band["pattern"], re.IGNORECASE),
            category=_category(band.get("category"), f"amount_bands[{i}]"),
            minimum=Decimal(str(band["min"])) if "min" in band else None,
            maximum=Decimal(str(band["max"])) if "max" in band else None,
        ))

    aggregators = data.get("aggregators") or {}
    aggregator_pattern = None
    if aggregators.get("pattern"):
        aggregator_pattern = re.compile(aggregators["pattern"], re.IGNORECASE)

    spend_filter = data.get("spend_filter") or {}
    description_rules = []
    for i, rule in enumerate(spend_filter.get("description_rules") or ()):
        pattern = keyword_pattern(rule.get("keywords") or ())
        if pattern is None or not rule.get("reason"):
            raise ValueError(f"spend_filter.description_rules[{i}] needs a reason and keywords")
        description_rules.append(DescriptionRule(reason=rule["reason"], pattern=pattern))

    return MerchantTables(
        version=int(data.get("version", 1)),
        lexical=tuple(lexical),
        vendor_categories=MappingProxyType(vendor_categories),
        vendor_sub_categories=MappingProxyType(vendor_sub_categories),
        online_grocery_cues=tuple(str(c).lower() for c in data.get("online_grocery_cues") or ()),
        non_spend=tuple(non_spend),
        context=tuple(context),
        amount_bands=tuple(bands),
        aggregator_pattern=aggregator_pattern,
        aggregator_rent_band=_decimal_range(aggregators.get("rent_band"), "aggregators.rent_band"),
        online_cues=tuple(str(c).lower() for c in data.get("online_cues") or ()),
        reward_credit=keyword_pattern(spend_filter.get("reward_credit_keywords") or ()),
        description_rules=tuple(description_rules),
    )
