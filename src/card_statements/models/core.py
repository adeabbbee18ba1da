"""Core data models for the credit-card statement pipeline."""

import hashlib
import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import List, Dict, Any, Optional, Tuple


CATEGORY_ENUM_VERSION = "2024.1"


class Category(str, Enum):
    """Closed set of canonical spend categories.

    Values are a wire contract with the rewards optimizer and must never be
    renamed; new members bump CATEGORY_ENUM_VERSION.
    """
    AMAZON_SPENDS = "amazon_spends"
    FLIPKART_SPENDS = "flipkart_spends"
    GROCERY_SPENDS_ONLINE = "grocery_spends_online"
    ONLINE_FOOD_ORDERING = "online_food_ordering"
    DINING_OR_GOING_OUT = "dining_or_going_out"
    OTHER_ONLINE_SPENDS = "other_online_spends"
    OTHER_OFFLINE_SPENDS = "other_offline_spends"
    FLIGHTS = "flights"
    HOTELS = "hotels"
    MOBILE_PHONE_BILLS = "mobile_phone_bills"
    ELECTRICITY_BILLS = "electricity_bills"
    WATER_BILLS = "water_bills"
    OTT_CHANNELS = "ott_channels"
    FUEL = "fuel"
    SCHOOL_FEES = "school_fees"
    RENT = "rent"
    INSURANCE_HEALTH = "insurance_health"
    INSURANCE_CAR_OR_BIKE = "insurance_car_or_bike"
    LARGE_ELECTRONICS = "large_electronics"
    PHARMACY = "pharmacy"

    @classmethod
    def from_value(cls, value: Optional[str]) -> Optional["Category"]:
        """Return the member for a wire value, or None if it is not one"""
        if not value:
            return None
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


class Direction(str, Enum):
    """Transaction direction as printed on the statement (Dr/Cr)"""
    DEBIT = "debit"
    CREDIT = "credit"

    @classmethod
    def parse(cls, value: str) -> "Direction":
        normalized = str(value or "").strip().lower()
        if normalized in ("debit", "dr", "d"):
            return cls.DEBIT
        if normalized in ("credit", "cr", "c"):
            return cls.CREDIT
        raise ValueError(f"Unknown transaction direction: {value!r}")


@dataclass(frozen=True)
class StatementSource:
    """One encrypted statement as delivered by the upload or email collaborator.

    Attributes:
        data: Raw (usually encrypted) PDF bytes
        bank_code: Issuer code matching a key in the bank rule table
        filename: Original attachment or upload filename
        message_meta: Optional email metadata (subject, body, sender, ...)
    """
    data: bytes
    bank_code: str
    filename: str = "statement.pdf"
    message_meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def statement_id(self) -> str:
        """Stable identifier derived from content, so re-runs key identically"""
        digest = hashlib.sha256(self.data).hexdigest()[:12]
        return f"{self.bank_code.lower()}-{digest}"


@dataclass(frozen=True)
class HolderDetails:
    """Card-holder personal information in one normalized shape.

    Built once at the pipeline boundary via from_inputs(); everything
    downstream reads these fields and nothing else.
    """
    name: Optional[str] = None
    dob: Optional[str] = None  # DDMMYYYY
    card_digits: Tuple[str, ...] = ()
    password: Optional[str] = None

    @classmethod
    def from_inputs(cls,
                    name: Optional[str] = None,
                    dob: Optional[str] = None,
                    card_digits: Optional[Any] = None,
                    password: Optional[str] = None) -> "HolderDetails":
        """Normalize loosely-shaped user inputs.

        Args:
            name: Holder name in any case/spacing
            dob: Date of birth as DDMMYYYY, DD/MM/YYYY, DD-MM-YY, ...
            card_digits: A string or iterable of trailing card digits
            password: Explicit statement password, tried first when given

        Raises:
            ValueError: If dob cannot be read as a day-month-year date
        """
        clean_name = None
        if name and name.strip():
            clean_name = " ".join(name.upper().split())

        clean_dob = normalize_dob(dob) if dob else None

        if card_digits is None:
            digits_in = []
        elif isinstance(card_digits, str):
            digits_in = [card_digits]
        else:
            digits_in = list(card_digits)

        digits: List[str] = []
        for raw in digits_in:
            only = re.sub(r"\D", "", str(raw))
            if only and only not in digits:
                digits.append(only)

        clean_password = password if password else None
        return cls(name=clean_name, dob=clean_dob, card_digits=tuple(digits),
                   password=clean_password)

    def with_card_digits(self, digits: List[str]) -> "HolderDetails":
        """Return a copy with extra card digits appended (deduplicated)"""
        merged = list(self.card_digits)
        for d in digits:
            if d and d not in merged:
                merged.append(d)
        return HolderDetails(self.name, self.dob, tuple(merged), self.password)

    def card_last(self, n: int) -> Optional[str]:
        """Last n card digits from the longest known fragment that has them"""
        for digits in sorted(self.card_digits, key=len, reverse=True):
            if len(digits) >= n:
                return digits[-n:]
        return None

    def available_fields(self) -> List[str]:
        """Names of the credential fields this holder can supply"""
        fields = []
        if self.name:
            fields.append("name")
        if self.dob:
            fields.append("dob")
        for n in (2, 4, 6):
            if self.card_last(n):
                fields.append(f"card_last{n}")
        return fields


def normalize_dob(value: str) -> str:
    """Convert a date of birth to DDMMYYYY.

    Two-digit years are read as 19YY, matching how issuers print them.
    """
    digits = re.sub(r"\D", "", str(value))
    if len(digits) == 6:
        digits = digits[:4] + "19" + digits[4:]
    if len(digits) != 8:
        raise ValueError(f"Date of birth must be DDMMYYYY or DDMMYY: {value!r}")
    day, month = int(digits[:2]), int(digits[2:4])
    if not (1 <= day <= 31 and 1 <= month <= 12):
        raise ValueError(f"Date of birth is not a valid day/month: {value!r}")
    return digits


@dataclass(frozen=True)
class PasswordCandidate:
    """One derived password guess and the transform that produced it"""
    value: str
    provenance: str

    @property
    def masked(self) -> str:
        if len(self.value) <= 2:
            return "*" * len(self.value)
        return self.value[:1] + "*" * (len(self.value) - 2) + self.value[-1:]


@dataclass
class DecryptedDocument:
    """Plaintext PDF, alive only while text extraction runs"""
    plaintext: bytes
    password_used: Optional[str]
    attempt_count: int
    scratch_path: Optional[str] = None


@dataclass
class ExtractedText:
    text: str
    page_count: int


@dataclass
class RawTransaction:
    """Transaction as returned by the structured parser, after validation"""
    date: date
    description: str
    amount: Decimal
    direction: Direction
    vendor_category: Optional[str] = None
    vendor_sub_category: Optional[str] = None
    category_hint: Optional[str] = None


@dataclass
class CardDetails:
    bank: str
    masked_number: Optional[str] = None
    card_type: Optional[str] = None
    credit_limit: Optional[Decimal] = None
    available_credit: Optional[Decimal] = None


@dataclass
class StatementSummary:
    statement_date: Optional[date] = None
    due_date: Optional[date] = None
    total_due: Optional[Decimal] = None
    min_due: Optional[Decimal] = None
    opening_balance: Optional[Decimal] = None
    payment_amount: Optional[Decimal] = None
    purchase_amount: Optional[Decimal] = None

    def filled_fields(self) -> int:
        """Number of summary fields the statement actually provided"""
        return sum(1 for v in self.__dict__.values() if v is not None)


@dataclass
class CanonicalTransaction:
    """A RawTransaction with exactly one canonical category attached.

    Excluded transactions keep their category and are only tagged, so totals
    always reconcile.
    """
    date: date
    description: str
    amount: Decimal
    direction: Direction
    category: Category
    vendor_category: Optional[str] = None
    vendor_sub_category: Optional[str] = None
    excluded: bool = False
    exclusion_reason: Optional[str] = None
    tier: str = "default"
    tier_confidence: float = 0.0
    merchant_norm: str = ""
    txn_id: str = ""

    @property
    def signed_amount(self) -> Decimal:
        """Amount as it moves the balance: credits count negative"""
        return self.amount if self.direction == Direction.DEBIT else -self.amount

    def to_dict(self) -> Dict[str, Any]:
        return {
            'txn_id': self.txn_id,
            'date': self.date.isoformat(),
            'description': self.description,
            'merchant_norm': self.merchant_norm,
            'amount': str(self.amount),
            'direction': self.direction.value,
            'category': self.category.value,
            'tier': self.tier,
            'tier_confidence': self.tier_confidence,
            'excluded': self.excluded,
            'exclusion_reason': self.exclusion_reason,
            'vendor_category': self.vendor_category,
            'vendor_sub_category': self.vendor_sub_category,
        }


@dataclass
class ParsedStatement:
    """Validated output of the structured statement parser"""
    card_details: CardDetails
    summary: StatementSummary
    transactions: List[RawTransaction]
    model: str
    latency: float
    attempts: int
    confidence: float = 0.0
    warnings: List[str] = field(default_factory=list)


@dataclass
class StatementExtraction:
    """Durable per-statement artifact handed to storage and the optimizer"""
    card_details: CardDetails
    summary: StatementSummary
    transactions: List[CanonicalTransaction]
    excluded_reasons: Dict[str, int]
    confidence: float
    low_confidence: bool
    password_used: Optional[str]
    attempts_used: int
    model: str
    latency: float
    total_in: Decimal = Decimal("0")
    total_spend: Decimal = Decimal("0")
    total_excluded: Decimal = Decimal("0")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'card_details': {
                'bank': self.card_details.bank,
                'masked_number': self.card_details.masked_number,
                'card_type': self.card_details.card_type,
                'credit_limit': _str_or_none(self.card_details.credit_limit),
                'available_credit': _str_or_none(self.card_details.available_credit),
            },
            'summary': {
                key: (value.isoformat() if isinstance(value, date) else _str_or_none(value))
                for key, value in self.summary.__dict__.items()
            },
            'transactions': [t.to_dict() for t in self.transactions],
            'excluded_reasons': dict(self.excluded_reasons),
            'confidence': self.confidence,
            'low_confidence': self.low_confidence,
            'password_used': self.password_used is not None,
            'attempts_used': self.attempts_used,
            'model': self.model,
            'latency': round(self.latency, 3),
            'total_in': str(self.total_in),
            'total_spend': str(self.total_spend),
            'total_excluded': str(self.total_excluded),
        }


@dataclass
class StatementOutcome:
    """Tagged result for one statement; failures carry a reason, never an empty list"""
    statement_id: str
    filename: str
    bank_code: str
    status: str  # "succeeded" or "failed"
    extraction: Optional[StatementExtraction] = None
    failure_code: Optional[str] = None
    failure_reason: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    processing_time: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'statement_id': self.statement_id,
            'filename': self.filename,
            'bank_code': self.bank_code,
            'status': self.status,
            'failure_code': self.failure_code,
            'failure_reason': self.failure_reason,
            'warnings': list(self.warnings),
            'processing_time': round(self.processing_time, 3),
            'extraction': self.extraction.to_dict() if self.extraction else None,
        }


@dataclass(frozen=True)
class BankRule:
    """Password convention for one issuer.

    Attributes:
        bank_code: Lower-case issuer code (e.g. "hdfc")
        required_fields: Credential fields that must be present before guessing
        max_password_attempts: Cap on decryption tries for this issuer
        candidate_order: Transform names tried first, in order
        hint_patterns: Regexes that, found in an email body, confirm a field
    """
    bank_code: str
    required_fields: Tuple[str, ...]
    max_password_attempts: int
    candidate_order: Tuple[str, ...] = ()
    display_name: str = ""
    hint_patterns: Tuple[Tuple[str, Tuple[str, ...]], ...] = ()


@dataclass
class PipelineConfig:
    """Configuration for pipeline behavior"""
    max_parse_retries: int = 2
    model_timeout: float = 60.0
    model_name: str = "gemini-2.5-flash"
    confidence_threshold: float = 60.0
    max_workers: int = 4
    scratch_directory: Optional[str] = None
    output_directory: str = "data"
    log_directory: str = "logs"
    aggregator_policy: str = "rent_band"
    bank_rules_path: Optional[str] = None
    merchant_tables_path: Optional[str] = None
    default_max_attempts: Optional[int] = None


def _str_or_none(value: Any) -> Optional[str]:
    return None if value is None else str(value)
