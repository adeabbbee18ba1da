"""Abstract model-client interface and shared value transformations."""

import hashlib
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, List, Optional, Type


@dataclass
class CompletionResponse:
    """Raw text returned by a model call, before any validation"""
    text: Optional[str]
    model: str


class CompletionClient(ABC):
    """Abstract base class for schema-constrained model clients"""

    @abstractmethod
    def complete(self, system_instruction: str, prompt: str,
                 response_schema: Type[Any]) -> CompletionResponse:
        """Send one request and return the raw response text"""
        pass

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Identifier of the model this client talks to"""
        pass


class DataTransformer:
    """Transforms validated model output into pipeline values"""

    DATE_FORMATS = ["%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y", "%d %b %Y", "%d %B %Y", "%d-%b-%Y"]

    def normalize_date(self, date_str: str, formats: Optional[List[str]] = None) -> date:
        """Convert statement date strings to dates"""
        if not date_str or not str(date_str).strip():
            raise ValueError("Date string cannot be empty")

        date_str = str(date_str).strip()
        for fmt in formats or self.DATE_FORMATS:
            try:
                return datetime.strptime(date_str, fmt).date()
            except ValueError:
                continue

        # "2024-01-31T00:00:00"
        iso_match = re.match(r'(\d{4}-\d{2}-\d{2})T', date_str)
        if iso_match:
            return datetime.strptime(iso_match.group(1), "%Y-%m-%d").date()

        raise ValueError(f"Unable to parse date: {date_str} with any supported format")

    def normalize_amount(self, amount: Any) -> Decimal:
        """Convert an amount to a two-place Decimal.

        Floats go through str() so 0.1 stays 0.10 instead of picking up binary noise.
        """
        if amount is None or str(amount).strip() == '':
            raise ValueError("Amount cannot be empty")

        cleaned = re.sub(r'[₹$,\s]|INR|Rs\.?', '', str(amount).strip(), flags=re.IGNORECASE)
        # Indian statements print a trailing Dr/Cr next to the figure
        cleaned = re.sub(r'(?i)(dr|cr)$', '', cleaned)

        if not cleaned or cleaned in ('.', '-'):
            raise ValueError(f"Unable to parse amount: {amount}")

        try:
            return Decimal(cleaned).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
        except Exception as e:
            raise ValueError(f"Unable to parse amount: {amount}") from e

    def clean_description(self, description: str) -> str:
        """Clean and standardize transaction descriptions"""
        if not description:
            return ""

        cleaned = ' '.join(str(description).split())

        prefixes_to_remove = [
            r'^POS\s+',
            r'^ECOM\s+',
            r'^UPI[/-]',
            r'^IMPS[/-]',
            r'^NEFT[/-]',
        ]
        for prefix in prefixes_to_remove:
            cleaned = re.sub(prefix, '', cleaned, flags=re.IGNORECASE)

        # Reference numbers printed after the merchant
        cleaned = re.sub(r'\s+(REF|TXN|AUTH)\s*(NO\.?)?\s*[:#]?\s*[A-Z0-9]{6,}\s*$', '', cleaned,
                         flags=re.IGNORECASE)

        cleaned = re.sub(r'[*]{2,}', ' ', cleaned)
        cleaned = re.sub(r'[-]{2,}', ' ', cleaned)
        cleaned = ' '.join(cleaned.split()).strip()

        return cleaned if cleaned else ' '.join(str(description).split())

    @staticmethod
    def normalize_merchant(description: str, max_length: int = 50) -> str:
        """Grouping key for a merchant: no long digit runs, no punctuation, upper case"""
        text = re.sub(r'\d{3,}', ' ', description or '')
        text = re.sub(r'[^\w]+|_', ' ', text)
        text = ' '.join(text.upper().split())
        return text[:max_length].strip()

    @staticmethod
    def transaction_id(statement_id: str, txn_date: date, amount: Decimal, description: str) -> str:
        """Deterministic id for one statement line"""
        key = f"{statement_id}|{txn_date.isoformat()}|{amount}|{description}"
        return hashlib.sha256(key.encode('utf-8')).hexdigest()[:16]
