"""Read password hints out of statement emails and filenames.

Issuers usually explain the password format in the email that carries the
statement ("your password is the first four letters of your name followed
by DDMM"). The fields found here steer which candidates are tried first.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

from ..models.core import BankRule


logger = logging.getLogger(__name__)


# field -> patterns that suggest the issuer asked for it
FIELD_PATTERNS = {
    'dob': [
        r'date of birth|DOB.*DDMMYYYY|birth date.*8 digit|DDMMYYYY.*birth|birth.*DDMMYYYY',
        r'DDMMYY|6 digit.*birth|birth.*6 digit',
        r'DDMM(?!YY)|birth.*4 digit|4 digit.*birth|date.*month.*birth',
    ],
    'card_last6': [r'last 6 digits|last six digits|6 digit.*card|card.*6 digit'],
    'card_last4': [r'last 4 digits|last four digits|card.*\*{4}|4 digit.*card|card.*4 digit'],
    'card_last2': [r'last 2 digits|last two digits|2 digit.*card|card.*2 digit'],
    'name': [r'name.*card|card.*name|cardholder name|account holder name|first\s*(?:four|4)\s*letters'],
    'mobile': [r'mobile number|registered mobile|phone number'],
    'pan': [r'PAN card|PAN number|permanent account number'],
}

FORMAT_DESCRIPTIONS = [
    (r'DDMMYYYY.*last.*4|birth.*last.*4|DOB.*last.*4', 'DDMMYYYY + last 4 digits of card'),
    (r'first\s*(?:four|4)\s*letters.*ddmm', 'First 4 letters of name + DDMM'),
    (r'DDMMYY.*last.*6', 'DDMMYY + last 6 digits of card'),
    (r'date of birth|DOB.*DDMMYYYY|DDMMYYYY', 'DDMMYYYY (date of birth)'),
    (r'DDMMYY', 'DDMMYY (date of birth)'),
    (r'last 6 digits|last six digits', 'Last 6 digits of card'),
    (r'last 4 digits|last four digits', 'Last 4 digits of card'),
]

CARD_DIGIT_PATTERNS = [
    r'ending\s*(?:in|with)?\s*[:\-]?\s*(\d{2,6})\b',
    r'\*{2,}\s*(\d{2,6})\b',
    r'[xX]{4,}\s*(\d{2,6})\b',
    r'card\s*(?:no\.?|number)?\s*[:\-]?\s*(?:\d{4}[\s\-]?){0,3}[xX*]{2,}[\s\-]?[xX*]*(\d{4})\b',
]


@dataclass
class PasswordHint:
    """What an email says about the statement password"""
    fields: List[str] = field(default_factory=list)
    format_description: Optional[str] = None
    bank_specific: bool = False


def _search(pattern: str, text: str) -> bool:
    return re.search(pattern, text, re.IGNORECASE) is not None


def analyze_email_body(body: str, bank_rule: Optional[BankRule] = None) -> PasswordHint:
    """Detect which credential fields the email asks for.

    Bank-specific patterns win over the generic ones; the first bank pattern
    that matches decides the field set.
    """
    hint = PasswordHint()
    if not body or not body.strip():
        return hint

    if bank_rule is not None:
        for pattern, fields in bank_rule.hint_patterns:
            if _search(pattern, body):
                hint.fields = list(fields)
                hint.bank_specific = True
                break

    if not hint.fields:
        for field_name, patterns in FIELD_PATTERNS.items():
            if any(_search(p, body) for p in patterns):
                hint.fields.append(field_name)

    for pattern, description in FORMAT_DESCRIPTIONS:
        if _search(pattern, body):
            hint.format_description = description
            break

    if hint.fields:
        logger.debug(f"Password hint fields detected: {', '.join(hint.fields)}")
    return hint


def extract_card_digits(*texts: Optional[str]) -> List[str]:
    """Find trailing card digits in an email subject, body or filename"""
    found: List[str] = []
    for text in texts:
        if not text:
            continue
        for pattern in CARD_DIGIT_PATTERNS:
            for match in re.finditer(pattern, text, re.IGNORECASE):
                digits = match.group(1)
                if digits not in found:
                    found.append(digits)
    return found
