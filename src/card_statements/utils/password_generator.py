"""Deterministic password candidate generation for encrypted statements.

Candidates are plain string transforms over the holder's details. The order
is bank convention first, then transforms for fields the email hinted at,
then generic transforms, then common defaults.
"""

import logging
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional

from ..models.core import HolderDetails, PasswordCandidate
from .error_handler import MissingCredentialInputs, UnsupportedBank
from .rule_tables import BankRuleTable


logger = logging.getLogger(__name__)


COMMON_DEFAULTS = ('0000', '1234', 'password', '123456', '1111', '2222')

# Candidates shorter than this are never tried on their own
MIN_PASSWORD_LENGTH = 4

# Transforms tried after the bank's own order, for fields an email mentioned
HINTED_TRANSFORMS = {
    'dob': ('dob-full', 'dob-ddmmyy', 'dob-ddmm'),
    'card_last4': ('card-last4', 'dob+card', 'name-first4+card-last4'),
    'card_last6': ('card-last6', 'ddmmyy+card-last6'),
    'card_last2': ('ddmm+card-last2',),
    'name': ('name-first4+ddmm', 'name-first4-lower+ddmm', 'name-no-spaces'),
}

GENERIC_ORDER = (
    'dob-full',
    'dob-ddmmyy',
    'name-first4+ddmm',
    'name-first4-lower+ddmm',
    'name-first4+card-last4',
    'dob+card',
    'card+dob',
    'ddmmyy+card',
    'ddmm+card',
    'ddmmyy+card-last6',
    'name+dob',
    'dob+name',
    'dob-ddmm',
    'dob-year',
    'dob-reverse',
    'card-last4',
    'card-last6',
    'card-padded',
    'name-no-spaces',
    'name-first4',
    'name-first4-lower',
    'name-first',
    'name-last',
    'name-full',
    'name-initials',
    'ddmm+card-last2',
)


def _letters(name: str) -> str:
    return ''.join(ch for ch in name.upper() if ch.isalpha())


def _name_parts(name: str) -> List[str]:
    return [''.join(ch for ch in part if ch.isalpha()) for part in name.upper().split()
            if any(ch.isalpha() for ch in part)]


def build_transforms(holder: HolderDetails) -> Dict[str, List[str]]:
    """Every transform the holder's details allow, keyed by provenance tag.

    A transform whose inputs are missing is simply absent from the result.
    """
    out: Dict[str, List[str]] = {}

    def put(tag: str, *values: Optional[str]):
        vals = [v for v in values if v]
        if vals:
            out[tag] = vals

    dob = holder.dob
    ddmm = ddmmyy = None
    if dob:
        dd, mm, yyyy = dob[:2], dob[2:4], dob[4:]
        ddmm = dd + mm
        ddmmyy = dd + mm + yyyy[2:]
        put('dob-full', dob)
        put('dob-ddmmyy', ddmmyy)
        put('dob-ddmm', ddmm)
        put('dob-year', yyyy)
        put('dob-reverse', yyyy + mm + dd)

    first4 = None
    if holder.name:
        letters = _letters(holder.name)
        parts = _name_parts(holder.name)
        first4 = letters[:4] if letters else None
        put('name-first4', first4)
        put('name-first4-lower', first4.lower() if first4 else None)
        put('name-full', ' '.join(parts))
        put('name-no-spaces', letters)
        if parts:
            put('name-first', parts[0])
            if len(parts) > 1:
                put('name-last', parts[-1])
                put('name-initials', ''.join(p[0] for p in parts))

    last2, last4, last6 = holder.card_last(2), holder.card_last(4), holder.card_last(6)
    put('card-last4', last4)
    put('card-last6', last6)
    if last4:
        put('card-padded', last4 + '00', '00' + last4)

    if first4 and ddmm:
        put('name-first4+ddmm', first4 + ddmm)
        put('name-first4-lower+ddmm', first4.lower() + ddmm)
    if first4 and last4:
        put('name-first4+card-last4', first4 + last4)
    if holder.name and dob:
        letters = _letters(holder.name)
        put('name+dob', letters + dob)
        put('dob+name', dob + letters)
    if dob and last4:
        put('dob+card', dob + last4)
        put('card+dob', last4 + dob)
        put('ddmmyy+card', ddmmyy + last4)
        put('ddmm+card', ddmm + last4)
    if ddmmyy and last6:
        put('ddmmyy+card-last6', ddmmyy + last6)
    if ddmm and last2:
        put('ddmm+card-last2', ddmm + last2)

    return out


class PasswordCandidateGenerator:
    """Turns holder details into an ordered, de-duplicated candidate list.

    Pure: identical inputs always produce the identical list.
    """

    def __init__(self, bank_rules: BankRuleTable):
        self.bank_rules = bank_rules

    def generate(self,
                 bank_code: str,
                 holder: HolderDetails,
                 hint_fields: Optional[Iterable[str]] = None) -> List[PasswordCandidate]:
        """Generate candidates for one statement

        Args:
            bank_code: Issuer code from the bank rule table
            holder: Normalized holder details
            hint_fields: Credential fields an email said the password uses

        Returns:
            Candidates, most likely first

        Raises:
            UnsupportedBank: If the bank has no configured convention
            MissingCredentialInputs: If the bank's required fields are missing
                and no explicit password was supplied
        """
        rule = self.bank_rules.get(bank_code)
        if rule is None:
            raise UnsupportedBank(bank_code)

        available = set(holder.available_fields())
        missing = [f for f in rule.required_fields if f not in available]
        if missing and not holder.password:
            raise MissingCredentialInputs(rule.bank_code, missing)

        transforms = build_transforms(holder)
        ordered: "OrderedDict[str, PasswordCandidate]" = OrderedDict()

        def add(value: str, provenance: str):
            if value not in ordered:
                ordered[value] = PasswordCandidate(value=value, provenance=provenance)

        def add_transform(tag: str):
            for value in transforms.get(tag, ()):
                if len(value) >= MIN_PASSWORD_LENGTH:
                    add(value, tag)

        if holder.password:
            add(holder.password, 'explicit')

        for tag in rule.candidate_order:
            add_transform(tag)

        for hinted in hint_fields or ():
            for tag in HINTED_TRANSFORMS.get(hinted, ()):
                add_transform(tag)

        for tag in GENERIC_ORDER:
            add_transform(tag)

        for value in COMMON_DEFAULTS:
            add(value, 'default')

        candidates = list(ordered.values())
        logger.debug(f"Generated {len(candidates)} password candidate(s) for {rule.bank_code}")
        return candidates


def describe_candidates(candidates: List[PasswordCandidate]) -> List[str]:
    """Masked, log-safe rendering of a candidate list"""
    return [f"{c.provenance}:{c.masked}" for c in candidates]


