"""Response schema for schema-constrained statement extraction.

The same pydantic models are handed to the model as its response schema and
used afterwards to validate whatever actually came back.
"""

import re
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from .core import Category


UNMAPPED = "unmapped"


def _clean_number(v):
    """Strip currency symbols and thousands separators from model output"""
    if isinstance(v, str):
        cleaned = re.sub(r'[^\d.\-]', '', v.strip())
        if not cleaned or cleaned in ('-', '.'):
            return None
        return cleaned
    return v


def _check_iso_date(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = str(v).strip()
    try:
        datetime.strptime(v, '%Y-%m-%d')
    except ValueError:
        raise ValueError(f'date must be in YYYY-MM-DD format, got {v!r}')
    return v


class TransactionItem(BaseModel):
    """One statement line item"""
    date: str = Field(..., description="Transaction date in YYYY-MM-DD format")
    description: str = Field(..., min_length=1, description="Merchant text exactly as printed")
    amount: float = Field(..., ge=0, allow_inf_nan=False, description="Positive transaction amount")
    type: str = Field(..., description="Dr for debit, Cr for credit")
    category: Optional[str] = Field(None, description="One canonical category value, or 'unmapped'")
    vendor_category: Optional[str] = Field(None, description="Issuer category label, e.g. FOOD, FUEL")
    vendor_sub_category: Optional[str] = Field(None, description="Issuer sub-category label")

    @field_validator('date')
    @classmethod
    def validate_date(cls, v):
        return _check_iso_date(v)

    @field_validator('description')
    @classmethod
    def validate_description(cls, v):
        v = ' '.join(str(v).split())
        if not v:
            raise ValueError('description cannot be empty')
        return v

    @field_validator('amount', mode='before')
    @classmethod
    def clean_amount(cls, v):
        return _clean_number(v)

    @field_validator('type')
    @classmethod
    def validate_type(cls, v):
        normalized = str(v).strip().lower()
        if normalized in ('dr', 'debit', 'd'):
            return 'debit'
        if normalized in ('cr', 'credit', 'c'):
            return 'credit'
        raise ValueError(f'type must be Dr or Cr, got {v!r}')

    @field_validator('category')
    @classmethod
    def validate_category(cls, v):
        if v is None or not str(v).strip():
            return UNMAPPED
        normalized = str(v).strip().lower()
        if normalized == UNMAPPED:
            return UNMAPPED
        if Category.from_value(normalized) is None:
            raise ValueError(f'category {v!r} is not a canonical category')
        return normalized


class CardDetailsItem(BaseModel):
    card_type: Optional[str] = None
    masked_number: Optional[str] = None
    credit_limit: Optional[float] = Field(None, allow_inf_nan=False)
    available_credit: Optional[float] = Field(None, allow_inf_nan=False)

    @field_validator('credit_limit', 'available_credit', mode='before')
    @classmethod
    def clean_amounts(cls, v):
        return _clean_number(v)


class SummaryItem(BaseModel):
    total_dues: Optional[float] = Field(None, allow_inf_nan=False)
    minimum_due: Optional[float] = Field(None, allow_inf_nan=False)
    previous_balance: Optional[float] = Field(None, allow_inf_nan=False)
    payment_received: Optional[float] = Field(None, allow_inf_nan=False)
    purchase_amount: Optional[float] = Field(None, allow_inf_nan=False)

    @field_validator('total_dues', 'minimum_due', 'previous_balance',
                     'payment_received', 'purchase_amount', mode='before')
    @classmethod
    def clean_amounts(cls, v):
        return _clean_number(v)


class StatementPeriodItem(BaseModel):
    start: Optional[str] = None
    end: Optional[str] = None
    due_date: Optional[str] = None

    @field_validator('start', 'end', 'due_date')
    @classmethod
    def validate_dates(cls, v):
        return _check_iso_date(v)


class StatementResponse(BaseModel):
    """Top-level response the model must produce"""
    card_details: CardDetailsItem = Field(default_factory=CardDetailsItem)
    summary: SummaryItem = Field(default_factory=SummaryItem)
    statement_period: StatementPeriodItem = Field(default_factory=StatementPeriodItem)
    transactions: List[TransactionItem]
