"""Structured statement parsing with a bounded retry state machine.

Raw statement text goes to a schema-constrained model; whatever comes back
is validated against models.schema before anything downstream sees it.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from datetime import date
from enum import Enum
from typing import Callable, List, Optional

from pydantic import ValidationError

from ..models.core import (
    CardDetails, Category, Direction, ParsedStatement, RawTransaction, StatementSummary,
)
from ..models.schema import UNMAPPED, StatementResponse
from ..utils.confidence_scorer import ConfidenceScorer
from ..utils.error_handler import ParseValidationFailed
from ..utils.validation import ValidationEngine
from .base import CompletionClient, DataTransformer


logger = logging.getLogger(__name__)


CATEGORY_GUIDE = """\
- amazon_spends: purchases on Amazon (not Amazon Pay bill payments)
- flipkart_spends: purchases on Flipkart or Myntra
- grocery_spends_online: BigBasket, Blinkit, Zepto, JioMart, Swiggy Instamart
- online_food_ordering: Swiggy, Zomato and other food delivery apps (not dining)
- dining_or_going_out: restaurants, cafes, bars, movie halls
- other_online_spends: online purchases with no better category, Uber, Ola, Rapido
- other_offline_spends: in-store purchases, street taxis; use this when uncertain
- flights: airlines, MakeMyTrip, Cleartrip, Yatra flight bookings
- hotels: hotel and stay bookings (OYO, Airbnb, Booking.com)
- mobile_phone_bills: Airtel, Jio, Vi, BSNL recharges and postpaid bills
- electricity_bills: electricity board payments
- water_bills: water board payments
- ott_channels: Netflix, Hotstar, Prime Video, Spotify and similar subscriptions
- fuel: petrol pumps and fuel stations
- school_fees: schools, colleges, tuition and education fees
- rent: rent payments, including CRED or Dreamplug rent transfers
- insurance_health: health insurance premiums
- insurance_car_or_bike: motor insurance premiums
- large_electronics: phones, laptops, televisions and appliances from electronics stores
- pharmacy: chemists, Apollo Pharmacy, 1mg, PharmEasy"""

SYSTEM_INSTRUCTION = f"""\
You are an expert credit card statement parser. Extract every transaction line
from the statement text you are given. Do not skip, merge or summarise lines.

Rules:
- Dates must be in YYYY-MM-DD format.
- Amounts are always positive numbers without currency symbols or separators.
- type is "Dr" for debits (purchases, fees, interest) and "Cr" for credits
  (payments, refunds, cashback).
- category must be exactly one of the values below, or "unmapped" if none fits.
- Copy vendor_category and vendor_sub_category when the statement prints them.
- Fill card_details, summary and statement_period from the statement header
  when present; leave fields null when they are not printed.

Categories:
{CATEGORY_GUIDE}"""


class ParseState(Enum):
    """States of one parse run"""
    ATTEMPTING = "attempting"
    VALIDATION_FAILED = "validation_failed"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"


class ParseStateMachine:
    """Bounded retry loop: ATTEMPTING -> VALIDATION_FAILED -> ATTEMPTING | EXHAUSTED.

    max_retries counts tries after the first, so a run makes at most
    1 + max_retries calls.
    """

    def __init__(self, max_retries: int):
        if max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        self.max_attempts = 1 + max_retries
        self.state = ParseState.ATTEMPTING
        self.attempts = 0
        self.errors: List[str] = []

    def begin_attempt(self) -> int:
        if self.state != ParseState.ATTEMPTING:
            raise RuntimeError(f"Cannot start an attempt from state {self.state.value}")
        self.attempts += 1
        return self.attempts

    def fail(self, error: str) -> ParseState:
        self.state = ParseState.VALIDATION_FAILED
        self.errors.append(error)
        if self.attempts >= self.max_attempts:
            self.state = ParseState.EXHAUSTED
        else:
            self.state = ParseState.ATTEMPTING
        return self.state

    def succeed(self) -> None:
        self.state = ParseState.SUCCEEDED

    @property
    def last_error(self) -> Optional[str]:
        return self.errors[-1] if self.errors else None


def backoff_delay(attempt: int, base: float = 1.0, cap: float = 8.0) -> float:
    """Seconds to wait before retry number `attempt` (1-based)"""
    if attempt < 1:
        return 0.0
    return min(cap, base * (2 ** (attempt - 1)))


def build_prompt(raw_text: str, bank_name: str, previous_error: Optional[str] = None) -> str:
    prompt = f"Issuing bank: {bank_name}\n\nStatement text:\n{raw_text}"
    if previous_error:
        prompt += (
            "\n\nYour previous response was rejected for these reasons:\n"
            f"{previous_error}\n"
            "Return corrected JSON that satisfies the schema."
        )
    return prompt


def _summarize_validation_error(error: ValidationError, limit: int = 10) -> str:
    lines = []
    for detail in error.errors()[:limit]:
        location = ".".join(str(part) for part in detail.get("loc", ()))
        lines.append(f"{location or '<root>'}: {detail.get('msg')}")
    remaining = error.error_count() - limit
    if remaining > 0:
        lines.append(f"... and {remaining} more error(s)")
    return "\n".join(lines)


class StructuredStatementParser:
    """Turns extracted statement text into validated transactions"""

    def __init__(self,
                 client: CompletionClient,
                 max_retries: int = 2,
                 timeout: float = 60.0,
                 sleeper: Callable[[float], None] = time.sleep,
                 scorer: Optional[ConfidenceScorer] = None,
                 validator: Optional[ValidationEngine] = None):
        self.client = client
        self.max_retries = max_retries
        self.timeout = timeout
        self.sleeper = sleeper
        self.scorer = scorer or ConfidenceScorer()
        self.validator = validator or ValidationEngine()
        self.transformer = DataTransformer()

    def parse(self, raw_text: str, bank_code: str, bank_name: Optional[str] = None) -> ParsedStatement:
        """Parse statement text into a ParsedStatement

        Raises:
            ParseValidationFailed: If no attempt produced schema-valid output
        """
        machine = ParseStateMachine(self.max_retries)
        latency = 0.0

        while machine.state == ParseState.ATTEMPTING:
            attempt = machine.begin_attempt()
            if attempt > 1:
                self.sleeper(backoff_delay(attempt - 1))

            prompt = build_prompt(raw_text, bank_name or bank_code.upper(), machine.last_error)
            started = time.monotonic()
            try:
                text = self._call_with_timeout(prompt)
            except FutureTimeout:
                latency += time.monotonic() - started
                state = machine.fail(f"model call timed out after {self.timeout}s")
                logger.warning(f"Parse attempt {attempt} timed out ({state.value})")
                continue
            except Exception as e:
                latency += time.monotonic() - started
                state = machine.fail(f"model call failed: {e}")
                logger.warning(f"Parse attempt {attempt} raised {type(e).__name__} ({state.value})")
                continue
            latency += time.monotonic() - started

            if not text or not text.strip():
                state = machine.fail("model returned an empty response")
                logger.warning(f"Parse attempt {attempt} returned nothing ({state.value})")
                continue

            try:
                response = StatementResponse.model_validate_json(text)
            except ValidationError as e:
                state = machine.fail(_summarize_validation_error(e))
                logger.warning(f"Parse attempt {attempt} failed validation with "
                               f"{e.error_count()} error(s) ({state.value})")
                continue

            try:
                statement = self._build_statement(response, bank_code, attempt,
                                                  machine.max_attempts, latency)
            except ValueError as e:
                state = machine.fail(f"response could not be converted: {e}")
                logger.warning(f"Parse attempt {attempt} produced unusable values ({state.value})")
                continue

            machine.succeed()
            logger.info(f"Parsed {len(response.transactions)} transaction(s) on attempt {attempt}")
            return statement

        raise ParseValidationFailed(machine.attempts, machine.errors)

    def _call_with_timeout(self, prompt: str) -> Optional[str]:
        executor = ThreadPoolExecutor(max_workers=1)
        try:
            future = executor.submit(self.client.complete, SYSTEM_INSTRUCTION, prompt, StatementResponse)
            return future.result(timeout=self.timeout).text
        finally:
            # a stalled call is abandoned, not waited on
            executor.shutdown(wait=False)

    def _build_statement(self, response: StatementResponse, bank_code: str,
                         attempts: int, max_attempts: int, latency: float) -> ParsedStatement:
        transactions = [self._to_transaction(item) for item in response.transactions]

        card = response.card_details
        card_details = CardDetails(
            bank=bank_code.upper(),
            masked_number=card.masked_number,
            card_type=card.card_type,
            credit_limit=self._amount_or_none(card.credit_limit),
            available_credit=self._amount_or_none(card.available_credit),
        )

        period = response.statement_period
        totals = response.summary
        summary = StatementSummary(
            statement_date=self._date_or_none(period.end),
            due_date=self._date_or_none(period.due_date),
            total_due=self._amount_or_none(totals.total_dues),
            min_due=self._amount_or_none(totals.minimum_due),
            opening_balance=self._amount_or_none(totals.previous_balance),
            payment_amount=self._amount_or_none(totals.payment_received),
            purchase_amount=self._amount_or_none(totals.purchase_amount),
        )

        warnings = self.validator.validate_statement(
            transactions, summary,
            period_start=self._date_or_none(period.start),
            period_end=self._date_or_none(period.end),
        )
        for warning in warnings:
            logger.debug(f"Statement check: {warning}")

        confidence = self.scorer.score(attempts, max_attempts, card_details, summary,
                                       transactions, warnings)

        return ParsedStatement(
            card_details=card_details,
            summary=summary,
            transactions=transactions,
            model=self.client.model_name,
            latency=latency,
            attempts=attempts,
            confidence=confidence,
            warnings=warnings,
        )

    def _to_transaction(self, item) -> RawTransaction:
        hint = item.category if item.category != UNMAPPED else None
        return RawTransaction(
            date=self.transformer.normalize_date(item.date),
            description=self.transformer.clean_description(item.description),
            amount=self.transformer.normalize_amount(item.amount),
            direction=Direction.parse(item.type),
            vendor_category=(item.vendor_category or "").strip().upper() or None,
            vendor_sub_category=(item.vendor_sub_category or "").strip().upper() or None,
            category_hint=Category.from_value(hint).value if hint else None,
        )

    def _amount_or_none(self, value):
        return None if value is None else self.transformer.normalize_amount(value)

    def _date_or_none(self, value) -> Optional[date]:
        return None if not value else self.transformer.normalize_date(value)
