"""Tests for structured statement parsing and its retry loop."""

import json
from datetime import date
from decimal import Decimal

import pytest

from card_statements.models.core import Category, Direction
from card_statements.parsers.statement_parser import (
    ParseState, ParseStateMachine, StructuredStatementParser, backoff_delay, build_prompt,
)
from card_statements.utils.error_handler import ParseValidationFailed

from conftest import ScriptedClient


def make_parser(client, max_retries=2, timeout=5.0):
    sleeps = []
    parser = StructuredStatementParser(client, max_retries=max_retries, timeout=timeout,
                                       sleeper=sleeps.append)
    return parser, sleeps


class TestStructuredStatementParser:

    def test_valid_response(self, valid_response):
        client = ScriptedClient([valid_response])
        parser, sleeps = make_parser(client)

        parsed = parser.parse("statement text", "rbl", "RBL Bank")

        assert client.call_count == 1
        assert sleeps == []
        assert parsed.attempts == 1
        assert parsed.model == "scripted-model"
        assert parsed.confidence == 80.0
        assert parsed.warnings == []

        assert parsed.card_details.bank == "RBL"
        assert parsed.card_details.credit_limit == Decimal("200000.00")
        assert parsed.summary.statement_date == date(2024, 1, 31)
        assert parsed.summary.due_date == date(2024, 2, 20)
        assert parsed.summary.total_due == Decimal("12530.50")

        swiggy, interest, payment, amazon = parsed.transactions
        assert swiggy.date == date(2024, 1, 5)
        assert swiggy.amount == Decimal("450.00")
        assert swiggy.direction == Direction.DEBIT
        assert swiggy.category_hint == Category.ONLINE_FOOD_ORDERING.value
        assert interest.vendor_category == "INTEREST"
        assert interest.category_hint is None
        assert payment.direction == Direction.CREDIT
        assert payment.amount == Decimal("8000.00")
        assert amazon.category_hint == "amazon_spends"

    def test_prompt_names_the_bank(self, valid_response):
        client = ScriptedClient([valid_response])
        parser, _ = make_parser(client)
        parser.parse("raw statement body", "hdfc")
        assert "Issuing bank: HDFC" in client.prompts[0]
        assert "raw statement body" in client.prompts[0]

    def test_retry_feeds_back_the_error(self, valid_response):
        broken = {"transactions": [{"date": "05/01/2024", "description": "SWIGGY",
                                    "amount": 10, "type": "Dr"}]}
        client = ScriptedClient([broken, valid_response])
        parser, sleeps = make_parser(client)

        parsed = parser.parse("statement text", "rbl")

        assert client.call_count == 2
        assert parsed.attempts == 2
        assert sleeps == [1.0]
        assert "previous response was rejected" not in client.prompts[0]
        assert "previous response was rejected" in client.prompts[1]
        assert "transactions.0.date" in client.prompts[1]
        # second attempt costs retry credit
        assert parsed.confidence == 70.0

    def test_missing_amount_exhausts_retries(self, valid_response):
        del valid_response["transactions"][0]["amount"]
        client = ScriptedClient([valid_response])
        parser, sleeps = make_parser(client, max_retries=2)

        with pytest.raises(ParseValidationFailed) as exc_info:
            parser.parse("statement text", "rbl")

        assert client.call_count == 3
        assert sleeps == [1.0, 2.0]
        assert exc_info.value.attempts == 3
        assert exc_info.value.code == "E401"
        assert len(exc_info.value.errors) == 3
        assert "transactions.0.amount" in exc_info.value.errors[-1]

    def test_zero_retries_means_one_call(self, valid_response):
        client = ScriptedClient(["not json at all"])
        parser, _ = make_parser(client, max_retries=0)
        with pytest.raises(ParseValidationFailed):
            parser.parse("statement text", "rbl")
        assert client.call_count == 1

    def test_invalid_category_is_rejected(self, valid_response):
        valid_response["transactions"][0]["category"] = "groceries"
        client = ScriptedClient([valid_response])
        parser, _ = make_parser(client, max_retries=0)

        with pytest.raises(ParseValidationFailed) as exc_info:
            parser.parse("statement text", "rbl")
        assert "transactions.0.category" in exc_info.value.errors[0]

    def test_timeout_counts_as_an_attempt(self, valid_response):
        client = ScriptedClient([valid_response, valid_response], delays=[0.5])
        parser, sleeps = make_parser(client, max_retries=1, timeout=0.05)

        parsed = parser.parse("statement text", "rbl")

        assert parsed.attempts == 2
        assert client.call_count == 2
        assert "timed out" in client.prompts[1]

    def test_client_errors_count_as_attempts(self, valid_response):
        client = ScriptedClient([ConnectionError("reset by peer"), "", valid_response])
        parser, sleeps = make_parser(client, max_retries=2)

        parsed = parser.parse("statement text", "rbl")

        assert parsed.attempts == 3
        assert sleeps == [1.0, 2.0]
        assert "reset by peer" in client.prompts[1]
        assert "empty response" in client.prompts[2]

    def test_amount_strings_are_cleaned(self, valid_response):
        valid_response["transactions"][1]["amount"] = "₹1,234.50"
        client = ScriptedClient([valid_response])
        parser, _ = make_parser(client)
        parsed = parser.parse("statement text", "rbl")
        assert parsed.transactions[1].amount == Decimal("1234.50")

    def test_non_finite_amount_is_retried(self, valid_response):
        overflowing = json.dumps(valid_response).replace('"amount": 450.0', '"amount": 1e400')
        assert '1e400' in overflowing
        client = ScriptedClient([overflowing, valid_response])
        parser, sleeps = make_parser(client)

        parsed = parser.parse("statement text", "rbl")

        assert client.call_count == 2
        assert parsed.attempts == 2
        assert sleeps == [1.0]
        assert parsed.transactions[0].amount == Decimal("450.00")

    def test_unconvertible_amount_counts_as_an_attempt(self, valid_response):
        huge = json.loads(json.dumps(valid_response))
        huge["transactions"][0]["amount"] = 1e300
        client = ScriptedClient([huge, valid_response])
        parser, _ = make_parser(client)

        parsed = parser.parse("statement text", "rbl")

        assert parsed.attempts == 2
        assert "could not be converted" in client.prompts[1]

    def test_unconvertible_amount_exhausts_retries(self, valid_response):
        valid_response["transactions"][0]["amount"] = 1e300
        client = ScriptedClient([valid_response])
        parser, _ = make_parser(client, max_retries=1)

        with pytest.raises(ParseValidationFailed) as exc_info:
            parser.parse("statement text", "rbl")

        assert client.call_count == 2
        assert exc_info.value.attempts == 2


class TestParseStateMachine:

    def test_transitions_to_exhausted(self):
        machine = ParseStateMachine(max_retries=1)
        assert machine.max_attempts == 2

        assert machine.begin_attempt() == 1
        assert machine.fail("bad json") == ParseState.ATTEMPTING
        assert machine.begin_attempt() == 2
        assert machine.fail("still bad") == ParseState.EXHAUSTED
        assert machine.errors == ["bad json", "still bad"]
        assert machine.last_error == "still bad"

        with pytest.raises(RuntimeError):
            machine.begin_attempt()

    def test_success_is_terminal(self):
        machine = ParseStateMachine(max_retries=3)
        machine.begin_attempt()
        machine.succeed()
        assert machine.state == ParseState.SUCCEEDED
        with pytest.raises(RuntimeError):
            machine.begin_attempt()

    def test_negative_retries_rejected(self):
        with pytest.raises(ValueError):
            ParseStateMachine(max_retries=-1)


def test_backoff_delay():
    assert backoff_delay(0) == 0.0
    assert backoff_delay(1) == 1.0
    assert backoff_delay(2) == 2.0
    assert backoff_delay(3) == 4.0
    assert backoff_delay(10) == 8.0
    assert backoff_delay(2, base=0.5, cap=60) == 1.0


def test_build_prompt_without_error():
    prompt = build_prompt("text", "AXIS")
    assert prompt.startswith("Issuing bank: AXIS")
    assert "rejected" not in prompt
