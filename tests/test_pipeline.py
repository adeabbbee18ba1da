"""End-to-end tests for the statement pipeline with a scripted model client."""

import json
import os
import shutil
import tempfile
from decimal import Decimal

import pytest

from card_statements.models.core import HolderDetails, PipelineConfig, StatementSource
from card_statements.pipeline import StatementPipeline
from card_statements.utils.decryption import DecryptionEngine, PypdfBackend
from card_statements.utils.error_handler import ErrorHandler

from conftest import ScriptedClient, encrypt_pdf


class CountingBackend(PypdfBackend):

    def __init__(self):
        self.tries = 0

    def try_password(self, data, password):
        self.tries += 1
        return super().try_password(data, password)


class TestStatementPipeline:

    @pytest.fixture(autouse=True)
    def workspace(self, bank_rules, merchant_tables, statement_pdf, valid_response):
        self.scratch_dir = tempfile.mkdtemp()
        self.bank_rules = bank_rules
        self.merchant_tables = merchant_tables
        self.plain = statement_pdf
        self.encrypted = encrypt_pdf(statement_pdf, "15011990")
        self.valid_response = valid_response
        yield
        shutil.rmtree(self.scratch_dir, ignore_errors=True)

    def make_pipeline(self, responses=None, backend=None, error_handler=None, **config):
        config.setdefault('scratch_directory', self.scratch_dir)
        client = ScriptedClient(responses or [self.valid_response])
        engine = DecryptionEngine(backend or PypdfBackend(), scratch_dir=self.scratch_dir)
        pipeline = StatementPipeline(
            PipelineConfig(**config), self.bank_rules, self.merchant_tables,
            client=client, decryption_engine=engine, error_handler=error_handler,
            sleeper=lambda seconds: None,
        )
        return pipeline, client

    def source(self, bank="rbl", filename="rbl_jan.pdf", data=None):
        return StatementSource(data=data or self.encrypted, bank_code=bank, filename=filename)

    def test_happy_path(self):
        pipeline, client = self.make_pipeline()

        outcome = pipeline.process(self.source(), {"dob": "15/01/1990"})

        assert outcome.succeeded, outcome.failure_reason
        extraction = outcome.extraction
        assert extraction.attempts_used == 1
        assert extraction.password_used == "15011990"
        assert extraction.model == "scripted-model"
        assert extraction.confidence == 80.0
        assert not extraction.low_confidence
        assert extraction.total_in == Decimal("4530.50")
        assert extraction.total_spend == Decimal("12450.00")
        assert extraction.total_excluded == Decimal("-7919.50")
        assert extraction.excluded_reasons == {"EMI/Interest": 1, "Credits/Reversals": 1}
        assert [t.category.value for t in extraction.transactions] == [
            "online_food_ordering", "other_offline_spends", "other_offline_spends", "amazon_spends",
        ]
        # the extracted statement text reached the model
        assert "SWIGGY BANGALORE" in client.prompts[0]
        assert "Issuing bank: RBL Bank" in client.prompts[0]
        assert os.listdir(self.scratch_dir) == []

    def test_wrong_dob_needs_manual_password(self):
        pipeline, client = self.make_pipeline()

        outcome = pipeline.process(self.source(), HolderDetails.from_inputs(dob="01011980"))

        assert not outcome.succeeded
        assert outcome.failure_code == "E201"
        assert outcome.failure_reason.startswith("Needs manual password")
        assert outcome.extraction is None
        assert client.call_count == 0

    def test_explicit_password(self):
        pipeline, _ = self.make_pipeline()
        outcome = pipeline.process(self.source(bank="hdfc"), {"password": "15011990"})
        assert outcome.succeeded
        assert outcome.extraction.attempts_used == 1

    def test_unsupported_bank(self):
        pipeline, _ = self.make_pipeline()
        outcome = pipeline.process(self.source(bank="zzz"), {"dob": "15011990"})
        assert outcome.failure_code == "E102"

    def test_missing_inputs_make_no_attempts(self):
        backend = CountingBackend()
        pipeline, _ = self.make_pipeline(backend=backend)

        outcome = pipeline.process(self.source(bank="hdfc"), {"dob": "15011990"})

        assert outcome.failure_code == "E101"
        assert "name" in outcome.failure_reason
        assert backend.tries == 0

    def test_parse_failure(self):
        pipeline, client = self.make_pipeline(responses=["not json"], max_parse_retries=1)

        outcome = pipeline.process(self.source(), {"dob": "15011990"})

        assert outcome.failure_code == "E401"
        assert client.call_count == 2
        assert os.listdir(self.scratch_dir) == []

    def test_corrupt_input(self):
        pipeline, _ = self.make_pipeline()
        outcome = pipeline.process(self.source(data=b"%PDF-garbage"), {"dob": "15011990"})
        assert outcome.failure_code == "E202"

    def test_low_confidence_still_succeeds(self):
        log_dir = tempfile.mkdtemp()
        handler = ErrorHandler(log_directory=log_dir, enable_console=False)
        try:
            pipeline, _ = self.make_pipeline(error_handler=handler, confidence_threshold=90)
            outcome = pipeline.process(self.source(), {"dob": "15011990"})

            assert outcome.succeeded
            assert outcome.extraction.low_confidence
            assert any(w.startswith("W501") for w in outcome.warnings)
            assert handler.get_error_summary()['warnings_by_code'] == {"W501": 1}
        finally:
            handler.close()
            shutil.rmtree(log_dir, ignore_errors=True)

    def test_malformed_dob_is_a_credential_error(self):
        backend = CountingBackend()
        pipeline, client = self.make_pipeline(backend=backend)

        outcome = pipeline.process(self.source(), {"dob": "yesterday"})

        assert outcome.failure_code == "E103"
        assert "Date of birth" in outcome.failure_reason
        assert backend.tries == 0
        assert client.call_count == 0

    def test_non_finite_amount_is_retried(self):
        overflowing = json.dumps(self.valid_response).replace('"amount": 450.0', '"amount": 1e400')
        pipeline, client = self.make_pipeline(responses=[overflowing, self.valid_response])

        outcome = pipeline.process(self.source(), {"dob": "15011990"})

        assert outcome.succeeded, outcome.failure_reason
        assert client.call_count == 2
        assert outcome.extraction.total_spend == Decimal("12450.00")

    def test_statement_checks_reach_the_error_handler(self):
        self.valid_response["summary"]["purchase_amount"] = 500
        log_dir = tempfile.mkdtemp()
        handler = ErrorHandler(log_directory=log_dir, enable_console=False)
        try:
            pipeline, _ = self.make_pipeline(responses=[self.valid_response], error_handler=handler,
                                             confidence_threshold=0)
            outcome = pipeline.process(self.source(), {"dob": "15011990"})

            assert outcome.succeeded
            assert any(w.startswith("V003") for w in outcome.warnings)
            assert handler.get_error_summary()['warnings_by_code'] == {"V003": 1}
            assert handler.warnings[0].category == "data_validation"
            assert handler.warnings[0].statement_id == outcome.statement_id
        finally:
            handler.close()
            shutil.rmtree(log_dir, ignore_errors=True)

    def test_batch_progress_counts_every_statement(self):
        log_dir = tempfile.mkdtemp()
        handler = ErrorHandler(log_directory=log_dir, enable_console=False)
        try:
            pipeline, _ = self.make_pipeline(error_handler=handler)
            sources = [self.source(filename=f"{i}.pdf") if i % 3 else self.source(bank="zzz")
                       for i in range(12)]

            outcomes = pipeline.process_batch(sources, {"dob": "15011990"}, max_workers=4)

            progress = handler.progress
            assert progress.processed_statements == 12
            assert progress.successful_statements == sum(1 for o in outcomes if o.succeeded) == 8
            assert progress.failed_statements == 4
        finally:
            handler.close()
            shutil.rmtree(log_dir, ignore_errors=True)

    def test_card_digits_from_message(self):
        encrypted = encrypt_pdf(self.plain, "4400")
        pipeline, _ = self.make_pipeline()
        source = StatementSource(
            data=encrypted, bank_code="rbl", filename="statement.pdf",
            message_meta={"subject": "Statement for card ending 4400",
                          "body": "Password is the last 4 digits of your card"},
        )

        outcome = pipeline.process(source, {"dob": "15011990"})

        assert outcome.succeeded, outcome.failure_reason
        assert outcome.extraction.password_used == "4400"

    def test_batch_preserves_order(self):
        pipeline, _ = self.make_pipeline()
        sources = [
            self.source(filename="a.pdf"),
            self.source(bank="zzz", filename="b.pdf"),
            self.source(filename="c.pdf"),
        ]

        outcomes = pipeline.process_batch(sources, {"dob": "15011990"}, max_workers=3)

        assert [o.filename for o in outcomes] == ["a.pdf", "b.pdf", "c.pdf"]
        assert [o.succeeded for o in outcomes] == [True, False, True]

    def test_empty_batch(self):
        pipeline, _ = self.make_pipeline()
        assert pipeline.process_batch([], {"dob": "15011990"}) == []

    def test_reprocessing_is_idempotent(self):
        pipeline, _ = self.make_pipeline()
        first = pipeline.process(self.source(), {"dob": "15011990"})
        second = pipeline.process(self.source(), {"dob": "15011990"})

        assert first.statement_id == second.statement_id
        assert first.extraction.transactions == second.extraction.transactions
        assert first.extraction.total_spend == second.extraction.total_spend
