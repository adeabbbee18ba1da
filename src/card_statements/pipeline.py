"""End-to-end statement pipeline: decrypt, extract, parse, categorize, filter.

Each statement runs through the stages sequentially. Statements are
independent, so a batch fans out over a thread pool and every input yields
exactly one StatementOutcome, failures included.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, List, Mapping, Optional, Sequence, Union

from .models.core import (
    HolderDetails, PipelineConfig, StatementExtraction, StatementOutcome, StatementSource,
)
from .parsers.base import CompletionClient
from .parsers.llm_client import GeminiCompletionClient
from .parsers.pdf_parser import TextExtractor
from .parsers.statement_parser import StructuredStatementParser
from .utils.category_normalizer import CategoryNormalizer
from .utils.config_manager import ConfigManager
from .utils.decryption import DecryptionEngine
from .utils.error_handler import (
    ErrorHandler, InvalidCredentialInputs, LowConfidenceResult, StatementError, UnsupportedBank,
)
from .utils.password_generator import PasswordCandidateGenerator, describe_candidates
from .utils.password_hints import analyze_email_body, extract_card_digits
from .utils.rule_tables import BankRuleTable, MerchantTables
from .utils.spend_filter import SpendFilter


logger = logging.getLogger(__name__)


HolderInput = Union[HolderDetails, Mapping[str, Any]]


class StatementPipeline:
    """Runs every stage for one statement, or for a batch of them"""

    def __init__(self,
                 config: PipelineConfig,
                 bank_rules: BankRuleTable,
                 merchant_tables: MerchantTables,
                 client: Optional[CompletionClient] = None,
                 decryption_engine: Optional[DecryptionEngine] = None,
                 extractor: Optional[TextExtractor] = None,
                 error_handler: Optional[ErrorHandler] = None,
                 sleeper=None):
        self.config = config
        self.bank_rules = bank_rules
        self.merchant_tables = merchant_tables
        self.error_handler = error_handler

        if client is None:
            client = GeminiCompletionClient(model_name=config.model_name, timeout=config.model_timeout)

        self.generator = PasswordCandidateGenerator(bank_rules)
        self.decryption = decryption_engine or DecryptionEngine(scratch_dir=config.scratch_directory)
        self.extractor = extractor or TextExtractor()
        parser_options = {'sleeper': sleeper} if sleeper is not None else {}
        self.parser = StructuredStatementParser(
            client,
            max_retries=config.max_parse_retries,
            timeout=config.model_timeout,
            **parser_options,
        )
        self.normalizer = CategoryNormalizer(merchant_tables, config.aggregator_policy)
        self.spend_filter = SpendFilter(merchant_tables)

    @classmethod
    def from_config_manager(cls, config_manager: ConfigManager, **kwargs) -> "StatementPipeline":
        return cls(
            config_manager.load_config(),
            config_manager.load_bank_rules(),
            config_manager.load_merchant_tables(),
            **kwargs,
        )

    def process(self, source: StatementSource, holder: HolderInput) -> StatementOutcome:
        """Process one statement. Never raises; failures come back as a failed outcome."""
        started = time.monotonic()
        statement_id = source.statement_id
        logger.info(f"Processing {source.filename} ({statement_id})")

        try:
            extraction, warnings = self._run_stages(source, holder, statement_id)
        except StatementError as e:
            logger.warning(f"{source.filename} failed with {e.code}: {e}")
            self._record(e, statement_id, source.filename)
            return self._failed(source, statement_id, e.code, str(e), started)
        except Exception as e:
            logger.error(f"Unexpected error processing {source.filename}: {e}")
            self._record(e, statement_id, source.filename)
            return self._failed(source, statement_id, StatementError.code,
                                f"Unexpected error: {e}", started)

        return StatementOutcome(
            statement_id=statement_id,
            filename=source.filename,
            bank_code=source.bank_code,
            status="succeeded",
            extraction=extraction,
            warnings=warnings,
            processing_time=time.monotonic() - started,
        )

    def process_batch(self,
                      sources: Sequence[StatementSource],
                      holder: HolderInput,
                      max_workers: Optional[int] = None) -> List[StatementOutcome]:
        """Process statements concurrently; outcomes come back in input order"""
        if not sources:
            return []
        workers = max(1, min(max_workers or self.config.max_workers, len(sources)))
        if self.error_handler:
            self.error_handler.start_progress_tracking(len(sources))

        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [executor.submit(self._process_tracked, source, holder) for source in sources]
            outcomes = [future.result() for future in futures]

        succeeded = sum(1 for o in outcomes if o.succeeded)
        logger.info(f"Batch finished: {succeeded}/{len(outcomes)} statement(s) succeeded")
        return outcomes

    def _process_tracked(self, source: StatementSource, holder: HolderInput) -> StatementOutcome:
        outcome = self.process(source, holder)
        if self.error_handler:
            self.error_handler.update_progress(outcome.succeeded)
        return outcome

    def _run_stages(self, source: StatementSource, holder: HolderInput, statement_id: str):
        rule = self.bank_rules.get(source.bank_code)
        if rule is None:
            raise UnsupportedBank(source.bank_code)

        details = self._prepare_holder(holder, source)
        meta = source.message_meta or {}
        hint = analyze_email_body(meta.get('body', ''), rule)

        candidates = self.generator.generate(rule.bank_code, details, hint.fields)
        logger.debug(f"Candidates for {statement_id}: {describe_candidates(candidates)}")

        with self.decryption.decrypt(source.data, candidates, rule.max_password_attempts) as document:
            password_used = document.password_used
            attempts_used = document.attempt_count
            extracted = self.extractor.extract(document.scratch_path)

        parsed = self.parser.parse(extracted.text, rule.bank_code, rule.display_name or None)
        categorized = self.normalizer.categorize_all(parsed.transactions, statement_id)
        filtered = self.spend_filter.apply(categorized)

        warnings = list(parsed.warnings)
        if self.error_handler:
            for warning in parsed.warnings:
                self.error_handler.record_statement_check(warning, statement_id=statement_id,
                                                          file_path=source.filename)
        low_confidence = parsed.confidence < self.config.confidence_threshold
        if low_confidence:
            soft = LowConfidenceResult(parsed.confidence, self.config.confidence_threshold)
            warnings.append(f"{soft.code}: {soft}")
            self._record(soft, statement_id, source.filename)

        extraction = StatementExtraction(
            card_details=parsed.card_details,
            summary=parsed.summary,
            transactions=filtered.transactions,
            excluded_reasons=filtered.excluded_reasons,
            confidence=parsed.confidence,
            low_confidence=low_confidence,
            password_used=password_used,
            attempts_used=attempts_used,
            model=parsed.model,
            latency=parsed.latency,
            total_in=filtered.total_in,
            total_spend=filtered.total_spend,
            total_excluded=filtered.total_excluded,
        )
        return extraction, warnings

    @staticmethod
    def _prepare_holder(holder: HolderInput, source: StatementSource) -> HolderDetails:
        """Normalize holder inputs once and fill card digits from the message if absent"""
        if isinstance(holder, HolderDetails):
            details = holder
        else:
            try:
                details = HolderDetails.from_inputs(**dict(holder or {}))
            except (TypeError, ValueError) as e:
                raise InvalidCredentialInputs(str(e)) from e

        if not details.card_digits:
            meta = source.message_meta or {}
            found = extract_card_digits(meta.get('subject'), meta.get('body'), source.filename)
            if found:
                logger.debug(f"Found {len(found)} card digit fragment(s) in the statement message")
                details = details.with_card_digits(found)
        return details

    def _record(self, exception: Exception, statement_id: str, filename: str) -> None:
        if self.error_handler:
            self.error_handler.record_exception(exception, statement_id=statement_id, file_path=filename)

    @staticmethod
    def _failed(source: StatementSource, statement_id: str, code: str,
                reason: str, started: float) -> StatementOutcome:
        return StatementOutcome(
            statement_id=statement_id,
            filename=source.filename,
            bank_code=source.bank_code,
            status="failed",
            failure_code=code,
            failure_reason=reason,
            processing_time=time.monotonic() - started,
        )
