"""Error taxonomy, structured logging and failure reporting for the statement pipeline."""

import json
import logging
import threading
import traceback
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Any
from dataclasses import dataclass, asdict
import sys


class StatementError(Exception):
    """Base class for stage-terminal pipeline errors.

    Every subclass carries a stable code so that a failed StatementOutcome can
    be reported and grouped without string matching on messages.
    """
    code = "S999"
    error_type = "UNEXPECTED_ERROR"

    def to_context(self) -> Dict[str, Any]:
        return {}


class MissingCredentialInputs(StatementError):
    """Bank requires personal fields that were not supplied; no attempts made"""
    code = "E101"
    error_type = "MISSING_CREDENTIAL_INPUTS"

    def __init__(self, bank_code: str, missing: List[str]):
        self.bank_code = bank_code
        self.missing = list(missing)
        super().__init__(
            f"Bank '{bank_code}' requires {', '.join(self.missing)} to derive statement passwords"
        )

    def to_context(self) -> Dict[str, Any]:
        return {'bank_code': self.bank_code, 'missing': self.missing}


class InvalidCredentialInputs(StatementError):
    """Supplied personal fields cannot be read, e.g. a malformed date of birth"""
    code = "E103"
    error_type = "INVALID_CREDENTIAL_INPUTS"

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Invalid credential inputs: {detail}")


class UnsupportedBank(StatementError):
    code = "E102"
    error_type = "UNSUPPORTED_BANK"

    def __init__(self, bank_code: str):
        self.bank_code = bank_code
        super().__init__(f"No password convention configured for bank '{bank_code}'")


class DecryptionExhausted(StatementError):
    """Every candidate failed; the statement needs a manual password"""
    code = "E201"
    error_type = "DECRYPTION_EXHAUSTED"

    def __init__(self, attempts_tried: int, last_error: Optional[str] = None):
        self.attempts_tried = attempts_tried
        self.last_error = last_error
        super().__init__(
            f"Needs manual password: {attempts_tried} candidate(s) failed"
            + (f" (last error: {last_error})" if last_error else "")
        )

    def to_context(self) -> Dict[str, Any]:
        return {'attempts_tried': self.attempts_tried, 'last_error': self.last_error}


class FatalDecryptionError(StatementError):
    """Corrupt input or unavailable decryption tool; retrying cannot help"""
    code = "E202"
    error_type = "FATAL_DECRYPTION_ERROR"


class ExtractionFailed(StatementError):
    """Decrypted document is malformed (no pages, unreadable stream, no text)"""
    code = "E301"
    error_type = "EXTRACTION_FAILED"


class ParseValidationFailed(StatementError):
    """Model output never conformed to the response schema"""
    code = "E401"
    error_type = "PARSE_VALIDATION_FAILED"

    def __init__(self, attempts: int, errors: List[str]):
        self.attempts = attempts
        self.errors = list(errors)
        last = self.errors[-1] if self.errors else "no response"
        super().__init__(f"Model output failed validation after {attempts} attempt(s): {last}")

    def to_context(self) -> Dict[str, Any]:
        return {'attempts': self.attempts, 'errors': self.errors}


class LowConfidenceResult(StatementError):
    """Soft warning: the statement parsed but scored below the confidence threshold"""
    code = "W501"
    error_type = "LOW_CONFIDENCE_RESULT"

    def __init__(self, confidence: float, threshold: float):
        self.confidence = confidence
        self.threshold = threshold
        super().__init__(f"Confidence {confidence:.0f} is below threshold {threshold:.0f}")


class ErrorSeverity(Enum):
    """Error severity levels"""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories for classification"""
    CREDENTIALS = "credentials"
    DECRYPTION = "decryption"
    EXTRACTION = "extraction"
    MODEL_OUTPUT = "model_output"
    DATA_VALIDATION = "data_validation"
    CONFIGURATION = "configuration"
    SYSTEM = "system"


@dataclass
class ErrorDetail:
    """Detailed error information"""
    timestamp: str
    severity: str
    category: str
    error_code: str
    message: str
    statement_id: Optional[str] = None
    file_path: Optional[str] = None
    stack_trace: Optional[str] = None
    context: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        return asdict(self)


@dataclass
class ProcessingProgress:
    """Progress tracking for batch operations"""
    total_statements: int
    processed_statements: int = 0
    successful_statements: int = 0
    failed_statements: int = 0
    start_time: Optional[datetime] = None

    @property
    def completion_percentage(self) -> float:
        if self.total_statements == 0:
            return 0.0
        return (self.processed_statements / self.total_statements) * 100

    @property
    def success_rate(self) -> float:
        if self.processed_statements == 0:
            return 0.0
        return (self.successful_statements / self.processed_statements) * 100

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_statements': self.total_statements,
            'processed_statements': self.processed_statements,
            'successful_statements': self.successful_statements,
            'failed_statements': self.failed_statements,
            'start_time': self.start_time.isoformat() if self.start_time else None,
            'completion_percentage': self.completion_percentage,
            'success_rate': self.success_rate
        }


# Exception type -> category used when a StatementError is recorded
EXCEPTION_CATEGORIES = {
    'MISSING_CREDENTIAL_INPUTS': ErrorCategory.CREDENTIALS,
    'INVALID_CREDENTIAL_INPUTS': ErrorCategory.CREDENTIALS,
    'UNSUPPORTED_BANK': ErrorCategory.CONFIGURATION,
    'DECRYPTION_EXHAUSTED': ErrorCategory.DECRYPTION,
    'FATAL_DECRYPTION_ERROR': ErrorCategory.DECRYPTION,
    'EXTRACTION_FAILED': ErrorCategory.EXTRACTION,
    'PARSE_VALIDATION_FAILED': ErrorCategory.MODEL_OUTPUT,
    'LOW_CONFIDENCE_RESULT': ErrorCategory.MODEL_OUTPUT,
}


class JSONFormatter(logging.Formatter):
    def format(self, record):
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        # Add extra fields if present
        for extra in ('error_code', 'statement_id', 'category', 'context'):
            if hasattr(record, extra):
                log_entry[extra] = getattr(record, extra)

        return json.dumps(log_entry, default=str)


class ErrorHandler:
    """Collects per-statement errors and warnings and mirrors them to JSON-lines logs.

    Batch workers share one instance; record lists and progress counters are
    guarded by a lock.
    """

    def __init__(self, log_directory: str = "logs", enable_console: bool = True):
        self.log_directory = Path(log_directory)
        self.log_directory.mkdir(parents=True, exist_ok=True)

        self.errors: List[ErrorDetail] = []
        self.warnings: List[ErrorDetail] = []
        self.progress: Optional[ProcessingProgress] = None
        self._lock = threading.Lock()

        self._setup_logging(enable_console)

        self.error_codes = {
            "MISSING_CREDENTIAL_INPUTS": MissingCredentialInputs.code,
            "INVALID_CREDENTIAL_INPUTS": InvalidCredentialInputs.code,
            "UNSUPPORTED_BANK": UnsupportedBank.code,
            "DECRYPTION_EXHAUSTED": DecryptionExhausted.code,
            "FATAL_DECRYPTION_ERROR": FatalDecryptionError.code,
            "EXTRACTION_FAILED": ExtractionFailed.code,
            "PARSE_VALIDATION_FAILED": ParseValidationFailed.code,
            "LOW_CONFIDENCE_RESULT": LowConfidenceResult.code,

            # Statement-level sanity checks
            "DATE_OUTSIDE_PERIOD": "V001",
            "TRANSACTION_COUNT_SUSPICIOUS": "V002",
            "SUMMARY_MISMATCH": "V003",
            "DUE_DATE_BEFORE_STATEMENT": "V004",

            "UNEXPECTED_ERROR": "S999"
        }

    def _setup_logging(self, enable_console: bool):
        """Set up structured JSON logging"""
        self.logger = logging.getLogger('card_statements.audit')
        self.logger.setLevel(logging.DEBUG)
        self.logger.propagate = False

        for handler in list(self.logger.handlers):
            handler.close()
        self.logger.handlers.clear()

        log_file = self.log_directory / f"statements_{datetime.now().strftime('%Y%m%d')}.jsonl"
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(JSONFormatter())
        self.logger.addHandler(file_handler)

        if enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(logging.INFO)
            console_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))
            self.logger.addHandler(console_handler)

    def close(self):
        for handler in list(self.logger.handlers):
            handler.close()
        self.logger.handlers.clear()

    def log_error(self,
                  message: str,
                  error_type: str,
                  category: ErrorCategory = ErrorCategory.SYSTEM,
                  statement_id: Optional[str] = None,
                  file_path: Optional[str] = None,
                  exception: Optional[Exception] = None,
                  context: Optional[Dict[str, Any]] = None) -> ErrorDetail:
        """Log an error with detailed information"""
        error_code = self.error_codes.get(error_type, "S999")
        stack_trace = None

        # Stage errors are expected outcomes; only unexpected ones keep a trace
        if exception is not None and not isinstance(exception, StatementError):
            stack_trace = ''.join(traceback.format_exception(
                type(exception), exception, exception.__traceback__
            ))

        error_detail = ErrorDetail(
            timestamp=datetime.now().isoformat(),
            severity=ErrorSeverity.ERROR.value,
            category=category.value,
            error_code=error_code,
            message=message,
            statement_id=statement_id,
            file_path=file_path,
            stack_trace=stack_trace,
            context=context or {}
        )
        with self._lock:
            self.errors.append(error_detail)

        self.logger.error(
            message,
            extra={
                'error_code': error_code,
                'statement_id': statement_id,
                'category': category.value,
                'context': context or {}
            }
        )
        return error_detail

    def log_warning(self,
                    message: str,
                    warning_type: str,
                    category: ErrorCategory = ErrorCategory.SYSTEM,
                    statement_id: Optional[str] = None,
                    file_path: Optional[str] = None,
                    context: Optional[Dict[str, Any]] = None) -> ErrorDetail:
        """Log a warning with detailed information"""
        warning_code = self.error_codes.get(warning_type, "W999")

        warning_detail = ErrorDetail(
            timestamp=datetime.now().isoformat(),
            severity=ErrorSeverity.WARNING.value,
            category=category.value,
            error_code=warning_code,
            message=message,
            statement_id=statement_id,
            file_path=file_path,
            context=context or {}
        )
        with self._lock:
            self.warnings.append(warning_detail)

        self.logger.warning(
            message,
            extra={
                'error_code': warning_code,
                'statement_id': statement_id,
                'category': category.value,
                'context': context or {}
            }
        )
        return warning_detail

    def record_exception(self,
                         exception: Exception,
                         statement_id: Optional[str] = None,
                         file_path: Optional[str] = None) -> ErrorDetail:
        """Record a stage exception under its own code and category"""
        if isinstance(exception, StatementError):
            category = EXCEPTION_CATEGORIES.get(exception.error_type, ErrorCategory.SYSTEM)
            if isinstance(exception, LowConfidenceResult):
                return self.log_warning(str(exception), exception.error_type, category,
                                        statement_id=statement_id, file_path=file_path)
            return self.log_error(str(exception), exception.error_type, category,
                                  statement_id=statement_id, file_path=file_path,
                                  exception=exception, context=exception.to_context())
        return self.log_error(f"Unexpected error: {exception}", "UNEXPECTED_ERROR",
                              statement_id=statement_id, file_path=file_path,
                              exception=exception)

    def record_statement_check(self,
                               warning: str,
                               statement_id: Optional[str] = None,
                               file_path: Optional[str] = None) -> Optional[ErrorDetail]:
        """Record a coded statement sanity-check warning ("V003: ...").

        Returns None for warnings that carry no known check code.
        """
        code, _, detail = warning.partition(":")
        warning_type = next((name for name, value in self.error_codes.items()
                             if value == code.strip() and value.startswith("V")), None)
        if warning_type is None:
            return None
        return self.log_warning(detail.strip() or warning, warning_type, ErrorCategory.DATA_VALIDATION,
                                statement_id=statement_id, file_path=file_path)

    def log_info(self, message: str, context: Optional[Dict[str, Any]] = None):
        self.logger.info(message, extra={'context': context or {}})

    def start_progress_tracking(self, total_statements: int) -> ProcessingProgress:
        """Start tracking progress for batch operations"""
        self.progress = ProcessingProgress(total_statements=total_statements,
                                           start_time=datetime.now())
        self.log_info(f"Starting batch processing of {total_statements} statements")
        return self.progress

    def update_progress(self, success: bool):
        """Count one finished statement"""
        if not self.progress:
            return

        with self._lock:
            self.progress.processed_statements += 1
            if success:
                self.progress.successful_statements += 1
            else:
                self.progress.failed_statements += 1
            processed = self.progress.processed_statements
            snapshot = self.progress.to_dict()

        if processed % 10 == 0 or processed == self.progress.total_statements:
            self.log_info(
                f"Progress: {snapshot['completion_percentage']:.1f}% "
                f"({processed}/{self.progress.total_statements}) - "
                f"Success rate: {snapshot['success_rate']:.1f}%",
                context={'progress': snapshot}
            )

    def get_error_summary(self) -> Dict[str, Any]:
        """Get summary of all errors and warnings"""
        errors_by_code: Dict[str, int] = {}
        warnings_by_code: Dict[str, int] = {}

        for error in self.errors:
            errors_by_code[error.error_code] = errors_by_code.get(error.error_code, 0) + 1
        for warning in self.warnings:
            warnings_by_code[warning.error_code] = warnings_by_code.get(warning.error_code, 0) + 1

        return {
            'total_errors': len(self.errors),
            'total_warnings': len(self.warnings),
            'errors_by_code': errors_by_code,
            'warnings_by_code': warnings_by_code,
            'statements_with_errors': len(set(e.statement_id for e in self.errors if e.statement_id)),
            'progress': self.progress.to_dict() if self.progress else None
        }

    def generate_error_report(self, output_file: Optional[str] = None) -> str:
        """Write all recorded errors and warnings to a JSON report"""
        if output_file is None:
            output_file = str(self.log_directory / f"error_report_{datetime.now().strftime('%Y%m%d_%H%M%S')}.json")

        report = {
            'report_timestamp': datetime.now().isoformat(),
            'summary': self.get_error_summary(),
            'all_errors': [error.to_dict() for error in self.errors],
            'all_warnings': [warning.to_dict() for warning in self.warnings]
        }

        with open(output_file, 'w') as f:
            json.dump(report, f, indent=2, default=str)

        self.log_info(f"Error report generated: {output_file}")
        return output_file

    def has_errors(self) -> bool:
        return len(self.errors) > 0

    def has_warnings(self) -> bool:
        return len(self.warnings) > 0

    def get_errors_for_statement(self, statement_id: str) -> List[ErrorDetail]:
        return [error for error in self.errors if error.statement_id == statement_id]
