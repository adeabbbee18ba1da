"""Utility functions and helpers"""

from .error_handler import (
    ErrorHandler, ErrorCategory, ErrorSeverity, StatementError, MissingCredentialInputs,
    InvalidCredentialInputs,
    UnsupportedBank, DecryptionExhausted, FatalDecryptionError, ExtractionFailed,
    ParseValidationFailed, LowConfidenceResult,
)
from .config_manager import ConfigManager, get_default_config_manager
from .rule_tables import BankRuleTable, MerchantTables, build_bank_rules, build_merchant_tables
from .password_hints import PasswordHint, analyze_email_body, extract_card_digits
from .password_generator import PasswordCandidateGenerator, describe_candidates
from .decryption import DecryptionBackend, DecryptionEngine, PypdfBackend
from .validation import ValidationEngine
from .confidence_scorer import ConfidenceScorer
from .category_normalizer import CategoryDecision, CategoryNormalizer
from .spend_filter import FilterResult, SpendFilter
from .csv_writer import CSVWriter

__all__ = [
    'ErrorHandler',
    'ErrorCategory',
    'ErrorSeverity',
    'StatementError',
    'MissingCredentialInputs',
    'InvalidCredentialInputs',
    'UnsupportedBank',
    'DecryptionExhausted',
    'FatalDecryptionError',
    'ExtractionFailed',
    'ParseValidationFailed',
    'LowConfidenceResult',
    'ConfigManager',
    'get_default_config_manager',
    'BankRuleTable',
    'MerchantTables',
    'build_bank_rules',
    'build_merchant_tables',
    'PasswordHint',
    'analyze_email_body',
    'extract_card_digits',
    'PasswordCandidateGenerator',
    'describe_candidates',
    'DecryptionBackend',
    'DecryptionEngine',
    'PypdfBackend',
    'ValidationEngine',
    'ConfidenceScorer',
    'CategoryDecision',
    'CategoryNormalizer',
    'FilterResult',
    'SpendFilter',
    'CSVWriter',
]
