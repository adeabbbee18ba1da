"""Data models and structures"""

from .core import (
    BankRule,
    CardDetails,
    CanonicalTransaction,
    Category,
    CATEGORY_ENUM_VERSION,
    DecryptedDocument,
    Direction,
    ExtractedText,
    HolderDetails,
    ParsedStatement,
    PasswordCandidate,
    PipelineConfig,
    RawTransaction,
    StatementExtraction,
    StatementOutcome,
    StatementSource,
    StatementSummary,
)

__all__ = [
    'BankRule',
    'CardDetails',
    'CanonicalTransaction',
    'Category',
    'CATEGORY_ENUM_VERSION',
    'DecryptedDocument',
    'Direction',
    'ExtractedText',
    'HolderDetails',
    'ParsedStatement',
    'PasswordCandidate',
    'PipelineConfig',
    'RawTransaction',
    'StatementExtraction',
    'StatementOutcome',
    'StatementSource',
    'StatementSummary',
]
