"""Text extraction and structured parsing of statement documents"""

from .base import CompletionClient, CompletionResponse, DataTransformer
from .pdf_parser import TextExtractor
from .statement_parser import ParseState, StructuredStatementParser, backoff_delay
from .llm_client import GeminiCompletionClient

__all__ = [
    'CompletionClient',
    'CompletionResponse',
    'DataTransformer',
    'TextExtractor',
    'ParseState',
    'StructuredStatementParser',
    'backoff_delay',
    'GeminiCompletionClient',
]
