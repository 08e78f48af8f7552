"""Query analyzer capability.

Consumer code imports from here:

    from schema_engine.analyzer import QuerySchemaAnalyzer, get_language_service
"""

from ._factory import get_language_service, register_language_service, reset_language_service
from ._protocols import QueryLanguageService
from ._types import (
    DEFAULT_SOURCE_NAME,
    AnalysisResult,
    Diagnostic,
    DiagnosticSeverity,
    QueryAnalysisError,
    QueryValidationResult,
    SchemaContext,
)
from .lexical import LexicalLanguageService
from .schema_extractor import QuerySchemaAnalyzer, format_diagnostic

__all__ = [
    "DEFAULT_SOURCE_NAME",
    "AnalysisResult",
    "Diagnostic",
    "DiagnosticSeverity",
    "LexicalLanguageService",
    "QueryAnalysisError",
    "QueryLanguageService",
    "QuerySchemaAnalyzer",
    "QueryValidationResult",
    "SchemaContext",
    "format_diagnostic",
    "get_language_service",
    "register_language_service",
    "reset_language_service",
]
