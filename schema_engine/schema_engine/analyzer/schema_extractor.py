"""Output-schema extraction and validation for transformation queries.

:class:`QuerySchemaAnalyzer` is the facade used by validators and the diff
engine.  It drives the registered :class:`QueryLanguageService` and falls
back to the bundled lexical analyzer when that service raises, downgrading
the failure to a warning.
"""

from __future__ import annotations

import logging

from schema_engine.models.columns import ColumnSchema

from ._factory import get_language_service
from ._protocols import QueryLanguageService
from ._types import (
    DEFAULT_SOURCE_NAME,
    AnalysisResult,
    Diagnostic,
    QueryAnalysisError,
    QueryValidationResult,
    SchemaContext,
)
from .lexical import LexicalLanguageService

logger = logging.getLogger(__name__)


def format_diagnostic(diagnostic: Diagnostic) -> str:
    label = "Error" if diagnostic.is_error else "Warning"
    return f"{label} at position {diagnostic.start}: {diagnostic.message}"


class QuerySchemaAnalyzer:
    """Analyze transformation queries against a single source table.

    Parameters
    ----------
    service:
        Primary analyzer.  Defaults to :func:`get_language_service`.
    fallback:
        Analyzer used when *service* raises.  Defaults to the lexical one.
    """

    def __init__(
        self,
        service: QueryLanguageService | None = None,
        fallback: QueryLanguageService | None = None,
    ) -> None:
        self._service = service if service is not None else get_language_service()
        self._fallback = fallback if fallback is not None else LexicalLanguageService()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def extract_output_schema(self, query: str, input_schema: ColumnSchema | None = None) -> ColumnSchema:
        """Return the columns and types *query* produces.

        Raises
        ------
        QueryAnalysisError
            If the query has errors.
        """
        result, _ = self._analyze(query, SchemaContext.from_schema(input_schema))
        errors = [format_diagnostic(d) for d in result.diagnostics if d.is_error]
        if errors:
            raise QueryAnalysisError(f"Query has errors: {'; '.join(errors)}")
        return result.schema()

    def extract_column_references(
        self,
        query: str,
        source_name: str,
        input_schema: ColumnSchema | None = None,
    ) -> set[str]:
        """Return the source columns *query* references.

        A query with errors references nothing.
        """
        result, _ = self._analyze(query, SchemaContext.from_schema(input_schema, source_name))
        if result.has_errors:
            return set()
        return set(result.referenced_columns)

    def validate_query(
        self,
        query: str,
        input_schema: ColumnSchema | None = None,
        source_name: str = DEFAULT_SOURCE_NAME,
    ) -> QueryValidationResult:
        """Validate *query* and report its output schema and references."""
        result, fallback_warnings = self._analyze(query, SchemaContext.from_schema(input_schema, source_name))

        validation = QueryValidationResult(warnings=list(fallback_warnings))
        for diagnostic in result.diagnostics:
            if diagnostic.is_error:
                validation.errors.append(format_diagnostic(diagnostic))
            else:
                validation.warnings.append(format_diagnostic(diagnostic))

        if validation.is_valid:
            validation.output_schema = result.schema()
            validation.referenced_columns = set(result.referenced_columns)
        return validation

    def check_script(self, text: str) -> list[Diagnostic]:
        """Syntax-check a generated command script."""
        try:
            return list(self._service.parse(text))
        except Exception as exc:  # noqa: BLE001
            logger.warning("Script parser failed (%s), falling back to lexical parsing", exc)
            return list(self._fallback.parse(text))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _analyze(self, query: str, context: SchemaContext) -> tuple[AnalysisResult, list[str]]:
        try:
            return self._service.parse_and_analyze(query, context), []
        except Exception as exc:  # noqa: BLE001
            logger.warning("Query analyzer failed (%s), falling back to lexical analysis", exc)
            warning = f"Parser-based validation failed ({exc}), falling back to lexical validation"
            return self._fallback.parse_and_analyze(query, context), [warning]
