"""Query language service protocol.

A full Kusto parser and type checker is an external capability.  Consumer
code depends on this protocol only; the bundled lexical implementation is
the degraded fallback used when no richer service is registered or when a
registered service fails.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from ._types import AnalysisResult, Diagnostic, SchemaContext


@runtime_checkable
class QueryLanguageService(Protocol):
    """Parse and analyze query and command text."""

    def parse(self, text: str) -> list[Diagnostic]:
        """Check *text* for syntax errors only.

        Used for generated command scripts, which are checked without any
        schema context.

        Returns:
            Diagnostics found.  An empty list means the text parsed cleanly.
        """
        ...

    def parse_and_analyze(self, text: str, context: SchemaContext) -> AnalysisResult:
        """Parse *text* and type-check it against a single source table.

        Args:
            text: The query to analyze.
            context: Columns (and optionally the name) of the source table.

        Returns:
            ``AnalysisResult`` with diagnostics, the projected result schema
            and the input columns the query resolved.

        Raises:
            Exception: Implementations may raise on internal failure.  The
                :class:`~schema_engine.analyzer.QuerySchemaAnalyzer` facade
                catches this and falls back to the lexical analyzer.
        """
        ...
