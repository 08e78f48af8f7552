"""Shared types for the query analyzer capability.

Immutable value types (diagnostics, analysis results, schema contexts) are
frozen dataclasses so that any implementation can construct them without
depending on a particular validation library.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from schema_engine.errors import SchemaEngineError
from schema_engine.models.columns import ColumnSchema

DEFAULT_SOURCE_NAME = "SourceTable"


class DiagnosticSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True, slots=True)
class Diagnostic:
    """One parser or analyzer finding, located by character offsets."""

    start: int
    end: int
    message: str
    severity: DiagnosticSeverity = DiagnosticSeverity.ERROR

    @property
    def is_error(self) -> bool:
        return self.severity is DiagnosticSeverity.ERROR


@dataclass(frozen=True, slots=True)
class SchemaContext:
    """The single source table a query is analyzed against.

    ``table_name`` may be ``None`` when the caller does not know how the
    query names its source; the leading table reference is then accepted
    as-is.
    """

    columns: tuple[tuple[str, str], ...] = ()
    table_name: str | None = None

    @classmethod
    def from_schema(cls, columns: ColumnSchema | None, table_name: str | None = None) -> SchemaContext:
        return cls(columns=tuple((columns or {}).items()), table_name=table_name)

    def schema(self) -> ColumnSchema:
        return dict(self.columns)


@dataclass(frozen=True, slots=True)
class AnalysisResult:
    """Outcome of parsing and type-checking a query against a schema context."""

    diagnostics: tuple[Diagnostic, ...] = ()
    result_schema: tuple[tuple[str, str], ...] | None = None
    referenced_columns: frozenset[str] = frozenset()

    @property
    def has_errors(self) -> bool:
        return any(d.is_error for d in self.diagnostics)

    def schema(self) -> ColumnSchema:
        return dict(self.result_schema or ())


@dataclass
class QueryValidationResult:
    """Validation report for a transformation query."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    output_schema: ColumnSchema = field(default_factory=dict)
    referenced_columns: set[str] = field(default_factory=set)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    def __str__(self) -> str:
        messages: list[str] = []
        if self.errors:
            messages.append(f"Errors: {', '.join(self.errors)}")
        if self.warnings:
            messages.append(f"Warnings: {', '.join(self.warnings)}")
        if not self.errors:
            messages.append(f"Output columns: {', '.join(self.output_schema)}")
            messages.append(f"Referenced columns: {', '.join(sorted(self.referenced_columns))}")
        return "; ".join(messages) if messages else "Valid"


class QueryAnalysisError(SchemaEngineError):
    """A query could not be analyzed because it has errors."""
