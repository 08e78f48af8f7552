"""Column schemas and Kusto scalar type helpers.

A column schema is a plain ``dict[str, str]`` mapping column name to declared
type.  Python dicts preserve insertion order, which matters here: Kusto assigns
stable ordinal positions to columns, so position is part of the contract.
"""

from __future__ import annotations

import re

ColumnSchema = dict[str, str]

DYNAMIC = "dynamic"

SCALAR_TYPES: frozenset[str] = frozenset(
    {
        "string",
        "int",
        "long",
        "real",
        "bool",
        "datetime",
        "timespan",
        "dynamic",
        "guid",
        "decimal",
    }
)

NUMERIC_TYPES: frozenset[str] = frozenset({"int", "long", "real", "decimal"})

_TYPE_ALIASES: dict[str, str] = {
    "boolean": "bool",
    "double": "real",
    "int32": "int",
    "int64": "long",
    "date": "datetime",
    "time": "timespan",
    "uniqueid": "guid",
}

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Names that parse as keywords and therefore need bracket quoting.
_RESERVED_WORDS: frozenset[str] = frozenset(
    {
        "and",
        "as",
        "by",
        "cluster",
        "database",
        "false",
        "from",
        "in",
        "let",
        "not",
        "null",
        "of",
        "on",
        "or",
        "project",
        "set",
        "table",
        "to",
        "true",
        "where",
        "with",
    }
)


def normalize_type(type_name: str | None) -> str:
    """Map a declared type string onto a canonical Kusto scalar type.

    Unknown or empty type names resolve to ``dynamic``.
    """
    if not type_name:
        return DYNAMIC
    lowered = type_name.strip().lower()
    lowered = _TYPE_ALIASES.get(lowered, lowered)
    return lowered if lowered in SCALAR_TYPES else DYNAMIC


def bracket_if_identifier(name: str) -> str:
    """Quote *name* as ``['name']`` unless it is a plain, non-reserved identifier."""
    stripped = name.strip()
    if stripped.startswith("['") or stripped.startswith('["'):
        return stripped
    if _IDENTIFIER_RE.match(stripped) and stripped.lower() not in _RESERVED_WORDS:
        return stripped
    escaped = stripped.replace("'", "\\'")
    return f"['{escaped}']"


def render_columns(columns: ColumnSchema) -> str:
    """Render a schema as ``Name:type, Other:type`` in declaration order."""
    return ", ".join(f"{bracket_if_identifier(name)}:{type_name}" for name, type_name in columns.items())


def lookup_column(columns: ColumnSchema, name: str) -> str | None:
    """Case-insensitive lookup returning the declared column name, if any."""
    if name in columns:
        return name
    lowered = name.lower()
    for candidate in columns:
        if candidate.lower() == lowered:
            return candidate
    return None
