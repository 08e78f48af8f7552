"""Lexical fallback implementation of :class:`QueryLanguageService`.

This is the only analyzer bundled with the engine.  It walks the pipe
segments of a query with a small tokenizer and approximates the schema
effects of the common tabular operators (``where``, ``project``,
``project-away``, ``project-rename``, ``extend``, ``summarize``,
``distinct``, ``count`` ...).  Operators it does not model raise a warning
and keep the schema, apart from the columns they assign (as in ``mv-expand``)
or capture (as in ``parse``), which are added.

Type inference is deliberately small:

* numeric literal matching ``^\\d+$`` -> ``int``; ``^\\d+\\.\\d+$`` -> ``real``.
  Scientific notation and signed literals are NOT recognised and resolve to
  ``dynamic``; callers rely on this exact behaviour.
* boolean literal -> ``bool``; string literal -> ``string``
* conversion and well-known scalar/aggregate functions -> their return type
* column reference -> declared type
* arithmetic between numerics -> the wider type
* comparisons and logical operators -> ``bool``
* everything else -> ``dynamic``

Neither :meth:`LexicalLanguageService.parse` nor
:meth:`LexicalLanguageService.parse_and_analyze` raises.
"""

from __future__ import annotations

import logging
import re

from schema_engine.models.columns import DYNAMIC, NUMERIC_TYPES, ColumnSchema, lookup_column, normalize_type

from ._types import AnalysisResult, Diagnostic, DiagnosticSeverity, SchemaContext
from .lexer import Token, TokenKind, matching_close, split_top_level, tokenize, top_level_tokens

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Vocabulary
# ---------------------------------------------------------------------------

KQL_KEYWORDS: frozenset[str] = frozenset(
    {
        "where", "filter", "project", "extend", "summarize", "order", "sort", "by", "limit",
        "take", "top", "join", "union", "lookup", "let", "and", "or", "not", "in", "has",
        "has_any", "has_all", "has_cs", "hasprefix", "hassuffix", "contains", "contains_cs",
        "startswith", "startswith_cs", "endswith", "endswith_cs", "matches", "regex",
        "between", "like", "asc", "desc", "nulls", "first", "last", "with", "kind", "on",
        "inner", "innerunique", "leftouter", "rightouter", "fullouter", "leftanti",
        "rightanti", "leftsemi", "rightsemi", "distinct", "count", "as", "true", "false",
        "null", "typeof", "string", "int", "long", "real", "double", "bool", "boolean",
        "datetime", "timespan", "dynamic", "guid", "decimal", "ago", "now",
    }
)

# Return type by function name.  Aggregates are included.
_FUNCTION_TYPES: dict[str, str] = {
    # datetime
    "now": "datetime",
    "ago": "datetime",
    "datetime": "datetime",
    "todatetime": "datetime",
    "make_datetime": "datetime",
    "startofday": "datetime",
    "startofweek": "datetime",
    "startofmonth": "datetime",
    "startofyear": "datetime",
    "endofday": "datetime",
    "endofweek": "datetime",
    "endofmonth": "datetime",
    "endofyear": "datetime",
    "datetime_add": "datetime",
    "ingestion_time": "datetime",
    "unixtime_seconds_todatetime": "datetime",
    "unixtime_milliseconds_todatetime": "datetime",
    # string
    "tostring": "string",
    "strcat": "string",
    "strcat_delim": "string",
    "substring": "string",
    "tolower": "string",
    "toupper": "string",
    "trim": "string",
    "trim_start": "string",
    "trim_end": "string",
    "replace_string": "string",
    "replace_regex": "string",
    "format_datetime": "string",
    "format_timespan": "string",
    "extract": "string",
    "strrep": "string",
    "reverse": "string",
    "url_encode": "string",
    "url_decode": "string",
    "base64_encode_tostring": "string",
    "base64_decode_tostring": "string",
    "hash_sha256": "string",
    "tohex": "string",
    "gettype": "string",
    # numeric
    "toint": "int",
    "tolong": "long",
    "strlen": "long",
    "count": "long",
    "countif": "long",
    "dcount": "long",
    "dcountif": "long",
    "countof": "long",
    "array_length": "long",
    "hash": "long",
    "datetime_diff": "long",
    "toreal": "real",
    "todouble": "real",
    "avg": "real",
    "avgif": "real",
    "stdev": "real",
    "variance": "real",
    "log": "real",
    "log10": "real",
    "exp": "real",
    "sqrt": "real",
    "pow": "real",
    "rand": "real",
    "todecimal": "decimal",
    # other scalars
    "tobool": "bool",
    "toboolean": "bool",
    "isnull": "bool",
    "isnotnull": "bool",
    "isempty": "bool",
    "isnotempty": "bool",
    "isnan": "bool",
    "isfinite": "bool",
    "not": "bool",
    "toguid": "guid",
    "new_guid": "guid",
    "totimespan": "timespan",
    "timespan": "timespan",
    "time": "timespan",
    "make_timespan": "timespan",
    "todynamic": "dynamic",
    "parse_json": "dynamic",
    "dynamic": "dynamic",
    "pack": "dynamic",
    "bag_pack": "dynamic",
    "pack_array": "dynamic",
    "make_list": "dynamic",
    "make_set": "dynamic",
    "make_bag": "dynamic",
    "split": "dynamic",
    "extract_all": "dynamic",
}

# Functions whose result has the type of their first argument.
_FIRST_ARG_FUNCTIONS: frozenset[str] = frozenset(
    {"min", "max", "minif", "maxif", "any", "take_any", "anyif", "take_anyif",
     "coalesce", "bin", "floor", "abs", "round", "ceiling"}
)

# Functions whose result has the type of their second argument.
_SECOND_ARG_FUNCTIONS: frozenset[str] = frozenset({"iff", "iif", "case"})

_SUMMING_FUNCTIONS: frozenset[str] = frozenset({"sum", "sumif"})

KQL_FUNCTIONS: frozenset[str] = (
    frozenset(_FUNCTION_TYPES)
    | _FIRST_ARG_FUNCTIONS
    | _SECOND_ARG_FUNCTIONS
    | _SUMMING_FUNCTIONS
    | frozenset({"parse", "bin_at", "arg_max", "arg_min", "percentile", "row_number"})
)

_RESERVED_NAMES: frozenset[str] = KQL_KEYWORDS | KQL_FUNCTIONS

_COMPARISON_OPERATORS = ("==", "!=", "<>", "<", "<=", ">", ">=", "=~", "!~")
_ARITHMETIC_OPERATORS = ("+", "-", "*", "/", "%")
_PREDICATE_WORDS = (
    "and", "or", "has", "has_any", "has_all", "has_cs", "hasprefix", "hassuffix",
    "contains", "contains_cs", "startswith", "startswith_cs", "endswith", "endswith_cs",
    "in", "between", "matches", "like",
)

_NUMERIC_RANK: dict[str, int] = {"int": 0, "long": 1, "decimal": 2, "real": 3}

_INT_LITERAL_RE = re.compile(r"^\d+$")
_REAL_LITERAL_RE = re.compile(r"^\d+\.\d+$")
_TIMESPAN_LITERAL_RE = re.compile(
    r"^\d+(?:\.\d+)?(?:d|h|m|s|ms|min|sec|second|seconds|minute|minutes|hour|hours"
    r"|day|days|tick|ticks|microsecond|microseconds|millisecond|milliseconds)$",
    re.IGNORECASE,
)

_SOURCE_FUNCTIONS = ("table", "database", "cluster", "materialized_view", "external_table")

# Operators that never reference input columns and keep the schema.
_INERT_OPERATORS = frozenset({"take", "limit", "sample", "as", "render"})

# Operators that read other tables; their names are never input columns.
_MULTI_SOURCE_OPERATORS = frozenset({"join", "union", "lookup", "fork", "facet"})

_PARSE_OPERATORS = frozenset({"parse", "parse-where", "parse-kv"})

# `name=value` operator options; never column assignments.
_OPERATOR_OPTIONS = frozenset(
    {"kind", "flags", "bagexpansion", "pair_delimiter", "kv_delimiter", "quote", "escape", "greedy"}
)

_ARG_EXTREME_FUNCTIONS = frozenset({"arg_max", "arg_min"})


class _AnalysisIssue(Exception):
    """Internal signal for a query error at a known position."""

    def __init__(self, start: int, end: int, message: str) -> None:
        super().__init__(message)
        self.start = start
        self.end = end
        self.message = message


# ---------------------------------------------------------------------------
# Public service
# ---------------------------------------------------------------------------


class LexicalLanguageService:
    """Heuristic :class:`QueryLanguageService` built on a tokenizer."""

    def parse(self, text: str) -> list[Diagnostic]:
        """Check quoting and bracket balance of *text*."""
        try:
            return check_structure(tokenize(text))
        except Exception as exc:  # noqa: BLE001
            logger.warning("Lexical parse failed: %s", exc)
            return [
                Diagnostic(0, len(text), f"Lexical parse failed: {exc}", DiagnosticSeverity.WARNING),
            ]

    def parse_and_analyze(self, text: str, context: SchemaContext) -> AnalysisResult:
        try:
            return _PipelineAnalyzer(text, context).run()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Lexical analysis failed: %s", exc)
            return AnalysisResult(
                diagnostics=(
                    Diagnostic(
                        0,
                        len(text),
                        f"Lexical analysis failed: {exc}",
                        DiagnosticSeverity.WARNING,
                    ),
                ),
                result_schema=None,
            )


def check_structure(tokens: list[Token]) -> list[Diagnostic]:
    """Report unterminated literals and unbalanced brackets."""
    pairs = {")": "(", "]": "[", "}": "{"}
    diagnostics: list[Diagnostic] = []
    stack: list[Token] = []

    for token in tokens:
        if token.kind is TokenKind.UNTERMINATED:
            message = (
                "Unterminated multi-line string literal"
                if token.text == "```"
                else "Unterminated string literal"
            )
            diagnostics.append(Diagnostic(token.start, token.end, message))
            break
        if token.kind is not TokenKind.PUNCT:
            continue
        if token.text in "([{":
            stack.append(token)
        elif token.text in pairs:
            if not stack:
                diagnostics.append(Diagnostic(token.start, token.end, f"Unexpected '{token.text}'"))
            elif stack[-1].text != pairs[token.text]:
                opener = stack.pop()
                diagnostics.append(
                    Diagnostic(
                        token.start,
                        token.end,
                        f"Expected closing bracket for '{opener.text}' but found '{token.text}'",
                    )
                )
            else:
                stack.pop()

    for opener in stack:
        diagnostics.append(Diagnostic(opener.start, opener.end, f"Missing closing bracket for '{opener.text}'"))

    return sorted(diagnostics, key=lambda d: d.start)


# ---------------------------------------------------------------------------
# Type helpers
# ---------------------------------------------------------------------------


def literal_type(token: Token) -> str:
    """Type of a single literal token, or ``dynamic``."""
    if token.kind is TokenKind.STRING:
        return "string"
    if token.kind is TokenKind.NUMBER:
        if _INT_LITERAL_RE.match(token.text):
            return "int"
        if _REAL_LITERAL_RE.match(token.text):
            return "real"
        if _TIMESPAN_LITERAL_RE.match(token.text):
            return "timespan"
        return DYNAMIC
    if token.kind is TokenKind.IDENT and not token.text.startswith("[") and token.text.lower() in ("true", "false"):
        return "bool"
    return DYNAMIC


def wider_numeric(left: str, right: str) -> str:
    return left if _NUMERIC_RANK[left] >= _NUMERIC_RANK[right] else right


def arithmetic_type(left: str, operator: str, right: str) -> str:
    """Result type of ``left <operator> right``."""
    if left in NUMERIC_TYPES and right in NUMERIC_TYPES:
        return wider_numeric(left, right)
    if left == "datetime" and right == "datetime" and operator == "-":
        return "timespan"
    if left == "datetime" and right == "timespan" and operator in ("+", "-"):
        return "datetime"
    if left == "timespan" and right == "datetime" and operator == "+":
        return "datetime"
    if left == "timespan" and right == "timespan":
        if operator in ("+", "-"):
            return "timespan"
        if operator == "/":
            return "real"
    if left == "timespan" and right in NUMERIC_TYPES and operator in ("*", "/"):
        return "timespan"
    return DYNAMIC


def sum_type(argument_type: str) -> str:
    """Kusto widens integer sums to ``long``."""
    if argument_type in ("int", "long"):
        return "long"
    if argument_type in ("real", "decimal", "timespan"):
        return argument_type
    return DYNAMIC


def _strip_parens(tokens: list[Token]) -> list[Token]:
    while len(tokens) >= 2 and tokens[0].is_punct("(") and matching_close(tokens, 0) == len(tokens) - 1:
        tokens = tokens[1:-1]
    return tokens


def _split_commas(tokens: list[Token]) -> list[list[Token]]:
    if not tokens:
        return []
    return split_top_level(tokens, lambda t: t.is_punct(","))


def _call_parts(tokens: list[Token]) -> tuple[str, list[list[Token]]] | None:
    """``(name, args)`` when *tokens* is exactly one function call."""
    if (
        len(tokens) >= 3
        and tokens[0].kind is TokenKind.IDENT
        and not tokens[0].text.startswith("[")
        and tokens[1].is_punct("(")
        and matching_close(tokens, 1) == len(tokens) - 1
    ):
        return tokens[0].value.lower(), [arg for arg in _split_commas(tokens[2:-1]) if arg]
    return None


def _expansion_type(tokens: list[Token]) -> str:
    """Type named by ``to typeof(T)`` before the next top-level comma, else ``dynamic``."""
    for idx, token in top_level_tokens(tokens):
        if token.is_punct(","):
            break
        if (
            token.is_ident("to")
            and idx + 4 < len(tokens)
            and tokens[idx + 1].is_ident("typeof")
            and tokens[idx + 2].is_punct("(")
            and tokens[idx + 3].kind is TokenKind.IDENT
        ):
            return normalize_type(tokens[idx + 3].value)
    return DYNAMIC


# ---------------------------------------------------------------------------
# Pipeline analysis
# ---------------------------------------------------------------------------


class _PipelineAnalyzer:
    """Single-use walker over the pipe segments of one query."""

    def __init__(self, text: str, context: SchemaContext) -> None:
        self._text = text
        self._context = context
        self._input: ColumnSchema = {name: normalize_type(t) for name, t in context.columns}
        self._schema: ColumnSchema = dict(self._input)
        self._derived: set[str] = set()
        self._let_names: set[str] = set()
        self._references: dict[str, str] = {}
        self._diagnostics: list[Diagnostic] = []
        self._column_counter = 0

    def run(self) -> AnalysisResult:
        tokens = tokenize(self._text)
        self._diagnostics.extend(check_structure(tokens))
        if any(d.is_error for d in self._diagnostics):
            return self._result(None)

        try:
            self._walk(tokens)
        except _AnalysisIssue as issue:
            self._diagnostics.append(Diagnostic(issue.start, issue.end, issue.message))
            return self._result(None)
        return self._result(self._schema)

    def _result(self, schema: ColumnSchema | None) -> AnalysisResult:
        return AnalysisResult(
            diagnostics=tuple(self._diagnostics),
            result_schema=tuple(schema.items()) if schema is not None else None,
            referenced_columns=frozenset(self._references.values()) if schema is not None else frozenset(),
        )

    def _warn(self, start: int, end: int, message: str) -> None:
        self._diagnostics.append(Diagnostic(start, end, message, DiagnosticSeverity.WARNING))

    # -- statements --------------------------------------------------------

    def _walk(self, tokens: list[Token]) -> None:
        statements = [s for s in split_top_level(tokens, lambda t: t.is_punct(";")) if s]
        if not statements:
            raise _AnalysisIssue(0, len(self._text), "Query is empty")

        for statement in statements[:-1]:
            if statement[0].is_ident("let") and len(statement) > 1 and statement[1].kind is TokenKind.IDENT:
                self._let_names.add(statement[1].value.lower())

        body = statements[-1]
        if body[0].is_ident("let"):
            raise _AnalysisIssue(body[0].start, body[-1].end, "Query has no tabular expression")

        segments = split_top_level(body, lambda t: t.is_punct("|"))
        self._source(segments[0], body[0])
        previous = segments[0]
        for segment in segments[1:]:
            if not segment:
                anchor = previous[-1] if previous else body[0]
                raise _AnalysisIssue(anchor.end, anchor.end + 1, "Expected a tabular operator after '|'")
            self._operator(segment)
            previous = segment

    def _source(self, segment: list[Token], anchor: Token) -> None:
        if not segment:
            raise _AnalysisIssue(anchor.start, anchor.end, "Expected a table reference before '|'")

        head = segment[0]
        if head.kind is not TokenKind.IDENT:
            raise _AnalysisIssue(head.start, head.end, f"Expected a table reference, found '{head.text}'")

        name = head.value
        if len(segment) == 1:
            expected = self._context.table_name
            if name.lower() in self._let_names or expected is None or name.lower() == expected.lower():
                return
            self._warn(
                head.start,
                head.end,
                f"Unknown table '{name}'; assuming the schema of '{expected}'",
            )
            return

        if head.is_ident(*_SOURCE_FUNCTIONS) and segment[1].is_punct("("):
            return
        if head.is_ident("print"):
            self._schema = {}
            self._extend(segment[1:])
            return
        self._warn(
            head.start,
            segment[-1].end,
            "Source expression is not fully supported by the lexical analyzer; the output schema may be incomplete",
        )

    # -- operators ---------------------------------------------------------

    def _operator(self, segment: list[Token]) -> None:
        head = segment[0]
        if head.kind is not TokenKind.IDENT:
            raise _AnalysisIssue(head.start, head.end, f"Expected a tabular operator, found '{head.text}'")

        name, consumed = head.value.lower(), 1
        # Hyphenated operator names such as project-away.
        while (
            consumed + 1 < len(segment)
            and segment[consumed].is_operator("-")
            and segment[consumed].start == segment[consumed - 1].end
            and segment[consumed + 1].kind is TokenKind.IDENT
            and segment[consumed + 1].start == segment[consumed].end
        ):
            name += "-" + segment[consumed + 1].value.lower()
            consumed += 2
        rest = segment[consumed:]

        handlers = {
            "where": self._predicate,
            "filter": self._predicate,
            "sort": self._ordering,
            "order": self._ordering,
            "top": self._ordering,
            "project": self._project,
            "project-away": self._project_away,
            "project-keep": self._project_keep,
            "project-rename": self._project_rename,
            "project-reorder": self._project_reorder,
            "extend": self._extend,
            "serialize": self._extend,
            "summarize": self._summarize,
            "distinct": self._distinct,
            "count": self._count,
        }
        handler = handlers.get(name)
        if handler is not None:
            handler(rest)
            return
        if name in _INERT_OPERATORS:
            return

        self._warn(
            head.start,
            segment[-1].end,
            f"Operator '{name}' is not fully supported by the lexical analyzer; the output schema may be incomplete",
        )
        if name not in _MULTI_SOURCE_OPERATORS:
            self._collect(rest, strict=False)
            self._introduce_columns(name, rest)

    def _predicate(self, rest: list[Token]) -> None:
        if not rest:
            raise self._missing_expression(rest)
        self._collect(rest)

    def _ordering(self, rest: list[Token]) -> None:
        self._collect(rest)

    def _project(self, rest: list[Token]) -> None:
        projected: ColumnSchema = {}
        for name, expression in self._items(rest):
            if name is None:
                column = self._bare_column(expression)
                if column is not None:
                    resolved = lookup_column(self._schema, column)
                    self._reference(column)
                    if resolved is not None:
                        projected[resolved] = self._schema[resolved]
                    else:
                        projected[column] = DYNAMIC
                    continue
                name = self._next_column_name(projected)
            projected[name] = self._infer(expression)
            self._collect(expression)
            self._derived.add(name.lower())
        self._schema = projected

    def _project_away(self, rest: list[Token]) -> None:
        for _, expression in self._items(rest):
            column = self._bare_column(expression)
            if column is None:
                continue
            self._reference(column)
            resolved = lookup_column(self._schema, column)
            if resolved is not None:
                del self._schema[resolved]

    def _project_keep(self, rest: list[Token]) -> None:
        keep: set[str] = set()
        for _, expression in self._items(rest):
            column = self._bare_column(expression)
            if column is None:
                continue
            self._reference(column)
            resolved = lookup_column(self._schema, column)
            if resolved is not None:
                keep.add(resolved)
        self._schema = {name: t for name, t in self._schema.items() if name in keep}

    def _project_rename(self, rest: list[Token]) -> None:
        renames: dict[str, str] = {}
        for new_name, expression in self._items(rest):
            old_name = self._bare_column(expression)
            if new_name is None or old_name is None:
                anchor = expression[0] if expression else rest[0]
                raise _AnalysisIssue(anchor.start, anchor.end, "Expected 'NewName = ExistingColumn'")
            self._reference(old_name)
            resolved = lookup_column(self._schema, old_name)
            if resolved is not None:
                renames[resolved] = new_name
                self._derived.add(new_name.lower())
        self._schema = {renames.get(name, name): t for name, t in self._schema.items()}

    def _project_reorder(self, rest: list[Token]) -> None:
        first: ColumnSchema = {}
        for _, expression in self._items(rest):
            column = self._bare_column(expression)
            resolved = lookup_column(self._schema, column) if column else None
            if resolved is not None:
                self._reference(resolved)
                first[resolved] = self._schema[resolved]
        first.update((name, t) for name, t in self._schema.items() if name not in first)
        self._schema = first

    def _extend(self, rest: list[Token]) -> None:
        for name, expression in self._items(rest):
            if name is None:
                name = self._next_column_name(self._schema)
            inferred = self._infer(expression)
            self._collect(expression)
            existing = lookup_column(self._schema, name)
            self._schema[existing or name] = inferred
            self._derived.add(name.lower())

    def _summarize(self, rest: list[Token]) -> None:
        by_index = next(
            (idx for idx, token in top_level_tokens(rest) if token.is_ident("by") and not token.text.startswith("[")),
            None,
        )
        aggregates = rest if by_index is None else rest[:by_index]
        keys = [] if by_index is None else rest[by_index + 1 :]

        summarized: ColumnSchema = {}
        derived: list[str] = []
        for name, expression in self._items(keys):
            column = self._bare_column(expression)
            if name is None and column is not None:
                resolved = lookup_column(self._schema, column)
                self._reference(column)
                summarized[resolved or column] = self._schema[resolved] if resolved else DYNAMIC
                continue
            if name is None:
                call = _call_parts(expression)
                first_arg = self._bare_column(call[1][0]) if call and call[1] else None
                name = first_arg or self._next_column_name(summarized)
            summarized[name] = self._infer(expression)
            self._collect(expression)
            derived.append(name)

        for name, expression in self._items(aggregates):
            if name is None:
                returned = self._arg_extreme_columns(expression, summarized)
                if returned is not None:
                    summarized.update(returned)
                    self._collect(expression)
                    continue
                name = self._aggregate_name(expression, summarized)
            summarized[name] = self._infer(expression)
            self._collect(expression)
            derived.append(name)

        self._derived.update(name.lower() for name in derived)
        self._schema = summarized

    def _distinct(self, rest: list[Token]) -> None:
        if len(rest) == 1 and rest[0].is_operator("*"):
            return
        self._project(rest)

    def _count(self, rest: list[Token]) -> None:
        self._schema = {"Count": "long"}
        self._derived.add("count")

    # -- items and names ---------------------------------------------------

    def _items(self, tokens: list[Token]) -> list[tuple[str | None, list[Token]]]:
        """Split a comma list into ``(assigned name or None, expression)``."""
        items: list[tuple[str | None, list[Token]]] = []
        for part in _split_commas(tokens):
            if not part:
                anchor = tokens[-1]
                raise _AnalysisIssue(anchor.start, anchor.end, "Expected an expression")
            if len(part) >= 2 and part[0].kind is TokenKind.IDENT and part[1].is_operator("="):
                expression = part[2:]
                if not expression:
                    raise _AnalysisIssue(part[1].start, part[1].end, "Expected an expression after '='")
                items.append((part[0].value, expression))
            else:
                items.append((None, part))
        return items

    @staticmethod
    def _bare_column(expression: list[Token]) -> str | None:
        if len(expression) == 1 and expression[0].kind is TokenKind.IDENT:
            return expression[0].value
        return None

    def _next_column_name(self, taken: ColumnSchema) -> str:
        while True:
            self._column_counter += 1
            candidate = f"Column{self._column_counter}"
            if lookup_column(taken, candidate) is None:
                return candidate

    def _aggregate_name(self, expression: list[Token], taken: ColumnSchema) -> str:
        call = _call_parts(_strip_parens(expression))
        if call is None:
            return self._next_column_name(taken)
        function, args = call
        argument = self._bare_column(args[0]) if len(args) == 1 else None
        return f"{function}_{argument}" if argument else f"{function}_"

    def _arg_extreme_columns(self, expression: list[Token], taken: ColumnSchema) -> ColumnSchema | None:
        """Columns returned by ``arg_max``/``arg_min``, with ``*`` meaning every other column."""
        call = _call_parts(_strip_parens(expression))
        if call is None or call[0] not in _ARG_EXTREME_FUNCTIONS or len(call[1]) < 2:
            return None

        columns: ColumnSchema = {}
        for argument in call[1]:
            if len(argument) == 1 and argument[0].is_operator("*"):
                columns.update(
                    (name, column_type)
                    for name, column_type in self._schema.items()
                    if lookup_column(taken, name) is None and lookup_column(columns, name) is None
                )
                continue
            column = self._bare_column(argument)
            if column is None:
                columns[self._next_column_name({**taken, **columns})] = self._infer(argument)
                continue
            if lookup_column(taken, column) is not None or lookup_column(columns, column) is not None:
                continue
            resolved = lookup_column(self._schema, column)
            columns[resolved or column] = self._schema[resolved] if resolved else DYNAMIC
        return columns

    def _missing_expression(self, rest: list[Token]) -> _AnalysisIssue:
        position = rest[0].start if rest else len(self._text)
        return _AnalysisIssue(position, position, "Expected an expression")

    # -- columns added by unmodelled operators -------------------------------

    def _introduce_columns(self, operator: str, rest: list[Token]) -> None:
        """Add the columns *operator* assigns or captures to the schema."""
        if operator in _PARSE_OPERATORS:
            introduced = self._parse_captures(operator, rest)
        else:
            introduced = self._assigned_columns(rest)
        for column, column_type in introduced:
            existing = lookup_column(self._schema, column)
            self._schema[existing or column] = column_type
            self._derived.add(column.lower())

    def _assigned_columns(self, rest: list[Token]) -> list[tuple[str, str]]:
        """``Name = expression`` targets, typed by a trailing ``to typeof(T)``."""
        columns: list[tuple[str, str]] = []
        for idx, token in top_level_tokens(rest):
            if token.kind is not TokenKind.IDENT or idx + 2 >= len(rest) or not rest[idx + 1].is_operator("="):
                continue
            # hint.strategy=shuffle and friends
            if idx > 0 and rest[idx - 1].is_operator("."):
                continue
            option = token.value.lower()
            if option == "with_itemindex":
                if rest[idx + 2].kind is TokenKind.IDENT:
                    columns.append((rest[idx + 2].value, "long"))
                continue
            if option in _OPERATOR_OPTIONS:
                continue
            columns.append((token.value, _expansion_type(rest[idx + 2 :])))
        return columns

    @staticmethod
    def _parse_captures(operator: str, rest: list[Token]) -> list[tuple[str, str]]:
        """Capture columns of ``parse``/``parse-where`` patterns and ``parse-kv`` key lists.

        Untyped captures are strings.
        """
        top = top_level_tokens(rest)
        if operator == "parse-kv":
            as_index = next((idx for idx, token in top if token.is_ident("as")), None)
            if as_index is None or as_index + 1 >= len(rest) or not rest[as_index + 1].is_punct("("):
                return []
            close = matching_close(rest, as_index + 1)
            pattern = rest[as_index + 2 : close]
        else:
            with_index = next(
                (idx for idx, token in top if token.is_ident("with") and not token.text.startswith("[")),
                None,
            )
            if with_index is None:
                return []
            pattern = rest[with_index + 1 :]

        captures: list[tuple[str, str]] = []
        idx = 0
        while idx < len(pattern):
            token = pattern[idx]
            idx += 1
            if token.kind is not TokenKind.IDENT:
                continue
            if idx + 1 < len(pattern) and pattern[idx].is_operator(":") and pattern[idx + 1].kind is TokenKind.IDENT:
                captures.append((token.value, normalize_type(pattern[idx + 1].value)))
                idx += 2
            else:
                captures.append((token.value, "string"))
        return captures

    # -- references --------------------------------------------------------

    def _reference(self, name: str) -> None:
        lowered = name.lower()
        if lowered in self._derived or lowered in self._let_names:
            return
        if self._context.table_name and lowered == self._context.table_name.lower():
            return
        resolved = lookup_column(self._input, name)
        self._references.setdefault(lowered, resolved or name)

    def _collect(self, tokens: list[Token], strict: bool = True) -> None:
        """Record identifiers in *tokens* that denote columns.

        With ``strict`` unset, only names resolving to a current column are
        recorded.
        """
        for idx, token in enumerate(tokens):
            if token.kind is not TokenKind.IDENT:
                continue
            name = token.value
            bracketed = token.text.startswith("[")
            previous = tokens[idx - 1] if idx > 0 else None
            following = tokens[idx + 1] if idx + 1 < len(tokens) else None

            if name.startswith("$"):
                continue
            if following is not None and following.is_punct("("):
                continue
            if previous is not None and previous.is_operator("."):
                continue
            if bracketed and previous is not None and (
                previous.kind is TokenKind.IDENT or previous.is_punct(")") or previous.is_punct("]")
            ):
                continue
            if following is not None and following.is_operator("="):
                continue
            known = lookup_column(self._schema, name)
            if not bracketed and known is None and name.lower() in _RESERVED_NAMES:
                continue
            if not strict and known is None:
                continue
            self._reference(name)

    # -- inference ---------------------------------------------------------

    def _infer(self, tokens: list[Token]) -> str:
        tokens = _strip_parens(tokens)
        if not tokens:
            return DYNAMIC

        top = top_level_tokens(tokens)
        for _, token in top:
            if token.is_operator(*_COMPARISON_OPERATORS):
                return "bool"
            if token.is_ident(*_PREDICATE_WORDS) and not token.text.startswith("["):
                return "bool"

        operands: list[list[Token]] = []
        operators: list[str] = []
        last = 0
        for idx, token in top:
            if token.is_operator(*_ARITHMETIC_OPERATORS):
                operands.append(tokens[last:idx])
                operators.append(token.text)
                last = idx + 1
        operands.append(tokens[last:])
        if len(operands) > 1:
            result = self._infer(operands[0])
            for operator, operand in zip(operators, operands[1:]):
                result = arithmetic_type(result, operator, self._infer(operand))
            return result

        return self._infer_atom(tokens)

    def _infer_atom(self, tokens: list[Token]) -> str:
        if len(tokens) == 1:
            token = tokens[0]
            if token.kind is TokenKind.IDENT:
                literal = literal_type(token)
                if literal != DYNAMIC:
                    return literal
                resolved = lookup_column(self._schema, token.value)
                return self._schema[resolved] if resolved is not None else DYNAMIC
            return literal_type(token)

        if tokens[0].is_operator("!"):
            return "bool"

        call = _call_parts(tokens)
        if call is None:
            return DYNAMIC

        function, args = call
        if function in _FUNCTION_TYPES:
            return _FUNCTION_TYPES[function]
        if function in _SUMMING_FUNCTIONS:
            return sum_type(self._infer(args[0])) if args else DYNAMIC
        if function in _FIRST_ARG_FUNCTIONS and args:
            return self._infer(args[0])
        if function in _SECOND_ARG_FUNCTIONS and len(args) >= 2:
            return self._infer(args[1])
        return DYNAMIC
