"""Unit tests for the lexical fallback analyzer."""

from __future__ import annotations

import pytest
from schema_engine.analyzer import LexicalLanguageService, SchemaContext
from schema_engine.analyzer.lexer import TokenKind, tokenize
from schema_engine.analyzer.lexical import arithmetic_type, check_structure, literal_type, sum_type

_SCHEMA = {
    "Timestamp": "datetime",
    "Id": "string",
    "Value": "int",
    "Amount": "real",
    "Payload": "dynamic",
}


def _analyze(query: str, schema: dict[str, str] | None = None, table_name: str | None = "Source"):
    context = SchemaContext.from_schema(_SCHEMA if schema is None else schema, table_name)
    return LexicalLanguageService().parse_and_analyze(query, context)


def _single_token(text: str):
    [token] = tokenize(text)
    return token


# ---------------------------------------------------------------------------
# Tokenizer and structure
# ---------------------------------------------------------------------------


class TestTokenizer:
    def test_comments_are_dropped(self):
        tokens = tokenize("T // comment (\n| take 1")
        assert [t.text for t in tokens] == ["T", "|", "take", "1"]

    def test_brackets_inside_strings_ignored(self):
        assert check_structure(tokenize("T | where Id == '(('")) == []

    def test_multiline_block_is_one_token(self):
        tokens = tokenize(".alter table T policy update ```[{\"Source\": \"S\"}]```")
        assert tokens[-1].kind is TokenKind.STRING

    def test_bracketed_name_value(self):
        token = _single_token("['My Column']")
        assert token.kind is TokenKind.IDENT
        assert token.value == "My Column"


class TestCheckStructure:
    def test_unbalanced_open(self):
        [diagnostic] = check_structure(tokenize("T | where (Value > 1"))
        assert diagnostic.message == "Missing closing bracket for '('"
        assert diagnostic.is_error

    def test_unexpected_close(self):
        [diagnostic] = check_structure(tokenize("T | take 1)"))
        assert diagnostic.message == "Unexpected ')'"

    def test_unterminated_string(self):
        [diagnostic] = check_structure(tokenize("T | where Id == 'abc"))
        assert diagnostic.message == "Unterminated string literal"

    def test_unterminated_block(self):
        [diagnostic] = check_structure(tokenize(".alter table T policy update ```[]"))
        assert diagnostic.message == "Unterminated multi-line string literal"


# ---------------------------------------------------------------------------
# Type helpers
# ---------------------------------------------------------------------------


class TestLiteralType:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("1", "int"),
            ("42", "int"),
            ("1.0", "real"),
            ("'x'", "string"),
            ("true", "bool"),
            ("1h", "timespan"),
            ("30d", "timespan"),
        ],
    )
    def test_recognised_literals(self, text, expected):
        assert literal_type(_single_token(text)) == expected

    def test_scientific_notation_is_dynamic(self):
        assert literal_type(_single_token("1e5")) == "dynamic"
        assert literal_type(_single_token("1.5E-3")) == "dynamic"


class TestArithmetic:
    def test_numeric_widening(self):
        assert arithmetic_type("int", "+", "long") == "long"
        assert arithmetic_type("int", "*", "real") == "real"

    def test_datetime_difference(self):
        assert arithmetic_type("datetime", "-", "datetime") == "timespan"

    def test_string_arithmetic_is_dynamic(self):
        assert arithmetic_type("string", "+", "int") == "dynamic"

    def test_sum_widens_ints(self):
        assert sum_type("int") == "long"
        assert sum_type("real") == "real"
        assert sum_type("string") == "dynamic"


# ---------------------------------------------------------------------------
# Pipeline analysis
# ---------------------------------------------------------------------------


class TestProject:
    def test_project_selects_columns_in_order(self):
        result = _analyze("Source | project Value, Id")
        assert list(result.schema().items()) == [("Value", "int"), ("Id", "string")]
        assert result.referenced_columns == frozenset({"Value", "Id"})

    def test_project_computed_column(self):
        result = _analyze("Source | project Total = Value * 2, Label = strcat(Id, '-')")
        assert result.schema() == {"Total": "int", "Label": "string"}
        assert result.referenced_columns == frozenset({"Value", "Id"})

    def test_project_is_case_insensitive(self):
        result = _analyze("Source | project value")
        assert result.schema() == {"Value": "int"}

    def test_project_unknown_column_is_dynamic_and_referenced(self):
        result = _analyze("Source | project Missing")
        assert result.schema() == {"Missing": "dynamic"}
        assert "Missing" in result.referenced_columns

    def test_project_away(self):
        result = _analyze("Source | project-away Payload, Amount")
        assert list(result.schema()) == ["Timestamp", "Id", "Value"]

    def test_project_rename(self):
        result = _analyze("Source | project-rename EventId = Id")
        assert "EventId" in result.schema()
        assert "Id" not in result.schema()
        assert result.schema()["EventId"] == "string"

    def test_project_reorder(self):
        result = _analyze("Source | project-reorder Value")
        assert list(result.schema())[0] == "Value"
        assert len(result.schema()) == len(_SCHEMA)


class TestExtend:
    def test_extend_appends_columns(self):
        result = _analyze("Source | extend Day = startofday(Timestamp), Ratio = Amount / Value")
        schema = result.schema()
        assert schema["Day"] == "datetime"
        assert schema["Ratio"] == "real"
        assert list(schema)[: len(_SCHEMA)] == list(_SCHEMA)

    def test_extend_comparison_is_bool(self):
        result = _analyze("Source | extend IsBig = Value > 10")
        assert result.schema()["IsBig"] == "bool"

    def test_extend_conversion(self):
        result = _analyze("Source | extend V = tolong(Payload.value)")
        assert result.schema()["V"] == "long"
        assert "value" not in result.referenced_columns

    def test_derived_column_not_referenced(self):
        result = _analyze("Source | extend Twice = Value * 2 | project Twice")
        assert result.referenced_columns == frozenset({"Value"})


class TestSummarize:
    def test_keys_then_aggregates(self):
        result = _analyze("Source | summarize Total = sum(Value), count() by Id")
        assert list(result.schema().items()) == [("Id", "string"), ("Total", "long"), ("count_", "long")]

    def test_bin_key_keeps_column_name(self):
        result = _analyze("Source | summarize avg(Amount) by bin(Timestamp, 1h)")
        assert result.schema() == {"Timestamp": "datetime", "avg_Amount": "real"}

    def test_max_keeps_argument_type(self):
        result = _analyze("Source | summarize Latest = max(Timestamp)")
        assert result.schema() == {"Latest": "datetime"}

    def test_arg_max_star_keeps_every_column(self):
        result = _analyze("Source | summarize arg_max(Timestamp, *) by Id")
        assert list(result.schema().items()) == [
            ("Id", "string"),
            ("Timestamp", "datetime"),
            ("Value", "int"),
            ("Amount", "real"),
            ("Payload", "dynamic"),
        ]

    def test_arg_min_named_columns(self):
        result = _analyze("Source | summarize arg_min(Timestamp, Value) by Id")
        assert list(result.schema().items()) == [("Id", "string"), ("Timestamp", "datetime"), ("Value", "int")]
        assert result.referenced_columns == frozenset({"Id", "Timestamp", "Value"})


class TestOtherOperators:
    def test_where_references_columns(self):
        result = _analyze("Source | where Value > 1 and Id has 'x' | project Amount")
        assert result.referenced_columns == frozenset({"Value", "Id", "Amount"})

    def test_count(self):
        result = _analyze("Source | count")
        assert result.schema() == {"Count": "long"}

    def test_distinct(self):
        result = _analyze("Source | distinct Id")
        assert result.schema() == {"Id": "string"}

    def test_take_keeps_schema(self):
        result = _analyze("Source | take 10")
        assert result.schema() == _SCHEMA
        assert result.diagnostics == ()

    def test_unsupported_operator_warns(self):
        result = _analyze("Source | mv-expand Payload")
        assert not result.has_errors
        assert any("not fully supported" in d.message for d in result.diagnostics)
        assert result.schema() == _SCHEMA

    def test_let_statements(self):
        result = _analyze("let threshold = 5; Source | where Value > threshold")
        assert not result.has_errors
        assert result.referenced_columns == frozenset({"Value"})


class TestIntroducedColumns:
    def test_mv_expand_assignment(self):
        result = _analyze("Source | mv-expand Item = Payload.items | project Item")
        assert result.schema() == {"Item": "dynamic"}
        assert result.referenced_columns == frozenset({"Payload"})

    def test_mv_expand_typed_assignment(self):
        result = _analyze("Source | mv-expand Item = Payload.items to typeof(string) | project Id, Item")
        assert result.schema() == {"Id": "string", "Item": "string"}

    def test_mv_expand_item_index_and_options(self):
        result = _analyze("Source | mv-expand kind=array with_itemindex=Index Payload | project Index, Payload")
        assert result.schema() == {"Index": "long", "Payload": "dynamic"}
        assert result.referenced_columns == frozenset({"Payload"})

    def test_parse_captures(self):
        result = _analyze('Source | parse Id with * "id=" Pid:long " " Rest | project Pid, Rest')
        assert result.schema() == {"Pid": "long", "Rest": "string"}
        assert result.referenced_columns == frozenset({"Id"})

    def test_parse_kv_keys(self):
        query = 'Source | parse-kv Id as (Host:string, Port:long) with (pair_delimiter=",") | project Host, Port'
        result = _analyze(query)
        assert result.schema() == {"Host": "string", "Port": "long"}
        assert result.referenced_columns == frozenset({"Id"})


class TestSourceAndErrors:
    def test_unknown_source_table_warns(self):
        result = _analyze("Other | project Id")
        [warning] = result.diagnostics
        assert not warning.is_error
        assert warning.message == "Unknown table 'Other'; assuming the schema of 'Source'"
        assert result.schema() == {"Id": "string"}

    def test_any_source_accepted_without_table_name(self):
        result = _analyze("Whatever | project Id", table_name=None)
        assert result.diagnostics == ()

    def test_empty_query_is_error(self):
        result = _analyze("   ")
        assert result.has_errors
        assert result.result_schema is None

    def test_trailing_pipe_is_error(self):
        result = _analyze("Source | project Id |")
        assert result.has_errors
        assert result.referenced_columns == frozenset()

    def test_unbalanced_query_is_error(self):
        result = _analyze("Source | where (Value > 1")
        assert result.has_errors

    def test_parse_reports_structure_only(self):
        service = LexicalLanguageService()
        assert service.parse(".create-merge table T (A:string)") == []
        assert service.parse(".create-merge table T (A:string")[0].is_error
