"""Unit tests for schema_engine.validation.column_order."""

from __future__ import annotations

from schema_engine.models.scripts import CommentKind
from schema_engine.validation import ColumnOrderValidator


def _validate(baseline, proposed, table_name: str = "Events"):
    return ColumnOrderValidator().validate_column_order(baseline, proposed, table_name)


def _schema(*names: str) -> dict[str, str]:
    return {name: "string" for name in names}


class TestColumnOrderValidator:
    def test_new_table_is_valid(self):
        assert _validate(None, _schema("Col1", "Col2")).is_valid

    def test_empty_baseline_is_valid(self):
        assert _validate({}, _schema("Col1")).is_valid

    def test_no_proposed_columns_is_valid(self):
        assert _validate(_schema("Col1"), None).is_valid

    def test_unchanged_columns_are_valid(self):
        assert _validate(_schema("Col1", "Col2"), _schema("Col1", "Col2")).is_valid

    def test_appended_column_is_valid(self):
        assert _validate(_schema("Col1", "Col2"), _schema("Col1", "Col2", "NewCol")).is_valid

    def test_reordering_existing_columns_is_valid(self):
        assert _validate(_schema("Col1", "Col2"), _schema("Col2", "Col1")).is_valid

    def test_inserted_column_fails(self):
        result = _validate(_schema("Col1", "Col2"), _schema("Col1", "NewCol", "Col2"))

        assert not result.is_valid
        assert result.severity is CommentKind.CAUTION
        assert "table 'Events'" in result.error_message
        assert "Found existing columns (Col2) positioned after new columns (NewCol)" in result.error_message

    def test_all_new_and_misplaced_columns_named(self):
        result = _validate(_schema("A", "B", "C"), _schema("A", "X", "B", "Y", "C"))

        assert not result.is_valid
        assert "existing columns (B, C)" in result.error_message
        assert "new columns (X, Y)" in result.error_message

    def test_dropped_baseline_column_is_ignored(self):
        assert _validate(_schema("Col1", "Old"), _schema("Col1", "NewCol")).is_valid
