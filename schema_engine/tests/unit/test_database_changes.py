"""Unit tests for schema_engine.diff.database_changes."""

from __future__ import annotations

from datetime import datetime, timezone

from schema_engine.analyzer import LexicalLanguageService, QuerySchemaAnalyzer
from schema_engine.config import ValidationSettings
from schema_engine.diff import (
    DeletionChange,
    EntityGroupChange,
    Heading,
    ScriptCompareChange,
    backfill_comment,
    build_database_change_set,
    generate_database_changes,
)
from schema_engine.models import Database, Function, MaterializedView, Principal, Table
from schema_engine.models.database import Deletions, EntityReference
from schema_engine.models.entities import DatabaseScript
from schema_engine.models.policies import Policy, RetentionAndCachePolicy, TablePolicy, UpdatePolicy
from schema_engine.models.scripts import CommentKind

_NOW = datetime(2024, 1, 20, 12, 0)


def _make_analyzer() -> QuerySchemaAnalyzer:
    return QuerySchemaAnalyzer(LexicalLanguageService())


def _make_database(**kwargs) -> Database:
    kwargs.setdefault("name", "Telemetry")
    return Database(**kwargs)


def _generate(old, new, validation=None, now=_NOW):
    return generate_database_changes(old, new, "Telemetry", validation, _make_analyzer(), now)


def _headings(changes) -> list[str]:
    return [change.entity for change in changes if isinstance(change, Heading)]


def _change_for(changes, entity: str):
    [change] = [c for c in changes if not isinstance(c, Heading) and c.entity == entity]
    return change


# ---------------------------------------------------------------------------
# Idempotence and ordering
# ---------------------------------------------------------------------------


class TestIdempotence:
    def test_identical_states_produce_no_changes(self):
        database = _make_database(
            admins=[Principal(id="aaduser=a@contoso.com", name="A")],
            tables={"Events": Table(columns={"Id": "string"}, folder="raw")},
            functions={"Recent": Function(body="Events | take 10")},
            default_retention_and_cache=RetentionAndCachePolicy(retention="365d", hot_cache="31d"),
        )
        assert _generate(database, database.model_copy(deep=True)) == []

    def test_whitespace_only_difference_is_not_a_change(self):
        old = _make_database(scripts=[DatabaseScript(text=".show tables")])
        new = _make_database(scripts=[DatabaseScript(text="  .show tables  ")])
        assert _generate(old, new) == []


class TestOrdering:
    def test_sections_in_order(self):
        new = _make_database(
            default_retention_and_cache=RetentionAndCachePolicy(hot_cache="7d"),
            admins=[Principal(id="aaduser=a@contoso.com")],
            tables={"Events": Table(columns={"Id": "string"})},
            functions={"Recent": Function(body="Events | take 10")},
            materialized_views={
                "ById": MaterializedView(source="Events", query="Events | summarize count() by Id"),
            },
            entity_groups={"Group": [EntityReference(cluster="c1", database="Telemetry")]},
        )
        changes = _generate(None, new)

        assert _headings(changes) == [
            "Database Changes",
            "Permissions",
            "Tables",
            "MaterializedViews",
            "Functions",
            "Entity Groups",
        ]

    def test_new_database_creates_everything(self):
        new = _make_database(tables={"Events": Table(columns={"Id": "string", "Value": "int"})})
        change = _change_for(_generate(None, new), "Events")

        assert isinstance(change, ScriptCompareChange)
        assert change.is_new is True
        assert change.scripts[0].text == ".create-merge table Events (Id:string, Value:int)"
        assert all(script.is_valid for script in change.scripts)

    def test_only_changed_scripts_kept(self):
        old = _make_database(tables={"Events": Table(columns={"Id": "string"}, folder="raw")})
        new = _make_database(tables={"Events": Table(columns={"Id": "string"}, folder="curated")})
        change = _change_for(_generate(old, new), "Events")

        assert change.is_new is False
        assert [s.kind for s in change.scripts] == ["TableFolder"]
        assert change.scripts[0].text == ".alter table Events folder 'curated'"

    def test_scripts_sorted_by_order(self):
        policies = TablePolicy(hot_cache="7d", retention="30d")
        new = _make_database(tables={"Events": Table(columns={"Id": "string"}, policies=policies)})
        change = _change_for(_generate(None, new), "Events")
        orders = [s.order for s in change.scripts]
        assert orders == sorted(orders)

    def test_table_without_columns_skipped_when_new(self):
        new = _make_database(tables={"Unmanaged": Table(folder="x")})
        assert _generate(None, new) == []


# ---------------------------------------------------------------------------
# Permissions
# ---------------------------------------------------------------------------


class TestPermissionSection:
    def test_role_display_name_used(self):
        new = _make_database(unrestricted_viewers=[Principal(id="aadgroup=g@contoso.com")])
        changes = _generate(_make_database(), new)
        change = _change_for(changes, "UnrestrictedViewers")
        assert change.scripts[0].text == '.set database Telemetry unrestrictedviewers ("aadgroup=g@contoso.com")'


# ---------------------------------------------------------------------------
# Deletions
# ---------------------------------------------------------------------------


class TestDeletions:
    def _old(self) -> Database:
        return _make_database(
            tables={"Events": Table(columns={"Id": "string", "Old": "int"}), "Stale": Table(columns={"A": "int"})},
            functions={"Gone": Function(body="print 1")},
        )

    def test_existing_entities_dropped_in_order(self):
        old = self._old()
        new = old.model_copy(
            update={
                "tables": {"Events": Table(columns={"Id": "string", "Old": "int"})},
                "functions": {},
                "deletions": Deletions(tables=["Stale"], columns=["Events.Old"], functions=["Gone"]),
            }
        )
        changes = _generate(old, new)
        deletions = [c for c in changes if isinstance(c, DeletionChange)]

        assert "Deletions" in _headings(changes)
        assert [d.scripts[0].text for d in deletions] == [
            ".drop table Stale",
            ".drop column Events.Old",
            ".drop function Gone",
        ]

    def test_names_needing_quotes_are_bracketed(self):
        old = _make_database(
            tables={
                "My Events": Table(columns={"Id": "string", "where": "int"}),
                "project": Table(columns={"A": "int"}),
            }
        )
        new = old.model_copy(update={"deletions": Deletions(tables=["project"], columns=["My Events.where"])})
        deletions = [c for c in _generate(old, new) if isinstance(c, DeletionChange)]

        assert [d.scripts[0].text for d in deletions] == [
            ".drop table ['project']",
            ".drop column ['My Events'].['where']",
        ]
        assert [d.entity for d in deletions] == ["project", "My Events.where"]

    def test_already_deleted_entities_ignored(self):
        new = _make_database(deletions=Deletions(tables=["Nope"], columns=["Nope.A", "Other.B"], functions=["X"]))
        assert _generate(_make_database(), new) == []

    def test_unknown_column_ignored(self):
        old = _make_database(tables={"Events": Table(columns={"Id": "string"})})
        new = old.model_copy(update={"deletions": Deletions(columns=["Events.Missing"])})
        assert _generate(old, new) == []


# ---------------------------------------------------------------------------
# Table validation
# ---------------------------------------------------------------------------


def _make_column_order_states() -> tuple[Database, Database]:
    old = _make_database(tables={"Events": Table(columns={"Col1": "string", "Col2": "string"})})
    new = _make_database(tables={"Events": Table(columns={"Col1": "string", "NewCol": "string", "Col2": "string"})})
    return old, new


class TestTableValidation:
    def test_column_order_disabled_by_default(self):
        old, new = _make_column_order_states()
        change = _change_for(_generate(old, new), "Events")
        assert change.comment is None

    def test_column_order_violation_blocks_rollout(self):
        old, new = _make_column_order_states()
        change = _change_for(_generate(old, new, ValidationSettings.with_column_order_validation()), "Events")

        assert change.comment.kind is CommentKind.CAUTION
        assert change.comment.fails_rollout is True
        assert "Col2" in change.comment.text
        assert "NewCol" in change.comment.text
        # The scripts stay visible for review.
        assert change.scripts

    def test_update_policy_errors_block_rollout(self):
        tables = {
            "Raw": Table(columns={"Timestamp": "datetime", "Id": "string"}),
            "Clean": Table(
                columns={"Timestamp": "string", "Id": "string"},
                policies=TablePolicy(update_policies=[UpdatePolicy(source="Raw", query="Raw | project Timestamp, Id")]),
            ),
        }
        validation = ValidationSettings(enable_update_policy_validation=True)
        change = _change_for(_generate(None, _make_database(tables=tables), validation), "Clean")

        assert change.comment.fails_rollout is True
        assert change.comment.text.startswith("Update policy validation failed for table 'Clean'")
        assert "type mismatch" in change.comment.text

    def test_both_failures_joined(self):
        old = _make_database(tables={"Events": Table(columns={"Col1": "string", "Col2": "string"})})
        new = _make_database(
            tables={
                "Events": Table(
                    columns={"Col1": "string", "NewCol": "string", "Col2": "string"},
                    policies=TablePolicy(update_policies=[UpdatePolicy(source="Missing", query="Missing | take 1")]),
                )
            }
        )
        validation = ValidationSettings(enable_column_order_validation=True, enable_update_policy_validation=True)
        change = _change_for(_generate(old, new, validation), "Events")

        first, second = change.comment.text.split("\n\n")
        assert first.startswith("Column order violation")
        assert "Source table 'Missing' does not exist" in second


# ---------------------------------------------------------------------------
# Materialized views
# ---------------------------------------------------------------------------


def _backfill_database(effective: str | None, hot_cache: str | None = "30d") -> Database:
    return _make_database(
        tables={"Events": Table(columns={"Id": "string"}, policies=TablePolicy(hot_cache=hot_cache))},
        materialized_views={
            "ById": MaterializedView(
                source="Events",
                query="Events | summarize count() by Id",
                backfill=True,
                effective_date_time=effective,
            )
        },
    )


class TestBackfillComment:
    def test_data_available_hot(self):
        database = _backfill_database("2024-01-10")
        comment = backfill_comment("ById", database.materialized_views["ById"], database, _NOW)

        assert comment.kind is CommentKind.NOTE
        assert comment.fails_rollout is False
        assert "rolled out before 2024-02-09 00:00UTC" in comment.text

    def test_data_not_hot_blocks_rollout(self):
        database = _backfill_database("2023-11-01")
        comment = backfill_comment("ById", database.materialized_views["ById"], database, _NOW)

        assert comment.kind is CommentKind.CAUTION
        assert comment.fails_rollout is True
        assert comment.text.endswith("Please set the effective Date of the MV to 2023-12-22 or newer.")

    def test_aware_now_is_normalised(self):
        database = _backfill_database("2024-01-10")
        aware = datetime(2024, 1, 20, 12, 0, tzinfo=timezone.utc)
        assert backfill_comment("ById", database.materialized_views["ById"], database, aware).kind is CommentKind.NOTE

    def test_database_default_cache_used(self):
        database = _backfill_database("2024-01-10", hot_cache=None)
        database.default_retention_and_cache = RetentionAndCachePolicy(hot_cache="30d")
        comment = backfill_comment("ById", database.materialized_views["ById"], database, _NOW)
        assert comment.kind is CommentKind.NOTE

    def test_unparseable_cache_warns(self):
        database = _backfill_database("2024-01-10", hot_cache="12h")
        comment = backfill_comment("ById", database.materialized_views["ById"], database, _NOW)
        assert comment.kind is CommentKind.WARNING
        assert comment.text == "The conditions for backfilling ById couldn't be validated. Please check for errors!"

    def test_missing_effective_date_warns(self):
        database = _backfill_database(None)
        comment = backfill_comment("ById", database.materialized_views["ById"], database, _NOW)
        assert comment.kind is CommentKind.WARNING

    def test_view_over_view_uses_source_view_cache(self):
        database = _make_database(
            materialized_views={
                "Base": MaterializedView(
                    source="Events", query="Events | summarize count() by Id", policies=Policy(hot_cache="10d")
                ),
                "Top": MaterializedView(
                    source="Base",
                    query="Base | summarize take_any(*) by Id",
                    kind="materialized-view",
                    backfill=True,
                    effective_date_time="2024-01-01",
                ),
            }
        )
        comment = backfill_comment("Top", database.materialized_views["Top"], database, _NOW)
        assert comment.kind is CommentKind.CAUTION
        assert "2024-01-11" in comment.text


class TestMaterializedViewSection:
    def test_new_backfill_view_gets_comment(self):
        changes = _generate(None, _backfill_database("2024-01-10"))
        change = _change_for(changes, "ById")

        assert change.scripts[0].kind == "CreateMaterializedViewAsync"
        assert change.comment.kind is CommentKind.NOTE

    def test_existing_view_gets_no_backfill_comment(self):
        old = _backfill_database("2024-01-10")
        new = old.model_copy(deep=True)
        new.materialized_views["ById"] = new.materialized_views["ById"].model_copy(update={"folder": "views"})
        change = _change_for(_generate(old, new), "ById")

        assert change.scripts[0].kind == "CreateAlterMaterializedView"
        assert change.comment is None


# ---------------------------------------------------------------------------
# Entity groups
# ---------------------------------------------------------------------------


class TestEntityGroups:
    def test_changed_membership_redeclared(self):
        old = _make_database(entity_groups={"G": [EntityReference(cluster="c1", database="a")]})
        members = [EntityReference(cluster="c1", database="a"), EntityReference(cluster="c2", database="b")]
        new = _make_database(entity_groups={"G": members})
        change = _change_for(_generate(old, new), "G")

        assert isinstance(change, EntityGroupChange)
        assert change.added == ("cluster('c2').database('b')",)
        assert change.scripts[0].text == (
            ".create-or-alter entity_group G (cluster('c1').database('a'), cluster('c2').database('b'))"
        )

    def test_reordered_membership_is_no_change(self):
        members = [EntityReference(cluster="c1", database="a"), EntityReference(cluster="c2", database="b")]
        old = _make_database(entity_groups={"G": members})
        new = _make_database(entity_groups={"G": list(reversed(members))})
        assert _generate(old, new) == []


# ---------------------------------------------------------------------------
# Change set
# ---------------------------------------------------------------------------


class TestChangeSet:
    def test_change_set_properties(self):
        old, new = _make_column_order_states()
        change_set = build_database_change_set(
            old, new, "Telemetry", ValidationSettings.with_column_order_validation(), _make_analyzer()
        )

        assert change_set.name == "Telemetry"
        assert change_set.from_state is old
        assert change_set.is_valid is True
        assert change_set.fails_rollout is True
        assert len(change_set.comments) == 1
        assert [s.kind for s in change_set.execution_plan()] == ["CreateMergeTable"]
