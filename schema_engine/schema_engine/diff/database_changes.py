"""Change generation for a single database.

:func:`generate_database_changes` compares the current state of a database
with its declared state and returns the changes in execution-friendly
sections:

1. free-form database scripts and default retention ("Database Changes")
2. permissions
3. deletions
4. tables, materialized views, continuous exports, functions, external tables
5. entity groups

A section heading is only emitted in front of a non-empty section.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta, timezone
from typing import TypeVar

from schema_engine.analyzer import QuerySchemaAnalyzer
from schema_engine.config import ValidationSettings
from schema_engine.models.database import PERMISSION_ROLES, Database
from schema_engine.models.entities import MaterializedView, ScriptEntity, ScriptList, Table
from schema_engine.models.scripts import Comment, CommentKind, ScriptContainer
from schema_engine.validation.column_order import ColumnOrderValidator
from schema_engine.validation.update_policy import UpdatePolicyValidator

from .changes import (
    Change,
    ChangeSet,
    DeletionChange,
    EntityGroupChange,
    Heading,
    PermissionChange,
    ScriptCompareChange,
)

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=ScriptEntity)

# Gate deciding whether an entity is compared at all: (old, new) -> bool.
EntityGate = Callable[[E | None, E], bool]

_ROLE_DISPLAY_NAMES: dict[str, str] = {
    "admins": "Admins",
    "unrestricted_viewers": "UnrestrictedViewers",
    "users": "Users",
    "viewers": "Viewers",
    "monitors": "Monitors",
    "ingestors": "Ingestors",
}

_DAYS_RE = re.compile(r"^(\d+)d$")


def generate_database_changes(
    old: Database | None,
    new: Database,
    name: str,
    validation: ValidationSettings | None = None,
    analyzer: QuerySchemaAnalyzer | None = None,
    now: datetime | None = None,
) -> list[Change]:
    """Return every change needed to move database *name* from *old* to *new*.

    Parameters
    ----------
    old:
        Current state, or ``None`` when the database is not deployed yet.
    new:
        Declared state.
    name:
        Database name used in the generated commands.
    validation:
        Validation switches.  Both table validations are off by default.
    analyzer:
        Syntax checker for generated scripts, shared by all changes.
    now:
        Reference time for backfill checks.  Defaults to the current UTC time.
    """
    validation = validation or ValidationSettings()
    analyzer = analyzer or QuerySchemaAnalyzer()

    changes: list[Change] = []
    changes.extend(_database_script_changes(old, new, name, analyzer))

    old = old if old is not None else Database(name=name)
    changes.extend(generate_permission_changes(old, new, name, analyzer))
    changes.extend(generate_deletions(old, new, analyzer))
    changes.extend(_table_changes(old, new, validation, analyzer))
    changes.extend(_materialized_view_changes(old, new, analyzer, now))
    changes.extend(_compare_collection(old.continuous_exports, new.continuous_exports, "ContinuousExports", analyzer))
    changes.extend(_compare_collection(old.functions, new.functions, "Functions", analyzer))
    changes.extend(_compare_collection(old.external_tables, new.external_tables, "ExternalTables", analyzer))
    changes.extend(generate_entity_group_changes(old, new, analyzer))

    logger.info(
        "Generated %d changes for database %s",
        sum(1 for change in changes if change.has_scripts),
        name,
    )
    return changes


def build_database_change_set(
    old: Database | None,
    new: Database,
    name: str,
    validation: ValidationSettings | None = None,
    analyzer: QuerySchemaAnalyzer | None = None,
) -> ChangeSet:
    """Wrap :func:`generate_database_changes` into a :class:`ChangeSet`."""
    return ChangeSet(
        name=name,
        from_state=old,
        to_state=new,
        changes=generate_database_changes(old, new, name, validation, analyzer),
    )


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


def _database_level_scripts(database: Database | None, name: str) -> list[ScriptContainer]:
    if database is None:
        return []
    scripts = [script.to_container() for script in database.scripts]
    if database.default_retention_and_cache is not None:
        scripts.extend(database.default_retention_and_cache.create_scripts(name, "database"))
    return scripts


def _database_script_changes(
    old: Database | None,
    new: Database,
    name: str,
    analyzer: QuerySchemaAnalyzer,
) -> list[Change]:
    new_scripts = _database_level_scripts(new, name)
    if not new_scripts:
        return []
    old_scripts = _database_level_scripts(old, name)
    change = ScriptCompareChange.compare(
        "Database",
        ScriptList(scripts=old_scripts),
        ScriptList(scripts=new_scripts),
        analyzer,
        entity_type="Database",
    )
    if not change.has_scripts:
        return []
    return [Heading.build("Database Changes"), change]


def generate_permission_changes(
    old: Database,
    new: Database,
    name: str,
    analyzer: QuerySchemaAnalyzer | None = None,
) -> list[Change]:
    """One :class:`PermissionChange` per role whose members changed."""
    changes: list[Change] = []
    for role in PERMISSION_ROLES:
        change = PermissionChange.compare(
            name,
            _ROLE_DISPLAY_NAMES[role],
            old.principals_for(role),
            new.principals_for(role),
            analyzer,
        )
        if change.has_scripts:
            changes.append(change)

    if changes:
        logger.info("Detected %d permission changes", len(changes))
        changes.insert(0, Heading.build("Permissions"))
    return changes


def generate_deletions(
    old: Database,
    new: Database,
    analyzer: QuerySchemaAnalyzer | None = None,
) -> list[Change]:
    """Drop changes for declared deletions that still exist in *old*."""
    deletions = new.deletions
    changes: list[Change] = []

    def drop(entity: str, entity_type: str) -> None:
        changes.append(DeletionChange.build(entity, entity_type, analyzer))

    for table in deletions.tables:
        if table in old.tables:
            drop(table, "table")
    for qualified in deletions.columns:
        table, _, column = qualified.partition(".")
        columns = old.tables[table].columns if table in old.tables else None
        if column and columns and column in columns:
            drop(f"{table}.{column}", "column")
    for function in deletions.functions:
        if function in old.functions:
            drop(function, "function")
    for external_table in deletions.external_tables:
        if external_table in old.external_tables:
            drop(external_table, "external table")
    for view in deletions.materialized_views:
        if view in old.materialized_views:
            drop(view, "materialized-view")
    for export in deletions.continuous_exports:
        if export in old.continuous_exports:
            drop(export, "continuous-export")

    if changes:
        changes.insert(0, Heading.build("Deletions"))
    return changes


def generate_entity_group_changes(
    old: Database,
    new: Database,
    analyzer: QuerySchemaAnalyzer | None = None,
) -> list[Change]:
    changes: list[Change] = []
    for group, members in new.entity_groups.items():
        existing = old.entity_groups.get(group)
        change = EntityGroupChange.compare(
            group,
            [member.to_kql() for member in existing] if existing is not None else None,
            [member.to_kql() for member in members],
            analyzer,
        )
        if change.has_scripts:
            changes.append(change)

    if changes:
        logger.info("Detected changes for Entity Groups: %d", len(changes))
        changes.insert(0, Heading.build("Entity Groups"))
    return changes


def _compare_collection(
    old_items: Mapping[str, E],
    new_items: Mapping[str, E],
    heading: str,
    analyzer: QuerySchemaAnalyzer,
    gate: EntityGate | None = None,
) -> list[Change]:
    logger.debug("Existing %s: %s", heading, ", ".join(old_items))

    changes: list[Change] = []
    for name, entity in new_items.items():
        existing = old_items.get(name)
        if gate is not None and not gate(existing, entity):
            logger.info("Skipping %s %s as it failed validation", heading, name)
            continue
        change = ScriptCompareChange.compare(name, existing, entity, analyzer)
        if existing is None:
            logger.debug("%s doesn't exist, created %d scripts to create it", name, len(change.scripts))
        else:
            logger.debug("%s already exists, created %d scripts to apply the diffs", name, len(change.scripts))
        if change.has_scripts:
            changes.append(change)

    if changes:
        changes.insert(0, Heading.build(heading))
    return changes


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------


def _has_managed_columns(old: Table | None, new: Table) -> bool:
    return old is not None or bool(new.columns)


def _table_changes(
    old: Database,
    new: Database,
    validation: ValidationSettings,
    analyzer: QuerySchemaAnalyzer,
) -> list[Change]:
    changes = _compare_collection(old.tables, new.tables, "Tables", analyzer, gate=_has_managed_columns)
    if not (validation.enable_column_order_validation or validation.enable_update_policy_validation):
        return changes

    column_validator = ColumnOrderValidator()
    policy_validator = UpdatePolicyValidator(analyzer)
    annotated: list[Change] = []
    for change in changes:
        if not isinstance(change, ScriptCompareChange):
            annotated.append(change)
            continue

        table_name = change.entity
        old_table = old.tables.get(table_name)
        new_table = new.tables[table_name]
        problems: list[str] = []

        if validation.enable_column_order_validation:
            result = column_validator.validate_column_order(
                old_table.columns if old_table is not None else None,
                new_table.columns,
                table_name,
            )
            if not result.is_valid and result.error_message:
                logger.warning("Column order validation failed for table %s", table_name)
                problems.append(result.error_message)

        if validation.enable_update_policy_validation:
            errors: list[str] = []
            for policy_result in policy_validator.validate_table(
                new_table, new.tables, validation.update_policy_config
            ):
                errors.extend(policy_result.errors)
                for warning in policy_result.warnings:
                    logger.warning("Update policy on %s: %s", table_name, warning)
            if errors:
                logger.warning("Update policy validation failed for table %s", table_name)
                problems.append(f"Update policy validation failed for table '{table_name}': {'; '.join(errors)}")

        if problems:
            change = change.with_comment(
                Comment(kind=CommentKind.CAUTION, text="\n\n".join(problems), fails_rollout=True)
            )
        annotated.append(change)
    return annotated


# ---------------------------------------------------------------------------
# Materialized views
# ---------------------------------------------------------------------------


def _source_hot_cache(view: MaterializedView, database: Database) -> str | None:
    cache: str | None = None
    if view.kind == "table":
        source = database.tables.get(view.source)
        if source is not None and source.policies is not None:
            cache = source.policies.hot_cache
    else:
        source_view = database.materialized_views.get(view.source)
        if source_view is not None and source_view.policies is not None:
            cache = source_view.policies.hot_cache
    if cache is None and database.default_retention_and_cache is not None:
        cache = database.default_retention_and_cache.hot_cache
    return cache


def _parse_utc(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def backfill_comment(
    view_name: str,
    view: MaterializedView,
    database: Database,
    now: datetime | None = None,
) -> Comment:
    """Judge whether the backfill of a new view can read all its data hot.

    The lookback is the hot-cache window of the view's source (``Nd``),
    falling back to the database default.
    """
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc).replace(tzinfo=None)
    cache = _source_hot_cache(view, database)
    match = _DAYS_RE.match(cache) if cache else None
    effective = _parse_utc(view.effective_date_time)

    if match is None or effective is None:
        return Comment(
            kind=CommentKind.WARNING,
            text=f"The conditions for backfilling {view_name} couldn't be validated. Please check for errors!",
        )

    lookback_days = int(match.group(1))
    if now - timedelta(days=lookback_days) < effective:
        valid_until = effective + timedelta(days=lookback_days)
        return Comment(
            kind=CommentKind.NOTE,
            text=(
                f"The materialized view {view_name} is specified to be created with backfill configured. "
                "All required data is available in hot cache and the rollout is expected to succeed as long "
                f"as it is rolled out before {valid_until:%Y-%m-%d %H:%M}UTC. The rollout will be executed "
                "asynchronously, depending on the size of the backfill it might take a while."
            ),
        )

    earliest = datetime(now.year, now.month, now.day) + timedelta(days=1 - lookback_days)
    return Comment(
        kind=CommentKind.CAUTION,
        fails_rollout=True,
        text=(
            f"Not all data for the backfill of {view_name} is available hot. The backfill will fail! "
            f"Please set the effective Date of the MV to {earliest:%Y-%m-%d} or newer."
        ),
    )


def _materialized_view_changes(
    old: Database,
    new: Database,
    analyzer: QuerySchemaAnalyzer,
    now: datetime | None,
) -> list[Change]:
    changes = _compare_collection(old.materialized_views, new.materialized_views, "MaterializedViews", analyzer)
    annotated: list[Change] = []
    for change in changes:
        if isinstance(change, ScriptCompareChange) and any(
            script.kind == "CreateMaterializedViewAsync" for script in change.scripts
        ):
            view = new.materialized_views[change.entity]
            change = change.with_comment(backfill_comment(change.entity, view, new, now))
        annotated.append(change)
    return annotated
