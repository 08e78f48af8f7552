"""Change generation for follower databases.

A follower database mirrors a leader read-only but keeps its own hot-cache
overrides and principals.  Its changes never touch the leader.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from schema_engine.analyzer import QuerySchemaAnalyzer
from schema_engine.models.columns import bracket_if_identifier
from schema_engine.models.follower import FollowerDatabase
from schema_engine.models.scripts import ScriptContainer

from .changes import BasicChange, Change, FollowerPermissionChange

logger = logging.getLogger(__name__)

_FOLLOWER_ENTITY_TYPE = "FollowerDatabase"


def _caching_changes(
    old_entities: Mapping[str, str],
    new_entities: Mapping[str, str],
    database: str,
    label: str,
    kusto_type: str,
    analyzer: QuerySchemaAnalyzer,
) -> list[Change]:
    """Delete removed per-entity cache overrides and alter changed ones.

    Parameters
    ----------
    label:
        ``Table`` or ``MV``; part of the change entity and the script kinds.
    kusto_type:
        ``table`` or ``materialized-view``, as written in the commands.
    """
    db = bracket_if_identifier(database)
    changes: list[Change] = []

    removed = [name for name in old_entities if name not in new_entities]
    if removed:
        scripts = [
            ScriptContainer(
                kind=f"FollowerDelete{label}CachingPolicies",
                order=0,
                text=f".delete follower database {db} {kusto_type} {name} policy caching",
            )
            for name in removed
        ]
        changes.append(
            BasicChange.build(
                _FOLLOWER_ENTITY_TYPE,
                f"Delete{label}CachingPolicy",
                "\n".join(f"* {name}" for name in removed),
                scripts,
                analyzer,
            )
        )

    changed = {name: value for name, value in new_entities.items() if old_entities.get(name) != value}
    if changed:
        scripts = [
            ScriptContainer(
                kind=f"FollowerChange{label}CachingPolicies",
                order=0,
                text=f".alter follower database {db} {kusto_type} {name} policy caching hot = {value}",
            )
            for name, value in changed.items()
        ]
        summary = "\n".join(
            f"{name} | {old_entities.get(name, 'default')} | {value}" for name, value in changed.items()
        )
        changes.append(
            BasicChange.build(
                _FOLLOWER_ENTITY_TYPE,
                f"Change{label}CachingPolicy",
                summary,
                scripts,
                analyzer,
            )
        )
    return changes


def generate_follower_changes(
    old: FollowerDatabase,
    new: FollowerDatabase,
    analyzer: QuerySchemaAnalyzer | None = None,
) -> list[Change]:
    """Return the changes that bring follower *old* in line with *new*.

    Covers per-table and per-view hot-cache overrides, the two
    modification kinds, the default hot cache, and follower admins and
    viewers.
    """
    analyzer = analyzer or QuerySchemaAnalyzer()
    db = bracket_if_identifier(new.database_name)

    changes: list[Change] = []
    changes.extend(
        _caching_changes(old.cache.tables, new.cache.tables, new.database_name, "Table", "table", analyzer)
    )
    changes.extend(
        _caching_changes(
            old.cache.materialized_views,
            new.cache.materialized_views,
            new.database_name,
            "MV",
            "materialized-view",
            analyzer,
        )
    )

    if old.permissions.modification_kind != new.permissions.modification_kind:
        kind = new.permissions.modification_kind.value.lower()
        changes.append(
            BasicChange.build(
                _FOLLOWER_ENTITY_TYPE,
                "PermissionsModificationKind",
                f"Change Permission-Modification-Kind from {old.permissions.modification_kind.value} "
                f"to {new.permissions.modification_kind.value}",
                [
                    ScriptContainer(
                        kind="FollowerChangePolicyModificationKind",
                        order=0,
                        text=f".alter follower database {db} principals-modification-kind = {kind}",
                    )
                ],
                analyzer,
            )
        )

    if old.cache.modification_kind != new.cache.modification_kind:
        kind = new.cache.modification_kind.value.lower()
        changes.append(
            BasicChange.build(
                _FOLLOWER_ENTITY_TYPE,
                "ChangeModificationKind",
                f"Change Caching-Modification-Kind from {old.cache.modification_kind.value} "
                f"to {new.cache.modification_kind.value}",
                [
                    ScriptContainer(
                        kind="FollowerChangePolicyModificationKind",
                        order=0,
                        text=f".alter follower database {db} caching-policies-modification-kind = {kind}",
                    )
                ],
                analyzer,
            )
        )

    if old.cache.default_hot_cache != new.cache.default_hot_cache:
        if new.cache.default_hot_cache is not None:
            changes.append(
                BasicChange.build(
                    _FOLLOWER_ENTITY_TYPE,
                    "ChangeDefaultHotCache",
                    f"From {old.cache.default_hot_cache} to {new.cache.default_hot_cache}",
                    [
                        ScriptContainer(
                            kind="FollowerChangeDefaultHotCache",
                            order=0,
                            text=f".alter follower database {db} policy caching hot = {new.cache.default_hot_cache}",
                        )
                    ],
                    analyzer,
                )
            )
        else:
            changes.append(
                BasicChange.build(
                    _FOLLOWER_ENTITY_TYPE,
                    "DeleteDefaultHotCache",
                    "Remove Default Hot Cache",
                    [
                        ScriptContainer(
                            kind="FollowerDeleteDefaultHotCache",
                            order=0,
                            text=f".delete follower database {db} policy caching",
                        )
                    ],
                    analyzer,
                )
            )

    for role in ("Admins", "Viewers"):
        attribute = role.lower()
        change = FollowerPermissionChange.compare(
            new.database_name,
            role,
            getattr(old.permissions, attribute),
            getattr(new.permissions, attribute),
            new.permissions.leader_name,
            analyzer,
        )
        if change.has_scripts:
            changes.append(change)

    logger.info("Generated %d changes for follower database %s", len(changes), new.database_name)
    return changes
