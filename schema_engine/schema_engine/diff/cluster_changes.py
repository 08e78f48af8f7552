"""Change generation for cluster-wide settings."""

from __future__ import annotations

import logging
from typing import Any

from schema_engine.analyzer import QuerySchemaAnalyzer
from schema_engine.errors import ClusterMismatchError
from schema_engine.models.cluster import Cluster, ClusterCapacityPolicy, ClusterWorkloadGroup
from schema_engine.models.entities import ScriptList
from schema_engine.models.policies import PascalCaseModel, to_compact_json
from schema_engine.models.scripts import ScriptContainer

from .changes import Change, ClusterChangeSet, DeletionChange, PolicyChange, ScriptCompareChange, annotate_scripts

logger = logging.getLogger(__name__)

NOT_SET = "Not Set"


def _render(value: Any) -> str:
    if value is None:
        return NOT_SET
    if isinstance(value, PascalCaseModel):
        return to_compact_json(value.to_policy_dict())
    return str(value)


def compare_capacity_policy(
    old: ClusterCapacityPolicy | None,
    new: ClusterCapacityPolicy | None,
    analyzer: QuerySchemaAnalyzer | None = None,
) -> PolicyChange | None:
    """Compare the capacity policies section by section.

    Only sections set on *new* are compared, matching the merge semantics of
    ``.alter-merge``.  Returns ``None`` when nothing changed.
    """
    if new is None:
        return None

    details: list[str] = []
    for field_name, getter in ClusterCapacityPolicy.comparable_fields():
        new_value = getter(new)
        old_value = getter(old) if old is not None else None
        if new_value is not None and new_value != old_value:
            details.append(f"- **{field_name}**: `{_render(old_value)}` → `{_render(new_value)}`")

    if not details:
        return None

    script = ScriptContainer(kind="AlterMergeClusterCapacityPolicy", order=10, text=new.to_update_script())
    return PolicyChange(
        entity_type="Cluster Capacity Policy",
        entity="default",
        details=tuple(details),
        scripts=annotate_scripts([script], analyzer),
    )


def generate_cluster_changes(
    old: Cluster,
    new: Cluster,
    analyzer: QuerySchemaAnalyzer | None = None,
) -> ClusterChangeSet:
    """Compare two states of the same cluster.

    Raises
    ------
    ClusterMismatchError
        If the clusters have different names.
    """
    if old.name != new.name:
        raise ClusterMismatchError(f"Cluster names must match; {old.name} != {new.name}")

    analyzer = analyzer or QuerySchemaAnalyzer()
    changes: list[Change] = []

    logger.info("Analyzing capacity policy changes for cluster %s...", new.name)
    if new.capacity_policy is None:
        logger.info("No capacity policy defined in the new cluster configuration.")
    else:
        capacity_change = compare_capacity_policy(old.capacity_policy, new.capacity_policy, analyzer)
        if capacity_change is not None:
            changes.append(capacity_change)

    if new.policies is not None:
        change = ScriptCompareChange.compare("policies", old.policies, new.policies, analyzer)
        if change.has_scripts:
            changes.append(change)

    for name, group in new.workload_groups.items():
        change = ScriptCompareChange.compare(name, old.workload_groups.get(name), group, analyzer)
        if change.has_scripts:
            changes.append(change)

    deleted = [name for name in new.deletions.workload_groups if name in old.workload_groups]
    for name in deleted:
        changes.append(
            DeletionChange(
                entity_type="ClusterWorkloadGroup",
                entity=name,
                scripts=annotate_scripts([ClusterWorkloadGroup.create_deletion_script(name)], analyzer),
            )
        )

    if new.scripts:
        change = ScriptCompareChange.compare(
            "Cluster",
            ScriptList(scripts=[script.to_container("ClusterScript") for script in old.scripts]),
            ScriptList(scripts=[script.to_container("ClusterScript") for script in new.scripts]),
            analyzer,
            entity_type="Cluster",
        )
        if change.has_scripts:
            changes.append(change)

    logger.info("Generated %d changes for cluster %s", len(changes), new.name)
    return ClusterChangeSet(name=new.name, from_state=old, to_state=new, changes=changes)
