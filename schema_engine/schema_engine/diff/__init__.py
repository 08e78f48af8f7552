"""Diff engine: compare current and declared state into ordered changes."""

from schema_engine.diff.changes import (
    BasicChange,
    Change,
    ChangeBase,
    ChangeSet,
    ClusterChangeSet,
    DeletionChange,
    EntityGroupChange,
    FollowerPermissionChange,
    Heading,
    PermissionChange,
    PolicyChange,
    ScriptCompareChange,
    annotate_scripts,
    build_execution_plan,
)
from schema_engine.diff.cluster_changes import compare_capacity_policy, generate_cluster_changes
from schema_engine.diff.database_changes import (
    backfill_comment,
    build_database_change_set,
    generate_database_changes,
    generate_deletions,
    generate_entity_group_changes,
    generate_permission_changes,
)
from schema_engine.diff.follower_changes import generate_follower_changes
from schema_engine.diff.structured import (
    StructuredChange,
    StructuredChangeType,
    StructuredComment,
    StructuredDiff,
    StructuredDiffResult,
    StructuredScript,
    StructuredScriptComparison,
    build_structured_diff,
    build_structured_result,
    to_structured_change,
)

__all__ = [
    "BasicChange",
    "Change",
    "ChangeBase",
    "ChangeSet",
    "ClusterChangeSet",
    "DeletionChange",
    "EntityGroupChange",
    "FollowerPermissionChange",
    "Heading",
    "PermissionChange",
    "PolicyChange",
    "ScriptCompareChange",
    "StructuredChange",
    "StructuredChangeType",
    "StructuredComment",
    "StructuredDiff",
    "StructuredDiffResult",
    "StructuredScript",
    "StructuredScriptComparison",
    "annotate_scripts",
    "backfill_comment",
    "build_database_change_set",
    "build_execution_plan",
    "build_structured_diff",
    "build_structured_result",
    "compare_capacity_policy",
    "generate_cluster_changes",
    "generate_database_changes",
    "generate_deletions",
    "generate_entity_group_changes",
    "generate_follower_changes",
    "generate_permission_changes",
    "to_structured_change",
]
