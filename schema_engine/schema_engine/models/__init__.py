"""Domain models for the schema engine."""

from schema_engine.models.cluster import (
    Cluster,
    ClusterCapacityPolicy,
    ClusterDeletions,
    ClusterPolicy,
    ClusterWorkloadGroup,
)
from schema_engine.models.columns import ColumnSchema, bracket_if_identifier, normalize_type
from schema_engine.models.database import (
    PERMISSION_ROLES,
    Database,
    Deletions,
    EntityReference,
    Metadata,
    Principal,
)
from schema_engine.models.entities import (
    ContinuousExport,
    DatabaseScript,
    ExternalTable,
    Function,
    MaterializedView,
    ScriptEntity,
    ScriptList,
    Table,
)
from schema_engine.models.follower import (
    FollowerCache,
    FollowerDatabase,
    FollowerModificationKind,
    FollowerPermissions,
)
from schema_engine.models.policies import (
    PartitioningPolicy,
    Policy,
    RetentionAndCachePolicy,
    TablePolicy,
    UpdatePolicy,
)
from schema_engine.models.scripts import Comment, CommentKind, ScriptContainer

__all__ = [
    "PERMISSION_ROLES",
    "Cluster",
    "ClusterCapacityPolicy",
    "ClusterDeletions",
    "ClusterPolicy",
    "ClusterWorkloadGroup",
    "ColumnSchema",
    "Comment",
    "CommentKind",
    "ContinuousExport",
    "Database",
    "DatabaseScript",
    "Deletions",
    "EntityReference",
    "ExternalTable",
    "FollowerCache",
    "FollowerDatabase",
    "FollowerModificationKind",
    "FollowerPermissions",
    "Function",
    "MaterializedView",
    "Metadata",
    "PartitioningPolicy",
    "Policy",
    "Principal",
    "RetentionAndCachePolicy",
    "ScriptContainer",
    "ScriptEntity",
    "ScriptList",
    "Table",
    "TablePolicy",
    "UpdatePolicy",
    "bracket_if_identifier",
    "normalize_type",
]
