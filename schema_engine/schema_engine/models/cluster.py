"""Cluster-wide state: capacity policy, cluster policies and workload groups."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, Field

from schema_engine.models.entities import DatabaseScript
from schema_engine.models.policies import PascalCaseModel, to_compact_json
from schema_engine.models.scripts import ScriptContainer

# ---------------------------------------------------------------------------
# Capacity policy
# ---------------------------------------------------------------------------


class IngestionCapacity(PascalCaseModel):
    cluster_maximum_concurrent_operations: int | None = None
    core_utilization_coefficient: float | None = None


class ExtentsMergeCapacity(PascalCaseModel):
    minimum_concurrent_operations_per_node: int | None = None
    maximum_concurrent_operations_per_node: int | None = None


class ExtentsPurgeRebuildCapacity(PascalCaseModel):
    maximum_concurrent_operations_per_node: int | None = None


class ExportCapacity(PascalCaseModel):
    cluster_maximum_concurrent_operations: int | None = None
    core_utilization_coefficient: float | None = None


class ExtentsPartitionCapacity(PascalCaseModel):
    cluster_minimum_concurrent_operations: int | None = None
    cluster_maximum_concurrent_operations: int | None = None


class ExtentsRebuildCapacity(PascalCaseModel):
    cluster_maximum_concurrent_operations: int | None = None
    maximum_concurrent_operations_per_node: int | None = None


class MaterializedViewsCapacity(PascalCaseModel):
    cluster_maximum_concurrent_operations: int | None = None
    extents_rebuild_capacity: ExtentsRebuildCapacity | None = None


class StoredQueryResultsCapacity(PascalCaseModel):
    maximum_concurrent_operations_per_db_admin: int | None = None
    core_utilization_coefficient: float | None = None


class StreamingIngestionPostProcessingCapacity(PascalCaseModel):
    maximum_concurrent_operations_per_node: int | None = None


class PurgeStorageArtifactsCleanupCapacity(PascalCaseModel):
    maximum_concurrent_operations_per_cluster: int | None = None


class PeriodicStorageArtifactsCleanupCapacity(PascalCaseModel):
    maximum_concurrent_operations_per_cluster: int | None = None


class QueryAccelerationCapacity(PascalCaseModel):
    cluster_maximum_concurrent_operations: int | None = None
    core_utilization_coefficient: float | None = None


class GraphSnapshotsCapacity(PascalCaseModel):
    cluster_maximum_concurrent_operations: int | None = None


PolicyField = tuple[str, Callable[[Any], Any]]


class ClusterCapacityPolicy(PascalCaseModel):
    """Cluster capacity policy.  Unset sections are left untouched on merge."""

    ingestion_capacity: IngestionCapacity | None = None
    extents_merge_capacity: ExtentsMergeCapacity | None = None
    extents_purge_rebuild_capacity: ExtentsPurgeRebuildCapacity | None = None
    export_capacity: ExportCapacity | None = None
    extents_partition_capacity: ExtentsPartitionCapacity | None = None
    materialized_views_capacity: MaterializedViewsCapacity | None = None
    stored_query_results_capacity: StoredQueryResultsCapacity | None = None
    streaming_ingestion_post_processing_capacity: StreamingIngestionPostProcessingCapacity | None = None
    purge_storage_artifacts_cleanup_capacity: PurgeStorageArtifactsCleanupCapacity | None = None
    periodic_storage_artifacts_cleanup_capacity: PeriodicStorageArtifactsCleanupCapacity | None = None
    query_acceleration_capacity: QueryAccelerationCapacity | None = None
    graph_snapshots_capacity: GraphSnapshotsCapacity | None = None

    @staticmethod
    def comparable_fields() -> list[PolicyField]:
        """Every settable section, paired with its getter, in wire order."""
        return [
            ("IngestionCapacity", lambda p: p.ingestion_capacity),
            ("ExtentsMergeCapacity", lambda p: p.extents_merge_capacity),
            ("ExtentsPurgeRebuildCapacity", lambda p: p.extents_purge_rebuild_capacity),
            ("ExportCapacity", lambda p: p.export_capacity),
            ("ExtentsPartitionCapacity", lambda p: p.extents_partition_capacity),
            ("MaterializedViewsCapacity", lambda p: p.materialized_views_capacity),
            ("StoredQueryResultsCapacity", lambda p: p.stored_query_results_capacity),
            (
                "StreamingIngestionPostProcessingCapacity",
                lambda p: p.streaming_ingestion_post_processing_capacity,
            ),
            (
                "PurgeStorageArtifactsCleanupCapacity",
                lambda p: p.purge_storage_artifacts_cleanup_capacity,
            ),
            (
                "PeriodicStorageArtifactsCleanupCapacity",
                lambda p: p.periodic_storage_artifacts_cleanup_capacity,
            ),
            ("QueryAccelerationCapacity", lambda p: p.query_acceleration_capacity),
            ("GraphSnapshotsCapacity", lambda p: p.graph_snapshots_capacity),
        ]

    def to_update_script(self) -> str:
        return f".alter-merge cluster policy capacity ```{to_compact_json(self.to_policy_dict())}```"


# ---------------------------------------------------------------------------
# Other cluster policies
# ---------------------------------------------------------------------------


class ClusterPolicy(BaseModel):
    """Flat declaration of the remaining cluster-level policies."""

    query_weak_consistency_enabled: bool | None = None
    query_weak_consistency_max_percentage: int | None = None

    query_throttling_concurrent_queries_limit: int | None = None
    query_throttling_concurrent_heavy_queries_limit: int | None = None

    callout_policy_enabled: bool | None = None
    callout_policy_allowed_domains: list[str] | None = None
    callout_policy_blocked_domains: list[str] | None = None

    sandboxing_policy_enabled: bool | None = None
    sandboxing_policy_settings: dict[str, Any] | None = None

    capacity_policy_cluster_maximum_concurrent_operations: int | None = None
    capacity_policy_cluster_maximum_ingest_concurrent_operations: int | None = None
    capacity_policy_cluster_maximum_export_concurrent_operations: int | None = None

    streaming_ingestion_policy_enabled: bool | None = None
    streaming_ingestion_policy_hint_allocated_rate: str | None = None

    multi_database_administrators: list[str] | None = None

    request_classification_policy_enabled: bool | None = None
    request_classification_policy_rules: list[dict[str, Any]] | None = None

    def create_scripts(self, name: str = "", is_new: bool = False) -> list[ScriptContainer]:
        scripts: list[ScriptContainer] = []

        def emit(kind: str, order: int, command: str, policy: dict[str, Any]) -> None:
            if policy:
                scripts.append(
                    ScriptContainer(kind=kind, order=order, text=f"{command} ```{to_compact_json(policy)}```")
                )

        emit(
            "QueryWeakConsistency",
            20,
            ".alter cluster policy query_weak_consistency",
            _present(
                IsEnabled=self.query_weak_consistency_enabled,
                MaximumLagAllowedInMinutes=self.query_weak_consistency_max_percentage,
            ),
        )
        emit(
            "QueryThrottling",
            21,
            ".alter cluster policy query_throttling",
            _present(
                MaxConcurrentQueries=self.query_throttling_concurrent_queries_limit,
                MaxConcurrentHeavyQueries=self.query_throttling_concurrent_heavy_queries_limit,
            ),
        )
        emit(
            "Callout",
            22,
            ".alter cluster policy callout",
            _present(
                IsEnabled=self.callout_policy_enabled,
                AllowedDomains=self.callout_policy_allowed_domains or None,
                BlockedDomains=self.callout_policy_blocked_domains or None,
            ),
        )
        emit(
            "Sandboxing",
            23,
            ".alter cluster policy sandboxing",
            _present(
                IsEnabled=self.sandboxing_policy_enabled,
                Settings=self.sandboxing_policy_settings or None,
            ),
        )
        emit(
            "Capacity",
            24,
            ".alter cluster policy capacity",
            _present(
                ClusterMaximumConcurrentOperations=self.capacity_policy_cluster_maximum_concurrent_operations,
                ClusterMaximumIngestConcurrentOperations=self.capacity_policy_cluster_maximum_ingest_concurrent_operations,
                ClusterMaximumExportConcurrentOperations=self.capacity_policy_cluster_maximum_export_concurrent_operations,
            ),
        )
        emit(
            "StreamingIngestion",
            25,
            ".alter cluster policy streamingingestion",
            _present(
                IsEnabled=self.streaming_ingestion_policy_enabled,
                HintAllocatedRate=self.streaming_ingestion_policy_hint_allocated_rate,
            ),
        )
        if self.multi_database_administrators:
            principals = ", ".join(f"aaduser={p}" for p in self.multi_database_administrators)
            scripts.append(
                ScriptContainer(
                    kind="MultiDatabaseAdministrators",
                    order=26,
                    text=f".add cluster admins ({principals})",
                )
            )
        emit(
            "RequestClassification",
            27,
            ".alter cluster policy request_classification",
            _present(
                IsEnabled=self.request_classification_policy_enabled,
                Rules=self.request_classification_policy_rules or None,
            ),
        )
        return scripts


def _present(**values: Any) -> dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


# ---------------------------------------------------------------------------
# Workload groups
# ---------------------------------------------------------------------------


class ClusterWorkloadGroup(BaseModel):
    """A workload group with request limits and a request classification."""

    request_limits_query_count: int | None = None
    request_limits_query_cpu_seconds_per_hour: int | None = None
    request_limits_query_cpu_seconds_per_day: int | None = None
    request_limits_query_memory_per_query_in_bytes: int | None = None
    request_limits_query_memory_per_iterator_in_bytes: int | None = None
    request_limits_query_timeout_per_query: str | None = None
    request_limits_query_result_set_size_in_bytes: int | None = None
    request_limits_query_result_record_count: int | None = None
    request_classification_policy_query_weight_percent: int | None = None
    request_classification_policy_databases: list[str] | None = None
    request_classification_policy_principals: list[str] | None = None
    request_classification_policy_query_texts: dict[str, Any] | None = None

    def to_policy_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        limits = _present(
            QueryCount=self.request_limits_query_count,
            QueryCpuSecondsPerHour=self.request_limits_query_cpu_seconds_per_hour,
            QueryCpuSecondsPerDay=self.request_limits_query_cpu_seconds_per_day,
            QueryMemoryPerQueryInBytes=self.request_limits_query_memory_per_query_in_bytes,
            QueryMemoryPerIteratorInBytes=self.request_limits_query_memory_per_iterator_in_bytes,
            QueryTimeoutPerQuery=self.request_limits_query_timeout_per_query,
            QueryResultSetSizeInBytes=self.request_limits_query_result_set_size_in_bytes,
            QueryResultRecordCount=self.request_limits_query_result_record_count,
        )
        if limits:
            payload["RequestLimits"] = limits
        classification = _present(
            QueryWeightPercent=self.request_classification_policy_query_weight_percent,
            Databases=self.request_classification_policy_databases or None,
            Principals=self.request_classification_policy_principals or None,
            QueryTexts=self.request_classification_policy_query_texts or None,
        )
        if classification:
            payload["RequestClassificationPolicy"] = classification
        return payload

    def create_scripts(self, name: str, is_new: bool = False) -> list[ScriptContainer]:
        return [
            ScriptContainer(
                kind="ClusterWorkloadGroup",
                order=30,
                text=f".create-or-alter workload_group {name} ```{to_compact_json(self.to_policy_dict())}```",
            )
        ]

    @staticmethod
    def create_deletion_script(name: str) -> ScriptContainer:
        return ScriptContainer(kind="ClusterWorkloadGroupDeletion", order=30, text=f".drop workload_group {name}")


class ClusterDeletions(BaseModel):
    workload_groups: list[str] = Field(default_factory=list)


class Cluster(BaseModel):
    """Complete declarative state of one cluster."""

    name: str
    url: str = ""
    capacity_policy: ClusterCapacityPolicy | None = None
    policies: ClusterPolicy | None = None
    workload_groups: dict[str, ClusterWorkloadGroup] = Field(default_factory=dict)
    deletions: ClusterDeletions = Field(default_factory=ClusterDeletions)
    scripts: list[DatabaseScript] = Field(default_factory=list)
