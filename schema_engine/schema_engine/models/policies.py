"""Table, materialized-view and database policy models.

Each policy renders itself into :class:`ScriptContainer` entries with fixed
``kind`` and ``order`` values so that old and new states can be paired per
kind by the diff engine.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_pascal

from schema_engine.models.scripts import ScriptContainer


def to_compact_json(payload: object) -> str:
    """Serialize *payload* to single-line JSON, as embedded in ``` blocks."""
    return json.dumps(payload, separators=(",", ":"))


class PascalCaseModel(BaseModel):
    """Base for policy payloads serialized with PascalCase keys and no nulls."""

    model_config = ConfigDict(alias_generator=to_pascal, populate_by_name=True)

    def to_policy_dict(self) -> dict[str, object]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# ---------------------------------------------------------------------------
# Update policy
# ---------------------------------------------------------------------------


class UpdatePolicy(PascalCaseModel):
    """A transformation query that feeds a target table from a source table."""

    is_enabled: bool = True
    propagate_ingestion_properties: bool = True
    source: str = Field(default="", description="Name of the source table.")
    query: str = Field(default="", description="Transformation query applied on ingestion.")
    is_transactional: bool = False
    managed_identity: str | None = None


# ---------------------------------------------------------------------------
# Partitioning policy
# ---------------------------------------------------------------------------


class PartitionAssignmentMode(str, Enum):
    DEFAULT = "Default"
    UNIFORM = "Uniform"
    BY_PARTITION = "ByPartition"


def _start_of_utc_day() -> datetime:
    now = datetime.now(timezone.utc)
    return now.replace(hour=0, minute=0, second=0, microsecond=0, tzinfo=None)


class PartitioningPolicy(BaseModel):
    """Uniform-range time partitioning with an optional hash partition key."""

    time_partition_column: str
    range_size: str = "1.00:00:00"
    override_creation_time: bool = False
    reference: datetime | None = None
    secondary_partition: str | None = None
    partition_assignment_mode: PartitionAssignmentMode = PartitionAssignmentMode.DEFAULT
    max_partition_count: int = 128
    effective_date_time: datetime | None = None

    def create_script(self, name: str, entity: str) -> ScriptContainer:
        # Unset dates resolve to the start of the current UTC day so that two
        # renderings of the same policy on the same day compare equal.
        reference = self.reference or _start_of_utc_day()
        effective = self.effective_date_time or _start_of_utc_day()

        keys: list[dict[str, object]] = [
            {
                "ColumnName": self.time_partition_column,
                "Kind": "UniformRange",
                "Properties": {
                    "Reference": reference.strftime("%Y-%m-%dT%H:%M:%S"),
                    "RangeSize": self.range_size,
                    "OverrideCreationTime": self.override_creation_time,
                },
            }
        ]
        if self.secondary_partition:
            keys.append(
                {
                    "ColumnName": self.secondary_partition,
                    "Kind": "Hash",
                    "Properties": {
                        "Function": "XxHash64",
                        "MaxPartitionCount": self.max_partition_count,
                        "PartitionAssignmentMode": self.partition_assignment_mode.value,
                    },
                }
            )
        policy = {
            "EffectiveDateTime": effective.strftime("%Y-%m-%d"),
            "PartitionKeys": keys,
        }
        return ScriptContainer(
            kind="PartitioningPolicy",
            order=50,
            text=f".alter {entity} {name} policy partitioning ```{to_compact_json(policy)}```",
        )


# ---------------------------------------------------------------------------
# Retention / caching / row-level security
# ---------------------------------------------------------------------------


class RetentionAndCachePolicy(BaseModel):
    """Database-level default retention and hot-cache windows."""

    retention: str | None = None
    hot_cache: str | None = None

    def create_scripts(self, name: str, entity: str = "database") -> list[ScriptContainer]:
        scripts: list[ScriptContainer] = []
        if self.retention is not None:
            scripts.append(
                ScriptContainer(
                    kind="SoftDelete",
                    order=60,
                    text=f".alter-merge {entity} {name} policy retention softdelete={self.retention}",
                )
            )
        if self.hot_cache is not None:
            scripts.append(
                ScriptContainer(
                    kind="HotCache",
                    order=70,
                    text=f".alter {entity} {name} policy caching hot={self.hot_cache}",
                )
            )
        return scripts


class Policy(RetentionAndCachePolicy):
    """Policies shared by tables and materialized views."""

    partitioning: PartitioningPolicy | None = None
    row_level_security: str | None = None

    def create_scripts(self, name: str, entity: str = "table") -> list[ScriptContainer]:
        scripts = super().create_scripts(name, entity)

        if self.row_level_security:
            scripts.append(
                ScriptContainer(
                    kind="RowLevelSecurity",
                    order=57,
                    text=f".alter {entity} {name} policy row_level_security enable ```{self.row_level_security}```",
                )
            )
        else:
            scripts.append(
                ScriptContainer(
                    kind="RowLevelSecurity",
                    order=52,
                    text=f".delete {entity} {name} policy row_level_security",
                )
            )

        if self.partitioning is not None:
            scripts.append(self.partitioning.create_script(name, entity))
        return scripts


class TablePolicy(Policy):
    """Table policies: the shared set plus update policies and view access."""

    update_policies: list[UpdatePolicy] | None = None
    restricted_view_access: bool = False

    def create_scripts(self, name: str, entity: str = "table") -> list[ScriptContainer]:
        scripts = super().create_scripts(name, "table")

        if self.update_policies is not None:
            body = to_compact_json([policy.to_policy_dict() for policy in self.update_policies])
            scripts.append(
                ScriptContainer(
                    kind="TableUpdatePolicy",
                    order=59 if self.update_policies else 50,
                    text=f".alter table {name} policy update ```{body}```",
                )
            )

        flag = "true" if self.restricted_view_access else "false"
        scripts.append(
            ScriptContainer(
                kind="RestrictedViewAccess",
                order=58 if self.restricted_view_access else 51,
                text=f".alter table {name} policy restricted_view_access {flag}",
            )
        )
        return scripts
