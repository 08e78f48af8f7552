"""Follower database state: caching overrides and follower-side principals."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from schema_engine.models.database import Principal


class FollowerModificationKind(str, Enum):
    """How follower-side settings combine with the leader's."""

    NONE = "None"
    UNION = "Union"
    REPLACE = "Replace"


class FollowerCache(BaseModel):
    default_hot_cache: str | None = None
    modification_kind: FollowerModificationKind = FollowerModificationKind.NONE
    tables: dict[str, str] = Field(default_factory=dict, description="Table name to hot-cache window.")
    materialized_views: dict[str, str] = Field(
        default_factory=dict,
        description="Materialized view name to hot-cache window.",
    )


class FollowerPermissions(BaseModel):
    modification_kind: FollowerModificationKind = FollowerModificationKind.NONE
    admins: list[Principal] = Field(default_factory=list)
    viewers: list[Principal] = Field(default_factory=list)
    leader_name: str | None = Field(
        default=None,
        description="Leader cluster name as known to the follower, appended to add commands.",
    )


class FollowerDatabase(BaseModel):
    database_name: str
    cache: FollowerCache = Field(default_factory=FollowerCache)
    permissions: FollowerPermissions = Field(default_factory=FollowerPermissions)
