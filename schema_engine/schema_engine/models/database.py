"""Declarative database state."""

from __future__ import annotations

from pydantic import BaseModel, Field

from schema_engine.models.entities import (
    ContinuousExport,
    DatabaseScript,
    ExternalTable,
    Function,
    MaterializedView,
    Table,
)
from schema_engine.models.policies import RetentionAndCachePolicy


class Principal(BaseModel):
    """An identity-provider principal granted a database role.

    ``id`` is the fully qualified principal string (``aaduser=...``,
    ``aadgroup=...``, ``aadapp=...``).  ``name`` is the display name, which
    may change without affecting the grant.
    """

    id: str
    name: str = ""


class EntityReference(BaseModel):
    """A member of an entity group: one database on one cluster."""

    cluster: str
    database: str

    def to_kql(self) -> str:
        return f"cluster('{self.cluster}').database('{self.database}')"


class Deletions(BaseModel):
    """Entities scheduled for removal.  Columns are written as ``Table.Column``."""

    tables: list[str] = Field(default_factory=list)
    columns: list[str] = Field(default_factory=list)
    materialized_views: list[str] = Field(default_factory=list)
    functions: list[str] = Field(default_factory=list)
    continuous_exports: list[str] = Field(default_factory=list)
    external_tables: list[str] = Field(default_factory=list)


class Metadata(BaseModel):
    entity_name: str
    entity_type: str
    type: str
    value: str


# Permission roles in the order their changes are generated.
PERMISSION_ROLES: tuple[str, ...] = (
    "admins",
    "unrestricted_viewers",
    "users",
    "viewers",
    "monitors",
    "ingestors",
)


class Database(BaseModel):
    """Complete declarative state of one database."""

    name: str = ""
    team: str = ""
    default_retention_and_cache: RetentionAndCachePolicy | None = Field(default_factory=RetentionAndCachePolicy)

    admins: list[Principal] = Field(default_factory=list)
    unrestricted_viewers: list[Principal] = Field(default_factory=list)
    users: list[Principal] = Field(default_factory=list)
    viewers: list[Principal] = Field(default_factory=list)
    monitors: list[Principal] = Field(default_factory=list)
    ingestors: list[Principal] = Field(default_factory=list)

    tables: dict[str, Table] = Field(default_factory=dict)
    materialized_views: dict[str, MaterializedView] = Field(default_factory=dict)
    functions: dict[str, Function] = Field(default_factory=dict)
    continuous_exports: dict[str, ContinuousExport] = Field(default_factory=dict)
    external_tables: dict[str, ExternalTable] = Field(default_factory=dict)
    entity_groups: dict[str, list[EntityReference]] = Field(default_factory=dict)

    scripts: list[DatabaseScript] = Field(default_factory=list)
    deletions: Deletions = Field(default_factory=Deletions)
    metadata: list[Metadata] = Field(default_factory=list)

    def principals_for(self, role: str) -> list[Principal]:
        """Return the principal list for a role name from :data:`PERMISSION_ROLES`."""
        if role not in PERMISSION_ROLES:
            raise KeyError(role)
        return getattr(self, role)
