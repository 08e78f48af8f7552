"""Schema entities and the script contract they share.

Every entity exposes ``create_scripts(name, is_new)`` returning an ordered
list of :class:`ScriptContainer`.  The diff engine depends on nothing else:
it pairs old and new scripts by ``kind`` and keeps the ones whose text
changed.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from pydantic import BaseModel, Field

from schema_engine.errors import ScriptGenerationError
from schema_engine.models.columns import ColumnSchema, bracket_if_identifier, render_columns
from schema_engine.models.policies import Policy, TablePolicy
from schema_engine.models.scripts import ScriptContainer


@runtime_checkable
class ScriptEntity(Protocol):
    """Anything that can render itself into command scripts."""

    def create_scripts(self, name: str, is_new: bool = False) -> list[ScriptContainer]:
        """Return the scripts that create or update the entity called *name*.

        Parameters
        ----------
        name:
            Entity name as used in the command text.
        is_new:
            True when the entity does not exist in the current state.  Some
            entities (materialized views with backfill) render differently
            on creation.
        """
        ...


def _kql_bool(value: bool) -> str:
    return "true" if value else "false"


class DatabaseScript(BaseModel):
    """A free-form command declared alongside the schema."""

    text: str
    order: int = 0

    def to_container(self, kind: str = "DatabaseScript") -> ScriptContainer:
        return ScriptContainer(kind=kind, order=self.order, text=self.text)


class ScriptList(BaseModel):
    """An already rendered list of scripts, compared as a single entity."""

    scripts: list[ScriptContainer] = Field(default_factory=list)

    def create_scripts(self, name: str, is_new: bool = False) -> list[ScriptContainer]:
        return list(self.scripts)


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------


class Table(BaseModel):
    """A Kusto table with its ordered column schema and policies."""

    columns: ColumnSchema | None = Field(
        default=None,
        description="Ordered column name to type mapping.  None leaves columns unmanaged.",
    )
    folder: str | None = None
    doc_string: str | None = None
    policies: TablePolicy | None = None
    scripts: list[DatabaseScript] = Field(default_factory=list)

    def create_scripts(self, name: str, is_new: bool = False) -> list[ScriptContainer]:
        scripts: list[ScriptContainer] = []
        if self.columns is not None:
            scripts.append(
                ScriptContainer(
                    kind="CreateMergeTable",
                    order=30,
                    text=f".create-merge table {name} ({render_columns(self.columns)})",
                )
            )

        scripts.append(
            ScriptContainer(kind="TableFolder", order=31, text=f".alter table {name} folder '{self.folder or ''}'")
        )
        scripts.append(
            ScriptContainer(
                kind="TableDocString",
                order=31,
                text=f".alter table {name} docstring '{self.doc_string or ''}'",
            )
        )

        if self.policies is not None:
            scripts.extend(self.policies.create_scripts(name))
        scripts.extend(script.to_container() for script in self.scripts)
        return scripts


# ---------------------------------------------------------------------------
# Functions
# ---------------------------------------------------------------------------


def _split_top_level(text: str, separator: str = ",") -> list[str]:
    """Split *text* on *separator* outside of parentheses, brackets and quotes."""
    parts: list[str] = []
    depth = 0
    quote: str | None = None
    current: list[str] = []
    for char in text:
        if quote:
            current.append(char)
            if char == quote:
                quote = None
            continue
        if char in "'\"":
            quote = char
        elif char in "([{":
            depth += 1
        elif char in ")]}":
            depth -= 1
        elif char == separator and depth == 0:
            parts.append("".join(current))
            current = []
            continue
        current.append(char)
    parts.append("".join(current))
    return parts


def bracket_parameters(parameters: str) -> str:
    """Bracket-quote function parameter names that are not plain identifiers."""
    if not parameters.strip():
        return parameters
    rendered: list[str] = []
    for parameter in _split_top_level(parameters):
        name, sep, rest = parameter.partition(":")
        if not sep:
            rendered.append(parameter.strip())
            continue
        rendered.append(f"{bracket_if_identifier(name)}:{rest.strip()}")
    return ", ".join(rendered)


class Function(BaseModel):
    """A stored function; ``view`` functions are exposed as views."""

    body: str
    parameters: str = ""
    folder: str = ""
    doc_string: str = ""
    skip_validation: bool = False
    view: bool = False

    def create_scripts(self, name: str, is_new: bool = False) -> list[ScriptContainer]:
        properties = ", ".join(
            [
                f"SkipValidation=```{_kql_bool(self.skip_validation)}```",
                f"View=```{_kql_bool(self.view)}```",
                f"Folder=```{self.folder}```",
                f"DocString=```{self.doc_string}```",
            ]
        )
        parameters = bracket_parameters(self.parameters)
        return [
            ScriptContainer(
                kind="CreateOrAlterFunction",
                order=40,
                text=f".create-or-alter function with({properties}) {name} ({parameters}) {{ {self.body} }}",
            )
        ]


# ---------------------------------------------------------------------------
# Materialized views
# ---------------------------------------------------------------------------


class MaterializedView(BaseModel):
    """A materialized view over a table or over another materialized view."""

    source: str
    query: str
    kind: str = Field(default="table", description="'table' or 'materialized-view'.")
    folder: str | None = None
    doc_string: str | None = None
    effective_date_time: str | None = None
    lookback: str | None = None
    update_extents_creation_time: bool | None = None
    backfill: bool | None = None
    auto_update_schema: bool = False
    dimension_tables: list[str] | None = None
    policies: Policy | None = None

    def _with_properties(self, async_setup: bool) -> str:
        candidates: list[tuple[str, object]] = [
            ("Folder", self.folder),
            ("DocString", self.doc_string),
        ]
        if async_setup:
            candidates.append(("EffectiveDateTime", self.effective_date_time))
        candidates.extend(
            [
                ("Lookback", self.lookback),
                ("UpdateExtentsCreationTime", self.update_extents_creation_time),
            ]
        )
        if async_setup:
            candidates.append(("Backfill", self.backfill))
        candidates.append(("AutoUpdateSchema", self.auto_update_schema))
        if self.dimension_tables:
            candidates.append(("DimensionTables", ", ".join(self.dimension_tables)))

        rendered: list[str] = []
        for key, value in candidates:
            if value is None:
                continue
            text = _kql_bool(value) if isinstance(value, bool) else str(value)
            if not text.strip():
                continue
            rendered.append(f"{key}=```{text}```")
        return ", ".join(rendered)

    def create_scripts(self, name: str, is_new: bool = False) -> list[ScriptContainer]:
        async_setup = is_new and self.backfill is True
        order = 40 if self.kind == "table" else 41
        properties = self._with_properties(async_setup)

        scripts: list[ScriptContainer] = []
        if async_setup:
            scripts.append(
                ScriptContainer(
                    kind="CreateMaterializedViewAsync",
                    order=order,
                    text=(
                        f".create async ifnotexists materialized-view with ({properties}) "
                        f"{name} on {self.kind} {self.source} {{ {self.query} }}"
                    ),
                    is_async=True,
                )
            )
        else:
            scripts.append(
                ScriptContainer(
                    kind="CreateAlterMaterializedView",
                    order=order,
                    text=(
                        f".create-or-alter materialized-view with ({properties}) "
                        f"{name} on {self.kind} {self.source} {{ {self.query} }}"
                    ),
                )
            )
        if self.policies is not None:
            scripts.extend(self.policies.create_scripts(name, "materialized-view"))
        return scripts


# ---------------------------------------------------------------------------
# Continuous exports
# ---------------------------------------------------------------------------


class ContinuousExport(BaseModel):
    """A scheduled export of query results into an external table."""

    external_table: str
    query: str
    forced_latency_in_minutes: int = 0
    interval_between_runs: int = 0
    size_limit: int = 0
    distributed: bool = False
    managed_identity: str = ""

    def create_scripts(self, name: str, is_new: bool = False) -> list[ScriptContainer]:
        options = (
            f"forcedLatency={self.forced_latency_in_minutes}m, "
            f"intervalBetweenRuns={self.interval_between_runs}m, "
            f"sizeLimit={self.size_limit}, "
            f"distributed={_kql_bool(self.distributed)}, "
            f"managedIdentity='{self.managed_identity}'"
        )
        return [
            ScriptContainer(
                kind="ContinuousExport",
                order=120,
                text=(
                    f".create-or-alter continuous-export {name} to table {self.external_table} "
                    f"with ({options}) <| {self.query}"
                ),
            )
        ]


# ---------------------------------------------------------------------------
# External tables
# ---------------------------------------------------------------------------


class ExternalTable(BaseModel):
    """An external table backed by blob storage, SQL or a delta lake."""

    kind: str = Field(..., description="One of 'storage', 'sql' or 'delta'.")
    columns: ColumnSchema | None = None
    folder: str | None = None
    doc_string: str | None = None
    connection_string: str | None = None

    # storage
    partitions: str | None = None
    path_format: str | None = None
    data_format: str | None = None
    name_prefix: str | None = None
    encoding: str | None = None
    file_extensions: str | None = None
    include_headers: bool = False
    compressed: bool = False

    # sql
    sql_table: str | None = None
    sql_dialect: str | None = None
    fire_triggers: bool = False
    create_if_not_exists: bool = False
    primary_key: str | None = None

    def create_scripts(self, name: str, is_new: bool = False) -> list[ScriptContainer]:
        kind = self.kind.lower()
        if kind == "delta":
            text = self._delta_script(name)
        elif kind == "sql":
            text = self._sql_script(name)
        elif kind == "storage":
            text = self._storage_script(name)
        else:
            raise ScriptGenerationError(f"Kind {self.kind} is not supported as external table")
        return [ScriptContainer(kind="External Table", order=22, text=text)]

    def _file_extension(self) -> str:
        if not self.file_extensions or not self.file_extensions.strip():
            return ""
        ext = self.file_extensions.strip()
        return ext if ext.startswith(".") else "." + ext

    def _storage_script(self, name: str) -> str:
        if not self.data_format or not self.data_format.strip():
            raise ScriptGenerationError("DataFormat can't be empty")
        if not self.connection_string or not self.connection_string.strip():
            raise ScriptGenerationError("StorageConnectionString can't be empty")
        if not self.columns:
            raise ScriptGenerationError("Schema can't be empty")

        lines = [
            f".create-or-alter external table {name}",
            f"({render_columns(self.columns)})",
            "kind=storage",
        ]
        if self.partitions and self.partitions.strip():
            lines.append(f"partition by ({self.partitions})")
        if self.path_format and self.path_format.strip():
            lines.append(f"pathformat=({self.path_format})")
        lines.append(f"dataformat={self.data_format}")
        lines.append(f"(h@'{self.connection_string}')")

        options = [
            f"folder='{self.folder or ''}'",
            f"docString='{self.doc_string or ''}'",
            f"fileExtension='{self._file_extension()}'",
            f"compressed={_kql_bool(self.compressed)}",
        ]
        if self.include_headers:
            options.append("includeHeaders='All'")
        if self.encoding and self.encoding.strip():
            options.append(f"encoding='{self.encoding}'")
        if self.name_prefix and self.name_prefix.strip():
            options.append(f"namePrefix='{self.name_prefix}'")
        lines.append(f"with({', '.join(options)})")
        return "\n".join(lines)

    def _sql_script(self, name: str) -> str:
        if not self.columns:
            raise ScriptGenerationError("Schema can't be empty")
        if not self.connection_string or not self.connection_string.strip():
            raise ScriptGenerationError("SqlConnectionString can't be empty")
        if not self.sql_table or not self.sql_table.strip():
            raise ScriptGenerationError("SqlTable can't be empty")

        options = [
            f"folder='{self.folder or ''}'",
            f"docString='{self.doc_string or ''}'",
            f"createifnotexists={_kql_bool(self.create_if_not_exists)}",
            f"fireTriggers={_kql_bool(self.fire_triggers)}",
        ]
        if self.create_if_not_exists and self.primary_key and self.primary_key.strip():
            options.append(f"primaryKey='{self.primary_key}'")
        if self.sql_dialect and self.sql_dialect.strip():
            options.append(f"sqlDialect='{self.sql_dialect}'")

        return "\n".join(
            [
                f".create-or-alter external table {name}",
                f"({render_columns(self.columns)})",
                "kind=sql",
                f"table={self.sql_table}",
                f"(h@'{self.connection_string}')",
                f"with({', '.join(options)})",
            ]
        )

    def _delta_script(self, name: str) -> str:
        if not self.connection_string or not self.connection_string.strip():
            raise ScriptGenerationError("DeltaConnectionString can't be empty")

        lines = [f".create-or-alter external table {name}"]
        if self.columns:
            lines.append(f"({render_columns(self.columns)})")
        lines.append("kind=delta")
        lines.append(f"(h@'{self.connection_string}')")
        lines.append(
            f"with(folder='{self.folder or ''}', docString='{self.doc_string or ''}', "
            f"fileExtension='{self._file_extension()}')"
        )
        return "\n".join(lines)
