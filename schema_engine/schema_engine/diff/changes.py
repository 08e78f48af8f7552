"""Change variants produced by the diff engine.

Every variant is an immutable pydantic model with a ``variant`` tag, the
``entity_type``/``entity`` it describes, its (order-sorted) scripts and an
optional reviewer :class:`Comment`.  Each variant builds its own scripts in
a ``build``/``compare`` classmethod; the generators in
:mod:`schema_engine.diff.database_changes` and friends only decide *which*
changes exist.

Every script is syntax-checked through :class:`QuerySchemaAnalyzer` and
annotated with ``is_valid``.  Informational scripts (negative order) are
always valid since they never execute.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable, Sequence
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from schema_engine.analyzer import QuerySchemaAnalyzer
from schema_engine.models.cluster import Cluster
from schema_engine.models.columns import bracket_if_identifier
from schema_engine.models.database import Database, Principal
from schema_engine.models.entities import ScriptEntity
from schema_engine.models.scripts import INFORMATIONAL_ORDER, Comment, ScriptContainer

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Script helpers
# ---------------------------------------------------------------------------


def annotate_scripts(
    scripts: Iterable[ScriptContainer],
    analyzer: QuerySchemaAnalyzer | None = None,
) -> tuple[ScriptContainer, ...]:
    """Stable-sort *scripts* by order and set ``is_valid`` on each of them."""
    analyzer = analyzer or QuerySchemaAnalyzer()
    annotated: list[ScriptContainer] = []
    for script in sorted(scripts, key=lambda s: s.order):
        if script.is_informational:
            annotated.append(script.with_validity(True))
            continue
        diagnostics = analyzer.check_script(script.text)
        is_valid = not any(d.is_error for d in diagnostics)
        if not is_valid:
            logger.warning("Generated %s script failed the syntax check: %s", script.kind, script.text)
        annotated.append(script.with_validity(is_valid))
    return tuple(annotated)


def _same_text(before: str, after: str) -> bool:
    # Leading and trailing whitespace per line is not a change.
    return [line.strip() for line in before.splitlines()] == [line.strip() for line in after.splitlines()]


def _pair_by_kind(
    old_scripts: Sequence[ScriptContainer],
    new_scripts: Sequence[ScriptContainer],
) -> list[tuple[ScriptContainer | None, ScriptContainer]]:
    """Pair every new script with the old script of the same kind.

    Kinds that occur more than once (free-form scripts) pair positionally.
    """
    by_kind: dict[str, list[ScriptContainer]] = defaultdict(list)
    for script in old_scripts:
        by_kind[script.kind].append(script)

    seen: dict[str, int] = defaultdict(int)
    pairs: list[tuple[ScriptContainer | None, ScriptContainer]] = []
    for script in new_scripts:
        index = seen[script.kind]
        seen[script.kind] += 1
        candidates = by_kind.get(script.kind, [])
        pairs.append((candidates[index] if index < len(candidates) else None, script))
    return pairs


# ---------------------------------------------------------------------------
# Variants
# ---------------------------------------------------------------------------


class ChangeBase(BaseModel):
    """Fields shared by every change variant."""

    model_config = ConfigDict(frozen=True)

    entity_type: str = Field(..., description="Kind of entity, e.g. 'Table' or 'Permissions'.")
    entity: str = Field(..., description="Name of the changed entity.")
    scripts: tuple[ScriptContainer, ...] = Field(
        default=(),
        description="Changed scripts, non-decreasing in order.",
    )
    comment: Comment | None = None

    def with_comment(self, comment: Comment | None):
        return self.model_copy(update={"comment": comment})

    @property
    def executable_scripts(self) -> list[ScriptContainer]:
        return [script for script in self.scripts if script.is_executable]

    @property
    def has_scripts(self) -> bool:
        return bool(self.scripts)


class Heading(ChangeBase):
    """A section title in the change list.  Never carries scripts."""

    variant: Literal["heading"] = "heading"
    entity_type: str = "Heading"

    @classmethod
    def build(cls, title: str) -> Heading:
        return cls(entity=title)


class ScriptCompareChange(ChangeBase):
    """Creation or update of an entity, found by comparing scripts by kind."""

    variant: Literal["script_compare"] = "script_compare"
    is_new: bool = False
    old_scripts: tuple[ScriptContainer, ...] = Field(
        default=(),
        description="Scripts rendered from the current state, for reporting.",
    )

    @classmethod
    def compare(
        cls,
        entity: str,
        old: ScriptEntity | None,
        new: ScriptEntity,
        analyzer: QuerySchemaAnalyzer | None = None,
        entity_type: str | None = None,
    ) -> ScriptCompareChange:
        """Keep the scripts of *new* whose kind is new or whose text changed.

        Parameters
        ----------
        entity:
            Name used when rendering both sides.
        old:
            Entity in the current state, or ``None`` when it is created.
        new:
            Entity in the desired state.
        analyzer:
            Used to syntax-check the retained scripts.
        entity_type:
            Overrides the reported type, which defaults to the class name of
            *new*.
        """
        is_new = old is None
        old_scripts = old.create_scripts(entity) if old is not None else []
        new_scripts = new.create_scripts(entity, is_new)

        changed = [
            script
            for before, script in _pair_by_kind(old_scripts, new_scripts)
            if before is None or not _same_text(before.text, script.text)
        ]
        return cls(
            entity_type=entity_type or type(new).__name__,
            entity=entity,
            is_new=is_new,
            scripts=annotate_scripts(changed, analyzer) if changed else (),
            old_scripts=tuple(old_scripts),
        )


class DeletionChange(ChangeBase):
    """Drop of an entity that still exists in the current state."""

    variant: Literal["deletion"] = "deletion"

    @classmethod
    def build(
        cls,
        entity: str,
        entity_type: str,
        analyzer: QuerySchemaAnalyzer | None = None,
    ) -> DeletionChange:
        if entity_type == "column" and "." in entity:
            table, column = entity.split(".", 1)
            target = f"{bracket_if_identifier(table)}.{bracket_if_identifier(column)}"
        else:
            target = bracket_if_identifier(entity)
        script = ScriptContainer(kind="Deletion", order=0, text=f".drop {entity_type} {target}")
        return cls(entity_type=entity_type, entity=entity, scripts=annotate_scripts([script], analyzer))


class EntityGroupChange(ChangeBase):
    """Re-declaration of an entity group whose membership changed."""

    variant: Literal["entity_group"] = "entity_group"
    entity_type: str = "EntityGroup"
    added: tuple[str, ...] = ()
    removed: tuple[str, ...] = ()

    @classmethod
    def compare(
        cls,
        entity: str,
        old_members: Iterable[str] | None,
        new_members: Sequence[str],
        analyzer: QuerySchemaAnalyzer | None = None,
    ) -> EntityGroupChange:
        before = list(old_members or [])
        added = tuple(member for member in new_members if member not in before)
        removed = tuple(member for member in before if member not in new_members)
        if set(before) == set(new_members):
            return cls(entity=entity)

        script = ScriptContainer(
            kind="EntityGroup",
            order=3,
            text=f".create-or-alter entity_group {entity} ({', '.join(new_members)})",
        )
        return cls(entity=entity, added=added, removed=removed, scripts=annotate_scripts([script], analyzer))


class PolicyChange(ChangeBase):
    """Property-by-property change of a singleton policy."""

    variant: Literal["policy"] = "policy"
    details: tuple[str, ...] = Field(default=(), description="One '- **Property**: `old` → `new`' line per change.")


class BasicChange(ChangeBase):
    """A change whose scripts are supplied by the caller."""

    variant: Literal["basic"] = "basic"
    description: str = ""

    @classmethod
    def build(
        cls,
        entity_type: str,
        entity: str,
        description: str,
        scripts: Iterable[ScriptContainer],
        analyzer: QuerySchemaAnalyzer | None = None,
    ) -> BasicChange:
        return cls(
            entity_type=entity_type,
            entity=entity,
            description=description,
            scripts=annotate_scripts(scripts, analyzer),
        )


# ---------------------------------------------------------------------------
# Permissions
# ---------------------------------------------------------------------------


def _diff_principals(
    old: Sequence[Principal],
    new: Sequence[Principal],
) -> tuple[list[Principal], list[Principal], list[tuple[Principal, Principal]]]:
    old_by_id = {principal.id: principal for principal in old}
    new_ids = {principal.id for principal in new}
    added = [principal for principal in new if principal.id not in old_by_id]
    removed = [principal for principal in old if principal.id not in new_ids]
    renamed = [
        (old_by_id[principal.id], principal)
        for principal in new
        if principal.id in old_by_id and old_by_id[principal.id].name != principal.name
    ]
    return added, removed, renamed


def _quoted_ids(principals: Iterable[Principal]) -> str:
    return ", ".join(f'"{principal.id}"' for principal in principals)


class PermissionChange(ChangeBase):
    """Membership change of one database role.

    Any membership difference re-declares the full member list with
    ``.set``; an emptied role drops its former members.  Display-name
    changes alone only add an informational marker.
    """

    variant: Literal["permission"] = "permission"
    entity_type: str = "Permissions"
    database: str
    added: tuple[Principal, ...] = ()
    removed: tuple[Principal, ...] = ()
    renamed: tuple[tuple[Principal, Principal], ...] = ()

    @classmethod
    def compare(
        cls,
        database: str,
        role: str,
        old: Sequence[Principal] | None,
        new: Sequence[Principal],
        analyzer: QuerySchemaAnalyzer | None = None,
    ) -> PermissionChange:
        old = list(old or [])
        added, removed, renamed = _diff_principals(old, new)
        keyword = role.lower()
        db = bracket_if_identifier(database)

        scripts: list[ScriptContainer] = []
        if added or removed:
            if new:
                scripts.append(
                    ScriptContainer(
                        kind="SetPermissions",
                        order=0,
                        text=f".set database {db} {keyword} ({_quoted_ids(new)})",
                    )
                )
            else:
                scripts.append(
                    ScriptContainer(
                        kind="DropPermissions",
                        order=0,
                        text=f".drop database {db} {keyword} ({_quoted_ids(removed)})",
                    )
                )
        if renamed:
            scripts.append(
                ScriptContainer(kind="PermissionRenamed", order=INFORMATIONAL_ORDER, text="// No Database Change")
            )

        return cls(
            entity=role,
            database=database,
            added=tuple(added),
            removed=tuple(removed),
            renamed=tuple(renamed),
            scripts=annotate_scripts(scripts, analyzer) if scripts else (),
        )


class FollowerPermissionChange(ChangeBase):
    """Follower-side admins or viewers: drop the removed, add the new."""

    variant: Literal["follower_permission"] = "follower_permission"
    entity_type: str = "FollowerPermissions"
    database: str
    added: tuple[Principal, ...] = ()
    removed: tuple[Principal, ...] = ()
    renamed: tuple[tuple[Principal, Principal], ...] = ()

    @classmethod
    def compare(
        cls,
        database: str,
        role: str,
        old: Sequence[Principal] | None,
        new: Sequence[Principal],
        leader_name: str | None = None,
        analyzer: QuerySchemaAnalyzer | None = None,
    ) -> FollowerPermissionChange:
        old = list(old or [])
        added, removed, renamed = _diff_principals(old, new)
        keyword = role.lower()
        db = bracket_if_identifier(database)

        def ids(principals: list[Principal]) -> str:
            return _quoted_ids(sorted(principals, key=lambda p: p.id.lower()))

        scripts: list[ScriptContainer] = []
        if removed:
            scripts.append(
                ScriptContainer(
                    kind="FollowerPermissionChange",
                    order=0,
                    text=f".drop follower database {db} {keyword} ({ids(removed)})",
                )
            )
        if added:
            leader = f" '{leader_name}'" if leader_name else ""
            scripts.append(
                ScriptContainer(
                    kind="FollowerPermissionChange",
                    order=1 if removed else 0,
                    text=f".add follower database {db} {keyword} ({ids(added)}){leader}",
                )
            )
        if renamed:
            scripts.append(
                ScriptContainer(
                    kind="FollowerPermissionRenamed",
                    order=INFORMATIONAL_ORDER,
                    text="// No Database Change",
                )
            )

        return cls(
            entity=role,
            database=database,
            added=tuple(added),
            removed=tuple(removed),
            renamed=tuple(renamed),
            scripts=annotate_scripts(scripts, analyzer) if scripts else (),
        )


Change = Annotated[
    Union[
        Heading,
        ScriptCompareChange,
        DeletionChange,
        EntityGroupChange,
        PolicyChange,
        BasicChange,
        PermissionChange,
        FollowerPermissionChange,
    ],
    Field(discriminator="variant"),
]


# ---------------------------------------------------------------------------
# Change sets
# ---------------------------------------------------------------------------


def build_execution_plan(changes: Iterable[ChangeBase]) -> list[ScriptContainer]:
    """Executable scripts of *changes*, stable-sorted by order."""
    scripts = [script for change in changes for script in change.executable_scripts]
    return sorted(scripts, key=lambda s: s.order)


class ChangeSet(BaseModel):
    """All changes that take one database from its current to its desired state."""

    name: str
    from_state: Database | None = None
    to_state: Database
    changes: list[Change] = Field(default_factory=list)

    @property
    def scripts(self) -> list[ScriptContainer]:
        return [script for change in self.changes for script in change.scripts]

    @property
    def comments(self) -> list[Comment]:
        return [change.comment for change in self.changes if change.comment is not None]

    @property
    def fails_rollout(self) -> bool:
        return any(comment.fails_rollout for comment in self.comments)

    @property
    def is_valid(self) -> bool:
        return all(script.is_valid is not False for script in self.scripts)

    def execution_plan(self) -> list[ScriptContainer]:
        return build_execution_plan(self.changes)


class ClusterChangeSet(BaseModel):
    """All changes that take one cluster from its current to its desired state."""

    name: str
    from_state: Cluster
    to_state: Cluster
    changes: list[Change] = Field(default_factory=list)

    @property
    def scripts(self) -> list[ScriptContainer]:
        return [script for change in self.changes for script in change.scripts]

    @property
    def is_valid(self) -> bool:
        return all(script.is_valid is not False for script in self.scripts)

    def execution_plan(self) -> list[ScriptContainer]:
        return build_execution_plan(self.changes)
