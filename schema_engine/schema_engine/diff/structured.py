"""JSON-friendly export of generated changes.

Reporting layers render diffs from these models instead of the change
variants themselves.  Field names serialize in camelCase.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from schema_engine.models.scripts import Comment, ScriptContainer

from .changes import ChangeBase, ChangeSet, DeletionChange, Heading, ScriptCompareChange


class StructuredChangeType(str, Enum):
    HEADING = "Heading"
    DELETE = "Delete"
    CREATE = "Create"
    UPDATE = "Update"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict[str, object]:
        return self.model_dump(by_alias=True, mode="json")


class StructuredScript(_CamelModel):
    kind: str
    order: int
    text: str
    is_valid: bool | None = None
    is_async: bool = False

    @classmethod
    def from_container(cls, script: ScriptContainer, default_valid: bool | None = None) -> StructuredScript:
        is_valid = script.is_valid if script.is_valid is not None else default_valid
        return cls(
            kind=script.kind,
            order=script.order,
            text=script.text,
            is_valid=is_valid,
            is_async=script.is_async,
        )


class StructuredComment(_CamelModel):
    kind: str
    text: str
    fails_rollout: bool = False

    @classmethod
    def from_comment(cls, comment: Comment) -> StructuredComment:
        return cls(kind=comment.kind.value, text=comment.text, fails_rollout=comment.fails_rollout)


class StructuredScriptComparison(_CamelModel):
    """Old and new text of every changed script of an entity."""

    new_scripts: list[StructuredScript] = Field(default_factory=list)
    old_scripts: list[StructuredScript] = Field(default_factory=list)


class StructuredChange(_CamelModel):
    entity_type: str
    entity: str
    change_type: StructuredChangeType = StructuredChangeType.UPDATE
    heading_text: str | None = None
    scripts: list[StructuredScript] = Field(default_factory=list)
    comment: StructuredComment | None = None
    script_comparison: StructuredScriptComparison | None = None
    deleted_entities: list[str] = Field(default_factory=list)


class StructuredDiff(_CamelModel):
    """Changes for one database on one cluster."""

    cluster_name: str
    cluster_url: str = ""
    database_name: str
    is_valid: bool = True
    comments: list[StructuredComment] = Field(default_factory=list)
    changes: list[StructuredChange] = Field(default_factory=list)
    valid_scripts: list[StructuredScript] = Field(default_factory=list)


class StructuredDiffResult(_CamelModel):
    is_valid: bool = True
    diffs: list[StructuredDiff] = Field(default_factory=list)
    message: str = ""


def to_structured_change(change: ChangeBase) -> StructuredChange:
    """Convert one change variant."""
    structured = StructuredChange(
        entity_type=change.entity_type,
        entity=change.entity,
        scripts=[StructuredScript.from_container(script) for script in change.scripts],
        comment=StructuredComment.from_comment(change.comment) if change.comment is not None else None,
    )

    if isinstance(change, Heading):
        structured.change_type = StructuredChangeType.HEADING
        structured.heading_text = change.entity
        structured.scripts = []
    elif isinstance(change, DeletionChange):
        structured.change_type = StructuredChangeType.DELETE
        structured.deleted_entities = [change.entity]
    elif isinstance(change, ScriptCompareChange):
        structured.change_type = StructuredChangeType.CREATE if change.is_new else StructuredChangeType.UPDATE
        changed_kinds = {script.kind for script in change.scripts}
        structured.script_comparison = StructuredScriptComparison(
            new_scripts=list(structured.scripts),
            old_scripts=[
                StructuredScript.from_container(script, default_valid=True)
                for script in change.old_scripts
                if script.kind in changed_kinds
            ],
        )
    return structured


def build_structured_diff(
    change_set: ChangeSet,
    cluster_name: str,
    cluster_url: str = "",
) -> StructuredDiff:
    """Export a database change set.

    The diff is valid when every script passed the syntax check and no
    comment blocks the rollout.
    """
    comments = [StructuredComment.from_comment(comment) for comment in change_set.comments]
    return StructuredDiff(
        cluster_name=cluster_name,
        cluster_url=cluster_url,
        database_name=change_set.name,
        is_valid=change_set.is_valid and not change_set.fails_rollout,
        comments=comments,
        changes=[to_structured_change(change) for change in change_set.changes],
        valid_scripts=[StructuredScript.from_container(script) for script in change_set.execution_plan()],
    )


def build_structured_result(diffs: Iterable[StructuredDiff]) -> StructuredDiffResult:
    diffs = list(diffs)
    invalid = [diff.database_name for diff in diffs if not diff.is_valid]
    message = f"Invalid changes for: {', '.join(invalid)}" if invalid else ""
    return StructuredDiffResult(is_valid=not invalid, diffs=diffs, message=message)
