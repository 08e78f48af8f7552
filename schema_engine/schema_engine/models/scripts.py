"""Script containers and review comments attached to generated changes.

A :class:`ScriptContainer` is the atomic unit produced by every schema entity
and consumed by the diff and apply engines.  Its ``order`` defines the
execution sequence; a negative order marks an informational entry that must
never be sent to the cluster.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

# Order used for informational markers that carry no executable command.
INFORMATIONAL_ORDER = -1


class ScriptContainer(BaseModel):
    """One command script together with its execution metadata."""

    model_config = ConfigDict(frozen=True)

    kind: str = Field(
        ...,
        description="Script category, used to pair old and new scripts of an entity.",
    )
    order: int = Field(
        ...,
        description="Execution sequence.  Negative values are informational only.",
    )
    text: str = Field(..., description="Command text sent to the cluster.")
    is_valid: bool | None = Field(
        default=None,
        description="Result of the syntax check.  None means not checked yet.",
    )
    is_async: bool = Field(
        default=False,
        description="True when the command runs asynchronously on the cluster.",
    )

    @property
    def is_informational(self) -> bool:
        return self.order < 0

    @property
    def is_executable(self) -> bool:
        """Whether the script belongs in an execution plan."""
        return self.order >= 0 and self.is_valid is not False

    def with_validity(self, is_valid: bool) -> ScriptContainer:
        return self.model_copy(update={"is_valid": is_valid})


class CommentKind(str, Enum):
    """Severity of a review comment, mirroring markdown alert kinds."""

    NOTE = "Note"
    INFO = "Info"
    TIP = "Tip"
    IMPORTANT = "Important"
    WARNING = "Warning"
    CAUTION = "Caution"


class Comment(BaseModel):
    """Reviewer-facing annotation on a change.

    Validators attach comments instead of dropping scripts so that both the
    command and the reason it may fail stay visible.
    """

    model_config = ConfigDict(frozen=True)

    kind: CommentKind
    text: str
    fails_rollout: bool = False
