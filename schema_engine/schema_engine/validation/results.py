"""Outcome of a structural validation check."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from schema_engine.models.scripts import CommentKind


class ValidationResult(BaseModel):
    """Pass/fail result carrying the message and severity of a failure."""

    model_config = ConfigDict(frozen=True)

    is_valid: bool
    error_message: str | None = Field(default=None, description="Why validation failed, if it did.")
    severity: CommentKind | None = Field(default=None, description="Comment kind to attach on failure.")

    @classmethod
    def success(cls) -> ValidationResult:
        return cls(is_valid=True)

    @classmethod
    def failure(cls, error_message: str, severity: CommentKind) -> ValidationResult:
        return cls(is_valid=False, error_message=error_message, severity=severity)
