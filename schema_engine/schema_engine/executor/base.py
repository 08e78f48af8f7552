"""Interfaces to the live cluster.

The apply engine talks to the cluster only through :class:`KustoClient`
and re-reads the deployed schema only through :class:`StateObserver`, so
both can be replaced by fakes in tests.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol, TypeVar

from pydantic import BaseModel, Field

StateT_co = TypeVar("StateT_co", covariant=True)


class KustoClient(Protocol):
    """Structural interface for command execution.

    Implementations are **not** required to subclass this protocol; they only
    need to expose a matching ``execute_command`` coroutine.
    """

    async def execute_command(self, database: str, command: str) -> list[Mapping[str, Any]]:
        """Execute a management command and return its result rows.

        Parameters
        ----------
        database:
            Database scope, or ``""`` for cluster-level commands.
        command:
            Command text.

        Returns
        -------
        list
            One mapping per result row, keyed by column name.
        """
        ...


class StateObserver(Protocol[StateT_co]):
    """Reads the currently deployed state of a database or cluster."""

    async def load(self, name: str) -> StateT_co:
        """Return the live state of *name*."""
        ...


class ScriptResult(BaseModel):
    """Outcome of one command inside an executed batch."""

    operation_id: str = ""
    command_type: str = ""
    command_text: str = ""
    succeeded: bool
    reason: str = Field(default="", description="Failure reason reported by the cluster.")

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> ScriptResult:
        """Parse a row of ``.execute script`` output."""
        return cls(
            operation_id=str(row.get("OperationId", "") or ""),
            command_type=str(row.get("CommandType", "") or ""),
            command_text=str(row.get("CommandText", "") or ""),
            succeeded=str(row.get("Result", "")).strip().lower() == "completed",
            reason=str(row.get("Reason", "") or ""),
        )

    @classmethod
    def failure(cls, command_text: str, reason: str) -> ScriptResult:
        return cls(command_text=command_text, succeeded=False, reason=reason)

