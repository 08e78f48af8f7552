"""Apply engine: execute change scripts until the live state converges.

Each round diffs the live state against the declared state, sends every
executable script in one ``.execute script`` batch with
``ContinueOnErrors = true`` and inspects the per-command results:

* nothing to execute, or every script succeeded: done
* some scripts succeeded: re-read the live state and run another round,
  since a later script may only have failed because an earlier one had
  not run yet
* no script succeeded: the state cannot converge; raise

Nothing is rolled back.  Scripts that succeeded in earlier rounds stay
applied.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from typing import Generic, TypeVar

from schema_engine.analyzer import QuerySchemaAnalyzer
from schema_engine.config import Settings, ValidationSettings
from schema_engine.diff.changes import build_execution_plan
from schema_engine.diff.cluster_changes import generate_cluster_changes
from schema_engine.diff.database_changes import generate_database_changes
from schema_engine.errors import SchemaEngineError
from schema_engine.models.cluster import Cluster
from schema_engine.models.database import Database
from schema_engine.models.scripts import ScriptContainer

from .base import KustoClient, ScriptResult, StateObserver
from .retry import RetryConfig, async_retry_with_backoff

logger = logging.getLogger(__name__)

StateT = TypeVar("StateT")

EXECUTE_SCRIPT_HEADER = ".execute script with(ContinueOnErrors = true) <|"

# Database scope used for cluster-level commands.
CLUSTER_SCOPE = ""


class ScriptExecutionError(SchemaEngineError):
    """A single command failed on the cluster."""

    def __init__(self, result: ScriptResult) -> None:
        self.result = result
        super().__init__(f"Execution failed for command {result.command_text} with reason {result.reason}")


class ApplyFailedError(SchemaEngineError):
    """A round executed scripts but none of them succeeded."""

    def __init__(self, failures: Sequence[ScriptResult], rounds: int) -> None:
        self.failures = list(failures)
        self.rounds = rounds
        reasons = "; ".join(f"{f.command_text}: {f.reason}" for f in self.failures)
        super().__init__(f"Apply made no progress in round {rounds}, {len(self.failures)} scripts failed: {reasons}")


def wrap_scripts(scripts: Sequence[ScriptContainer]) -> str:
    """Render *scripts* as one ``.execute script`` command."""
    return "\n".join([EXECUTE_SCRIPT_HEADER, *(script.text for script in scripts)])


class SchemaWriter(Generic[StateT]):
    """Drive a database or cluster to its declared state.

    Parameters
    ----------
    client:
        Executes commands on the cluster.
    observer:
        Re-reads the live state between rounds.
    retry_config:
        Backoff for re-reading the live state.
    command_timeout:
        Seconds a batch may take.  A timed-out batch counts as a failure of
        every script in it.  ``None`` waits indefinitely.
    analyzer:
        Syntax checker passed to change generation.
    """

    def __init__(
        self,
        client: KustoClient,
        observer: StateObserver[StateT],
        retry_config: RetryConfig | None = None,
        command_timeout: float | None = None,
        analyzer: QuerySchemaAnalyzer | None = None,
    ) -> None:
        self._client = client
        self._observer = observer
        self._retry_config = retry_config or RetryConfig()
        self._command_timeout = command_timeout
        self._analyzer = analyzer or QuerySchemaAnalyzer()
        self._rounds = 0

    @classmethod
    def from_settings(
        cls,
        client: KustoClient,
        observer: StateObserver[StateT],
        settings: Settings,
        analyzer: QuerySchemaAnalyzer | None = None,
    ) -> SchemaWriter[StateT]:
        return cls(
            client,
            observer,
            retry_config=settings.read_retry_config(),
            command_timeout=settings.command_timeout_seconds,
            analyzer=analyzer,
        )

    @property
    def rounds(self) -> int:
        """Number of rounds that executed scripts in the most recently finished apply.

        Concurrent applies on one writer each count their own rounds; this
        reports whichever finished last.  :class:`ApplyFailedError` carries
        the count of the apply that failed.
        """
        return self._rounds

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_scripts(self, scope: str, scripts: Sequence[ScriptContainer]) -> list[ScriptResult]:
        """Execute *scripts* as one batch and return one result per script."""
        if not scripts:
            return []

        command = wrap_scripts(scripts)
        call = self._client.execute_command(scope, command)
        try:
            if self._command_timeout is not None:
                rows = await asyncio.wait_for(call, self._command_timeout)
            else:
                rows = await call
        except asyncio.TimeoutError:
            logger.warning("Batch of %d scripts timed out after %.1fs", len(scripts), self._command_timeout)
            reason = f"Timed out after {self._command_timeout}s"
            return [ScriptResult.failure(script.text, reason) for script in scripts]

        results: list[ScriptResult] = []
        for index, script in enumerate(scripts):
            if index >= len(rows):
                results.append(ScriptResult.failure(script.text, "No result returned"))
                continue
            result = ScriptResult.from_row(rows[index])
            if not result.command_text:
                result = result.model_copy(update={"command_text": script.text})
            results.append(result)
        return results

    async def execute_script(self, scope: str, script: ScriptContainer) -> ScriptResult:
        """Execute a single script.

        Raises
        ------
        ScriptExecutionError
            If the cluster reports a failure.
        """
        [result] = await self.execute_scripts(scope, [script])
        if not result.succeeded:
            raise ScriptExecutionError(result)
        return result

    # ------------------------------------------------------------------
    # Fixpoint loop
    # ------------------------------------------------------------------

    async def converge(
        self,
        current: StateT,
        name: str,
        scope: str,
        plan: Callable[[StateT], list[ScriptContainer]],
    ) -> list[ScriptResult]:
        """Plan, execute and re-observe until no round fails or none succeeds.

        Parameters
        ----------
        current:
            Live state to diff against in the first round.
        name:
            Passed to the observer to re-read the live state.
        scope:
            Database scope of the executed commands.
        plan:
            Returns the executable scripts for a given live state.

        Raises
        ------
        ApplyFailedError
            If a round executed scripts and none of them succeeded.
        """
        rounds = 0
        results: list[ScriptResult] = []

        while True:
            scripts = plan(current)
            if not scripts:
                logger.info("%s is up to date after %d rounds", name, rounds)
                self._rounds = rounds
                return results

            rounds += 1
            logger.info("Round %d: executing %d scripts on %s", rounds, len(scripts), name)
            round_results = await self.execute_scripts(scope, scripts)
            results.extend(round_results)

            failed = [result for result in round_results if not result.succeeded]
            succeeded = len(round_results) - len(failed)
            for failure in failed:
                logger.warning("Script failed on %s: %s (%s)", name, failure.command_text, failure.reason)

            if not failed:
                logger.info("All %d scripts succeeded on %s", succeeded, name)
                self._rounds = rounds
                return results
            if succeeded == 0:
                logger.error("No script succeeded on %s in round %d", name, rounds)
                self._rounds = rounds
                raise ApplyFailedError(failed, rounds)

            logger.info(
                "Round %d on %s: %d succeeded, %d failed; re-reading live state",
                rounds,
                name,
                succeeded,
                len(failed),
            )
            current = await async_retry_with_backoff(
                lambda: self._observer.load(name),
                self._retry_config,
                operation=f"Loading live state of {name}",
            )

    async def write_database(
        self,
        current: Database | None,
        target: Database,
        name: str,
        validation: ValidationSettings | None = None,
    ) -> list[ScriptResult]:
        """Apply *target* to database *name*, starting from *current*."""

        def plan(live: Database | None) -> list[ScriptContainer]:
            changes = generate_database_changes(live, target, name, validation, self._analyzer)
            return build_execution_plan(changes)

        return await self.converge(current, name, name, plan)

    async def write_cluster(self, current: Cluster, target: Cluster) -> list[ScriptResult]:
        """Apply *target* cluster settings, starting from *current*."""

        def plan(live: Cluster) -> list[ScriptContainer]:
            return generate_cluster_changes(live, target, self._analyzer).execution_plan()

        return await self.converge(current, target.name, CLUSTER_SCOPE, plan)
