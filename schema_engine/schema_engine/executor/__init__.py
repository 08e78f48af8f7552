"""Apply engine and the interfaces it needs from the live cluster."""

from schema_engine.executor.base import KustoClient, ScriptResult, StateObserver
from schema_engine.executor.retry import RetryConfig, async_retry_with_backoff
from schema_engine.executor.writer import (
    CLUSTER_SCOPE,
    EXECUTE_SCRIPT_HEADER,
    ApplyFailedError,
    SchemaWriter,
    ScriptExecutionError,
    wrap_scripts,
)

__all__ = [
    "CLUSTER_SCOPE",
    "EXECUTE_SCRIPT_HEADER",
    "ApplyFailedError",
    "KustoClient",
    "RetryConfig",
    "SchemaWriter",
    "ScriptExecutionError",
    "ScriptResult",
    "StateObserver",
    "async_retry_with_backoff",
    "wrap_scripts",
]
