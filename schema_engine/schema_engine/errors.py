"""Exception hierarchy shared across the schema engine."""

from __future__ import annotations


class SchemaEngineError(Exception):
    """Base class for all errors raised by the schema engine."""


class ScriptGenerationError(SchemaEngineError, ValueError):
    """A declarative entity cannot be rendered into a command script."""


class ClusterMismatchError(SchemaEngineError, ValueError):
    """Two cluster states with different names were compared."""
