"""Column-order validation for table schema evolution.

The cluster keeps the ordinal position of existing columns when a table is
altered.  Update-policy queries that project positionally break silently if
a new column is inserted in the middle, so new columns must be appended.
"""

from __future__ import annotations

import logging

from schema_engine.models.columns import ColumnSchema
from schema_engine.models.scripts import CommentKind

from .results import ValidationResult

logger = logging.getLogger(__name__)


class ColumnOrderValidator:
    """Check that new columns only ever appear after all existing ones."""

    def validate_column_order(
        self,
        baseline_columns: ColumnSchema | None,
        proposed_columns: ColumnSchema | None,
        table_name: str,
    ) -> ValidationResult:
        """Validate *proposed_columns* against the live *baseline_columns*.

        Parameters
        ----------
        baseline_columns:
            Columns of the existing table, or ``None`` for a new table.
        proposed_columns:
            Declared columns, in declaration order.
        table_name:
            Used in the failure message.

        Returns
        -------
        ValidationResult
            A ``Caution`` failure naming the misplaced and new columns, or
            success.
        """
        if not proposed_columns or not baseline_columns:
            return ValidationResult.success()

        proposed = list(proposed_columns)
        new_columns = [name for name in proposed if name not in baseline_columns]
        if not new_columns:
            return ValidationResult.success()

        first_new_index = proposed.index(new_columns[0])
        misplaced = [name for name in proposed[first_new_index + 1 :] if name in baseline_columns]
        if not misplaced:
            return ValidationResult.success()

        logger.debug(
            "Column order violation in %s: %s after %s",
            table_name,
            misplaced,
            new_columns,
        )
        message = (
            f"Column order violation detected in table '{table_name}'. "
            "New columns must be appended to the end of the table definition. "
            f"Found existing columns ({', '.join(misplaced)}) positioned after new columns "
            f"({', '.join(new_columns)}). "
            "Kusto preserves column ordinal positions after ALTER TABLE operations, which will cause "
            "update policy validation failures if columns are inserted in the middle. "
            "Action required: Move all new columns to the end of the columns list."
        )
        return ValidationResult.failure(message, CommentKind.CAUTION)
