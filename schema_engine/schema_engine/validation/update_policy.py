"""Pre-flight validation of table update policies.

An update policy runs a transformation query over rows ingested into a
source table and appends the result to the target table.  Validation checks
that:

1. the policy names a source and a query,
2. the source table exists,
3. the query is valid against the source schema,
4. every produced column that the target declares has a compatible type,
5. every source column the query references exists.

Missing or extra output columns are warnings, not errors: the target column
is simply left empty, or the extra value dropped.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping

from pydantic import BaseModel, Field

from schema_engine.analyzer import QuerySchemaAnalyzer
from schema_engine.models.columns import DYNAMIC, NUMERIC_TYPES, ColumnSchema, normalize_type
from schema_engine.models.entities import Table
from schema_engine.models.policies import UpdatePolicy

logger = logging.getLogger(__name__)

_GUID_RE = re.compile(r"^[a-fA-F0-9]{8}-[a-fA-F0-9]{4}-[a-fA-F0-9]{4}-[a-fA-F0-9]{4}-[a-fA-F0-9]{12}$")
_IDENTITY_NAME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9-_]*$")


# ---------------------------------------------------------------------------
# Configuration and result
# ---------------------------------------------------------------------------


class UpdatePolicyValidationConfig(BaseModel):
    """Tuneable behaviour of :class:`UpdatePolicyValidator`."""

    enforce_strict_type_compatibility: bool = Field(
        default=False,
        description="When set, numeric types must match exactly instead of converting implicitly.",
    )

    @classmethod
    def default(cls) -> UpdatePolicyValidationConfig:
        return cls()

    @classmethod
    def strict(cls) -> UpdatePolicyValidationConfig:
        return cls(enforce_strict_type_compatibility=True)


class UpdatePolicyValidationResult(BaseModel):
    """Errors and warnings found for one update policy."""

    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    def add_error(self, message: str) -> None:
        self.errors.append(message)

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def __str__(self) -> str:
        messages: list[str] = []
        if self.errors:
            messages.append(f"Errors: {', '.join(self.errors)}")
        if self.warnings:
            messages.append(f"Warnings: {', '.join(self.warnings)}")
        return "; ".join(messages) if messages else "Valid"


# ---------------------------------------------------------------------------
# Type compatibility
# ---------------------------------------------------------------------------


def are_types_compatible(
    source_type: str,
    target_type: str,
    config: UpdatePolicyValidationConfig | None = None,
) -> bool:
    """Return True if a value of *source_type* can populate *target_type*.

    Both sides are normalized first, so aliases such as ``double`` and ``real``
    match.  Identical types and anything involving ``dynamic`` are compatible.
    Numeric types convert implicitly unless strict compatibility is enforced.
    """
    config = config or UpdatePolicyValidationConfig.default()
    source = normalize_type(source_type)
    target = normalize_type(target_type)

    if source == target:
        return True
    if DYNAMIC in (source, target):
        return True
    if not config.enforce_strict_type_compatibility:
        return source in NUMERIC_TYPES and target in NUMERIC_TYPES
    return False


def is_valid_managed_identity(identity: str) -> bool:
    return identity.lower() == "system" or bool(_GUID_RE.match(identity) or _IDENTITY_NAME_RE.match(identity))


# ---------------------------------------------------------------------------
# Validator
# ---------------------------------------------------------------------------


class UpdatePolicyValidator:
    """Validate update policies against their source and target tables.

    Parameters
    ----------
    analyzer:
        Query analyzer.  A default :class:`QuerySchemaAnalyzer` is created
        when omitted.
    """

    def __init__(self, analyzer: QuerySchemaAnalyzer | None = None) -> None:
        self._analyzer = analyzer or QuerySchemaAnalyzer()

    def validate_policy(
        self,
        policy: UpdatePolicy,
        target_table: Table,
        source_table: Table | None,
        all_tables: Mapping[str, Table] | None,
        config: UpdatePolicyValidationConfig | None = None,
    ) -> UpdatePolicyValidationResult:
        """Validate one update policy.

        Parameters
        ----------
        policy:
            The update policy declared on *target_table*.
        target_table:
            The table receiving the transformed rows.
        source_table:
            The table named by ``policy.source``, when already resolved.  If
            ``None`` it is looked up in *all_tables*.
        all_tables:
            Every table of the database, or ``None`` when unknown.
        config:
            Validation behaviour; defaults to permissive numeric conversion.
        """
        config = config or UpdatePolicyValidationConfig.default()
        result = UpdatePolicyValidationResult()

        self._validate_basic_properties(policy, result)
        self._validate_source_table(policy, all_tables, result)

        if result.is_valid:
            if source_table is None and all_tables is not None:
                source_table = all_tables.get(policy.source)
            self._validate_schema_compatibility(policy, target_table, source_table, result, config)

        if not result.is_valid:
            logger.debug("Update policy from %s failed validation: %s", policy.source, result)
        return result

    def validate_table(
        self,
        target_table: Table,
        all_tables: Mapping[str, Table] | None,
        config: UpdatePolicyValidationConfig | None = None,
    ) -> list[UpdatePolicyValidationResult]:
        """Validate every update policy declared on *target_table*."""
        policies = target_table.policies.update_policies if target_table.policies else None
        if not policies:
            return []
        return [
            self.validate_policy(
                policy,
                target_table,
                all_tables.get(policy.source) if all_tables is not None else None,
                all_tables,
                config,
            )
            for policy in policies
        ]

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_basic_properties(policy: UpdatePolicy, result: UpdatePolicyValidationResult) -> None:
        if not policy.source.strip():
            result.add_error("UpdatePolicy.Source cannot be null or empty")
        if not policy.query.strip():
            result.add_error("UpdatePolicy.Query cannot be null or empty")

        identity = (policy.managed_identity or "").strip()
        if identity and not is_valid_managed_identity(identity):
            result.add_warning(f"Managed identity '{policy.managed_identity}' format may be invalid")

    @staticmethod
    def _validate_source_table(
        policy: UpdatePolicy,
        all_tables: Mapping[str, Table] | None,
        result: UpdatePolicyValidationResult,
    ) -> None:
        if all_tables is None:
            result.add_warning("Database or Tables collection is null, cannot validate source table existence")
            return
        if policy.source.strip() and policy.source not in all_tables:
            result.add_error(f"Source table '{policy.source}' does not exist in the database")

    def _validate_schema_compatibility(
        self,
        policy: UpdatePolicy,
        target_table: Table,
        source_table: Table | None,
        result: UpdatePolicyValidationResult,
        config: UpdatePolicyValidationConfig,
    ) -> None:
        if target_table.columns is None or source_table is None or source_table.columns is None:
            result.add_warning("Cannot validate schema compatibility: table columns are not defined")
            return

        validation = self._analyzer.validate_query(policy.query, source_table.columns, policy.source)
        for error in validation.errors:
            result.add_error(f"Query validation error: {error}")
        for warning in validation.warnings:
            result.add_warning(f"Query validation warning: {warning}")

        if validation.is_valid:
            self._validate_output_schema(validation.output_schema, target_table.columns, result, config)

        for column in sorted(validation.referenced_columns):
            if column not in source_table.columns:
                result.add_error(
                    f"Query references column '{column}' which does not exist in source table '{policy.source}'"
                )

    @staticmethod
    def _validate_output_schema(
        output_schema: ColumnSchema,
        target_columns: ColumnSchema,
        result: UpdatePolicyValidationResult,
        config: UpdatePolicyValidationConfig,
    ) -> None:
        for column, target_type in target_columns.items():
            produced_type = output_schema.get(column)
            if produced_type is None:
                result.add_warning(f"Target table column '{column}' is not produced by the query")
            elif not are_types_compatible(produced_type, target_type, config):
                result.add_error(
                    f"Column '{column}' type mismatch: query produces '{produced_type}' "
                    f"but target table expects '{target_type}'"
                )

        for column in output_schema:
            if column not in target_columns:
                result.add_warning(f"Query produces column '{column}' which does not exist in target table")
