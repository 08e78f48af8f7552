"""Pre-flight validation: update policies, column order and principals."""

from schema_engine.validation.column_order import ColumnOrderValidator
from schema_engine.validation.identity import (
    IdentityValidationResult,
    IdentityValidator,
    MockIdentityValidator,
    PrincipalType,
    collect_principals,
    create_identity_validator,
    validate_database_principals,
)
from schema_engine.validation.results import ValidationResult
from schema_engine.validation.update_policy import (
    UpdatePolicyValidationConfig,
    UpdatePolicyValidationResult,
    UpdatePolicyValidator,
    are_types_compatible,
)

__all__ = [
    "ColumnOrderValidator",
    "IdentityValidationResult",
    "IdentityValidator",
    "MockIdentityValidator",
    "PrincipalType",
    "UpdatePolicyValidationConfig",
    "UpdatePolicyValidationResult",
    "UpdatePolicyValidator",
    "ValidationResult",
    "are_types_compatible",
    "collect_principals",
    "create_identity_validator",
    "validate_database_principals",
]
