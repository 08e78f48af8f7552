"""Validation of identity-provider principals referenced by a database.

Principals come from the six permission lists and from ``aaduser=``,
``aadgroup=`` and ``aadapp=`` tokens inside row-level security queries.
Lookups against the identity provider happen behind the
:class:`IdentityValidator` protocol; :class:`MockIdentityValidator` checks
the principal string format only.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from schema_engine.errors import SchemaEngineError
from schema_engine.models.database import PERMISSION_ROLES, Database, Metadata, Principal

if TYPE_CHECKING:
    from schema_engine.config import Settings

logger = logging.getLogger(__name__)

_PRINCIPAL_PREFIXES = ("aaduser=", "aadgroup=", "aadapp=")
_ID_DELIMITERS = frozenset("\"',)] \t\r\n")
_INVALID_MARKERS = ("invalid-domain.com", "definitely-invalid")
_MOCK_FAILURE = "Mock validation: Principal appears to be invalid or has invalid format"


class PrincipalType(str, Enum):
    UNKNOWN = "Unknown"
    USER = "User"
    GROUP = "Group"
    APPLICATION = "Application"
    SERVICE_PRINCIPAL = "ServicePrincipal"


class IdentityValidationResult(BaseModel):
    """Outcome of looking up one principal."""

    id: str
    name: str = ""
    type: PrincipalType = PrincipalType.UNKNOWN
    is_valid: bool = False
    error_message: str = ""
    exists: bool = False
    validated_at: datetime | None = Field(default=None, description="UTC time of the lookup.")


@runtime_checkable
class IdentityValidator(Protocol):
    """Check that principals exist in the identity provider."""

    async def validate(self, principal: Principal) -> IdentityValidationResult: ...

    async def validate_many(self, principals: Iterable[Principal]) -> list[IdentityValidationResult]: ...

    async def validate_by_id(self, principal_id: str, principal_type: PrincipalType) -> IdentityValidationResult: ...


def principal_type(principal_id: str) -> PrincipalType:
    lowered = principal_id.lower()
    if lowered.startswith("aaduser="):
        return PrincipalType.USER
    if lowered.startswith("aadgroup="):
        return PrincipalType.GROUP
    if lowered.startswith("aadapp="):
        return PrincipalType.APPLICATION
    return PrincipalType.UNKNOWN


def has_valid_principal_format(principal_id: str | None) -> bool:
    """Check the ``aaduser=`` / ``aadgroup=`` / ``aadapp=`` notation.

    Users and groups may omit the tenant.  Applications must always name
    one after a ``;``.
    """
    if not principal_id or not principal_id.strip():
        return False
    kind = principal_type(principal_id)
    if kind is PrincipalType.UNKNOWN:
        return False
    rest = principal_id.split("=", 1)[1]
    if not rest.strip():
        return False
    if kind is PrincipalType.APPLICATION:
        return ";" in rest
    return True


class MockIdentityValidator:
    """Format-only validator used when real lookups are disabled."""

    async def validate(self, principal: Principal) -> IdentityValidationResult:
        logger.debug("Mock validation for principal: %s", principal.id)
        suspicious = any(marker in principal.id for marker in _INVALID_MARKERS)
        is_valid = not suspicious and has_valid_principal_format(principal.id)
        return IdentityValidationResult(
            id=principal.id or "unknown",
            name=principal.name,
            type=principal_type(principal.id),
            is_valid=is_valid,
            exists=is_valid,
            error_message="" if is_valid else _MOCK_FAILURE,
            validated_at=datetime.now(timezone.utc),
        )

    async def validate_many(self, principals: Iterable[Principal]) -> list[IdentityValidationResult]:
        return list(await asyncio.gather(*(self.validate(principal) for principal in principals)))

    async def validate_by_id(self, principal_id: str, principal_type: PrincipalType) -> IdentityValidationResult:
        # The bare id carries no aaduser=/aadgroup=/aadapp= prefix, so only content is checked.
        is_valid = bool(principal_id.strip()) and not any(marker in principal_id for marker in _INVALID_MARKERS)
        return IdentityValidationResult(
            id=principal_id or "unknown",
            type=principal_type,
            is_valid=is_valid,
            exists=is_valid,
            error_message="" if is_valid else _MOCK_FAILURE,
            validated_at=datetime.now(timezone.utc),
        )


def create_identity_validator(
    settings: Settings,
    factory: Callable[[], IdentityValidator] | None = None,
) -> IdentityValidator:
    """Return the validator selected by ``settings.use_mock_identity_validation``."""
    if settings.use_mock_identity_validation:
        logger.info("Using mock identity validation")
        return MockIdentityValidator()
    if factory is None:
        raise SchemaEngineError("Identity validation is enabled but no IdentityValidator implementation was supplied")
    logger.info("Using identity-provider validation")
    return factory()


# ---------------------------------------------------------------------------
# Principal collection
# ---------------------------------------------------------------------------


def principals_from_row_level_security(query: str | None) -> list[Principal]:
    """Extract principals written inline in a row-level security query."""
    if not query or not query.strip():
        return []

    found: list[Principal] = []
    lowered = query.lower()
    for prefix in _PRINCIPAL_PREFIXES:
        start = lowered.find(prefix)
        while start != -1:
            value_start = start + len(prefix)
            end = value_start
            while end < len(query) and query[end] not in _ID_DELIMITERS:
                end += 1
            value = query[value_start:end]
            if value.strip():
                found.append(Principal(id=f"{prefix}{value}", name=value))
            start = lowered.find(prefix, max(end, value_start))
    return found


def collect_principals(database: Database) -> list[Principal]:
    """Every principal *database* references, deduplicated by id."""
    principals: list[Principal] = []
    for role in PERMISSION_ROLES:
        principals.extend(database.principals_for(role))
    for table in database.tables.values():
        if table.policies is not None:
            principals.extend(principals_from_row_level_security(table.policies.row_level_security))
    for view in database.materialized_views.values():
        if view.policies is not None:
            principals.extend(principals_from_row_level_security(view.policies.row_level_security))

    unique: dict[str, Principal] = {}
    for principal in principals:
        unique.setdefault(principal.id, principal)
    return list(unique.values())


async def validate_database_principals(
    database: Database,
    validator: IdentityValidator,
) -> list[IdentityValidationResult]:
    """Validate every principal of *database*.

    Invalid principals are logged and summarised as an ``AADValidation``
    :class:`Metadata` entry on the database.
    """
    logger.info("Starting identity validation for database %s", database.name)
    principals = collect_principals(database)
    if not principals:
        logger.info("No principals found to validate")
        return []

    logger.info("Found %d principals to validate", len(principals))
    results = await validator.validate_many(principals)

    invalid = [result for result in results if not result.is_valid]
    logger.info(
        "Identity validation completed: %d valid, %d invalid",
        len(results) - len(invalid),
        len(invalid),
    )
    for result in invalid:
        logger.warning("Invalid principal: %s - %s", result.id, result.error_message)

    if invalid:
        database.metadata.append(
            Metadata(
                entity_name=database.name,
                entity_type="Database",
                type="AADValidation",
                value=f"Found {len(invalid)} invalid AAD objects",
            )
        )
    return results
