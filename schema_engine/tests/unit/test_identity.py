"""Unit tests for schema_engine.validation.identity."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from schema_engine.config import Settings
from schema_engine.errors import SchemaEngineError
from schema_engine.models.database import Database, Principal
from schema_engine.models.entities import Table
from schema_engine.models.policies import TablePolicy
from schema_engine.validation.identity import (
    IdentityValidationResult,
    MockIdentityValidator,
    PrincipalType,
    collect_principals,
    create_identity_validator,
    has_valid_principal_format,
    principals_from_row_level_security,
    validate_database_principals,
)


def _make_database() -> Database:
    return Database(
        name="Telemetry",
        admins=[Principal(id="aaduser=admin@contoso.com", name="Admin")],
        viewers=[
            Principal(id="aadgroup=readers@contoso.com", name="Readers"),
            Principal(id="aaduser=admin@contoso.com", name="Admin again"),
        ],
        tables={
            "Events": Table(
                columns={"Id": "string"},
                policies=TablePolicy(
                    row_level_security="Events | where current_principal_is_member_of('aadgroup=secure@contoso.com')"
                ),
            )
        },
    )


# ---------------------------------------------------------------------------
# Format checks
# ---------------------------------------------------------------------------


class TestPrincipalFormat:
    @pytest.mark.parametrize(
        "principal_id",
        [
            "aaduser=someone@contoso.com",
            "aaduser=someone@contoso.com;tenant",
            "aadgroup=group@contoso.com",
            "aadapp=00000000-0000-0000-0000-000000000000;contoso.com",
        ],
    )
    def test_valid_formats(self, principal_id):
        assert has_valid_principal_format(principal_id)

    @pytest.mark.parametrize(
        "principal_id",
        ["", "   ", "someone@contoso.com", "aaduser=", "aadapp=00000000-0000-0000-0000-000000000000"],
    )
    def test_invalid_formats(self, principal_id):
        assert not has_valid_principal_format(principal_id)


# ---------------------------------------------------------------------------
# Collection
# ---------------------------------------------------------------------------


class TestCollectPrincipals:
    def test_row_level_security_extraction(self):
        principals = principals_from_row_level_security(
            "T | where current_principal_is_member_of('aaduser=a@contoso.com', 'aadgroup=g@contoso.com')"
        )
        assert [p.id for p in principals] == ["aaduser=a@contoso.com", "aadgroup=g@contoso.com"]
        assert principals[0].name == "a@contoso.com"

    def test_empty_query(self):
        assert principals_from_row_level_security(None) == []
        assert principals_from_row_level_security("  ") == []

    def test_roles_and_policies_deduplicated(self):
        ids = [p.id for p in collect_principals(_make_database())]
        assert ids == [
            "aaduser=admin@contoso.com",
            "aadgroup=readers@contoso.com",
            "aadgroup=secure@contoso.com",
        ]


# ---------------------------------------------------------------------------
# Mock validator
# ---------------------------------------------------------------------------


class TestMockIdentityValidator:
    @pytest.mark.asyncio
    async def test_valid_principal(self):
        result = await MockIdentityValidator().validate(Principal(id="aaduser=a@contoso.com", name="A"))
        assert result.is_valid
        assert result.exists
        assert result.type is PrincipalType.USER
        assert result.validated_at is not None

    @pytest.mark.asyncio
    async def test_suspicious_domain_is_invalid(self):
        result = await MockIdentityValidator().validate(Principal(id="aaduser=a@invalid-domain.com"))
        assert not result.is_valid
        assert result.error_message.startswith("Mock validation")

    @pytest.mark.asyncio
    async def test_validate_many_keeps_order(self):
        principals = [Principal(id="aadgroup=g@contoso.com"), Principal(id="bogus")]
        results = await MockIdentityValidator().validate_many(principals)
        assert [r.is_valid for r in results] == [True, False]

    @pytest.mark.asyncio
    async def test_validate_by_id(self):
        validator = MockIdentityValidator()
        assert (await validator.validate_by_id("some-object-id", PrincipalType.GROUP)).is_valid
        assert not (await validator.validate_by_id("definitely-invalid", PrincipalType.USER)).is_valid


# ---------------------------------------------------------------------------
# Factory and database validation
# ---------------------------------------------------------------------------


class TestCreateIdentityValidator:
    def test_mock_by_default(self):
        assert isinstance(create_identity_validator(Settings()), MockIdentityValidator)

    def test_factory_used_when_mock_disabled(self):
        sentinel = MagicMock()
        validator = create_identity_validator(Settings(use_mock_identity_validation=False), lambda: sentinel)
        assert validator is sentinel

    def test_missing_factory_raises(self):
        with pytest.raises(SchemaEngineError, match="no IdentityValidator"):
            create_identity_validator(Settings(use_mock_identity_validation=False))


class TestValidateDatabasePrincipals:
    @pytest.mark.asyncio
    async def test_invalid_principals_recorded_as_metadata(self):
        database = _make_database()
        validator = MagicMock()
        validator.validate_many = AsyncMock(
            return_value=[
                IdentityValidationResult(id="aaduser=admin@contoso.com", is_valid=True),
                IdentityValidationResult(id="aadgroup=readers@contoso.com", error_message="not found"),
                IdentityValidationResult(id="aadgroup=secure@contoso.com", error_message="not found"),
            ]
        )

        results = await validate_database_principals(database, validator)

        assert len(results) == 3
        validator.validate_many.assert_awaited_once()
        [metadata] = database.metadata
        assert metadata.type == "AADValidation"
        assert metadata.entity_name == "Telemetry"
        assert metadata.value == "Found 2 invalid AAD objects"

    @pytest.mark.asyncio
    async def test_all_valid_adds_no_metadata(self):
        database = _make_database()
        results = await validate_database_principals(database, MockIdentityValidator())
        assert all(r.is_valid for r in results)
        assert database.metadata == []

    @pytest.mark.asyncio
    async def test_no_principals_skips_validator(self):
        validator = MagicMock()
        validator.validate_many = AsyncMock()
        assert await validate_database_principals(Database(name="Empty"), validator) == []
        validator.validate_many.assert_not_awaited()
