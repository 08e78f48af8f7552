"""Unit tests for schema_engine.config."""

from __future__ import annotations

import pytest
from schema_engine.config import Settings, ValidationSettings, load_settings
from schema_engine.executor.retry import RetryConfig
from schema_engine.validation.update_policy import UpdatePolicyValidationConfig

# ---------------------------------------------------------------------------
# Settings - default values
# ---------------------------------------------------------------------------


class TestSettingsDefaults:
    def test_column_validation_disabled(self):
        settings = Settings()
        assert settings.enable_column_validation is False

    def test_update_policy_validation_disabled(self):
        settings = Settings()
        assert settings.enable_update_policy_validation is False

    def test_mock_identity_validation_enabled(self):
        settings = Settings()
        assert settings.use_mock_identity_validation is True

    def test_no_command_timeout(self):
        settings = Settings()
        assert settings.command_timeout_seconds is None

    def test_read_retry_defaults(self):
        settings = Settings()
        assert settings.read_max_retries == 3
        assert settings.read_retry_base_delay == 1.0
        assert settings.read_retry_max_delay == 30.0


# ---------------------------------------------------------------------------
# Settings - environment
# ---------------------------------------------------------------------------


class TestSettingsFromEnvironment:
    @pytest.mark.parametrize("value", ["true", "TRUE", "True", "1"])
    def test_column_validation_truthy(self, monkeypatch, value):
        monkeypatch.setenv("KUSTO_ENABLE_COLUMN_VALIDATION", value)
        assert Settings().enable_column_validation is True

    @pytest.mark.parametrize("value", ["false", "FALSE", "0"])
    def test_column_validation_falsy(self, monkeypatch, value):
        monkeypatch.setenv("KUSTO_ENABLE_COLUMN_VALIDATION", value)
        assert Settings().enable_column_validation is False

    @pytest.mark.parametrize("value", ["yes", "enabled", "2", ""])
    def test_unrecognised_value_keeps_default(self, monkeypatch, value):
        monkeypatch.setenv("KUSTO_ENABLE_COLUMN_VALIDATION", value)
        assert Settings().enable_column_validation is False

    def test_strict_types_from_env(self, monkeypatch):
        monkeypatch.setenv("KUSTO_ENFORCE_STRICT_TYPE_COMPATIBILITY", "true")
        assert Settings().enforce_strict_type_compatibility is True

    def test_command_timeout_from_env(self, monkeypatch):
        monkeypatch.setenv("KUSTO_COMMAND_TIMEOUT_SECONDS", "12.5")
        assert Settings().command_timeout_seconds == 12.5


# ---------------------------------------------------------------------------
# Derived configuration
# ---------------------------------------------------------------------------


class TestDerivedConfig:
    def test_update_policy_config(self):
        settings = Settings(enforce_strict_type_compatibility=True)
        config = settings.update_policy_config()
        assert isinstance(config, UpdatePolicyValidationConfig)
        assert config.enforce_strict_type_compatibility is True

    def test_read_retry_config(self):
        settings = Settings(read_max_retries=5, read_retry_base_delay=0.5, read_retry_max_delay=4.0)
        config = settings.read_retry_config()
        assert isinstance(config, RetryConfig)
        assert config.max_retries == 5
        assert config.base_delay == 0.5
        assert config.max_delay == 4.0


class TestValidationSettings:
    def test_defaults_disable_everything(self):
        validation = ValidationSettings()
        assert validation.enable_column_order_validation is False
        assert validation.enable_update_policy_validation is False
        assert validation.update_policy_config is None

    def test_from_settings(self):
        settings = Settings(
            enable_column_validation=True,
            enable_update_policy_validation=True,
            enforce_strict_type_compatibility=True,
        )
        validation = ValidationSettings.from_settings(settings)
        assert validation.enable_column_order_validation is True
        assert validation.enable_update_policy_validation is True
        assert validation.update_policy_config.enforce_strict_type_compatibility is True

    def test_with_column_order_validation(self):
        validation = ValidationSettings.with_column_order_validation()
        assert validation.enable_column_order_validation is True


class TestLoadSettings:
    def test_overrides_applied(self):
        settings = load_settings(enable_column_validation=True, debug=True)
        assert settings.enable_column_validation is True
        assert settings.debug is True
