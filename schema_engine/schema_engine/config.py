"""Schema engine configuration loaded from environment variables."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from schema_engine.validation.update_policy import UpdatePolicyValidationConfig

if TYPE_CHECKING:
    from schema_engine.executor.retry import RetryConfig

logger = logging.getLogger(__name__)

_TRUE_VALUES = frozenset({"true", "1"})
_FALSE_VALUES = frozenset({"false", "0"})


class Settings(BaseSettings):
    """Engine settings loaded from environment variables with KUSTO_ prefix."""

    model_config = SettingsConfigDict(
        env_prefix="KUSTO_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    debug: bool = False

    # Validation
    enable_column_validation: bool = False
    enforce_strict_type_compatibility: bool = False
    enable_update_policy_validation: bool = False
    use_mock_identity_validation: bool = True

    # Execution
    command_timeout_seconds: float | None = None

    # Reading live state
    read_max_retries: int = 3
    read_retry_base_delay: float = 1.0
    read_retry_max_delay: float = 30.0

    @field_validator("enable_column_validation", mode="before")
    @classmethod
    def lenient_flag(cls, v: Any) -> bool:
        """Accept true/false/1/0 in any case; anything else disables the flag."""
        if isinstance(v, bool):
            return v
        text = str(v).strip().lower()
        if text in _TRUE_VALUES:
            return True
        if text not in _FALSE_VALUES:
            logger.warning("Ignoring unrecognised column validation flag %r", v)
        return False

    def update_policy_config(self) -> UpdatePolicyValidationConfig:
        return UpdatePolicyValidationConfig(
            enforce_strict_type_compatibility=self.enforce_strict_type_compatibility,
        )

    def read_retry_config(self) -> RetryConfig:
        from schema_engine.executor.retry import RetryConfig

        return RetryConfig(
            max_retries=self.read_max_retries,
            base_delay=self.read_retry_base_delay,
            max_delay=self.read_retry_max_delay,
        )


class ValidationSettings(BaseModel):
    """Validation switches threaded through change generation."""

    enable_column_order_validation: bool = Field(
        default=False,
        description="Attach a rollout-blocking comment when new columns are not appended at the end.",
    )
    enable_update_policy_validation: bool = Field(
        default=False,
        description="Attach a rollout-blocking comment when a table update policy fails validation.",
    )
    update_policy_config: UpdatePolicyValidationConfig | None = Field(
        default=None,
        description="Type-compatibility behaviour for update policy validation.",
    )

    @classmethod
    def from_settings(cls, settings: Settings) -> ValidationSettings:
        return cls(
            enable_column_order_validation=settings.enable_column_validation,
            enable_update_policy_validation=settings.enable_update_policy_validation,
            update_policy_config=settings.update_policy_config(),
        )

    @classmethod
    def with_column_order_validation(cls) -> ValidationSettings:
        return cls(enable_column_order_validation=True)


def load_settings(**overrides: object) -> Settings:
    """Load settings from environment, with optional overrides for testing."""
    settings = Settings(**overrides)  # type: ignore[arg-type]

    if settings.debug:
        logger.info(
            "Loaded settings (column validation: %s, strict types: %s)",
            settings.enable_column_validation,
            settings.enforce_strict_type_compatibility,
        )

    return settings
