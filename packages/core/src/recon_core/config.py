"""Configuration system for the reconciliation engine.

This module provides Pydantic Settings-based configuration with environment
variable support and sensible defaults.

Usage:
    from recon_core.config import ReconConfig

    # Load from environment variables and .env file
    config = ReconConfig()

    # Access ledger settings
    print(config.ledger.timeout)

    # Access engine settings
    if config.engine.require_reconciled_to_complete:
        print("Completion requires a zero variance")
"""

from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerConfig(BaseSettings):
    """Ledger collaborator settings.

    Environment Variables:
        RECON_LEDGER_TIMEOUT: Timeout for ledger queries and postings, in seconds
        RECON_LEDGER_WHT_PAYABLE_ACCOUNT: Account debited when WHT is deposited
        RECON_LEDGER_DEFAULT_BANK_ACCOUNT: Account credited when no bank
            account is supplied with the payment metadata
    """

    model_config = SettingsConfigDict(
        env_prefix="RECON_LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    timeout: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for ledger calls in seconds",
    )
    wht_payable_account: str = Field(
        default="2300",
        description="Ledger account reference for withholding tax payable",
    )
    default_bank_account: Optional[str] = Field(
        default=None,
        description="Ledger account credited for WHT deposits when none is given",
    )

    @field_validator("wht_payable_account")
    @classmethod
    def validate_account(cls, v: str) -> str:
        """Ensure the payable account reference is not empty."""
        if not v or not v.strip():
            raise ValueError("WHT payable account cannot be empty")
        return v.strip()


class EngineConfig(BaseSettings):
    """Computation and workflow settings.

    Environment Variables:
        RECON_ENGINE_TOLERANCE: Absolute variance below which a document is reconciled
        RECON_ENGINE_FISCAL_YEAR_START_MONTH: First month of the fiscal year (1-12)
        RECON_ENGINE_FILING_DUE_DAY: Day of the following month a filing is due
        RECON_ENGINE_REQUIRE_RECONCILED_TO_COMPLETE: Block completion while a
            variance remains
    """

    model_config = SettingsConfigDict(
        env_prefix="RECON_ENGINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    tolerance: Decimal = Field(
        default=Decimal("0.01"),
        gt=0,
        description="Reconciled when |variance| is strictly below this value",
    )
    fiscal_year_start_month: int = Field(
        default=7,
        ge=1,
        le=12,
        description="Month the fiscal year starts in",
    )
    filing_due_day: int = Field(
        default=15,
        ge=1,
        le=28,
        description="Day of the following month on which a monthly filing falls due",
    )
    require_reconciled_to_complete: bool = Field(
        default=True,
        description="Reject in_progress -> completed while the document is unreconciled",
    )


class ReconConfig(BaseSettings):
    """Root configuration for the reconciliation engine.

    Environment Variables:
        RECON_ENV: Environment name (development, staging, production, test)
        RECON_LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        RECON_LOG_FORMAT: Log output format (json, console)

    Example:
        # Load all configuration from environment
        config = ReconConfig()

        # Override specific settings
        config = ReconConfig(
            ledger=LedgerConfig(timeout=2.0),
            engine=EngineConfig(require_reconciled_to_complete=False),
        )
    """

    model_config = SettingsConfigDict(
        env_prefix="RECON_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    env: str = Field(
        default="development",
        description="Environment name (development, staging, production)",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: str = Field(
        default="console",
        description="Log output format (json or console)",
    )

    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)

    @field_validator("env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment name."""
        valid_envs = {"development", "staging", "production", "test"}
        v_lower = v.lower().strip()
        if v_lower not in valid_envs:
            raise ValueError(f"Invalid environment: {v}. Must be one of: {valid_envs}")
        return v_lower

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper().strip()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of: {valid_levels}")
        return v_upper

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log output format."""
        v_lower = v.lower().strip()
        if v_lower not in {"json", "console"}:
            raise ValueError(f"Invalid log format: {v}. Must be 'json' or 'console'")
        return v_lower

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.env == "production"


@lru_cache
def get_config() -> ReconConfig:
    """Get cached configuration instance."""
    return ReconConfig()
