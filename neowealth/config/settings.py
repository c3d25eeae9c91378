"""
Configuration Management for NeoWealth Core

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All tunable business constants live here.
The defaults are the production values; tests and deployments
override them through NEOWEALTH_* environment variables.
"""

from decimal import Decimal
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RewardSettings(BaseSettings):
    """NeoCoin reward ledger configuration."""

    model_config = SettingsConfigDict(
        env_prefix="NEOWEALTH_REWARDS_",
        extra="ignore"
    )

    initial_neo_coins: Decimal = Field(
        default=Decimal("100.00"),
        ge=0,
        description="NeoCoins seeded into a new wallet at registration"
    )
    daily_base_reward: Decimal = Field(
        default=Decimal("5.0"),
        gt=0,
        description="Daily login reward before bonuses"
    )
    active_user_bonus: Decimal = Field(
        default=Decimal("1.5"),
        ge=1,
        description="Multiplier applied to the daily reward for active users"
    )
    active_user_threshold: int = Field(
        default=5,
        ge=1,
        description="Transactions in the activity window that make a user active"
    )
    activity_window_days: int = Field(
        default=7,
        ge=1,
        description="Look-back window for the activity bonus"
    )
    cashback_rate: Decimal = Field(
        default=Decimal("0.01"),
        ge=0,
        le=1,
        description="NeoCoin cashback per unit of expense"
    )
    income_reward_rate: Decimal = Field(
        default=Decimal("0.01"),
        ge=0,
        le=1,
        description="NeoCoins granted per unit of recorded income"
    )


class GoalSettings(BaseSettings):
    """Goal optimizer configuration."""

    model_config = SettingsConfigDict(
        env_prefix="NEOWEALTH_GOALS_",
        extra="ignore"
    )

    saving_capacity_ratio: Decimal = Field(
        default=Decimal("0.2"),
        ge=0,
        le=1,
        description="Share of recent income assumed available for saving"
    )
    capacity_window_days: int = Field(
        default=30,
        ge=1,
        description="Look-back window for income when estimating capacity"
    )


class HiveSettings(BaseSettings):
    """Group savings configuration."""

    model_config = SettingsConfigDict(
        env_prefix="NEOWEALTH_HIVES_",
        extra="ignore"
    )

    default_max_members: int = Field(
        default=15,
        gt=0,
        description="Member cap for hives created without one"
    )
    income_match_tolerance: float = Field(
        default=0.5,
        gt=0,
        description="Max relative distance from a hive's average member income"
    )


class InsightSettings(BaseSettings):
    """Behavior analyzer configuration."""

    model_config = SettingsConfigDict(
        env_prefix="NEOWEALTH_INSIGHTS_",
        extra="ignore"
    )

    analysis_window_days: int = Field(
        default=30,
        ge=1,
        description="Transactions older than this are ignored by the analyzer"
    )
    max_recommendations: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Upper bound on recommendations returned per analysis"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="NEOWEALTH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Minimum level for structured logs"
    )

    # Validation thresholds
    max_transaction_amount_inr: Decimal = Field(
        default=Decimal("10000000"),
        gt=0,
        description="Amounts above this are flagged as suspicious"
    )
    future_date_tolerance_days: int = Field(
        default=1,
        ge=0,
        description="Days into the future a transaction date may lie"
    )

    # Optimistic concurrency
    concurrency_retry_attempts: int = Field(
        default=5,
        ge=1,
        le=20,
        description="How often a conflicting write is retried"
    )
    concurrency_retry_max_wait: float = Field(
        default=0.2,
        gt=0,
        description="Upper bound in seconds for the jittered retry wait"
    )

    # Background jobs
    job_user_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Time budget for processing one user in a sweep"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"Unsupported log level: {v}. Allowed: {allowed}")
        return v.upper()


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def rewards(self) -> RewardSettings:
        return RewardSettings()

    @property
    def goals(self) -> GoalSettings:
        return GoalSettings()

    @property
    def hives(self) -> HiveSettings:
        return HiveSettings()

    @property
    def insights(self) -> InsightSettings:
        return InsightSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus `<name>_error`
    entries for the ones that failed. Useful for startup checks.
    """
    results = {}
    settings = get_settings()

    for name in ("rewards", "goals", "hives", "insights", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
