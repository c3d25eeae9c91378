"""Configuration package."""

from neowealth.config.settings import (
    AppSettings,
    GoalSettings,
    HiveSettings,
    InsightSettings,
    RewardSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "GoalSettings",
    "HiveSettings",
    "InsightSettings",
    "RewardSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
