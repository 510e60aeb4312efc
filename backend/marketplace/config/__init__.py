"""Configuration module for the marketplace core."""

from marketplace.config.settings import (
    DATABASE_URL,
    HISTORY_DEFAULT_LIMIT,
    HISTORY_MAX_LIMIT,
    LOG_LEVEL,
    TIER_CATALOG_PATH,
    clamp_history_limit,
)

__all__ = [
    "DATABASE_URL",
    "HISTORY_DEFAULT_LIMIT",
    "HISTORY_MAX_LIMIT",
    "LOG_LEVEL",
    "TIER_CATALOG_PATH",
    "clamp_history_limit",
]
