"""
Runtime settings read from the environment.

Configuration:
- DATABASE_URL: SQLAlchemy URL of the backing store (default: local SQLite file)
- LOG_LEVEL: Root log level for entry points (default: INFO)
- TIER_CATALOG_PATH: Optional JSON file replacing the built-in tier catalog
- WALLET_HISTORY_DEFAULT_LIMIT / WALLET_HISTORY_MAX_LIMIT: Pagination bounds
"""

import os
from typing import Optional

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./marketplace.db")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Empty means "use the built-in catalog"
TIER_CATALOG_PATH: Optional[str] = os.getenv("TIER_CATALOG_PATH") or None

HISTORY_DEFAULT_LIMIT = int(os.getenv("WALLET_HISTORY_DEFAULT_LIMIT", "50"))
HISTORY_MAX_LIMIT = int(os.getenv("WALLET_HISTORY_MAX_LIMIT", "200"))


def clamp_history_limit(limit: Optional[int]) -> int:
    """
    Normalize a requested page size.

    Args:
        limit: Requested page size (None or non-positive means default)

    Returns:
        Page size between 1 and HISTORY_MAX_LIMIT
    """
    if limit is None or limit <= 0:
        return HISTORY_DEFAULT_LIMIT
    return min(limit, HISTORY_MAX_LIMIT)
