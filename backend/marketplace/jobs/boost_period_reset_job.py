"""
Boost Period Reset Job.

Zeroes the per-period free boost counter of every account so each tier's
allowance is available again for the new period.

Run at the start of each period (e.g. monthly cron):
    python -m marketplace.jobs.boost_period_reset_job

Configuration:
- BOOST_RESET_DRY_RUN: Set to "true" to only count accounts (default: "false")
"""

import logging
import os
import sys
from typing import Dict

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from marketplace.config.settings import LOG_LEVEL
from marketplace.database.session import get_db_session_sync
from marketplace.entitlements.quota import QuotaService
from marketplace.models.account import Account

logging.basicConfig(
    level=LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

DRY_RUN = os.getenv("BOOST_RESET_DRY_RUN", "false").lower() == "true"


class BoostPeriodResetJob:
    """
    Resets boost usage for a new period.

    Process:
    1. Count accounts with boosts used this period
    2. Unless dry run, zero their counters in one UPDATE
    """

    def __init__(self, db_session: Session, dry_run: bool = DRY_RUN):
        self.db = db_session
        self.dry_run = dry_run
        self.quota = QuotaService(db_session)

    def run(self) -> Dict[str, object]:
        pending = self.db.execute(
            select(func.count(Account.id)).where(Account.boosts_used_this_period > 0)
        ).scalar_one()

        stats: Dict[str, object] = {
            "dry_run": self.dry_run,
            "accounts_with_usage": pending,
            "accounts_reset": 0,
        }
        if self.dry_run:
            logger.info("Dry run: boost counters left unchanged", extra=stats)
            return stats

        stats["accounts_reset"] = self.quota.reset_boost_period()
        return stats


def main():
    """Main entry point for the boost period reset job."""
    logger.info("Boost Period Reset Job starting")

    try:
        for session in get_db_session_sync():
            stats = BoostPeriodResetJob(session).run()
            logger.info("Boost Period Reset Job stats", extra=stats)
    except Exception as e:
        logger.error(
            "Boost Period Reset Job failed",
            extra={"error": str(e)},
            exc_info=True
        )
        sys.exit(1)

    logger.info("Boost Period Reset Job finished")


if __name__ == "__main__":
    main()
