"""Entry point for the token deployer."""

from __future__ import annotations

import asyncio
import logging

from deployer.config import EXECUTION_DRY_RUN, setup_logging
from deployer.migrate import run_migration
from deployer.scheduler import DeployerScheduler
from deployer.service import DeployerService

logger = logging.getLogger(__name__)


async def _main() -> None:
    setup_logging()
    logger.info("deployer_starting", extra={"mode": "DRY_RUN" if EXECUTION_DRY_RUN else "LIVE"})

    # Run schema migration before starting the scheduler
    try:
        run_migration()
    except Exception:
        logger.error("migration_failed", exc_info=True)
        raise

    service = DeployerService.from_config()
    scheduler = DeployerScheduler(service)
    await scheduler.start()


def main() -> None:
    asyncio.run(_main())


if __name__ == "__main__":
    main()
