"""
Main entry point for the aggregate reconciliation scheduler.

This script starts the scheduler service that periodically recomputes every
rating summary and book counter from source.
"""

import asyncio
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

import structlog
from pymongo.errors import ConnectionFailure

from catalog.database import MongoDBManager
from scheduler.models import SchedulerConfig
from scheduler.scheduler_service import SchedulerService
from utilities.config import config
from utilities.logger import setup_logging


async def main():
    """Main function to start the scheduler service."""
    setup_logging(
        log_level=config.log_level,
        log_format=config.log_format,
        log_file=config.log_file,
        debug=config.debug
    )
    logger = structlog.get_logger(__name__)

    run_once = False
    if len(sys.argv) > 1:
        if sys.argv[1] == "--once":
            run_once = True
        elif sys.argv[1] != "--daemon":
            print(f"Unknown argument: {sys.argv[1]}")
            print("Usage: python scheduler_main.py [--once|--daemon]")
            sys.exit(1)

    db_manager = MongoDBManager(
        connection_url=config.mongodb_url,
        database_name=config.mongodb_database,
        server_selection_timeout_ms=config.server_selection_timeout_ms
    )
    scheduler_config = SchedulerConfig.from_settings(config)
    scheduler_service = SchedulerService(scheduler_config, db_manager)

    print("\n" + "=" * 60)
    if run_once:
        print("RUN ONCE MODE: reconcile all aggregates and exit")
    elif scheduler_config.interval_minutes:
        print(f"DAEMON MODE: reconcile every {scheduler_config.interval_minutes} minutes")
    else:
        print(
            f"DAEMON MODE: reconcile daily at "
            f"{scheduler_config.schedule_hour:02d}:{scheduler_config.schedule_minute:02d} "
            f"{scheduler_config.timezone}"
        )
    print("=" * 60)

    try:
        await scheduler_service.start(run_once=run_once)
    except ConnectionFailure as e:
        logger.error("Failed to start scheduler service", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
