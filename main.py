"""
Quest Tracker - headless entry point
Opens the collection database, loads the start-up buckets and reports them
"""

import sys
import asyncio
import logging

from quest_tracker.logger import setup_logger
from quest_tracker.constants import get_status_tab_name
from quest_tracker.database import PersistenceGateway
from quest_tracker.game_repository import TrackedGameRepository
from quest_tracker.sync_controller import CollectionSyncController, SyncNotice


def log_notice(notice: SyncNotice):
    logger = logging.getLogger("QuestTracker")
    if notice.level == "error":
        logger.warning(f"{notice.title}: {notice.message}")
    else:
        logger.info(f"{notice.title}: {notice.message}")


async def main() -> int:
    """
    Main async entry point

    Returns:
        Process exit code
    """
    logger = logging.getLogger("QuestTracker")
    logger.info("Quest Tracker starting...")

    gateway = PersistenceGateway()
    try:
        logger.info("Initializing database...")
        await gateway.initialize()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}", exc_info=True)
        return 1

    controller = CollectionSyncController(TrackedGameRepository(gateway))
    controller.add_notice_listener(log_notice)

    try:
        results = await controller.load_initial()
        for status, loaded in results.items():
            if loaded:
                logger.info(f"{get_status_tab_name(status)}: {len(controller.snapshot(status))} games")
            else:
                logger.warning(f"{get_status_tab_name(status)}: could not be loaded")
        await controller.flush()
    finally:
        await controller.close()
        await gateway.close()

    logger.info("Quest Tracker finished")
    return 0 if all(results.values()) else 1


if __name__ == "__main__":
    setup_logger()
    sys.exit(asyncio.run(main()))
