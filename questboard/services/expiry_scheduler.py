"""Background sweep of overdue time-based quests.

Runs as an asyncio task during the application lifespan and moves every
OPEN time-based quest past its expiry to EXPIRED.
"""

import asyncio

from questboard.database import get_db_session
from questboard.logging_config import get_logger
from questboard.services.quest_service import QuestService

logger = get_logger(__name__)


async def run_expiry_cycle() -> int:
    """Single cycle: sweep expired quests and return how many moved."""
    async with get_db_session() as session:
        return await QuestService(session).sweep_expired_quests()


async def scheduler_loop(stop_event: asyncio.Event, interval: float) -> None:
    """Main scheduler loop. Runs until stop_event is set."""
    logger.info("expiry_scheduler_started", interval_seconds=interval)

    while not stop_event.is_set():
        try:
            expired = await run_expiry_cycle()
            if expired:
                logger.info("expiry_cycle_complete", expired=expired)
        except Exception:
            logger.exception("expiry_cycle_error")

        # Wait for the interval or until stopped
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval)
            break
        except asyncio.TimeoutError:
            pass

    logger.info("expiry_scheduler_stopped")
