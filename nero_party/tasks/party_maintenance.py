"""Background tasks for party maintenance."""
import asyncio
import logging
from datetime import datetime
from typing import Optional

from nero_party.database import AsyncSessionLocal
from nero_party.services.party_service import PartyService
from nero_party.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

# Track if maintenance task is running to prevent concurrent executions
_maintenance_task_running = False


async def run_party_maintenance(session_factory=None, now: Optional[datetime] = None) -> int:
    """Delete completed parties past the retention window.

    Safe to call repeatedly; a call made while another run is in progress
    returns immediately.

    Returns:
        Number of parties deleted
    """
    global _maintenance_task_running

    if _maintenance_task_running:
        logger.debug("Party maintenance already running, skipping")
        return 0

    _maintenance_task_running = True
    deleted = 0
    try:
        async with (session_factory or AsyncSessionLocal)() as db:
            logger.info("Starting party maintenance...")
            deleted = await PartyService(db).cleanup_completed_parties(now=now)
            logger.info(f"Party maintenance completed: {deleted} completed parties removed")

    except Exception as e:
        logger.error(f"Error during party maintenance: {e}", exc_info=True)
    finally:
        _maintenance_task_running = False

    return deleted


async def schedule_periodic_maintenance(interval_hours: Optional[int] = None) -> None:
    """Run party maintenance forever, once per interval.

    Args:
        interval_hours: Hours between runs (defaults to the configured interval)
    """
    interval_hours = interval_hours or settings.maintenance_interval_hours
    logger.info(f"Starting party maintenance scheduler (interval: {interval_hours}h)")

    while True:
        try:
            await asyncio.sleep(interval_hours * 3600)
            await run_party_maintenance()
        except asyncio.CancelledError:
            logger.info("Party maintenance scheduler cancelled")
            break
        except Exception as e:
            logger.error(f"Unexpected error in maintenance scheduler: {e}", exc_info=True)
            await asyncio.sleep(60)
