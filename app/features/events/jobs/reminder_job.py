"""
Reminder job runner.

Runs one reminder pass and exits. Meant to be started by an external daily
scheduler (cron, platform scheduler) through the generic worker:

    python -m app.jobs.worker event_reminders
"""

import asyncio

from app.db.pool import db_pool
from app.features.events.services.notification_client import build_notification_sender
from app.features.events.services.reminder_dispatcher import ReminderDispatcher
from app.infrastructure.observability.logging import get_logger, setup_logging
from app.services.redis_client import fast_redis

logger = get_logger(__name__)


async def run_event_reminders() -> dict:
    """Initialize resources, dispatch once, release resources. Returns the summary dict."""
    # Raises on missing configuration before any connection is opened.
    sender = build_notification_sender()
    try:
        await db_pool.initialize()
        try:
            await fast_redis.initialize()
        except RuntimeError as e:
            # The send log stays authoritative without the run lock.
            logger.warning("Redis unavailable for reminder job", error=str(e))

        summary = await ReminderDispatcher(sender=sender).dispatch()
        return summary.to_dict()
    finally:
        await sender.close()
        await fast_redis.close()
        await db_pool.close()


if __name__ == "__main__":
    setup_logging()
    asyncio.run(run_event_reminders())
