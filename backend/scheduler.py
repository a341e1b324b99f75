# /backend/scheduler.py

import asyncio
import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from nearflow.config.settings import settings, validate_environment
from nearflow.jobs.session_sweeper import sweep_expired_sessions, drain_notifications
from nearflow.models.session import utcnow
from nearflow.services.notification_queue import ExpiryNotifier
from nearflow.services.session_store import MongoSessionStore
from nearflow.utils.logging import setup_logging
from nearflow.workflows.registry import build_registry

logger = logging.getLogger("SchedulerService")


async def main():
    setup_logging()
    validate_environment(settings)

    registry = build_registry()
    store = MongoSessionStore(settings.mongo_uri)
    await store.create_indexes()
    notifier = ExpiryNotifier.from_url(settings.redis_url)

    async def run_session_sweep_job():
        logger.info("Starting scheduled inactive session sweep...")
        # Fresh timestamp per run for accurate elapsed-time calculation
        await sweep_expired_sessions(utcnow(), store, registry, notifier)

    scheduler = AsyncIOScheduler(timezone=settings.scheduler_timezone)
    scheduler.add_job(
        run_session_sweep_job,
        'interval',
        minutes=settings.sweep_interval_minutes,
        id="inactive_session_sweep_job",
        max_instances=1,
        coalesce=True,
        replace_existing=True
    )
    logger.info(f"Scheduled job: run_session_sweep_job (every {settings.sweep_interval_minutes} minutes).")

    scheduler.start()
    logger.info("Scheduler started successfully. Press Ctrl+C to exit.")

    # This loop keeps the script running forever
    try:
        while True:
            await asyncio.sleep(3600)
    except (KeyboardInterrupt, SystemExit, asyncio.CancelledError):
        scheduler.shutdown()
        await drain_notifications()
        await notifier.close()
        store.close()


if __name__ == "__main__":
    asyncio.run(main())
