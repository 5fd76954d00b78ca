import logging
from typing import Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

logger = logging.getLogger(__name__)


class JobScheduler:
    """Named background jobs with injected handlers.

    Registering a name that already exists replaces it, so every cold start
    can re-assert its jobs without piling up duplicates.
    """

    def __init__(self, scheduler: AsyncIOScheduler, tz):
        self.scheduler = scheduler
        self.tz = tz

    def register_daily(
        self,
        name: str,
        handler: Callable[[], Awaitable[object]],
        hour: int = 0,
        minute: int = 1,
        grace_seconds: int = 60 * 60,
    ):
        if not self.scheduler.running and self.is_registered(name):
            # pending jobs are only de-duplicated once the scheduler starts
            self.scheduler.remove_job(name)

        job = self.scheduler.add_job(
            handler,
            trigger=CronTrigger(hour=hour, minute=minute, timezone=self.tz),
            id=name,
            name=name,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
            misfire_grace_time=grace_seconds,
        )
        logger.info("✅ Background job %s registered (daily at %02d:%02d)", name, hour, minute)
        return job

    def is_registered(self, name: str) -> bool:
        return self.scheduler.get_job(name) is not None

    def start(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
