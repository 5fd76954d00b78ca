"""Process-scoped wiring, built once at startup from an explicit Settings."""
import logging
from dataclasses import dataclass
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import Request

from pillclock.core.config import Settings
from pillclock.core.events import EventBus
from pillclock.engine import ReminderEngine
from pillclock.medications.store import ReminderStore
from pillclock.notifications.apscheduler_layer import APSchedulerNotificationLayer
from pillclock.notifications.base import NotificationLayer
from pillclock.scheduling.daily_reset import RESET_TASK, DailyResetTask
from pillclock.scheduling.jobs import JobScheduler
from pillclock.scheduling.missed import MissedDoseDetector
from pillclock.scheduling.registry import ScheduleRegistry
from pillclock.scheduling.snooze import SnoozeManager

logger = logging.getLogger(__name__)


@dataclass
class EngineContext:
    settings: Settings
    bus: EventBus
    notifier: NotificationLayer
    registry: ScheduleRegistry
    engine: ReminderEngine
    jobs: JobScheduler
    store: Optional[ReminderStore] = None

    async def start(self) -> None:
        """Permission check, re-arm enabled medications, settle past days, re-assert background jobs."""
        await self.engine.ensure_permission()

        if self.store is not None:
            schedules = await self.store.list_enabled_schedules()
            report = await self.engine.reschedule_all(schedules)
            logger.info(
                "📅 Rescheduled %d medication(s), %d failed",
                len(report.scheduled),
                len(report.failed),
            )
            # catch up on any day boundary passed while the process was down
            await self.engine.run_daily_reset()

        self.jobs.register_daily(
            RESET_TASK,
            self.engine.run_daily_reset,
            hour=self.settings.daily_reset_hour,
            minute=self.settings.daily_reset_minute,
            grace_seconds=self.settings.daily_reset_grace_seconds,
        )
        self.jobs.start()

    async def stop(self) -> None:
        self.jobs.shutdown()


def build_context(
    settings: Settings,
    sessionmaker=None,
    notifier: Optional[NotificationLayer] = None,
    scheduler: Optional[AsyncIOScheduler] = None,
) -> EngineContext:
    tz = settings.tz
    bus = EventBus()
    scheduler = scheduler or AsyncIOScheduler(timezone=tz)

    if notifier is None:
        notifier = APSchedulerNotificationLayer(scheduler, tz, permitted=settings.notifications_permitted)

    store = ReminderStore(sessionmaker, tz) if sessionmaker is not None else None
    registry = ScheduleRegistry(notifier, timeout=settings.os_call_timeout)
    engine = ReminderEngine(
        notifier=notifier,
        registry=registry,
        snoozer=SnoozeManager(registry, tz),
        detector=MissedDoseDetector(store, registry, bus, tz),
        reset_task=DailyResetTask(store, bus, tz),
        bus=bus,
        tz=tz,
        capability=settings.notification_capability,
        store=store,
        default_snooze_minutes=settings.default_snooze_minutes,
    )

    if isinstance(notifier, APSchedulerNotificationLayer):
        notifier.set_delivery_handler(engine.handle_fired)

    return EngineContext(
        settings=settings,
        bus=bus,
        notifier=notifier,
        registry=registry,
        engine=engine,
        jobs=JobScheduler(scheduler, tz),
        store=store,
    )


def get_engine(request: Request) -> ReminderEngine:
    return request.app.state.ctx.engine
