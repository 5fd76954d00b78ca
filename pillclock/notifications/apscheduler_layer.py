"""Notification layer backed by an APScheduler AsyncIOScheduler.

Each notification is one scheduler job: the job id is the handle and the job
name carries the encoded NotificationTag, so `list_live` survives any loss of
in-memory bookkeeping on the engine side. When a job runs, its payload is
decoded and handed to the delivery handler injected by the engine.
"""
import logging
import uuid
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Tuple

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger as APSIntervalTrigger

from pillclock.notifications.base import Handle, NotificationLayer
from pillclock.notifications.payloads import NotificationTag, decode_payload, tag_for
from pillclock.scheduling.triggers import CalendarTrigger, IntervalTrigger

logger = logging.getLogger(__name__)

DeliveryHandler = Callable[[object], Awaitable[None]]


class APSchedulerNotificationLayer(NotificationLayer):
    def __init__(self, scheduler: AsyncIOScheduler, tz, permitted: bool = True):
        self.scheduler = scheduler
        self.tz = tz
        self._permitted = permitted
        self._deliver: Optional[DeliveryHandler] = None

    def set_delivery_handler(self, handler: DeliveryHandler) -> None:
        self._deliver = handler

    async def _fire(self, payload: dict) -> None:
        decoded = decode_payload(payload)
        if self._deliver is None:
            logger.warning("🔕 Notification fired with no delivery handler: %s", tag_for(decoded).encode())
            return
        await self._deliver(decoded)

    def _add(self, trigger, payload) -> Handle:
        handle = uuid.uuid4().hex
        self.scheduler.add_job(
            self._fire,
            trigger=trigger,
            id=handle,
            name=tag_for(payload).encode(),
            kwargs={"payload": payload.model_dump(mode="json")},
            # a late reminder is still worth showing
            misfire_grace_time=None,
            coalesce=True,
        )
        return handle

    async def schedule_one_shot(self, fire_at: datetime, payload) -> Handle:
        return self._add(DateTrigger(run_date=fire_at, timezone=self.tz), payload)

    async def schedule_repeating(self, trigger: CalendarTrigger | IntervalTrigger, payload) -> Handle:
        if isinstance(trigger, CalendarTrigger):
            aps_trigger = CronTrigger(
                hour=trigger.hour,
                minute=trigger.minute,
                day_of_week=trigger.weekday,
                timezone=self.tz,
            )
        elif isinstance(trigger, IntervalTrigger):
            aps_trigger = APSIntervalTrigger(
                seconds=trigger.seconds,
                start_date=trigger.start_at,
                timezone=self.tz,
            )
        else:
            raise TypeError(f"Not a repeating trigger: {trigger!r}")
        return self._add(aps_trigger, payload)

    async def cancel(self, handle: Handle) -> None:
        try:
            self.scheduler.remove_job(handle)
        except JobLookupError:
            logger.debug("Notification %s already gone", handle)

    async def list_live(self) -> List[Tuple[Handle, Optional[NotificationTag]]]:
        return [(job.id, NotificationTag.decode(job.name)) for job in self.scheduler.get_jobs()]

    async def request_permission(self) -> bool:
        return self._permitted
