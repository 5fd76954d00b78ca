import logging
from datetime import datetime
from typing import Optional

from pillclock.core.errors import SchedulingFailed
from pillclock.core.events import EventBus, MissedDoseDetected
from pillclock.scheduling.recurrence import to_local
from pillclock.scheduling.registry import ScheduleRegistry

logger = logging.getLogger(__name__)


class MissedDoseDetector:
    """
    Decide whether a past-due pending dose should be surfaced on resume.

    A dose whose base notification is no longer live was resolved somewhere
    else (or its medication was cancelled), so it is not surfaced again.
    """

    def __init__(self, store, registry: ScheduleRegistry, bus: EventBus, tz):
        self.store = store
        self.registry = registry
        self.bus = bus
        self.tz = tz

    async def check(self, now: Optional[datetime] = None):
        if self.store is None:
            return None
        local_now = to_local(now or datetime.now(self.tz), self.tz)
        dose = await self.store.latest_pending_before(local_now)
        if dose is None:
            return None

        try:
            live = await self.registry.is_live(dose.medication_id)
        except SchedulingFailed as e:
            # cannot tell, so err on the side of reminding the user
            logger.error("Could not check scheduled notifications: %s", e)
            live = True

        if not live:
            logger.info("✅ No scheduled notification found for %s, skipping", dose.medication_id)
            return None

        await self.bus.publish(
            MissedDoseDetected(
                medication_id=dose.medication_id,
                record_id=dose.record_id,
                scheduled_time=dose.scheduled_time,
            )
        )
        return dose
