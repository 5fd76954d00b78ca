import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional

from pillclock.notifications.payloads import SnoozePayload
from pillclock.scheduling.models import SNOOZE, ReminderOccurrence
from pillclock.scheduling.recurrence import to_local
from pillclock.scheduling.registry import ScheduleRegistry

logger = logging.getLogger(__name__)


class SnoozeManager:
    """One-shot reminders offset from now, kept apart from the base schedule."""

    def __init__(self, registry: ScheduleRegistry, tz):
        self.registry = registry
        self.tz = tz

    async def snooze(
        self,
        medication_id: str,
        minutes: int,
        name: Optional[str] = None,
        dosage: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ReminderOccurrence:
        if minutes <= 0:
            raise ValueError(f"Snooze must be at least one minute, got {minutes}")

        local_now = to_local(now or datetime.now(self.tz), self.tz)
        fire_at = self.tz.normalize(local_now + timedelta(minutes=minutes))
        label = name or "your medication"
        payload = SnoozePayload(
            medication_id=medication_id,
            title=f"💊 {label}",
            body=f"Snoozed reminder: time for {dosage or label}.",
            snooze_id=uuid.uuid4().hex[:12],
            snoozed_minutes=minutes,
        )

        handle = await self.registry.guarded(
            medication_id,
            self.registry.notifier.schedule_one_shot(fire_at, payload),
        )
        logger.info("😴 Snoozed medication %s for %d minutes (until %s)", medication_id, minutes, fire_at.isoformat())
        return ReminderOccurrence(
            medication_id=medication_id,
            fire_at=fire_at,
            dose_at=fire_at,
            kind=SNOOZE,
            handle=handle,
        )

    async def cancel(self, medication_id: str, handle: str) -> None:
        await self.registry.guarded(medication_id, self.registry.notifier.cancel(handle))

    async def cancel_all(self, medication_id: str) -> int:
        handles = await self.registry.live_handles(medication_id, SNOOZE)
        for handle in handles:
            await self.cancel(medication_id, handle)
        return len(handles)

    async def outstanding(self, medication_id: str):
        return await self.registry.live_handles(medication_id, SNOOZE)
