"""The operations the UI layer calls: arm, cancel, snooze, check on resume."""
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, Optional

from pillclock.core.errors import PermissionDenied, SchedulingFailed
from pillclock.core.events import EventBus, PermissionAdvisory, ReminderFired, SchedulingWarning
from pillclock.notifications.base import NotificationLayer
from pillclock.notifications.payloads import (
    BaseReminderPayload,
    DailySummaryPayload,
    SnoozePayload,
    decode_payload,
)
from pillclock.scheduling.daily_reset import DailyResetTask, ResetOutcome
from pillclock.scheduling.missed import MissedDoseDetector
from pillclock.scheduling.models import BASE, EXACT_TIME, MedicationSchedule, ReminderOccurrence
from pillclock.scheduling.recurrence import next_fire, to_local
from pillclock.scheduling.registry import ScheduleRegistry
from pillclock.scheduling.snooze import SnoozeManager
from pillclock.scheduling.triggers import plan_triggers

logger = logging.getLogger(__name__)

PERMISSION_ADVISORY = "Please enable notifications in settings to receive medication reminders."


def _reminder_phrase(schedule: MedicationSchedule) -> str:
    phrases = [
        f"Time to take your {schedule.name}!",
        f"Don't forget your {schedule.dosage or 'dose'} of {schedule.name}.",
        f"Stay on track: {schedule.name} time!",
    ]
    return random.choice(phrases)


def _base_payload(schedule: MedicationSchedule, occurrence: ReminderOccurrence, reminder: str) -> BaseReminderPayload:
    if reminder == EXACT_TIME:
        return BaseReminderPayload(
            medication_id=schedule.medication_id,
            title=f"💊 {schedule.name}",
            body=_reminder_phrase(schedule),
            repeat_type=schedule.rule.name,
            dose_at=occurrence.dose_at,
        )
    return BaseReminderPayload(
        medication_id=schedule.medication_id,
        title=f"💊 Reminder: {schedule.name}",
        body=f"It's almost time to take your {schedule.dosage or schedule.name}.",
        repeat_type=schedule.rule.name,
        dose_at=occurrence.dose_at,
        reminder=reminder,
        minutes_before=schedule.lead_minutes,
    )


@dataclass
class RescheduleReport:
    scheduled: Dict[str, Optional[datetime]] = field(default_factory=dict)
    failed: Dict[str, str] = field(default_factory=dict)


class ReminderEngine:
    def __init__(
        self,
        notifier: NotificationLayer,
        registry: ScheduleRegistry,
        snoozer: SnoozeManager,
        detector: MissedDoseDetector,
        reset_task: DailyResetTask,
        bus: EventBus,
        tz,
        capability: str,
        store=None,
        default_snooze_minutes: int = 15,
    ):
        self.notifier = notifier
        self.registry = registry
        self.snoozer = snoozer
        self.detector = detector
        self.reset_task = reset_task
        self.bus = bus
        self.tz = tz
        self.capability = capability
        self.store = store
        self.default_snooze_minutes = default_snooze_minutes
        self._permission_advised = False

    def _now(self, now: Optional[datetime]) -> datetime:
        return to_local(now or datetime.now(self.tz), self.tz)

    async def ensure_permission(self) -> bool:
        try:
            granted = await self.notifier.request_permission()
        except PermissionDenied:
            granted = False
        except Exception as e:
            logger.error("❌ Error requesting notification permissions: %s", e)
            granted = False

        if not granted and not self._permission_advised:
            self._permission_advised = True
            logger.warning("🔕 Notification permissions denied; reminders are best-effort")
            await self.bus.publish(PermissionAdvisory(PERMISSION_ADVISORY))
        return granted

    async def register_or_update(
        self,
        schedule: MedicationSchedule,
        now: Optional[datetime] = None,
    ) -> Optional[datetime]:
        """
        Re-arm the base reminders for `schedule` and return when the first one fires.

        The exact-time reminder is always armed; a lead time adds an advance
        reminder ahead of it. Both are replaced together.

        Returns None when there is nothing left to fire (disabled medication
        or a one-time reminder that already passed). Raises SchedulingFailed
        if the notification layer rejects the request.
        """
        medication_id = schedule.medication_id
        if not schedule.enabled:
            await self.cancel(medication_id)
            return None

        occurrence = next_fire(self._now(now), schedule, self.tz)
        if occurrence is None:
            logger.info("⏰ One-time reminder for %s has already passed, skipping reschedule.", schedule.name)
            await self.registry.unregister(medication_id)
            await self._record_next(medication_id, None)
            return None

        plan = plan_triggers(occurrence, schedule, self.capability)
        if plan.warning:
            await self.bus.publish(SchedulingWarning(medication_id, plan.warning))

        if not plan.self_renewing:
            logger.info("🔁 %s fires once; it is re-armed on the next save or restart", schedule.name)

        payloads = {reminder: _base_payload(schedule, occurrence, reminder) for reminder in plan.reminders}
        await self.registry.register(medication_id, plan, payloads)
        await self._record_next(medication_id, occurrence.fire_at)
        logger.info("💊 %s scheduled for %s (%s)", schedule.name, occurrence.fire_at.isoformat(), schedule.rule.name)
        return occurrence.fire_at

    async def _record_next(self, medication_id: str, when: Optional[datetime]) -> None:
        if self.store is not None:
            await self.store.set_next_reminder(medication_id, when)

    async def cancel(self, medication_id: str, include_snoozes: bool = False) -> None:
        await self.registry.unregister(medication_id)
        if include_snoozes:
            await self.snoozer.cancel_all(medication_id)
        await self._record_next(medication_id, None)

    async def snooze(
        self,
        medication_id: str,
        minutes: Optional[int] = None,
        now: Optional[datetime] = None,
        schedule: Optional[MedicationSchedule] = None,
    ) -> ReminderOccurrence:
        return await self.snoozer.snooze(
            medication_id,
            self.default_snooze_minutes if minutes is None else minutes,
            name=schedule.name if schedule else None,
            dosage=schedule.dosage if schedule else None,
            now=self._now(now),
        )

    async def check_missed_on_resume(self, now: Optional[datetime] = None):
        return await self.detector.check(self._now(now))

    async def reschedule_all(
        self,
        schedules: Iterable[MedicationSchedule],
        now: Optional[datetime] = None,
    ) -> RescheduleReport:
        """Arm every schedule; one medication failing never stops the rest."""
        schedules = list(schedules)
        report = RescheduleReport()

        wanted = {s.medication_id for s in schedules if s.enabled}
        try:
            live = await self.notifier.list_live()
        except Exception as e:
            logger.warning("⚠️ Could not check for existing reminders: %s", e)
            live = []
        orphans = {tag.medication_id for _, tag in live if tag and tag.kind == BASE} - wanted
        for medication_id in orphans:
            try:
                await self.registry.unregister(medication_id)
            except SchedulingFailed as e:
                logger.warning("⚠️ Could not cancel stale reminder for %s: %s", medication_id, e)

        for schedule in schedules:
            try:
                report.scheduled[schedule.medication_id] = await self.register_or_update(schedule, now=now)
            except SchedulingFailed as e:
                logger.error("❌ Failed to schedule reminder for %s: %s", schedule.name, e)
                report.failed[schedule.medication_id] = str(e)
                await self.bus.publish(SchedulingWarning(schedule.medication_id, str(e)))
        return report

    def dose_for_firing(self, payload: BaseReminderPayload, fired_at: datetime) -> datetime:
        """The dose a (possibly repeating) base reminder fired for."""
        dose_time = to_local(payload.dose_at, self.tz).time()
        dose_day = (to_local(fired_at, self.tz) + timedelta(minutes=payload.minutes_before)).date()
        return self.tz.localize(datetime.combine(dose_day, dose_time))

    async def handle_fired(self, raw_payload, now: Optional[datetime] = None) -> None:
        payload = decode_payload(raw_payload)
        fired_at = self._now(now)

        if isinstance(payload, BaseReminderPayload):
            if payload.reminder != EXACT_TIME:
                logger.info("⏳ Advance reminder (%s) fired for %s", payload.reminder, payload.medication_id)
            elif self.store is not None:
                await self.store.open_pending(payload.medication_id, self.dose_for_firing(payload, fired_at))
        elif isinstance(payload, SnoozePayload):
            logger.info("😴 Snoozed reminder fired for %s", payload.medication_id)
        elif isinstance(payload, DailySummaryPayload):
            logger.info("📋 Daily summary fired")
        else:
            raise TypeError(f"Unhandled payload: {payload!r}")

        await self.bus.publish(ReminderFired(payload=payload, fired_at=fired_at))

    async def run_daily_reset(self, now: Optional[datetime] = None) -> ResetOutcome:
        return await self.reset_task.run(now)
