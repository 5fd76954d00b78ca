"""Choose how the notification layer is asked to repeat a reminder.

Calendar-native platforms can repeat on hour/minute (and weekday) fields.
Interval-only platforms can only repeat every N seconds, so they get a
one-shot for the first firing followed by a fixed-interval repeat anchored
one period later. Neither can repeat on a day of the month, so monthly
reminders are always single shots that the caller re-arms.

Every base reminder is planned twice when a lead time is set: once at the
dose time (`exact_time`) and once `lead_minutes` ahead of it (`reminder_<N>`).
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Tuple, Union

from pillclock.scheduling.lead_time import apply_lead_time, days_back
from pillclock.scheduling.models import (
    EXACT_TIME,
    Daily,
    MedicationSchedule,
    Monthly,
    Once,
    ReminderOccurrence,
    Weekly,
    advance_reminder,
)

logger = logging.getLogger(__name__)

CALENDAR_NATIVE = "calendar-native"
INTERVAL_ONLY = "interval-only"

DAY_SECONDS = 24 * 60 * 60
WEEK_SECONDS = 7 * DAY_SECONDS

MONTHLY_NOT_RENEWED = (
    "Monthly reminders cannot repeat natively with interval-only triggers; "
    "this reminder fires once and must be re-armed for the next month."
)


@dataclass(frozen=True)
class OneShotTrigger:
    fire_at: datetime
    repeats = False


@dataclass(frozen=True)
class CalendarTrigger:
    hour: int
    minute: int
    weekday: Optional[int] = None
    repeats = True


@dataclass(frozen=True)
class IntervalTrigger:
    seconds: int
    start_at: datetime
    repeats = True


Trigger = Union[OneShotTrigger, CalendarTrigger, IntervalTrigger]


@dataclass(frozen=True)
class PlannedTrigger:
    trigger: Trigger
    reminder: str = EXACT_TIME


@dataclass(frozen=True)
class TriggerPlan:
    triggers: Tuple[PlannedTrigger, ...]
    self_renewing: bool
    warning: Optional[str] = None

    @property
    def reminders(self) -> List[str]:
        """Distinct reminder labels in the order they are installed."""
        return list(dict.fromkeys(planned.reminder for planned in self.triggers))


def _single_shots(occurrence: ReminderOccurrence, schedule: MedicationSchedule) -> Tuple[PlannedTrigger, ...]:
    planned = [PlannedTrigger(OneShotTrigger(occurrence.dose_at))]
    if occurrence.advance_at is not None:
        planned.insert(0, PlannedTrigger(OneShotTrigger(occurrence.advance_at), advance_reminder(schedule.lead_minutes)))
    return tuple(planned)


def plan_triggers(
    occurrence: ReminderOccurrence,
    schedule: MedicationSchedule,
    capability: str = CALENDAR_NATIVE,
) -> TriggerPlan:
    if capability not in (CALENDAR_NATIVE, INTERVAL_ONLY):
        raise ValueError(f"Unknown notification capability: {capability}")

    rule = schedule.rule

    if isinstance(rule, Once):
        return TriggerPlan(triggers=_single_shots(occurrence, schedule), self_renewing=False)

    if isinstance(rule, Monthly):
        if capability == INTERVAL_ONLY:
            logger.warning("⚠️ %s: %s", schedule.medication_id, MONTHLY_NOT_RENEWED)
            return TriggerPlan(
                triggers=_single_shots(occurrence, schedule),
                self_renewing=False,
                warning=MONTHLY_NOT_RENEWED,
            )
        return TriggerPlan(triggers=_single_shots(occurrence, schedule), self_renewing=False)

    if isinstance(rule, Daily):
        period = DAY_SECONDS
    elif isinstance(rule, Weekly):
        period = WEEK_SECONDS
    else:
        raise TypeError(f"Unsupported recurrence rule: {rule!r}")

    lead = schedule.lead_minutes
    planned: List[PlannedTrigger] = []

    if capability == INTERVAL_ONLY:
        step = timedelta(seconds=period)
        if lead:
            reminder = advance_reminder(lead)
            anchor = occurrence.dose_at - timedelta(minutes=lead)
            if occurrence.advance_at is not None:
                planned.append(PlannedTrigger(OneShotTrigger(occurrence.advance_at), reminder))
            planned.append(PlannedTrigger(IntervalTrigger(seconds=period, start_at=anchor + step), reminder))
        planned.append(PlannedTrigger(OneShotTrigger(occurrence.dose_at)))
        planned.append(PlannedTrigger(IntervalTrigger(seconds=period, start_at=occurrence.dose_at + step)))
        return TriggerPlan(triggers=tuple(planned), self_renewing=True)

    hour, minute = schedule.time_of_day.hour, schedule.time_of_day.minute
    weekday = rule.weekday if isinstance(rule, Weekly) else None
    if lead:
        lead_hour, lead_minute = apply_lead_time(hour, minute, lead)
        lead_weekday = None
        if weekday is not None:
            lead_weekday = (weekday - days_back(hour, minute, lead)) % 7
        planned.append(
            PlannedTrigger(
                CalendarTrigger(hour=lead_hour, minute=lead_minute, weekday=lead_weekday),
                advance_reminder(lead),
            )
        )
    planned.append(PlannedTrigger(CalendarTrigger(hour=hour, minute=minute, weekday=weekday)))
    return TriggerPlan(triggers=tuple(planned), self_renewing=True)
