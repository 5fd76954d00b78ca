"""Resolve abstract medication schedules into concrete local instants.

All arithmetic is done on calendar dates first and only then combined with
the time of day and localized, so DST transitions never shift a dose by an
hour and "one month later" means the calendar month, not 30 days.
"""
import calendar
from datetime import date, datetime, time, timedelta
from typing import Optional

from dateutil.relativedelta import relativedelta

from pillclock.scheduling.models import (
    BASE,
    Daily,
    MedicationSchedule,
    Monthly,
    Once,
    RecurrenceRule,
    ReminderOccurrence,
    TimeOfDay,
    Weekly,
)


def to_local(moment: datetime, tz) -> datetime:
    """Naive datetimes are taken to already be device-local."""
    if moment.tzinfo is None:
        return tz.localize(moment)
    return moment.astimezone(tz)


def at_local(day: date, time_of_day: TimeOfDay, tz) -> datetime:
    return tz.localize(datetime.combine(day, time(time_of_day.hour, time_of_day.minute)))


def clamp_day(year: int, month: int, day: int) -> date:
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day, last_day))


def next_occurrence(
    now: datetime,
    time_of_day: TimeOfDay,
    rule: RecurrenceRule,
    tz,
) -> Optional[datetime]:
    """
    Next instant strictly after `now` at which `time_of_day` occurs under `rule`.

    Returns None for a one-time rule whose instant has already passed.
    """
    local_now = to_local(now, tz)
    today = local_now.date()

    if isinstance(rule, Daily):
        candidate = at_local(today, time_of_day, tz)
        if candidate <= local_now:
            candidate = at_local(today + timedelta(days=1), time_of_day, tz)
        return candidate

    if isinstance(rule, Weekly):
        day = today + timedelta(days=(rule.weekday - today.weekday()) % 7)
        candidate = at_local(day, time_of_day, tz)
        if candidate <= local_now:
            candidate = at_local(day + timedelta(days=7), time_of_day, tz)
        return candidate

    if isinstance(rule, Monthly):
        candidate = at_local(clamp_day(today.year, today.month, rule.day), time_of_day, tz)
        if candidate <= local_now:
            following = date(today.year, today.month, 1) + relativedelta(months=1)
            day = clamp_day(following.year, following.month, rule.day)
            candidate = at_local(day, time_of_day, tz)
        return candidate

    if isinstance(rule, Once):
        candidate = at_local(rule.on, time_of_day, tz)
        return candidate if candidate > local_now else None

    raise TypeError(f"Unsupported recurrence rule: {rule!r}")


def next_fire(now: datetime, schedule: MedicationSchedule, tz) -> Optional[ReminderOccurrence]:
    """
    Next upcoming dose of `schedule` and the first reminder that fires for it.

    The advance reminder (`lead_minutes` before the dose) is only set while it
    is still ahead of `now`; once it has passed, the exact-time reminder at the
    dose itself is the next thing to fire.
    """
    local_now = to_local(now, tz)
    dose_at = next_occurrence(local_now, schedule.time_of_day, schedule.rule, tz)
    if dose_at is None:
        return None

    advance_at = None
    if schedule.lead_minutes:
        candidate = tz.normalize(dose_at - timedelta(minutes=schedule.lead_minutes))
        if candidate > local_now:
            advance_at = candidate

    return ReminderOccurrence(
        medication_id=schedule.medication_id,
        fire_at=advance_at or dose_at,
        dose_at=dose_at,
        kind=BASE,
        advance_at=advance_at,
    )
