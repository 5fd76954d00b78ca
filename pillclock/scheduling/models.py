import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Union

from pillclock.core.errors import InvalidTimeFormat, InvalidTimeValue
from pillclock.scheduling.lead_time import MAX_LEAD_TIME

BASE = "base"
SNOOZE = "snooze"
DAILY_SUMMARY = "daily-summary"

# base reminders are either at the dose time or a fixed number of minutes ahead of it
EXACT_TIME = "exact_time"


def advance_reminder(lead_minutes: int) -> str:
    return f"reminder_{lead_minutes}"

_TIME_24H = re.compile(r"^\s*(\d{1,2}):(\d{1,2})\s*$")
_TIME_12H = re.compile(r"^\s*(\d{1,2})(?::(\d{1,2}))?\s*([AaPp])\.?\s*[Mm]\.?\s*$")


@dataclass(frozen=True)
class TimeOfDay:
    hour: int
    minute: int

    def __post_init__(self):
        if not (0 <= self.hour <= 23 and 0 <= self.minute <= 59):
            raise InvalidTimeValue(f"{self.hour:02d}:{self.minute:02d}")

    def __str__(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"


def parse_time_of_day(value: str) -> TimeOfDay:
    """
    Parse "HH:MM" (24h) or "H:MM AM/PM" into a TimeOfDay.

    Malformed input raises InvalidTimeFormat, out-of-range hours or
    minutes raise InvalidTimeValue. Nothing is coerced.
    """
    if not isinstance(value, str) or not value.strip():
        raise InvalidTimeFormat(str(value))

    match = _TIME_24H.match(value)
    if match:
        hour, minute = int(match.group(1)), int(match.group(2))
        if not (0 <= hour <= 23 and 0 <= minute <= 59):
            raise InvalidTimeValue(value)
        return TimeOfDay(hour, minute)

    match = _TIME_12H.match(value)
    if match:
        hour = int(match.group(1))
        minute = int(match.group(2) or 0)
        if not (1 <= hour <= 12 and 0 <= minute <= 59):
            raise InvalidTimeValue(value)
        hour = hour % 12
        if match.group(3).lower() == "p":
            hour += 12
        return TimeOfDay(hour, minute)

    raise InvalidTimeFormat(value)


# ---------------------------------------------------------------------------
# RECURRENCE RULES
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Daily:
    name = "daily"


@dataclass(frozen=True)
class Weekly:
    weekday: int  # 0 = Monday .. 6 = Sunday
    name = "weekly"

    def __post_init__(self):
        if not 0 <= self.weekday <= 6:
            raise ValueError(f"Weekday must be between 0 and 6, got {self.weekday}")


@dataclass(frozen=True)
class Monthly:
    day: int
    name = "monthly"

    def __post_init__(self):
        if not 1 <= self.day <= 31:
            raise ValueError(f"Day of month must be between 1 and 31, got {self.day}")


@dataclass(frozen=True)
class Once:
    on: date
    name = "once"


RecurrenceRule = Union[Daily, Weekly, Monthly, Once]


def rule_from_fields(
    repeat_type: str,
    weekday: Optional[int] = None,
    day: Optional[int] = None,
    on: Optional[date] = None,
) -> RecurrenceRule:
    if repeat_type == "daily":
        return Daily()
    if repeat_type == "weekly":
        if weekday is None:
            raise ValueError("Weekly reminders need a weekday")
        return Weekly(weekday)
    if repeat_type == "monthly":
        if day is None:
            raise ValueError("Monthly reminders need a day of month")
        return Monthly(day)
    if repeat_type == "once":
        if on is None:
            raise ValueError("One-time reminders need a date")
        return Once(on)
    raise ValueError(f"Unknown repeat type: {repeat_type}")


# ---------------------------------------------------------------------------
# SCHEDULES AND OCCURRENCES
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MedicationSchedule:
    medication_id: str
    name: str
    dosage: str
    time_of_day: TimeOfDay
    rule: RecurrenceRule
    enabled: bool = True
    lead_minutes: int = 0


@dataclass(frozen=True)
class ReminderOccurrence:
    medication_id: str
    fire_at: datetime
    dose_at: datetime
    kind: str = BASE
    handle: Optional[str] = None
    # set when a lead time puts an advance reminder ahead of dose_at that is still to come
    advance_at: Optional[datetime] = None


def schedule_from_fields(
    medication_id: str,
    name: str,
    dosage: str,
    time: str,
    repeat_type: str = "daily",
    weekday: Optional[int] = None,
    day: Optional[int] = None,
    once_on: Optional[date] = None,
    lead_minutes: int = 0,
    enabled: bool = True,
) -> MedicationSchedule:
    """Validate raw medication fields into a schedule before anything is scheduled."""
    if lead_minutes is None:
        lead_minutes = 0
    if not 0 <= lead_minutes <= MAX_LEAD_TIME:
        raise ValueError(f"Lead time must be between 0 and {MAX_LEAD_TIME} minutes, got {lead_minutes}")
    return MedicationSchedule(
        medication_id=str(medication_id),
        name=name,
        dosage=dosage or "",
        time_of_day=parse_time_of_day(time),
        rule=rule_from_fields(repeat_type, weekday=weekday, day=day, on=once_on),
        enabled=bool(enabled),
        lead_minutes=lead_minutes,
    )
