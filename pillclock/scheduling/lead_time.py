from typing import Tuple

DEFAULT_LEAD_TIME = 0
HOURS_IN_DAY = 24
MINUTES_IN_HOUR = 60
MINUTES_IN_DAY = HOURS_IN_DAY * MINUTES_IN_HOUR
# a lead never reaches back a full day, so it crosses at most one midnight
MAX_LEAD_TIME = MINUTES_IN_DAY - 1


def _shifted_total(hour: int, minute: int, lead_minutes: int) -> int:
    if not 0 <= lead_minutes <= MAX_LEAD_TIME:
        raise ValueError(f"Lead time must be between 0 and {MAX_LEAD_TIME} minutes, got {lead_minutes}")
    return hour * MINUTES_IN_HOUR + minute - lead_minutes


def apply_lead_time(hour: int, minute: int, lead_minutes: int = DEFAULT_LEAD_TIME) -> Tuple[int, int]:
    """Return the (hour, minute) that sits `lead_minutes` before hour:minute."""
    total = _shifted_total(hour, minute, lead_minutes)
    if total < 0:
        # lead reaches back past midnight into the previous day
        total += MINUTES_IN_DAY
    lead_hour = (total // MINUTES_IN_HOUR) % HOURS_IN_DAY
    lead_minute = total % MINUTES_IN_HOUR
    return lead_hour, lead_minute


def days_back(hour: int, minute: int, lead_minutes: int = DEFAULT_LEAD_TIME) -> int:
    """How many calendar days earlier than hour:minute the lead lands."""
    return -(_shifted_total(hour, minute, lead_minutes) // MINUTES_IN_DAY)


def crosses_midnight(hour: int, minute: int, lead_minutes: int = DEFAULT_LEAD_TIME) -> bool:
    return days_back(hour, minute, lead_minutes) > 0
