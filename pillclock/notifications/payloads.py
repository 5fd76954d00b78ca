from dataclasses import dataclass
from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from pillclock.scheduling.models import BASE, DAILY_SUMMARY, EXACT_TIME, SNOOZE

TAG_PREFIX = "medication"


@dataclass(frozen=True)
class NotificationTag:
    medication_id: str
    kind: str
    disambiguator: str = ""

    def encode(self) -> str:
        return f"{TAG_PREFIX}:{self.medication_id}:{self.kind}:{self.disambiguator}"

    @classmethod
    def decode(cls, raw: str) -> Optional["NotificationTag"]:
        """Tags we did not write (or cannot read) decode to None."""
        if not raw or not raw.startswith(f"{TAG_PREFIX}:"):
            return None
        parts = raw[len(TAG_PREFIX) + 1:].rsplit(":", 2)
        if len(parts) != 3 or not parts[0]:
            return None
        medication_id, kind, disambiguator = parts
        if kind not in (BASE, SNOOZE, DAILY_SUMMARY):
            return None
        return cls(medication_id, kind, disambiguator)


# ---------------------------------------------------------------------------
# PAYLOADS (one closed variant per notification kind)
# ---------------------------------------------------------------------------

class BaseReminderPayload(BaseModel):
    kind: Literal["base"] = "base"
    medication_id: str
    title: str
    body: str
    repeat_type: str
    # first dose this payload was armed for; repeats reuse its time of day
    dose_at: datetime
    reminder: str = EXACT_TIME
    # how far ahead of the dose this reminder fires; 0 for the exact-time one
    minutes_before: int = 0


class SnoozePayload(BaseModel):
    kind: Literal["snooze"] = "snooze"
    medication_id: str
    title: str
    body: str
    snooze_id: str
    snoozed_minutes: int


class DailySummaryPayload(BaseModel):
    kind: Literal["daily-summary"] = "daily-summary"
    medication_id: str = "all"
    title: str
    body: str


ReminderPayload = Annotated[
    Union[BaseReminderPayload, SnoozePayload, DailySummaryPayload],
    Field(discriminator="kind"),
]

_payload_adapter = TypeAdapter(ReminderPayload)


def decode_payload(raw) -> Union[BaseReminderPayload, SnoozePayload, DailySummaryPayload]:
    if isinstance(raw, (BaseReminderPayload, SnoozePayload, DailySummaryPayload)):
        return raw
    return _payload_adapter.validate_python(raw)


def tag_for(payload) -> NotificationTag:
    if isinstance(payload, BaseReminderPayload):
        return NotificationTag(payload.medication_id, BASE, payload.reminder)
    if isinstance(payload, SnoozePayload):
        return NotificationTag(payload.medication_id, SNOOZE, payload.snooze_id)
    if isinstance(payload, DailySummaryPayload):
        return NotificationTag(payload.medication_id, DAILY_SUMMARY, "daily")
    raise TypeError(f"Unknown payload type: {type(payload).__name__}")
