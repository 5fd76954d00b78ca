from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

from pillclock.scheduling.lead_time import MAX_LEAD_TIME


# ---------------------------------------------------------------------------
# MEDICATION
# ---------------------------------------------------------------------------

class MedicationBase(BaseModel):
    name: str
    dosage: str = ""
    time: str  # "08:00" or "8:00 AM"
    repeat_type: Literal["daily", "weekly", "monthly", "once"] = "daily"
    weekday: Optional[int] = Field(default=None, ge=0, le=6)
    day: Optional[int] = Field(default=None, ge=1, le=31)
    once_on: Optional[date] = None
    lead_minutes: Optional[int] = Field(default=None, ge=0, le=MAX_LEAD_TIME)
    enabled: bool = True


class MedicationCreate(MedicationBase):
    pass


class MedicationUpdate(BaseModel):
    name: Optional[str] = None
    dosage: Optional[str] = None
    time: Optional[str] = None
    repeat_type: Optional[Literal["daily", "weekly", "monthly", "once"]] = None
    weekday: Optional[int] = Field(default=None, ge=0, le=6)
    day: Optional[int] = Field(default=None, ge=1, le=31)
    once_on: Optional[date] = None
    lead_minutes: Optional[int] = Field(default=None, ge=0, le=MAX_LEAD_TIME)
    enabled: Optional[bool] = None


class MedicationRead(MedicationBase):
    id: str
    lead_minutes: int = 0
    status: str
    next_reminder_at: Optional[datetime] = None
    created_at: datetime

    model_config = {
        "from_attributes": True
    }


class MedicationSaved(BaseModel):
    medication: MedicationRead
    next_fire_at: Optional[datetime] = None
    # Scheduling problems are reported inline; the medication is still saved
    warning: Optional[str] = None


# ---------------------------------------------------------------------------
# COMPLIANCE
# ---------------------------------------------------------------------------

class ComplianceRecordRead(BaseModel):
    id: str
    medication_id: str
    scheduled_time: datetime
    status: str
    action_time: Optional[datetime] = None

    model_config = {
        "from_attributes": True
    }


# ---------------------------------------------------------------------------
# REMINDERS
# ---------------------------------------------------------------------------

class SnoozeRequest(BaseModel):
    minutes: Optional[int] = Field(default=None, gt=0)


class SnoozeOut(BaseModel):
    medication_id: str
    fire_at: datetime
    handle: Optional[str] = None


class MissedDoseOut(BaseModel):
    record_id: str
    medication_id: str
    scheduled_time: datetime


class LiveNotificationOut(BaseModel):
    handle: str
    medication_id: str
    kind: str


class DailyResetOut(BaseModel):
    outcome: str
