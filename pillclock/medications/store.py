"""Session-owning access to medications and compliance records.

Request handlers use the crud functions with the request's session; the
engine and the background reset have no request, so they go through a
ReminderStore that opens its own sessions. Datetimes are stored as naive
local wall-clock values and converted at this boundary.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from pillclock.db.models import Medication
from pillclock.medications import crud
from pillclock.scheduling.models import MedicationSchedule, schedule_from_fields
from pillclock.scheduling.recurrence import to_local

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingDose:
    record_id: str
    medication_id: str
    scheduled_time: datetime


def schedule_from_medication(med: Medication) -> MedicationSchedule:
    return schedule_from_fields(
        medication_id=med.id,
        name=med.name,
        dosage=med.dosage,
        time=med.time,
        repeat_type=med.repeat_type,
        weekday=med.weekday,
        day=med.day,
        once_on=med.once_on,
        lead_minutes=med.lead_minutes,
        enabled=med.enabled,
    )


class ReminderStore:
    def __init__(self, sessionmaker: async_sessionmaker, tz):
        self.sessionmaker = sessionmaker
        self.tz = tz

    def _naive_local(self, moment: datetime) -> datetime:
        return to_local(moment, self.tz).replace(tzinfo=None)

    async def list_enabled_schedules(self) -> List[MedicationSchedule]:
        async with self.sessionmaker() as db:
            meds = await crud.list_medications(db, enabled_only=True)

        schedules = []
        for med in meds:
            try:
                schedules.append(schedule_from_medication(med))
            except ValueError as e:
                # Skip malformed rows instead of failing the whole batch
                logger.warning("⚠️ Skipping medication %s with invalid schedule: %s", med.id, e)
        return schedules

    async def get_schedule(self, medication_id: str) -> Optional[MedicationSchedule]:
        async with self.sessionmaker() as db:
            med = await crud.get_medication(db, medication_id)
        if med is None:
            return None
        return schedule_from_medication(med)

    async def set_next_reminder(self, medication_id: str, when: Optional[datetime]) -> None:
        async with self.sessionmaker() as db:
            await crud.set_next_reminder(db, medication_id, self._naive_local(when) if when else None)

    async def open_pending(self, medication_id: str, scheduled_time: datetime) -> PendingDose:
        async with self.sessionmaker() as db:
            record = await crud.open_pending_record(db, medication_id, self._naive_local(scheduled_time))
        return PendingDose(record.id, record.medication_id, self.tz.localize(record.scheduled_time))

    async def latest_pending_before(self, moment: datetime) -> Optional[PendingDose]:
        async with self.sessionmaker() as db:
            record = await crud.latest_pending_before(db, self._naive_local(moment))
        if record is None:
            return None
        return PendingDose(record.id, record.medication_id, self.tz.localize(record.scheduled_time))

    async def reset_daily(self, boundary: datetime) -> int:
        local_boundary = to_local(boundary, self.tz)
        async with self.sessionmaker() as db:
            missed = await crud.reset_pending_before(db, local_boundary.replace(tzinfo=None))
            reactivated = await crud.reset_medication_statuses(db, local_boundary.date())
        logger.info("🔄 Medication statuses reset for new day (%d missed, %d reactivated)", missed, reactivated)
        return missed
