from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from pillclock.core.context import get_engine
from pillclock.core.errors import SchedulingFailed
from pillclock.db.database import get_db
from pillclock.db.schema import (
    ComplianceRecordRead,
    DailyResetOut,
    LiveNotificationOut,
    MissedDoseOut,
    SnoozeOut,
    SnoozeRequest,
)
from pillclock.engine import ReminderEngine
from pillclock.medications import crud
from pillclock.medications.store import schedule_from_medication

router = APIRouter()


def _local_now(engine: ReminderEngine) -> datetime:
    # Make "now" naive local so comparisons with stored times are consistent
    return datetime.now(engine.tz).replace(tzinfo=None)


async def _snooze(engine: ReminderEngine, med, minutes: Optional[int]) -> SnoozeOut:
    try:
        occurrence = await engine.snooze(med.id, minutes, schedule=schedule_from_medication(med))
    except SchedulingFailed as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    return SnoozeOut(medication_id=med.id, fire_at=occurrence.fire_at, handle=occurrence.handle)


async def _record_or_404(db: AsyncSession, record_id: str):
    record = await crud.get_compliance_record(db, record_id)
    if not record:
        raise HTTPException(status_code=404, detail="Dose record not found")
    return record


# ---------------- SNOOZE ----------------
@router.post("/{medication_id}/snooze", response_model=SnoozeOut)
async def snooze_medication(
    medication_id: str,
    payload: Optional[SnoozeRequest] = None,
    db: AsyncSession = Depends(get_db),
    engine: ReminderEngine = Depends(get_engine),
):
    med = await crud.get_medication(db, medication_id)
    if not med or not med.enabled:
        raise HTTPException(status_code=404, detail="Medication not found")
    return await _snooze(engine, med, payload.minutes if payload else None)


# ---------------- RESUME CHECK ----------------
@router.get("/missed", response_model=Optional[MissedDoseOut])
async def check_missed_on_resume(engine: ReminderEngine = Depends(get_engine)):
    dose = await engine.check_missed_on_resume()
    if dose is None:
        return None
    return MissedDoseOut(
        record_id=dose.record_id,
        medication_id=dose.medication_id,
        scheduled_time=dose.scheduled_time,
    )


# ---------------- DOSE ACTIONS ----------------
@router.post("/doses/{record_id}/mark-taken", response_model=ComplianceRecordRead)
async def mark_taken(
    record_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    engine: ReminderEngine = Depends(get_engine),
):
    record = await _record_or_404(db, record_id)
    now = _local_now(engine)

    # Taken well after the scheduled time counts as late
    late_threshold = request.app.state.settings.late_threshold_minutes
    minutes_late = (now - record.scheduled_time).total_seconds() / 60
    status_ = "late" if minutes_late > late_threshold else "taken"

    return await crud.record_action(db, record, status_, now)


@router.post("/doses/{record_id}/skip", response_model=ComplianceRecordRead)
async def skip_dose(
    record_id: str,
    db: AsyncSession = Depends(get_db),
    engine: ReminderEngine = Depends(get_engine),
):
    record = await _record_or_404(db, record_id)
    return await crud.record_action(db, record, "skipped", _local_now(engine))


@router.post("/doses/{record_id}/snooze", response_model=SnoozeOut)
async def snooze_dose(
    record_id: str,
    payload: Optional[SnoozeRequest] = None,
    db: AsyncSession = Depends(get_db),
    engine: ReminderEngine = Depends(get_engine),
):
    record = await _record_or_404(db, record_id)
    med = await crud.get_medication(db, record.medication_id)
    # the dose stays pending unless the snooze reminder is actually armed
    snoozed = await _snooze(engine, med, payload.minutes if payload else None)
    await crud.record_action(db, record, "snoozed", _local_now(engine))
    return snoozed


# ---------------- DIAGNOSTICS ----------------
@router.get("/live", response_model=List[LiveNotificationOut])
async def list_live_notifications(engine: ReminderEngine = Depends(get_engine)):
    live = await engine.notifier.list_live()
    return [
        LiveNotificationOut(handle=handle, medication_id=tag.medication_id, kind=tag.kind)
        for handle, tag in live
        if tag is not None
    ]


@router.post("/daily-reset", response_model=DailyResetOut)
async def run_daily_reset(engine: ReminderEngine = Depends(get_engine)):
    outcome = await engine.run_daily_reset()
    return DailyResetOut(outcome=outcome.value)
