from typing import List, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from pillclock.core.context import get_engine
from pillclock.core.errors import SchedulingFailed
from pillclock.core.events import SchedulingWarning
from pillclock.db.database import get_db
from pillclock.db.schema import (
    ComplianceRecordRead,
    MedicationCreate,
    MedicationRead,
    MedicationSaved,
    MedicationUpdate,
)
from pillclock.engine import ReminderEngine
from pillclock.medications import crud
from pillclock.medications.store import schedule_from_medication
from pillclock.scheduling.models import MedicationSchedule, schedule_from_fields

router = APIRouter()


def _validated(fields: dict, medication_id: str = "new") -> MedicationSchedule:
    """Reject bad times or rules before anything is saved or scheduled."""
    try:
        return schedule_from_fields(medication_id=medication_id, **fields)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))


async def _arm(engine: ReminderEngine, schedule: MedicationSchedule) -> Tuple[Optional[object], Optional[str]]:
    warnings: List[str] = []

    def collect(event: SchedulingWarning):
        if event.medication_id == schedule.medication_id:
            warnings.append(event.message)

    unsubscribe = engine.bus.subscribe(SchedulingWarning, collect)
    try:
        fire_at = await engine.register_or_update(schedule)
    except SchedulingFailed as e:
        return None, str(e)
    finally:
        unsubscribe()
    return fire_at, (" ".join(warnings) or None)


async def _get_or_404(db: AsyncSession, medication_id: str):
    med = await crud.get_medication(db, medication_id)
    if not med:
        raise HTTPException(status_code=404, detail="Medication not found")
    return med


@router.post("/", response_model=MedicationSaved)
async def create_medication(
    payload: MedicationCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    engine: ReminderEngine = Depends(get_engine),
):
    lead_minutes = payload.lead_minutes
    if lead_minutes is None:
        lead_minutes = request.app.state.settings.default_lead_minutes
    _validated({**payload.model_dump(), "lead_minutes": lead_minutes})

    med = await crud.create_medication(db, payload, lead_minutes=lead_minutes)
    fire_at, warning = await _arm(engine, schedule_from_medication(med))
    await db.refresh(med)

    return MedicationSaved(medication=MedicationRead.model_validate(med), next_fire_at=fire_at, warning=warning)


@router.get("/", response_model=List[MedicationRead])
async def list_medications(
    enabled_only: bool = False,
    db: AsyncSession = Depends(get_db),
):
    return await crud.list_medications(db, enabled_only=enabled_only)


@router.get("/{medication_id}", response_model=MedicationRead)
async def get_medication(
    medication_id: str,
    db: AsyncSession = Depends(get_db),
):
    return await _get_or_404(db, medication_id)


@router.put("/{medication_id}", response_model=MedicationSaved)
async def update_medication(
    medication_id: str,
    payload: MedicationUpdate,
    db: AsyncSession = Depends(get_db),
    engine: ReminderEngine = Depends(get_engine),
):
    med = await _get_or_404(db, medication_id)

    current = MedicationRead.model_validate(med).model_dump(include=set(MedicationUpdate.model_fields))
    merged = {**current, **payload.model_dump(exclude_unset=True)}
    _validated(merged, medication_id)

    med = await crud.update_medication(db, med, payload)
    fire_at, warning = await _arm(engine, schedule_from_medication(med))
    await db.refresh(med)

    return MedicationSaved(medication=MedicationRead.model_validate(med), next_fire_at=fire_at, warning=warning)


@router.delete("/{medication_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_medication(
    medication_id: str,
    db: AsyncSession = Depends(get_db),
    engine: ReminderEngine = Depends(get_engine),
):
    med = await _get_or_404(db, medication_id)

    # Soft delete: records keep pointing at the row
    await crud.disable_medication(db, med)
    try:
        await engine.cancel(medication_id, include_snoozes=True)
    except SchedulingFailed as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))


@router.get("/{medication_id}/records", response_model=List[ComplianceRecordRead])
async def list_compliance_records(
    medication_id: str,
    db: AsyncSession = Depends(get_db),
):
    med = await _get_or_404(db, medication_id)
    await db.refresh(med, attribute_names=["records"])
    return sorted(med.records, key=lambda r: r.scheduled_time, reverse=True)
