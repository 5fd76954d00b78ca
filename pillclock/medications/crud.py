import calendar
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pillclock.db.models import ComplianceRecord, Medication
from pillclock.db.schema import MedicationCreate, MedicationUpdate

RESETTABLE_STATUSES = ("taken", "missed", "skipped", "snoozed", "late")


async def create_medication(db: AsyncSession, data: MedicationCreate, lead_minutes: int = 0) -> Medication:
    values = data.model_dump()
    if values.get("lead_minutes") is None:
        values["lead_minutes"] = lead_minutes
    med = Medication(**values)
    db.add(med)
    await db.commit()
    await db.refresh(med)
    return med


async def get_medication(db: AsyncSession, medication_id: str) -> Optional[Medication]:
    result = await db.execute(select(Medication).where(Medication.id == medication_id))
    return result.scalar_one_or_none()


async def list_medications(db: AsyncSession, enabled_only: bool = False) -> List[Medication]:
    q = select(Medication).order_by(Medication.created_at)
    if enabled_only:
        q = q.where(Medication.enabled.is_(True))
    result = await db.execute(q)
    return list(result.scalars().all())


async def update_medication(db: AsyncSession, med: Medication, data: MedicationUpdate) -> Medication:
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(med, field, value)
    await db.commit()
    await db.refresh(med)
    return med


async def disable_medication(db: AsyncSession, med: Medication) -> Medication:
    med.enabled = False
    med.next_reminder_at = None
    await db.commit()
    await db.refresh(med)
    return med


async def set_next_reminder(db: AsyncSession, medication_id: str, when: Optional[datetime]) -> None:
    await db.execute(
        update(Medication).where(Medication.id == medication_id).values(next_reminder_at=when)
    )
    await db.commit()


# ---------------- COMPLIANCE ----------------

async def get_compliance_record(db: AsyncSession, record_id: str) -> Optional[ComplianceRecord]:
    result = await db.execute(select(ComplianceRecord).where(ComplianceRecord.id == record_id))
    return result.scalar_one_or_none()


async def open_pending_record(db: AsyncSession, medication_id: str, scheduled_time: datetime) -> ComplianceRecord:
    """Pending record for a dose; firing the same dose twice reuses the first record."""
    result = await db.execute(
        select(ComplianceRecord).where(
            ComplianceRecord.medication_id == medication_id,
            ComplianceRecord.scheduled_time == scheduled_time,
        )
    )
    existing = result.scalars().first()
    if existing:
        return existing

    record = ComplianceRecord(medication_id=medication_id, scheduled_time=scheduled_time, status="pending")
    db.add(record)
    await db.commit()
    await db.refresh(record)
    return record


async def record_action(
    db: AsyncSession,
    record: ComplianceRecord,
    status: str,
    action_time: datetime,
) -> ComplianceRecord:
    record.status = status
    record.action_time = action_time

    med = await get_medication(db, record.medication_id)
    if med is not None:
        med.status = status

    await db.commit()
    await db.refresh(record)
    return record


async def latest_pending_before(db: AsyncSession, moment: datetime) -> Optional[ComplianceRecord]:
    result = await db.execute(
        select(ComplianceRecord)
        .join(Medication, Medication.id == ComplianceRecord.medication_id)
        .where(
            ComplianceRecord.status == "pending",
            ComplianceRecord.scheduled_time <= moment,
            Medication.enabled.is_(True),
        )
        .order_by(ComplianceRecord.scheduled_time.desc())
    )
    return result.scalars().first()


async def reset_pending_before(db: AsyncSession, boundary: datetime) -> int:
    """Pending doses scheduled before `boundary` become missed. Nothing else is touched."""
    result = await db.execute(
        update(ComplianceRecord)
        .where(
            ComplianceRecord.status == "pending",
            ComplianceRecord.scheduled_time < boundary,
        )
        .values(status="missed")
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount or 0


async def reset_medication_statuses(db: AsyncSession, today: date) -> int:
    """Put medications due `today` back to "active" so the new day starts clean."""
    last_day = calendar.monthrange(today.year, today.month)[1]
    if today.day == last_day:
        # day 31 reminders clamp onto the last day of shorter months
        monthly_due = Medication.day >= today.day
    else:
        monthly_due = Medication.day == today.day

    result = await db.execute(
        update(Medication)
        .where(
            Medication.status.in_(RESETTABLE_STATUSES),
            or_(
                Medication.repeat_type == "daily",
                and_(Medication.repeat_type == "weekly", Medication.weekday == today.weekday()),
                and_(Medication.repeat_type == "monthly", monthly_due),
            ),
        )
        .values(status="active")
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount or 0
