import pytest

from conftest import local
from pillclock.core.events import MissedDoseDetected
from pillclock.db.schema import MedicationCreate
from pillclock.medications import crud
from pillclock.scheduling.models import schedule_from_fields

NOW = local(2024, 4, 1, 9, 0)


async def _armed_medication(db_ctx, session_factory, **kwargs):
    fields = {"name": "Aspirin", "dosage": "81mg", "time": "08:00"}
    fields.update(kwargs)
    async with session_factory() as db:
        med = await crud.create_medication(db, MedicationCreate(**fields))
    schedule = schedule_from_fields(medication_id=med.id, **fields)
    await db_ctx.engine.register_or_update(schedule, now=NOW)
    return med


@pytest.mark.anyio
async def test_nothing_pending_means_nothing_missed(db_ctx):
    assert await db_ctx.engine.check_missed_on_resume(now=NOW) is None


@pytest.mark.anyio
async def test_past_pending_dose_with_live_reminder_is_surfaced(db_ctx, session_factory):
    med = await _armed_medication(db_ctx, session_factory)
    detected = []
    db_ctx.bus.subscribe(MissedDoseDetected, detected.append)
    opened = await db_ctx.store.open_pending(med.id, local(2024, 4, 1, 8, 0))

    dose = await db_ctx.engine.check_missed_on_resume(now=NOW)

    assert dose.record_id == opened.record_id
    assert dose.scheduled_time == local(2024, 4, 1, 8, 0)
    assert [e.record_id for e in detected] == [opened.record_id]


@pytest.mark.anyio
async def test_latest_pending_dose_wins(db_ctx, session_factory):
    med = await _armed_medication(db_ctx, session_factory)
    await db_ctx.store.open_pending(med.id, local(2024, 3, 31, 8, 0))
    latest = await db_ctx.store.open_pending(med.id, local(2024, 4, 1, 8, 0))

    dose = await db_ctx.engine.check_missed_on_resume(now=NOW)
    assert dose.record_id == latest.record_id


@pytest.mark.anyio
async def test_future_doses_are_not_missed(db_ctx, session_factory):
    med = await _armed_medication(db_ctx, session_factory)
    await db_ctx.store.open_pending(med.id, local(2024, 4, 1, 20, 0))

    assert await db_ctx.engine.check_missed_on_resume(now=NOW) is None


@pytest.mark.anyio
async def test_dose_without_live_reminder_is_not_surfaced(db_ctx, session_factory):
    med = await _armed_medication(db_ctx, session_factory)
    await db_ctx.store.open_pending(med.id, local(2024, 4, 1, 8, 0))
    await db_ctx.engine.cancel(med.id)

    assert await db_ctx.engine.check_missed_on_resume(now=NOW) is None


@pytest.mark.anyio
async def test_dose_is_surfaced_when_reminders_cannot_be_listed(db_ctx, session_factory, notifier):
    med = await _armed_medication(db_ctx, session_factory)
    await db_ctx.store.open_pending(med.id, local(2024, 4, 1, 8, 0))
    notifier.fail_listing = True

    dose = await db_ctx.engine.check_missed_on_resume(now=NOW)
    assert dose.medication_id == med.id
