import asyncio
from datetime import date

import pytest

from conftest import local
from pillclock.core.context import build_context
from pillclock.core.errors import PermissionDenied, SchedulingFailed
from pillclock.core.events import PermissionAdvisory, ReminderFired, SchedulingWarning
from pillclock.db.models import Medication
from pillclock.db.schema import MedicationCreate
from pillclock.engine import PERMISSION_ADVISORY
from pillclock.medications import crud
from pillclock.notifications.payloads import BaseReminderPayload, SnoozePayload
from pillclock.scheduling.daily_reset import ResetOutcome
from pillclock.scheduling.models import BASE, EXACT_TIME, SNOOZE, schedule_from_fields
from pillclock.scheduling.triggers import MONTHLY_NOT_RENEWED

NOW = local(2024, 4, 1, 9, 0)


def _schedule(medication_id="med-1", **kwargs):
    fields = {"name": "Aspirin", "dosage": "81mg", "time": "08:00"}
    fields.update(kwargs)
    return schedule_from_fields(medication_id=medication_id, **fields)


def _collect(bus, event_type):
    seen = []
    bus.subscribe(event_type, seen.append)
    return seen


@pytest.mark.anyio
async def test_register_returns_next_fire_time(ctx, notifier):
    fire_at = await ctx.engine.register_or_update(_schedule(), now=NOW)

    assert fire_at == local(2024, 4, 2, 8, 0)
    [handle] = notifier.handles("med-1", BASE)
    _, payload, tag = notifier.live[handle]
    assert payload.dose_at == local(2024, 4, 2, 8, 0)
    assert payload.reminder == tag.disambiguator == EXACT_TIME


@pytest.mark.anyio
async def test_lead_time_arms_an_advance_reminder_and_keeps_the_exact_one(ctx, notifier):
    fire_at = await ctx.engine.register_or_update(_schedule(lead_minutes=30), now=NOW)

    assert fire_at == local(2024, 4, 2, 7, 30)
    armed = {tag.disambiguator: (trigger, payload) for trigger, payload, tag in notifier.live.values()}
    assert set(armed) == {EXACT_TIME, "reminder_30"}

    exact_trigger, exact = armed[EXACT_TIME]
    assert (exact_trigger.hour, exact_trigger.minute) == (8, 0)
    assert exact.minutes_before == 0

    advance_trigger, advance = armed["reminder_30"]
    assert (advance_trigger.hour, advance_trigger.minute) == (7, 30)
    assert advance.minutes_before == 30
    assert advance.title == "💊 Reminder: Aspirin"
    assert advance.body == "It's almost time to take your 81mg."
    assert advance.dose_at == exact.dose_at == local(2024, 4, 2, 8, 0)


@pytest.mark.anyio
async def test_dropping_the_lead_removes_the_advance_reminder(ctx, notifier):
    await ctx.engine.register_or_update(_schedule(lead_minutes=30), now=NOW)
    await ctx.engine.register_or_update(_schedule(), now=NOW)

    [handle] = notifier.handles("med-1", BASE)
    assert notifier.live[handle][2].disambiguator == EXACT_TIME


@pytest.mark.anyio
async def test_reregistering_keeps_exactly_one_base_reminder(ctx, notifier):
    await ctx.engine.register_or_update(_schedule(), now=NOW)
    await ctx.engine.register_or_update(_schedule(time="20:00"), now=NOW)

    [handle] = notifier.handles("med-1", BASE)
    trigger, _, _ = notifier.live[handle]
    assert (trigger.hour, trigger.minute) == (20, 0)


@pytest.mark.anyio
async def test_overlapping_updates_keep_exactly_one_base_reminder(ctx, notifier):
    await asyncio.gather(
        ctx.engine.register_or_update(_schedule(time="08:00"), now=NOW),
        ctx.engine.register_or_update(_schedule(time="09:00"), now=NOW),
        ctx.engine.register_or_update(_schedule(time="10:00"), now=NOW),
    )
    assert len(notifier.handles("med-1", BASE)) == 1


@pytest.mark.anyio
async def test_disabling_cancels_the_base_reminder(ctx, notifier):
    await ctx.engine.register_or_update(_schedule(), now=NOW)

    assert await ctx.engine.register_or_update(_schedule(enabled=False), now=NOW) is None
    assert notifier.handles("med-1", BASE) == []


@pytest.mark.anyio
async def test_passed_one_time_reminder_is_not_scheduled(ctx, notifier):
    schedule = _schedule(repeat_type="once", once_on=date(2024, 3, 31))
    assert await ctx.engine.register_or_update(schedule, now=NOW) is None
    assert notifier.handles("med-1", BASE) == []


@pytest.mark.anyio
async def test_monthly_on_interval_only_platform_warns(settings, notifier):
    settings = settings.model_copy(update={"notification_capability": "interval-only"})
    ctx = build_context(settings, notifier=notifier)
    warnings = _collect(ctx.bus, SchedulingWarning)

    fire_at = await ctx.engine.register_or_update(_schedule(repeat_type="monthly", day=31), now=NOW)

    assert fire_at == local(2024, 4, 30, 8, 0)
    assert [w.message for w in warnings] == [MONTHLY_NOT_RENEWED]
    assert len(notifier.handles("med-1", BASE)) == 1


@pytest.mark.anyio
async def test_daily_on_interval_only_platform_installs_two_entries(settings, notifier):
    settings = settings.model_copy(update={"notification_capability": "interval-only"})
    ctx = build_context(settings, notifier=notifier)

    await ctx.engine.register_or_update(_schedule(), now=NOW)
    await ctx.engine.register_or_update(_schedule(), now=NOW)

    assert len(notifier.handles("med-1", BASE)) == 2


@pytest.mark.anyio
async def test_scheduling_failure_raises(ctx, notifier):
    notifier.fail_for.add("med-1")
    with pytest.raises(SchedulingFailed) as exc:
        await ctx.engine.register_or_update(_schedule(), now=NOW)
    assert "Failed to schedule reminder for med-1" in str(exc.value)


@pytest.mark.anyio
async def test_cancel_can_include_snoozes(ctx, notifier):
    await ctx.engine.register_or_update(_schedule(), now=NOW)
    await ctx.engine.snooze("med-1", 10, now=NOW)

    await ctx.engine.cancel("med-1")
    assert notifier.handles("med-1", BASE) == []
    assert len(notifier.handles("med-1", SNOOZE)) == 1

    await ctx.engine.cancel("med-1", include_snoozes=True)
    assert notifier.handles("med-1", SNOOZE) == []


@pytest.mark.anyio
async def test_snooze_uses_default_duration(ctx):
    occurrence = await ctx.engine.snooze("med-1", now=NOW)
    assert occurrence.fire_at == local(2024, 4, 1, 9, 15)


@pytest.mark.anyio
async def test_snooze_of_zero_minutes_is_rejected(ctx, notifier):
    with pytest.raises(ValueError):
        await ctx.engine.snooze("med-1", 0, now=NOW)
    assert notifier.handles("med-1", SNOOZE) == []


@pytest.mark.anyio
async def test_reschedule_all_keeps_going_after_a_failure(ctx, notifier):
    warnings = _collect(ctx.bus, SchedulingWarning)
    notifier.fail_for.add("med-2")

    report = await ctx.engine.reschedule_all(
        [_schedule("med-1"), _schedule("med-2"), _schedule("med-3", time="21:00")],
        now=NOW,
    )

    assert set(report.scheduled) == {"med-1", "med-3"}
    assert set(report.failed) == {"med-2"}
    assert [w.medication_id for w in warnings] == ["med-2"]
    assert len(notifier.handles("med-1", BASE)) == 1
    assert len(notifier.handles("med-3", BASE)) == 1


@pytest.mark.anyio
async def test_reschedule_all_cancels_reminders_for_removed_medications(ctx, notifier):
    await ctx.engine.register_or_update(_schedule("removed"), now=NOW)
    await ctx.engine.snooze("removed", 10, now=NOW)

    await ctx.engine.reschedule_all([_schedule("med-1")], now=NOW)

    assert notifier.handles("removed", BASE) == []
    assert len(notifier.handles("removed", SNOOZE)) == 1
    assert len(notifier.handles("med-1", BASE)) == 1


@pytest.mark.anyio
async def test_permission_advisory_is_published_once(ctx, notifier):
    notifier.permitted = False
    advisories = _collect(ctx.bus, PermissionAdvisory)

    assert not await ctx.engine.ensure_permission()
    assert not await ctx.engine.ensure_permission()

    assert len(advisories) == 1
    # reminders are still scheduled on a best-effort basis
    await ctx.engine.register_or_update(_schedule(), now=NOW)
    assert len(notifier.handles("med-1", BASE)) == 1


@pytest.mark.anyio
async def test_fired_reminders_are_published(ctx):
    fired = _collect(ctx.bus, ReminderFired)
    payload = SnoozePayload(
        medication_id="med-1",
        title="💊 Aspirin",
        body="Snoozed reminder",
        snooze_id="abc123",
        snoozed_minutes=10,
    )

    await ctx.engine.handle_fired(payload.model_dump(mode="json"), now=NOW)

    [event] = fired
    assert event.payload == payload
    assert event.fired_at == NOW


def test_repeating_reminder_resolves_the_dose_it_fired_for(ctx):
    payload = BaseReminderPayload(
        medication_id="med-1",
        title="💊 Aspirin",
        body="Time to take your Aspirin!",
        repeat_type="daily",
        dose_at=local(2024, 4, 2, 0, 10),
        reminder="reminder_30",
        minutes_before=30,
    )
    # a week later the same trigger fires the evening before the dose
    assert ctx.engine.dose_for_firing(payload, local(2024, 4, 8, 23, 40)) == local(2024, 4, 9, 0, 10)


# ---------------- WITH A DATABASE ----------------

async def _add_medication(session_factory, **kwargs) -> Medication:
    fields = {"name": "Aspirin", "dosage": "81mg", "time": "08:00"}
    fields.update(kwargs)
    async with session_factory() as db:
        return await crud.create_medication(db, MedicationCreate(**fields))


@pytest.mark.anyio
async def test_next_reminder_is_recorded(db_ctx, session_factory):
    med = await _add_medication(session_factory)

    schedule = await db_ctx.store.get_schedule(med.id)
    await db_ctx.engine.register_or_update(schedule, now=NOW)

    async with session_factory() as db:
        saved = await crud.get_medication(db, med.id)
    assert saved.next_reminder_at == local(2024, 4, 2, 8, 0).replace(tzinfo=None)


@pytest.mark.anyio
async def test_firing_a_base_reminder_opens_one_pending_record(db_ctx, session_factory):
    med = await _add_medication(session_factory)
    payload = BaseReminderPayload(
        medication_id=med.id,
        title="💊 Aspirin",
        body="Time to take your Aspirin!",
        repeat_type="daily",
        dose_at=local(2024, 4, 1, 8, 0),
    )

    await db_ctx.engine.handle_fired(payload, now=local(2024, 4, 1, 8, 0))
    await db_ctx.engine.handle_fired(payload, now=local(2024, 4, 1, 8, 0))

    async with session_factory() as db:
        med = await crud.get_medication(db, med.id)
        await db.refresh(med, attribute_names=["records"])
        records = med.records
    assert len(records) == 1
    assert records[0].status == "pending"
    assert records[0].scheduled_time == local(2024, 4, 1, 8, 0).replace(tzinfo=None)


@pytest.mark.anyio
async def test_cold_start_rearms_enabled_medications(db_ctx, session_factory, notifier):
    active = await _add_medication(session_factory)
    await _add_medication(session_factory, name="Old", enabled=False)

    await db_ctx.start()
    try:
        assert len(notifier.handles(active.id, BASE)) == 1
        assert len(notifier.live) == 1
        assert db_ctx.jobs.is_registered("reset-daily-statuses")
        assert db_ctx.engine.reset_task.last_outcome == ResetOutcome.SUCCEEDED
    finally:
        await db_ctx.stop()


@pytest.mark.anyio
async def test_layer_refusing_permission_counts_as_denied(ctx, notifier):
    async def refuse():
        raise PermissionDenied()

    notifier.request_permission = refuse
    advisories = _collect(ctx.bus, PermissionAdvisory)

    assert not await ctx.engine.ensure_permission()
    assert [a.message for a in advisories] == [PERMISSION_ADVISORY]


@pytest.mark.anyio
async def test_advance_reminder_does_not_open_a_record(db_ctx, session_factory):
    med = await _add_medication(session_factory, lead_minutes=30)
    fired = _collect(db_ctx.bus, ReminderFired)
    advance = BaseReminderPayload(
        medication_id=med.id,
        title="💊 Reminder: Aspirin",
        body="It's almost time to take your 81mg.",
        repeat_type="daily",
        dose_at=local(2024, 4, 1, 8, 0),
        reminder="reminder_30",
        minutes_before=30,
    )

    await db_ctx.engine.handle_fired(advance.model_dump(mode="json"), now=local(2024, 4, 1, 7, 30))

    async with session_factory() as db:
        med = await crud.get_medication(db, med.id)
        await db.refresh(med, attribute_names=["records"])
        assert med.records == []
    assert [event.payload.reminder for event in fired] == ["reminder_30"]


@pytest.mark.anyio
async def test_next_reminder_is_the_advance_one_when_a_lead_is_set(db_ctx, session_factory):
    med = await _add_medication(session_factory, lead_minutes=45)

    schedule = await db_ctx.store.get_schedule(med.id)
    await db_ctx.engine.register_or_update(schedule, now=NOW)

    async with session_factory() as db:
        saved = await crud.get_medication(db, med.id)
    assert saved.next_reminder_at == local(2024, 4, 2, 7, 15).replace(tzinfo=None)
