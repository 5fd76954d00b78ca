"""Idempotent installation of base reminders.

Registration for one medication is a critical section: list what is live,
cancel every base notification tagged with the medication, install the new
triggers. Two overlapping registrations for the same medication are
serialized by a per-medication lock, so the second one always sees (and
cancels) what the first one installed. Different medications never wait on
each other.

What is installed is always read back from the notification layer; nothing
here keeps its own copy of the live handles.
"""
import asyncio
import logging
import weakref
from typing import Awaitable, List, Mapping, TypeVar

from pillclock.core.errors import SchedulingFailed
from pillclock.notifications.base import Handle, NotificationLayer
from pillclock.scheduling.models import BASE
from pillclock.scheduling.triggers import OneShotTrigger, TriggerPlan

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ScheduleRegistry:
    def __init__(self, notifier: NotificationLayer, timeout: float = 10.0):
        self.notifier = notifier
        self.timeout = timeout
        # a lock lives only as long as some registration holds or waits on it
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, medication_id: str) -> asyncio.Lock:
        lock = self._locks.get(medication_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[medication_id] = lock
        return lock

    async def guarded(self, medication_id: str, pending: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(pending, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise SchedulingFailed(medication_id, "notification layer timed out") from e
        except SchedulingFailed:
            raise
        except Exception as e:
            raise SchedulingFailed(medication_id, str(e)) from e

    async def live_handles(self, medication_id: str, kind: str = BASE) -> List[Handle]:
        listing = await self.guarded(medication_id, self.notifier.list_live())
        return [
            handle
            for handle, tag in listing
            if tag is not None and tag.medication_id == medication_id and tag.kind == kind
        ]

    async def is_live(self, medication_id: str, kind: str = BASE) -> bool:
        return bool(await self.live_handles(medication_id, kind))

    async def register(self, medication_id: str, plan: TriggerPlan, payloads: Mapping[str, object]) -> List[Handle]:
        """Replace every base reminder of `medication_id` with `plan`.

        `payloads` maps each reminder label in the plan (exact time, advance
        reminder) to the payload delivered when that reminder fires.
        """
        missing = [reminder for reminder in plan.reminders if reminder not in payloads]
        if missing:
            raise ValueError(f"No payload for reminder(s) {missing} of medication {medication_id}")

        lock = self._lock_for(medication_id)
        async with lock:
            for handle in await self.live_handles(medication_id, BASE):
                await self.guarded(medication_id, self.notifier.cancel(handle))

            installed: List[Handle] = []
            try:
                for planned in plan.triggers:
                    payload = payloads[planned.reminder]
                    if isinstance(planned.trigger, OneShotTrigger):
                        scheduled = self.notifier.schedule_one_shot(planned.trigger.fire_at, payload)
                    else:
                        scheduled = self.notifier.schedule_repeating(planned.trigger, payload)
                    installed.append(await self.guarded(medication_id, scheduled))
            except SchedulingFailed:
                # leave nothing half-installed behind
                for handle in installed:
                    try:
                        await self.guarded(medication_id, self.notifier.cancel(handle))
                    except SchedulingFailed as rollback_error:
                        logger.warning("⚠️ Could not roll back %s for %s: %s", handle, medication_id, rollback_error)
                raise

            logger.info("⏰ Registered %d trigger(s) for medication %s", len(installed), medication_id)
            return installed

    async def unregister(self, medication_id: str) -> int:
        lock = self._lock_for(medication_id)
        async with lock:
            handles = await self.live_handles(medication_id, BASE)
            for handle in handles:
                await self.guarded(medication_id, self.notifier.cancel(handle))
            if handles:
                logger.info("🗑️ Cancelled %d base reminder(s) for medication %s", len(handles), medication_id)
            return len(handles)
