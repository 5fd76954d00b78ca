"""Background reset of daily dose statuses.

The task may run late, several times for the same day, or not at all for a
day; it only ever asks the store to settle doses scheduled before the most
recent local midnight, which is a no-op the second time around.
"""
import asyncio
import logging
from datetime import datetime, time
from enum import Enum
from typing import Optional

from pillclock.core.errors import ResetFailed
from pillclock.core.events import DailyResetFinished, EventBus
from pillclock.scheduling.recurrence import to_local

logger = logging.getLogger(__name__)

RESET_TASK = "reset-daily-statuses"


class ResetState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ResetOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class DailyResetTask:
    def __init__(self, store, bus: EventBus, tz):
        self.store = store
        self.bus = bus
        self.tz = tz
        self.state = ResetState.IDLE
        self.last_outcome: Optional[ResetOutcome] = None
        self._lock = asyncio.Lock()

    def day_boundary(self, now: datetime) -> datetime:
        local_now = to_local(now, self.tz)
        return self.tz.localize(datetime.combine(local_now.date(), time.min))

    async def _reset(self, boundary: datetime) -> int:
        try:
            return await self.store.reset_daily(boundary)
        except Exception as e:
            raise ResetFailed(str(e)) from e

    async def run(self, now: Optional[datetime] = None) -> ResetOutcome:
        async with self._lock:
            now = now or datetime.now(self.tz)
            self.state = ResetState.RUNNING
            logger.info("🔄 Running daily reset background task...")
            error = None
            count = 0
            try:
                count = await self._reset(self.day_boundary(now))
            except ResetFailed as e:
                self.state = ResetState.FAILED
                error = str(e)
                logger.error("❌ Failed in daily reset task: %s", e)
            else:
                self.state = ResetState.SUCCEEDED

            outcome = ResetOutcome.SUCCEEDED if self.state == ResetState.SUCCEEDED else ResetOutcome.FAILED
            self.last_outcome = outcome
            self.state = ResetState.IDLE

        await self.bus.publish(
            DailyResetFinished(outcome=outcome.value, finished_at=now, records_reset=count, error=error)
        )
        return outcome
