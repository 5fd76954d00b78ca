from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Tuple

from pillclock.notifications.payloads import NotificationTag
from pillclock.scheduling.triggers import CalendarTrigger, IntervalTrigger

Handle = str


class NotificationLayer(ABC):
    """
    What the engine needs from whatever actually delivers notifications.

    Every call may suspend. Implementations raise on failure; the engine
    turns failures into SchedulingFailed for its callers.
    """

    @abstractmethod
    async def schedule_one_shot(self, fire_at: datetime, payload) -> Handle:
        ...

    @abstractmethod
    async def schedule_repeating(self, trigger: CalendarTrigger | IntervalTrigger, payload) -> Handle:
        ...

    @abstractmethod
    async def cancel(self, handle: Handle) -> None:
        """Cancelling an unknown handle is not an error."""

    @abstractmethod
    async def list_live(self) -> List[Tuple[Handle, Optional[NotificationTag]]]:
        ...

    @abstractmethod
    async def request_permission(self) -> bool:
        ...
