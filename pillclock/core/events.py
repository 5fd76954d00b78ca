"""Typed in-process event bus.

One bus is created per process context and handed to every component that
publishes or listens; nothing registers against a module-level registry.
Handlers may be plain callables or coroutine functions.
"""
import inspect
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReminderFired:
    payload: Any
    fired_at: datetime


@dataclass(frozen=True)
class MissedDoseDetected:
    medication_id: str
    record_id: str
    scheduled_time: datetime


@dataclass(frozen=True)
class SchedulingWarning:
    medication_id: str
    message: str


@dataclass(frozen=True)
class PermissionAdvisory:
    message: str


@dataclass(frozen=True)
class DailyResetFinished:
    outcome: str
    finished_at: datetime
    records_reset: int = 0
    error: Optional[str] = None


E = TypeVar("E")
Handler = Callable[[Any], Any]


class EventBus:
    def __init__(self):
        self._handlers: Dict[type, List[Handler]] = defaultdict(list)

    def subscribe(self, event_type: Type[E], handler: Callable[[E], Any]) -> Callable[[], None]:
        self._handlers[event_type].append(handler)

        def unsubscribe():
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    async def publish(self, event) -> None:
        # Copy so handlers may unsubscribe while being dispatched
        for handler in list(self._handlers.get(type(event), [])):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("⚠️ Event handler %r failed for %s", handler, type(event).__name__)

    def listener_count(self, event_type: type) -> int:
        return len(self._handlers.get(event_type, []))
