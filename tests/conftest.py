import asyncio
import itertools
import os
import sys
from datetime import datetime

import pytest
import pytz

# --- Ensure repo root is on sys.path so "pillclock" imports work ---
REPO_ROOT = os.path.dirname(os.path.dirname(__file__))  # go up from tests/ to repo root
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from pillclock.core.config import Settings  # noqa: E402
from pillclock.core.context import build_context  # noqa: E402
from pillclock.db.database import create_engine_for, create_sessionmaker, init_models  # noqa: E402
from pillclock.notifications.base import NotificationLayer  # noqa: E402
from pillclock.notifications.payloads import tag_for  # noqa: E402
from pillclock.scheduling.triggers import OneShotTrigger  # noqa: E402

TZ = pytz.timezone("America/Toronto")


def local(*args) -> datetime:
    """Aware local datetime, e.g. local(2024, 4, 1, 9, 0) is Monday 09:00."""
    return TZ.localize(datetime(*args))


class FakeNotificationLayer(NotificationLayer):
    """In-memory stand-in for the OS notification layer.

    Every call yields to the event loop first, the way a real platform call
    would suspend, so overlapping registrations actually interleave.
    """

    def __init__(self, permitted: bool = True):
        self.permitted = permitted
        self.live = {}
        self.cancelled = []
        self.fail_for = set()
        self.fail_repeating = False
        self.fail_listing = False
        self.listing_delay = 0.0
        self._ids = itertools.count(1)

    async def _suspend(self):
        await asyncio.sleep(0)

    def _install(self, trigger, payload) -> str:
        if payload.medication_id in self.fail_for:
            raise RuntimeError("OS rejected the request")
        handle = f"n{next(self._ids)}"
        self.live[handle] = (trigger, payload, tag_for(payload))
        return handle

    async def schedule_one_shot(self, fire_at, payload):
        await self._suspend()
        return self._install(OneShotTrigger(fire_at), payload)

    async def schedule_repeating(self, trigger, payload):
        await self._suspend()
        if self.fail_repeating:
            raise RuntimeError("repeating triggers unavailable")
        return self._install(trigger, payload)

    async def cancel(self, handle):
        await self._suspend()
        self.cancelled.append(handle)
        self.live.pop(handle, None)

    async def list_live(self):
        if self.listing_delay:
            await asyncio.sleep(self.listing_delay)
        await self._suspend()
        if self.fail_listing:
            raise RuntimeError("notification service unavailable")
        return [(handle, tag) for handle, (_, _, tag) in self.live.items()]

    async def request_permission(self):
        return self.permitted

    def handles(self, medication_id, kind):
        return [
            handle
            for handle, (_, _, tag) in self.live.items()
            if tag is not None and tag.medication_id == medication_id and tag.kind == kind
        ]


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def tz():
    return TZ


@pytest.fixture
def notifier():
    return FakeNotificationLayer()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'pillclock-test.db'}",
        timezone="America/Toronto",
        notification_capability="calendar-native",
    )


@pytest.fixture
async def session_factory(settings):
    engine = create_engine_for(settings.database_url)
    await init_models(engine)
    yield create_sessionmaker(engine)
    await engine.dispose()


@pytest.fixture
def ctx(settings, notifier):
    """Engine wiring with no database behind it."""
    return build_context(settings, notifier=notifier)


@pytest.fixture
async def db_ctx(settings, notifier, session_factory):
    return build_context(settings, sessionmaker=session_factory, notifier=notifier)
