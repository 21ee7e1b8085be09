import asyncio
from datetime import datetime, timedelta

import pytest

from prayer_reminder.core.db import close_db, init_db
from prayer_reminder.prayer.location import LocationProvider
from prayer_reminder.prayer.models import Coordinates, PrayerTimes
from prayer_reminder.prayer.notifications import InstalledTrigger, NotificationBackend
from prayer_reminder.prayer.prayer_base import PrayerTimesSource

TIMES = {"Fajr": "04:31", "Dhuhr": "11:52", "Asr": "15:14", "Maghrib": "17:55", "Isha": "19:05"}


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeLocation(LocationProvider):
    def __init__(self, allow=True, error=None, coords=Coordinates(-6.2, 106.8)):
        super().__init__({"allow": allow})
        self.error = error
        self.coords = coords
        self.calls = 0

    async def _locate(self):
        self.calls += 1
        if self.error:
            raise self.error
        return self.coords


class FakeSource(PrayerTimesSource):
    def __init__(self, times=None, timezone="Asia/Jakarta", error=None):
        super().__init__({})
        self.times = dict(times or TIMES)
        self.timezone = timezone
        self.error = error
        self.calls = []

    async def fetch_times(self, lat, lng, method, school, local_date):
        self.calls.append((lat, lng, method, school, local_date))
        if self.error:
            raise self.error
        return PrayerTimes(times=dict(self.times), timezone=self.timezone)


class FakeNotificationBackend(NotificationBackend):
    """In-memory facility. Install calls yield to the loop so concurrent callers interleave."""

    def __init__(self, permission=True, install_delay=0):
        self.permission = permission
        self.install_delay = install_delay
        self.daily = []
        self.one_shots = []
        self.channels = []
        self.categories = []
        self.events = []
        self.cancel_calls = 0
        self._next_id = 0

    def _id(self):
        self._next_id += 1
        return str(self._next_id)

    async def request_permission(self):
        return self.permission

    async def ensure_channel(self, channel):
        self.channels.append(channel)

    async def register_category(self, category):
        self.categories.append(category)

    async def install_recurring_daily(self, hour, minute, content):
        await asyncio.sleep(self.install_delay)
        trigger = InstalledTrigger(id=self._id(), kind="daily", content=content, hour=hour, minute=minute)
        self.daily.append(trigger)
        self.events.append(f"daily:{hour:02d}:{minute:02d}")
        return trigger.id

    async def install_one_shot(self, delay_seconds, content):
        await asyncio.sleep(0)
        trigger = InstalledTrigger(id=self._id(), kind="one_shot", content=content)
        self.one_shots.append((delay_seconds, trigger))
        self.events.append(f"one_shot:{delay_seconds}")
        return trigger.id

    async def cancel_all(self):
        await asyncio.sleep(0)
        self.cancel_calls += 1
        self.daily.clear()
        self.one_shots.clear()
        self.events.append("cancel")

    async def list_installed(self):
        return list(self.daily) + [trigger for _, trigger in self.one_shots]


@pytest.fixture
def db(tmp_path):
    init_db(db_url=f"sqlite:///{tmp_path / 'test.db'}")
    yield
    close_db()


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 10, 19, 10, 0, 0))


@pytest.fixture
def backend():
    return FakeNotificationBackend()


@pytest.fixture
def location():
    return FakeLocation()


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def aladhan_payload():
    return {
        "code": 200,
        "status": "OK",
        "data": {
            "timings": {
                "Fajr": "04:31",
                "Sunrise": "05:45",
                "Dhuhr": "11:52",
                "Asr": "15:14",
                "Sunset": "17:52",
                "Maghrib": "17:55",
                "Isha": "19:05",
                "Imsak": "04:21",
                "Midnight": "23:52",
            },
            "date": {"readable": "19 Oct 2026"},
            "meta": {"timezone": "Asia/Jakarta"},
        },
    }
