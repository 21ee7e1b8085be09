import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from prayer_reminder.core.models import kv_get, kv_set
from prayer_reminder.prayer.errors import PersistenceError
from prayer_reminder.prayer.models import JurisprudenceSchool, ScheduleState
from prayer_reminder.prayer.store import STATE_KEY, StateStore

from conftest import TIMES


def make_state(**overrides):
    values = dict(
        schedule_date="2026-10-19",
        latitude=-6.2,
        longitude=106.8,
        calculation_method=20,
        jurisprudence_school=JurisprudenceSchool.SHAFI,
        times=TIMES,
        timezone="Asia/Jakarta",
    )
    values.update(overrides)
    return ScheduleState(**values)


def test_load_missing_returns_none(db):
    assert asyncio.run(StateStore().load()) is None


def test_save_overwrites_single_record(db):
    store = StateStore()
    asyncio.run(store.save(make_state()))
    asyncio.run(store.save(make_state(schedule_date="2026-10-20", jurisprudence_school="hanafi")))

    loaded = asyncio.run(store.load())
    assert loaded.schedule_date == "2026-10-20"
    assert loaded.jurisprudence_school == JurisprudenceSchool.HANAFI
    assert list(loaded.times) == ["Fajr", "Dhuhr", "Asr", "Maghrib", "Isha"]


def test_corrupt_record_raises_persistence_error(db):
    kv_set(STATE_KEY, {"schedule_date": "2026-10-19"})
    with pytest.raises(PersistenceError):
        asyncio.run(StateStore().load())


def test_state_requires_all_five_prayers():
    times = dict(TIMES)
    del times["Isha"]
    with pytest.raises(ValueError):
        make_state(times=times)


def test_state_rejects_bad_clock():
    with pytest.raises(ValueError):
        make_state(times=dict(TIMES, Fajr="4:31"))


def test_concurrent_first_saves_both_succeed(db):
    store = StateStore()
    first = make_state(calculation_method=20)
    second = make_state(calculation_method=3, jurisprudence_school="hanafi")

    async def save_both():
        await asyncio.gather(store.save(first), store.save(second))

    asyncio.run(save_both())
    assert asyncio.run(store.load()) in (first, second)


def test_kv_set_from_racing_threads(db):
    barrier = threading.Barrier(4)

    def write(n):
        barrier.wait()
        kv_set("race", {"n": n})

    with ThreadPoolExecutor(max_workers=4) as pool:
        list(pool.map(write, range(4)))

    assert kv_get("race")["n"] in range(4)
