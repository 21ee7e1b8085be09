import asyncio
from datetime import datetime

import pytest

from prayer_reminder.prayer.errors import FormatError
from prayer_reminder.prayer.scheduler import (
    ACTION_DISMISS,
    ACTION_SNOOZE,
    CATEGORY_SNOOZE,
    NOTIF_CHANNEL,
    TriggerScheduler,
)

from conftest import TIMES
from test_store import make_state


@pytest.fixture
def scheduler(backend, clock):
    return TriggerScheduler(backend, settle_delay=0, snooze_seconds=600, clock=clock)


def test_install_all_installs_one_daily_trigger_per_prayer(scheduler, backend):
    assert asyncio.run(scheduler.install_all(make_state())) is True

    assert [(t.hour, t.minute) for t in backend.daily] == [(4, 31), (11, 52), (15, 14), (17, 55), (19, 5)]
    assert backend.daily[0].content.title == "Fajr time"
    assert backend.daily[0].content.category_id == CATEGORY_SNOOZE
    assert backend.channels == [NOTIF_CHANNEL]
    assert backend.one_shots == []


def test_install_all_twice_is_deduplicated(scheduler, backend):
    state = make_state()
    asyncio.run(scheduler.install_all(state))
    asyncio.run(scheduler.install_all(state))

    assert len(backend.daily) == 5
    assert len(scheduler.installed_keys) == 5
    assert ("Asia/Jakarta", "Fajr", "04:31") in scheduler.installed_keys


def test_concurrent_install_all_is_single_flight(scheduler, backend):
    state = make_state()

    async def race():
        return await asyncio.gather(scheduler.install_all(state), scheduler.install_all(state))

    assert asyncio.run(race()) == [True, False]
    assert len(backend.daily) == 5
    assert not scheduler.is_installing


def test_install_all_releases_guard_on_error(scheduler, backend):
    async def broken(*args, **kwargs):
        raise RuntimeError("facility down")

    backend.install_recurring_daily = broken
    with pytest.raises(RuntimeError):
        asyncio.run(scheduler.install_all(make_state()))
    assert not scheduler.is_installing


def test_cancel_all_clears_dedup_set(scheduler, backend):
    state = make_state()
    asyncio.run(scheduler.install_all(state))
    asyncio.run(scheduler.cancel_all())

    assert backend.daily == []
    assert scheduler.installed_keys == set()

    asyncio.run(scheduler.install_all(state))
    assert len(backend.daily) == 5


def test_rebuild_replaces_installed_triggers(scheduler, backend):
    asyncio.run(scheduler.install_all(make_state()))
    assert asyncio.run(scheduler.rebuild(make_state(times=dict(TIMES, Fajr="04:45")))) is True

    assert backend.events.count("cancel") == 1
    assert [(t.hour, t.minute) for t in backend.daily][0] == (4, 45)
    assert len(backend.daily) == 5


def test_overlapping_rebuild_installs_newest_state(scheduler, backend):
    newer = make_state(times=dict(TIMES, Fajr="04:45"))

    async def race():
        return await asyncio.gather(scheduler.rebuild(make_state()), scheduler.rebuild(newer))

    assert asyncio.run(race()) == [True, False]
    assert [(t.hour, t.minute) for t in backend.daily] == [(4, 45), (11, 52), (15, 14), (17, 55), (19, 5)]
    assert ("Asia/Jakarta", "Fajr", "04:31") not in scheduler.installed_keys
    assert not scheduler.is_installing


def test_rebuild_during_install_all_is_picked_up(scheduler, backend):
    newer = make_state(times=dict(TIMES, Isha="19:20"))

    async def race():
        return await asyncio.gather(scheduler.install_all(make_state()), scheduler.rebuild(newer))

    assert asyncio.run(race()) == [True, False]
    assert [(t.hour, t.minute) for t in backend.daily][-1] == (19, 20)
    assert len(backend.daily) == 5


def test_overlapping_rebuild_shares_the_error(scheduler, backend):
    async def broken(*args, **kwargs):
        await asyncio.sleep(0)
        raise RuntimeError("facility down")

    backend.install_recurring_daily = broken

    async def race():
        return await asyncio.gather(
            scheduler.rebuild(make_state()), scheduler.rebuild(make_state()), return_exceptions=True
        )

    results = asyncio.run(race())
    assert [type(r) for r in results] == [RuntimeError, RuntimeError]
    assert not scheduler.is_installing


def test_same_minute_install_fires_catch_up_one_shot(backend, clock):
    clock.now = datetime(2026, 10, 19, 15, 14, 20)
    scheduler = TriggerScheduler(backend, settle_delay=0, clock=clock)

    asyncio.run(scheduler.install_all(make_state()))

    assert len(backend.daily) == 5
    assert len(backend.one_shots) == 1
    delay, trigger = backend.one_shots[0]
    assert delay == 1
    assert trigger.content.title == "Asr time (now)"


def test_install_daily_rejects_bad_clock(scheduler):
    with pytest.raises(FormatError):
        asyncio.run(scheduler.install_daily("Fajr", "4:31", "Asia/Jakarta"))


def test_snooze_action_schedules_follow_up(scheduler, backend):
    trigger_id = asyncio.run(scheduler.handle_action(ACTION_SNOOZE))

    assert trigger_id is not None
    delay, trigger = backend.one_shots[0]
    assert delay == 600
    assert trigger.content.category_id == CATEGORY_SNOOZE
    assert "10 minutes" in trigger.content.body


@pytest.mark.parametrize("action", [ACTION_DISMISS, "default", "UNKNOWN"])
def test_other_actions_do_nothing(scheduler, backend, action):
    assert asyncio.run(scheduler.handle_action(action)) is None
    assert backend.one_shots == []


def test_register_categories(scheduler, backend):
    asyncio.run(scheduler.register_categories())
    category = backend.categories[0]
    assert category.identifier == CATEGORY_SNOOZE
    assert [a.identifier for a in category.actions] == [ACTION_SNOOZE, ACTION_DISMISS]
