import time
from datetime import datetime, timedelta, timezone

import pytest

from prayer_reminder.core.models import get_all_task_schedules
from prayer_reminder.core.task import BackgroundResult, BackgroundTask, compute_next_run
from prayer_reminder.core.task_manager import TaskManager


class CountingTask(BackgroundTask):
    name = "COUNTING"
    minimum_interval = 3600

    def __init__(self, error=None):
        super().__init__()
        self.error = error
        self.runs = 0

    async def run(self):
        self.runs += 1
        if self.error:
            raise self.error
        return BackgroundResult.NO_DATA


def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return False


def rescheduled(manager, name):
    """True once the first run finished and the timer is armed a full interval ahead."""
    horizon = datetime.now(timezone.utc) + timedelta(minutes=30)
    return any(t["name"] == name and t["next_run_at"] > horizon for t in manager.get_active_timers())


@pytest.fixture
def manager(db):
    manager = TaskManager()
    yield manager
    manager.stop()


def test_compute_next_run():
    last = datetime(2026, 10, 19, 10, 0)
    assert compute_next_run(3600, last) == datetime(2026, 10, 19, 11, 0)


def test_register_is_idempotent_and_runs_immediately(manager):
    task = CountingTask()
    assert manager.register_task(task) is True
    assert manager.register_task(CountingTask()) is False
    assert manager.is_task_registered("COUNTING")

    assert wait_for(lambda: rescheduled(manager, "COUNTING"))
    assert task.runs == 1
    row = get_all_task_schedules()[0]
    assert row["task_name"] == "COUNTING"
    assert row["last_result"] == "no_data"
    assert row["next_run_at"] - row["last_run_at"] == timedelta(seconds=3600)


def test_failures_are_recorded(manager):
    task = CountingTask(error=RuntimeError("boom"))
    manager.register_task(task)

    assert wait_for(lambda: rescheduled(manager, "COUNTING"))
    row = get_all_task_schedules()[0]
    assert row["last_result"] == "failed"
    assert row["last_error"] == "boom"


def test_run_task_now(manager):
    task = CountingTask()
    manager.register_task(task)
    assert wait_for(lambda: rescheduled(manager, "COUNTING"))

    assert manager.run_sync(manager.run_task_now("COUNTING"), timeout=5) == BackgroundResult.NO_DATA
    assert task.runs == 2
    assert manager.run_sync(manager.run_task_now("MISSING"), timeout=5) is None


def test_unregister_cancels_timer(manager):
    manager.register_task(CountingTask())
    assert wait_for(lambda: rescheduled(manager, "COUNTING"))

    manager.unregister_task("COUNTING")
    assert wait_for(lambda: manager.get_active_timers() == [])
    assert not manager.is_task_registered("COUNTING")
