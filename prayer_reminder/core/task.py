"""
Background task types and abstract BackgroundTask with next_run persistence in DB.
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import select

from prayer_reminder.core.db import session_scope
from prayer_reminder.core.models import TaskSchedule

logger = logging.getLogger(__name__)


class BackgroundResult(str, Enum):
    """Result codes a background task reports to the host scheduler."""
    NEW_DATA = "new_data"
    NO_DATA = "no_data"
    FAILED = "failed"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def compute_next_run(minimum_interval: int, last_run: Optional[datetime]) -> datetime:
    """Next run is one minimum interval after the last run (or after now)."""
    if last_run is None:
        last_run = _utc_now()
    return last_run + timedelta(seconds=int(minimum_interval))


def get_next_run_from_db(task_name: str) -> Optional[datetime]:
    """Read next_run_at for a task. None if no row or next_run_at is null (task will run immediately)."""
    try:
        with session_scope() as session:
            row = session.execute(
                select(TaskSchedule).where(TaskSchedule.task_name == task_name)
            ).scalars().first()
            if row and row.next_run_at is not None:
                return row.next_run_at
    except Exception as e:
        logger.debug(f"get_next_run_from_db {task_name}: {e}")
    return None


def upsert_task_schedule(task_name: str, minimum_interval: int) -> None:
    """Create the TaskSchedule row if missing, otherwise update its interval. next_run_at is left unchanged."""
    with session_scope() as session:
        row = session.execute(
            select(TaskSchedule).where(TaskSchedule.task_name == task_name)
        ).scalars().first()
        now = _utc_now()
        if row:
            row.minimum_interval = minimum_interval
            row.updated_at = now
        else:
            # New row: leave next_run_at null so the task runs immediately, then update_after_run sets it
            session.add(TaskSchedule(
                task_name=task_name,
                minimum_interval=minimum_interval,
                created_at=now,
                updated_at=now,
            ))


def update_after_run(task_name: str, result: "BackgroundResult", error: Optional[str] = None) -> Optional[datetime]:
    """Record the outcome of a run and compute next_run_at. Returns the new next_run_at."""
    with session_scope() as session:
        row = session.execute(
            select(TaskSchedule).where(TaskSchedule.task_name == task_name)
        ).scalars().first()
        if not row:
            return None
        now = _utc_now()
        row.last_run_at = now
        row.last_result = result.value
        row.last_error = error
        row.next_run_at = compute_next_run(row.minimum_interval, now)
        row.updated_at = now
        return row.next_run_at


class BackgroundTask(ABC):
    """
    Abstract base for periodic background work. The task manager decides the
    actual cadence; minimum_interval is only a lower bound hint.
    """

    name: str = ""
    minimum_interval: int = 3 * 60 * 60

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    async def run(self) -> BackgroundResult:
        """
        Execute one cycle. Must not raise: failures are reported as BackgroundResult.FAILED.
        """
        pass
