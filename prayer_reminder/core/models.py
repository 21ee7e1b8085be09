"""
Core DB models: key-value records and background task schedule (next_run persistence).
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import Column, String, DateTime, Text, Integer, JSON, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from prayer_reminder.core.db import Base, session_scope


def _utc_now() -> datetime:
    """UTC now as naive datetime for DateTime(timezone=False) columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class KeyValueRecord(Base):
    """Single JSON value per key. Writes replace the whole value in one transaction."""
    __tablename__ = "key_values"

    key = Column(String(255), primary_key=True)
    value = Column(JSON, nullable=False)
    updated_at = Column(DateTime(timezone=False), default=_utc_now, onupdate=_utc_now, nullable=False)


class TaskSchedule(Base):
    """Per-task schedule: next_run_at and last_run_at so the cadence survives restarts."""
    __tablename__ = "task_schedules"

    task_name = Column(String(255), primary_key=True)
    minimum_interval = Column(Integer, nullable=False)  # seconds
    next_run_at = Column(DateTime(timezone=False), nullable=True)  # null = run immediately (e.g. new DB)
    last_run_at = Column(DateTime(timezone=False), nullable=True)
    last_result = Column(String(32), nullable=True)  # BackgroundResult value
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=False), default=_utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=False), default=_utc_now, onupdate=_utc_now, nullable=False)


def kv_get(key: str) -> Optional[Any]:
    """Return the stored value for key, or None when no record exists."""
    with session_scope() as session:
        row = session.get(KeyValueRecord, key)
        return row.value if row else None


def kv_set(key: str, value: Any) -> None:
    """Create or overwrite the record for key in one statement."""
    now = _utc_now()
    stmt = sqlite_insert(KeyValueRecord).values(key=key, value=value, updated_at=now)
    stmt = stmt.on_conflict_do_update(
        index_elements=[KeyValueRecord.key],
        set_={"value": stmt.excluded["value"], "updated_at": stmt.excluded["updated_at"]},
    )
    with session_scope() as session:
        session.execute(stmt)


def get_all_task_schedules() -> List[Dict[str, Any]]:
    """Return all TaskSchedule rows as list of dicts (for API). Datetimes are naive UTC."""
    with session_scope() as session:
        rows = session.execute(select(TaskSchedule)).scalars().all()
        return [
            {
                "task_name": r.task_name,
                "minimum_interval": r.minimum_interval,
                "next_run_at": r.next_run_at,
                "last_run_at": r.last_run_at,
                "last_result": r.last_result,
                "last_error": r.last_error,
            }
            for r in rows
        ]
