"""
Service layer: save and load the schedule state from the key-value table.
"""
import asyncio
import logging
from typing import Optional

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from prayer_reminder.core.models import kv_get, kv_set

from .errors import PersistenceError
from .models import ScheduleState

STATE_KEY = "@prayer_state"


class StateStore:
    """Durable single-record persistence of the last computed schedule."""

    def __init__(self, key: str = STATE_KEY):
        self.key = key
        self.logger = logging.getLogger(self.__class__.__name__)

    async def save(self, state: ScheduleState) -> None:
        """Overwrite the record. The write is one transaction, so load() never sees half of it."""
        try:
            await asyncio.to_thread(kv_set, self.key, state.model_dump(mode="json"))
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to save prayer state: {e}") from e
        self.logger.info(f"Saved prayer state for {state.schedule_date} ({state.timezone})")

    async def load(self) -> Optional[ScheduleState]:
        """Return the stored state, or None when nothing has been saved yet."""
        try:
            raw = await asyncio.to_thread(kv_get, self.key)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load prayer state: {e}") from e
        if raw is None:
            return None
        try:
            return ScheduleState.model_validate(raw)
        except ValidationError as e:
            raise PersistenceError(f"Stored prayer state is corrupt: {e}") from e
