"""
Service layer: the refresh-and-reschedule pipeline.
RefreshOrchestrator is the only writer of the persisted state and the only
place that clears and rebuilds triggers.
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Callable, Optional, Tuple, Union

from .errors import PermissionDenied
from .location import LocationProvider
from .models import DEFAULT_CALCULATION_METHOD, JurisprudenceSchool, ScheduleState
from .prayer_base import PrayerTimesSource
from .scheduler import TriggerScheduler
from .store import StateStore
from .timeutils import next_trigger_time, today


class ScheduleOutcome(str, Enum):
    REFRESHED = "refreshed"
    REINSTALLED = "reinstalled"
    UNCHANGED = "unchanged"
    DEFERRED = "deferred"  # another install was already running


def is_stale(state: Optional[ScheduleState], local_date: str) -> bool:
    """True when there is no state or it was computed for another device-local date."""
    return state is None or state.schedule_date != local_date


def next_prayer(state: ScheduleState, now: Optional[datetime] = None) -> Tuple[str, datetime]:
    """Name and device-local time of the next prayer trigger after now."""
    now = now or datetime.now()
    upcoming = [(next_trigger_time(hhmm, now), name) for name, hhmm in state.times.items()]
    at, name = min(upcoming)
    return name, at


class RefreshOrchestrator:
    def __init__(
        self,
        location: LocationProvider,
        source: PrayerTimesSource,
        store: StateStore,
        scheduler: TriggerScheduler,
        default_method: int = DEFAULT_CALCULATION_METHOD,
        default_school: JurisprudenceSchool = JurisprudenceSchool.SHAFI,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.location = location
        self.source = source
        self.store = store
        self.scheduler = scheduler
        self.default_method = default_method
        self.default_school = default_school
        self.clock = clock
        self.logger = logging.getLogger(self.__class__.__name__)

    def settings_for(
        self,
        state: Optional[ScheduleState],
        method: Optional[int] = None,
        school: Union[JurisprudenceSchool, int, str, None] = None,
    ) -> Tuple[int, JurisprudenceSchool]:
        """Explicit values win, then the stored state's, then the defaults."""
        if method is None:
            method = state.calculation_method if state else self.default_method
        if school is None:
            school = state.jurisprudence_school if state else self.default_school
        return int(method), JurisprudenceSchool.parse(school)

    async def _require_notifications(self) -> None:
        if not await self.scheduler.backend.request_permission():
            raise PermissionDenied("Notification permission denied")

    async def refresh(
        self,
        method: int = DEFAULT_CALCULATION_METHOD,
        school: Union[JurisprudenceSchool, int, str] = JurisprudenceSchool.SHAFI,
    ) -> ScheduleState:
        """Locate, fetch, persist, then cancel and rebuild all triggers.

        Errors propagate. A refused notification permission stops it before
        locating. Nothing is persisted and no trigger is touched unless the
        fetch succeeded.
        """
        school = JurisprudenceSchool.parse(school)
        await self._require_notifications()
        coords = await self.location.current_position()
        local_date = today(self.clock())
        prayer_times = await self.source.fetch_times(
            coords.latitude, coords.longitude, method, school, local_date
        )

        state = ScheduleState(
            schedule_date=local_date,
            latitude=coords.latitude,
            longitude=coords.longitude,
            calculation_method=int(method),
            jurisprudence_school=school,
            times=prayer_times.times,
            timezone=prayer_times.timezone,
        )
        await self.store.save(state)

        if not await self.scheduler.rebuild(state):
            self.logger.info("Triggers were rebuilt by the refresh already in progress")
        self.logger.info(
            f"Refreshed prayer times for {state.schedule_date} "
            f"(method {state.calculation_method}, {state.jurisprudence_school.label})"
        )
        return state

    async def ensure_schedule(self) -> Tuple[ScheduleState, ScheduleOutcome]:
        """Shared staleness path for the foreground initializer and the background task.

        Stale or missing state gets a full refresh. Fresh state whose triggers
        were purged gets its triggers reinstalled without touching location or
        network.
        """
        state = await self.store.load()
        if is_stale(state, today(self.clock())):
            method, school = self.settings_for(state)
            self.logger.info(
                f"Prayer state is stale ({state.schedule_date if state else 'none'}), refreshing"
            )
            return await self.refresh(method, school), ScheduleOutcome.REFRESHED

        installed = await self.scheduler.backend.list_installed()
        if not installed:
            self.logger.info("No notifications installed for today's state, reinstalling")
            await self._require_notifications()
            if self.scheduler.is_installing:
                return state, ScheduleOutcome.DEFERRED
            # Triggers purged outside this process leave their de-dup keys behind
            self.scheduler.installed_keys.clear()
            await self.scheduler.install_all(state)
            return state, ScheduleOutcome.REINSTALLED
        return state, ScheduleOutcome.UNCHANGED
