"""
Turns a schedule into notification triggers.

Policy: one recurring daily trigger per prayer at the device wall-clock HH:MM
returned by the lookup. When the device timezone differs from the lookup
timezone the triggers still follow device time and a warning is logged. A
trigger installed during its own minute would first fire tomorrow, so an
immediate one-shot covers today's occurrence.
"""
import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Optional, Set, Tuple

from .models import PRAYER_NAMES, ScheduleState
from .notifications import (
    NotificationAction,
    NotificationBackend,
    NotificationCategory,
    NotificationChannel,
    NotificationContent,
)
from .timeutils import is_same_minute, parse_clock, timezone_mismatch

NOTIF_CHANNEL = NotificationChannel(id="prayer-reminders", name="Prayer Reminders")

CATEGORY_SNOOZE = "SNOOZE_CATEGORY"
ACTION_SNOOZE = "SNOOZE_10"
ACTION_DISMISS = "Dismiss"
ACTION_DEFAULT = "default"

SNOOZE_CATEGORY = NotificationCategory(
    identifier=CATEGORY_SNOOZE,
    actions=(
        NotificationAction(ACTION_SNOOZE, "Remind me later"),
        NotificationAction(ACTION_DISMISS, "Dismiss"),
    ),
)

CATCH_UP_DELAY_SECONDS = 1

TriggerKey = Tuple[str, str, str]  # (timezone, prayer name, HH:MM)


class TriggerScheduler:
    """Owns trigger installation for one process: the de-dup set and the single-flight flag live here."""

    def __init__(
        self,
        backend: NotificationBackend,
        settle_delay: float = 0.05,
        snooze_seconds: int = 600,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.backend = backend
        self.settle_delay = settle_delay
        self.snooze_seconds = snooze_seconds
        self.clock = clock
        self.installed_keys: Set[TriggerKey] = set()
        self._installing = False
        self._pending: Optional[ScheduleState] = None
        self._waiters: List[asyncio.Future] = []
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    def is_installing(self) -> bool:
        return self._installing

    async def register_categories(self) -> None:
        await self.backend.register_category(SNOOZE_CATEGORY)

    async def install_daily(self, name: str, hhmm: str, timezone: str) -> bool:
        """Install the daily trigger for one prayer. Returns False if it was already installed this process."""
        hour, minute = parse_clock(hhmm)
        now = self.clock()

        if timezone_mismatch(timezone, now):
            self.logger.warning(
                f"Device timezone differs from {timezone}; {name} fires at {hhmm} device time"
            )

        key = (timezone, name, hhmm)
        if key in self.installed_keys:
            self.logger.info(f"[SKIP] {name} already scheduled this session @ {hhmm}")
            return False

        await self.backend.install_recurring_daily(
            hour,
            minute,
            NotificationContent(
                title=f"{name} time",
                body=f"It is time for {name} prayer.\nSchedule: {hhmm} ({timezone})",
                category_id=CATEGORY_SNOOZE,
                channel_id=NOTIF_CHANNEL.id,
            ),
        )
        self.installed_keys.add(key)
        self.logger.info(f"[SCHEDULED] {name} DAILY @ {hour:02d}:{minute:02d}")

        if is_same_minute(hhmm, now):
            await self.backend.install_one_shot(
                CATCH_UP_DELAY_SECONDS,
                NotificationContent(
                    title=f"{name} time (now)",
                    body=f"It is time for {name} prayer (now).",
                    channel_id=NOTIF_CHANNEL.id,
                ),
            )
            self.logger.info(f"[FIRED-NOW] {name} (one-shot) because current time matches {hhmm}")
        return True

    async def install_all(self, state: ScheduleState) -> bool:
        """Install all five daily triggers. Returns False when another install is already running."""
        if self._installing:
            self.logger.info("[SCHEDULE] skipped: another run in progress")
            return False
        return await self._run_guarded(state, cancel_first=False)

    async def rebuild(self, state: ScheduleState) -> bool:
        """Cancel every trigger, then install state's, as one guarded step.

        A call made while an install is running hands its state over instead of
        installing: the running install starts over with the newest state
        before it finishes. The caller still waits for that and gets its
        errors. Returns False when the state was handed over.
        """
        if self._installing:
            self._pending = state
            waiter = asyncio.get_running_loop().create_future()
            self._waiters.append(waiter)
            self.logger.info("[SCHEDULE] install in progress; newer schedule handed over")
            await waiter
            return False
        return await self._run_guarded(state, cancel_first=True)

    async def _run_guarded(self, state: ScheduleState, cancel_first: bool) -> bool:
        self._installing = True
        error = None
        try:
            while True:
                if cancel_first:
                    await self.cancel_all()
                await self._install_state(state)
                if self._pending is None:
                    return True
                state, self._pending, cancel_first = self._pending, None, True
                self.logger.info(f"[SCHEDULE] rebuilding again for {state.schedule_date}")
        except BaseException as e:
            error = e
            raise
        finally:
            self._installing = False
            self._pending = None
            waiters, self._waiters = self._waiters, []
            for waiter in waiters:
                if waiter.done():
                    continue
                if isinstance(error, Exception):
                    waiter.set_exception(error)
                elif error is not None:
                    waiter.cancel()
                else:
                    waiter.set_result(None)

    async def _install_state(self, state: ScheduleState) -> None:
        await self.backend.ensure_channel(NOTIF_CHANNEL)
        for name in PRAYER_NAMES:
            await self.install_daily(name, state.times[name], state.timezone)

    async def cancel_all(self) -> None:
        """Cancel every trigger and forget what was installed. Returns after the settle delay."""
        await self.backend.cancel_all()
        self.installed_keys.clear()
        if self.settle_delay:
            await asyncio.sleep(self.settle_delay)
        self.logger.info("Cancelled all scheduled notifications")

    async def handle_action(self, action_id: str) -> Optional[str]:
        """React to a notification action button. Returns the id of a follow-up trigger, if any."""
        if action_id in (ACTION_DEFAULT, ACTION_DISMISS):
            return None
        if action_id != ACTION_SNOOZE:
            self.logger.warning(f"Ignoring unknown notification action: {action_id}")
            return None
        minutes = round(self.snooze_seconds / 60)
        trigger_id = await self.backend.install_one_shot(
            self.snooze_seconds,
            NotificationContent(
                title="Prayer Reminder",
                body=f"Will remind you again in {minutes} minutes.",
                category_id=CATEGORY_SNOOZE,
                channel_id=NOTIF_CHANNEL.id,
            ),
        )
        self.logger.info(f"Snoozed: follow-up in {self.snooze_seconds}s")
        return trigger_id
