import asyncio
import logging
import sys
import threading
from datetime import timezone
from typing import Any, Dict, Optional

from .config import Config
from .db import init_db
from .models import get_all_task_schedules
from .task_manager import TaskManager
from prayer_reminder.prayer.errors import PermissionDenied, PrayerReminderError
from prayer_reminder.prayer.location import create_location_provider
from prayer_reminder.prayer.models import JurisprudenceSchool, ScheduleState
from prayer_reminder.prayer.notifications import LocalNotificationBackend
from prayer_reminder.prayer.prayer_base import AladhanBackend
from prayer_reminder.prayer.scheduler import TriggerScheduler
from prayer_reminder.prayer.service import RefreshOrchestrator, next_prayer
from prayer_reminder.prayer.store import StateStore
from prayer_reminder.prayer.task import PrayerRefreshTask
from prayer_reminder.prayer.timeutils import timezone_mismatch


class ReminderApp:
    def __init__(self, config_path: Optional[str] = None, watch_config: bool = True):
        self.logger = logging.getLogger(self.__class__.__name__)

        self.config = Config(config_path=config_path, watch=watch_config)
        self.config.register_change_callback(self.handle_config_change)

        self._setup_logging()

        # Initialize database (before services so tables exist)
        init_db(self.config.data)

        self.task_manager = TaskManager()
        self.last_error: Optional[str] = None
        self._stop_event = threading.Event()
        self._dispatcher_stop: Optional[asyncio.Event] = None

        self._build_services()

    def _setup_logging(self):
        """Configure logging to write to both file and stdout"""
        root_logger = logging.getLogger()
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
        level = self.config.get_section("logging")["level"]
        root_logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))

        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
        )

        log_file = self.config.get_section("logging").get("file")
        if log_file:
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

        logging.info("Prayer reminder starting...")

    def _build_services(self) -> None:
        prayer_config = self.config.get_section("prayer")
        notif_config = self.config.get_section("notifications")

        self.location = create_location_provider(self.config.get_section("location"))
        self.source = AladhanBackend(prayer_config)
        self.store = StateStore()
        self.notifications = LocalNotificationBackend(notif_config)
        self.scheduler = TriggerScheduler(
            self.notifications,
            settle_delay=float(notif_config["settle_delay"]),
            snooze_seconds=int(notif_config["snooze_seconds"]),
        )
        self.orchestrator = RefreshOrchestrator(
            self.location,
            self.source,
            self.store,
            self.scheduler,
            default_method=int(prayer_config["calculation_method"]),
            default_school=JurisprudenceSchool.parse(prayer_config["school"]),
        )
        self.refresh_task = PrayerRefreshTask(
            self.orchestrator,
            minimum_interval=self.config.get_section("background")["minimum_interval"],
        )

    async def request_permissions(self) -> None:
        if not await self.location.request_permission():
            raise PermissionDenied("Location permission denied")
        if not await self.notifications.request_permission():
            raise PermissionDenied("Notification permission denied")

    async def initialize(self) -> Optional[ScheduleState]:
        """Foreground initializer: permissions, the shared staleness check, then the background task.

        A refused permission stops here; the background task is only
        registered once both permissions are granted.
        """
        try:
            await self.request_permissions()
        except PermissionDenied as e:
            self.last_error = str(e)
            self.logger.error(f"Initialization stopped: {e}")
            return None

        state = None
        try:
            await self.scheduler.register_categories()
            state, outcome = await self.orchestrator.ensure_schedule()
            self.logger.info(f"Initialized: {outcome.value} schedule for {state.schedule_date}")
            self.last_error = None
        except PrayerReminderError as e:
            self.last_error = str(e)
            self.logger.error(f"Initialization failed: {e}")
        # Registered last so its first run sees the schedule built above
        if not self.task_manager.is_task_registered(self.refresh_task.name):
            await asyncio.to_thread(self.task_manager.register_task, self.refresh_task)
        return state

    async def manual_refresh(self, method: Optional[int] = None, school: Any = None) -> ScheduleState:
        """Refresh now regardless of staleness. Errors propagate to the caller."""
        state = await self.store.load()
        method, school = self.orchestrator.settings_for(state, method, school)
        try:
            new_state = await self.orchestrator.refresh(method, school)
        except PrayerReminderError as e:
            self.last_error = str(e)
            raise
        self.last_error = None
        return new_state

    async def clear(self) -> None:
        """Cancel every scheduled notification. The stored schedule is kept."""
        await self.scheduler.cancel_all()

    async def status(self) -> Dict[str, Any]:
        state = await self.store.load()
        installed = await self.notifications.list_installed()
        result: Dict[str, Any] = {
            "state": state.model_dump(mode="json") if state else None,
            "installed": [
                {
                    "id": t.id,
                    "kind": t.kind,
                    "title": t.content.title,
                    "time": f"{t.hour:02d}:{t.minute:02d}" if t.hour is not None else None,
                    "fire_at": t.fire_at.isoformat() if t.fire_at else None,
                }
                for t in installed
            ],
            "next_prayer": None,
            "timezone_mismatch": None,
            "last_error": self.last_error,
            "background": await asyncio.to_thread(self._background_schedule),
        }
        if state:
            name, at = next_prayer(state)
            result["next_prayer"] = {"name": name, "at": at.isoformat()}
            result["timezone_mismatch"] = timezone_mismatch(state.timezone)
        return result

    def _background_schedule(self) -> Optional[Dict[str, Any]]:
        """The refresh task's persisted schedule, datetimes as ISO strings (UTC)."""
        for row in get_all_task_schedules():
            if row["task_name"] == self.refresh_task.name:
                for key in ("next_run_at", "last_run_at"):
                    if row[key] is not None:
                        row[key] = row[key].replace(tzinfo=timezone.utc).isoformat()
                return row
        return None

    def handle_config_change(self, old_config: Dict[str, Any], new_config: Dict[str, Any]) -> None:
        """Refresh with the new settings when the calculation method or school changed"""
        old_prayer = old_config.get("prayer") or {}
        new_prayer = new_config.get("prayer") or {}
        keys = ("calculation_method", "school")
        if all(old_prayer.get(k) == new_prayer.get(k) for k in keys):
            return
        self.logger.info("Prayer settings changed - refreshing schedule")
        prayer_config = self.config.get_section("prayer")
        self.orchestrator.default_method = int(prayer_config["calculation_method"])
        self.orchestrator.default_school = JurisprudenceSchool.parse(prayer_config["school"])
        future = self.task_manager.submit(
            self.manual_refresh(prayer_config["calculation_method"], prayer_config["school"])
        )
        future.add_done_callback(self._log_future_error)

    def _log_future_error(self, future) -> None:
        error = future.exception()
        if error:
            self.logger.error(f"Refresh after config change failed: {error}")

    def _start_dispatcher(self) -> None:
        async def _run():
            self._dispatcher_stop = asyncio.Event()
            await self.notifications.run_dispatcher(self._dispatcher_stop)

        self.task_manager.submit(_run())

    def stop(self) -> None:
        self._stop_event.set()

    def run(self):
        try:
            self.task_manager.run_sync(self.initialize())
            self._start_dispatcher()

            # Start API server if enabled (api.enabled in config)
            from prayer_reminder.api.server import run_api_server
            run_api_server(self)

            self._stop_event.wait()
        except KeyboardInterrupt:
            self.logger.info("Interrupted, shutting down")
        finally:
            if self._dispatcher_stop is not None:
                self.task_manager.async_loop.call_soon_threadsafe(self._dispatcher_stop.set)
            self.task_manager.stop()
            self.config.cleanup()
