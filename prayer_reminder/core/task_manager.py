"""
Single place for scheduling: the asyncio loop every pipeline coroutine runs on,
and DB-backed registered background tasks.
"""
import asyncio
import logging
import threading
from concurrent.futures import Future
from datetime import datetime, timezone
from typing import Any, Awaitable, Dict, List, Optional

from prayer_reminder.core.task import (
    BackgroundResult,
    BackgroundTask,
    get_next_run_from_db,
    update_after_run,
    upsert_task_schedule,
)


class TaskManager:
    def __init__(self):
        self.logger = logging.getLogger("TaskManager")
        self._registered_tasks: Dict[str, BackgroundTask] = {}
        self._registration_lock = threading.Lock()
        self.timers: Dict[str, asyncio.TimerHandle] = {}
        self._setup_async_loop()

    def _setup_async_loop(self) -> None:
        """Setup async event loop in background thread."""
        self.async_loop = asyncio.new_event_loop()

        def run_async_loop():
            asyncio.set_event_loop(self.async_loop)
            self.async_loop.run_forever()

        self.async_thread = threading.Thread(target=run_async_loop, daemon=True)
        self.async_thread.start()

    def submit(self, coro: Awaitable[Any]) -> Future:
        """Run a coroutine on the manager's loop from any thread."""
        return asyncio.run_coroutine_threadsafe(coro, self.async_loop)

    def run_sync(self, coro: Awaitable[Any], timeout: Optional[float] = None) -> Any:
        """Run a coroutine on the manager's loop and block until it finishes."""
        return self.submit(coro).result(timeout)

    def is_task_registered(self, name: str) -> bool:
        return name in self._registered_tasks

    def register_task(self, task: BackgroundTask) -> bool:
        """Register a background task and schedule its first run. Returns False if already registered."""
        with self._registration_lock:
            if task.name in self._registered_tasks:
                self.logger.debug(f"Task already registered: {task.name}")
                return False
            self._registered_tasks[task.name] = task
        upsert_task_schedule(task.name, task.minimum_interval)
        self.logger.info(f"Registered background task {task.name} (minimum interval {task.minimum_interval}s)")
        self._schedule_registered_task(task.name)
        return True

    def unregister_task(self, name: str) -> None:
        with self._registration_lock:
            self._registered_tasks.pop(name, None)
        self.async_loop.call_soon_threadsafe(self._cancel_timer, name)

    def _cancel_timer(self, name: str) -> None:
        handle = self.timers.pop(name, None)
        if handle:
            handle.cancel()

    def _schedule_registered_task(self, name: str) -> None:
        """Arm a timer for next_run from DB (or immediately if null or past due)."""
        next_run = get_next_run_from_db(name)
        now = datetime.now(timezone.utc).replace(tzinfo=None)
        if next_run is None:
            delay = 0.0
        else:
            delay = max(0.0, (next_run - now).total_seconds())
        self.logger.info(f"Scheduling task {name} with delay {int(delay)} seconds")
        self.async_loop.call_soon_threadsafe(self._arm_timer, name, delay)

    def _arm_timer(self, name: str, delay: float) -> None:
        self._cancel_timer(name)
        self.timers[name] = self.async_loop.call_later(
            delay, lambda: self.async_loop.create_task(self._run_and_reschedule(name))
        )

    async def _execute(self, task: BackgroundTask) -> BackgroundResult:
        error = None
        try:
            result = await task.run()
        except Exception as e:
            self.logger.exception(f"Background task {task.name} raised: {e}")
            result = BackgroundResult.FAILED
            error = str(e)
        if result == BackgroundResult.FAILED and error is None:
            error = getattr(task, "last_error", None)
        next_run = await asyncio.to_thread(update_after_run, task.name, result, error)
        self.logger.info(f"Background task {task.name} finished: {result.value}, next run at {next_run} UTC")
        return result

    async def _run_and_reschedule(self, name: str) -> None:
        self.timers.pop(name, None)
        task = self._registered_tasks.get(name)
        if task is None:
            return
        await self._execute(task)
        if name in self._registered_tasks:
            self._schedule_registered_task(name)

    async def run_task_now(self, name: str) -> Optional[BackgroundResult]:
        """Run a registered task once immediately. Does not move the periodic timer."""
        task = self._registered_tasks.get(name)
        if not task:
            self.logger.warning(f"No task registered with name: {name}")
            return None
        return await self._execute(task)

    def get_active_timers(self) -> List[Dict[str, Any]]:
        """Return armed timer names and their next run time (for API)."""
        result = []
        loop_now = self.async_loop.time()
        wall_now = datetime.now(timezone.utc).timestamp()
        for name, handle in list(self.timers.items()):
            run_at = wall_now + (handle.when() - loop_now)
            result.append({"name": name, "next_run_at": datetime.fromtimestamp(run_at, tz=timezone.utc)})
        return result

    def stop(self) -> None:
        """Cancel timers and stop the loop."""
        def _shutdown():
            for handle in self.timers.values():
                handle.cancel()
            self.timers.clear()
            self.async_loop.stop()

        if self.async_thread.is_alive():
            self.async_loop.call_soon_threadsafe(_shutdown)
            self.async_thread.join(timeout=5)
