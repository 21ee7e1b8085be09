"""
Background task: keep today's schedule current on the host scheduler's cadence.
"""
from prayer_reminder.core.task import BackgroundResult, BackgroundTask

from .service import RefreshOrchestrator, ScheduleOutcome

TASK_NAME = "PRAYER_TIMES_REFRESH"


class PrayerRefreshTask(BackgroundTask):
    """Refresh after midnight, reinstall if the triggers were purged, otherwise nothing."""

    name = TASK_NAME

    def __init__(self, orchestrator: RefreshOrchestrator, minimum_interval: int = 3 * 60 * 60):
        super().__init__()
        self.orchestrator = orchestrator
        self.minimum_interval = int(minimum_interval)
        self.last_error = None

    async def run(self) -> BackgroundResult:
        try:
            _, outcome = await self.orchestrator.ensure_schedule()
        except Exception as e:
            self.last_error = str(e)
            self.logger.error(f"[BG] failed: {e}")
            return BackgroundResult.FAILED
        self.last_error = None
        if outcome in (ScheduleOutcome.UNCHANGED, ScheduleOutcome.DEFERRED):
            return BackgroundResult.NO_DATA
        return BackgroundResult.NEW_DATA
