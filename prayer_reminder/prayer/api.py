"""
API for the prayer schedule. Mounted at /api/prayer/.
Every pipeline call runs on the task manager's loop.
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from .errors import (
    LocationUnavailable,
    PermissionDenied,
    PersistenceError,
    PrayerReminderError,
    SourceDataInvalid,
    SourceUnavailable,
)
from .models import ScheduleState

REQUEST_TIMEOUT = 60

_STATUS_CODES = {
    PermissionDenied: 403,
    LocationUnavailable: 503,
    SourceUnavailable: 502,
    SourceDataInvalid: 502,
    PersistenceError: 500,
}


class RefreshRequest(BaseModel):
    method: Optional[int] = None
    school: Optional[str] = None


class StatusResponse(BaseModel):
    state: Optional[ScheduleState] = None
    installed: List[Dict[str, Any]] = []
    next_prayer: Optional[Dict[str, Any]] = None
    timezone_mismatch: Optional[bool] = None
    last_error: Optional[str] = None
    background: Optional[Dict[str, Any]] = None


def _http_error(error: PrayerReminderError) -> HTTPException:
    status_code = next(
        (code for cls, code in _STATUS_CODES.items() if isinstance(error, cls)), 500
    )
    return HTTPException(status_code=status_code, detail=str(error))


def get_router(reminder_app) -> APIRouter:
    """Return router for the prayer schedule; mounted with prefix /api/prayer."""
    router = APIRouter(tags=["Prayer Times"])

    def run(coro):
        try:
            return reminder_app.task_manager.run_sync(coro, timeout=REQUEST_TIMEOUT)
        except PrayerReminderError as e:
            raise _http_error(e) from e

    @router.get("/state", response_model=ScheduleState)
    def get_state() -> ScheduleState:
        """Return the persisted schedule."""
        state = run(reminder_app.store.load())
        if state is None:
            raise HTTPException(status_code=404, detail="No prayer times data available")
        return state

    @router.get("/status", response_model=StatusResponse)
    def get_status() -> StatusResponse:
        return StatusResponse.model_validate(run(reminder_app.status()))

    @router.post("/refresh", response_model=ScheduleState)
    def refresh(request: Optional[RefreshRequest] = None) -> ScheduleState:
        """Fetch today's times and rebuild all notifications now."""
        request = request or RefreshRequest()
        try:
            return run(reminder_app.manual_refresh(request.method, request.school))
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e

    @router.post("/clear")
    def clear() -> Dict[str, str]:
        """Cancel all scheduled notifications; the stored schedule is kept."""
        run(reminder_app.clear())
        return {"status": "cleared"}

    @router.post("/actions/{action_id}")
    def notification_action(action_id: str) -> Dict[str, Optional[str]]:
        """Handle a notification action button (remind later / dismiss)."""
        trigger_id = run(reminder_app.scheduler.handle_action(action_id))
        return {"action": action_id, "trigger_id": trigger_id}

    return router
