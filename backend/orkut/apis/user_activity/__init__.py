"""
User Activity API

Records user activities in a JSON file committed to GitHub, with a local copy:
- Record an activity (guarded by the attempt counter)
- Attempt counter status and reset
- Local activity list and statistics
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from orkut.libs.activity_ledger import (
    ActivityLedger,
    AttemptGuard,
    AttemptsExhausted,
    LedgerNotConfigured,
    LedgerSettings,
    LedgerWriteError,
    LocalActivityStore,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

router = APIRouter()

attempt_guard = AttemptGuard()
_local_store: Optional[LocalActivityStore] = None


def get_attempt_guard() -> AttemptGuard:
    return attempt_guard


def get_local_store() -> LocalActivityStore:
    global _local_store
    if _local_store is None:
        _local_store = LocalActivityStore()
    return _local_store


def get_ledger() -> ActivityLedger:
    return ActivityLedger(LedgerSettings.from_env())


# Request/Response Models
class ActivityRequest(BaseModel):
    """Activity to record"""
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = Field(None, alias="userId")
    action: Optional[str] = None
    data: Optional[Any] = None
    entry_id: Optional[str] = Field(None, alias="entryId", description="Client key; repeating it does not add a second entry")


@router.post("/user-activity")
def record_activity(
    request: ActivityRequest,
    guard: AttemptGuard = Depends(get_attempt_guard),
    store: LocalActivityStore = Depends(get_local_store),
    ledger: ActivityLedger = Depends(get_ledger),
):
    """
    Record a user activity and commit it to GitHub

    The activity is saved locally first. Each GitHub write counts as an
    attempt; after MAX_ATTEMPTS consecutive failures the endpoint answers 429
    until a reset.
    """
    if not request.user_id or not request.action:
        raise HTTPException(status_code=400, detail={"error": "userId and action are required"})

    try:
        attempts = guard.acquire()
    except AttemptsExhausted as e:
        raise HTTPException(status_code=429, detail={
            "error": "Attempt limit exceeded",
            "message": f"Maximum of {e.max_attempts} attempts reached. Wait before trying again.",
            "attempts": e.attempts,
        })

    activity = store.record(request.user_id, request.action, request.data, entry_id=request.entry_id)

    try:
        result = ledger.record(request.user_id, request.action, request.data, entry_id=activity["id"])
    except (LedgerNotConfigured, LedgerWriteError) as e:
        logger.error("Error updating GitHub: %s", e)
        body = {
            "error": "GitHub update failed",
            "message": str(e),
            "attempts": attempts,
            "localDataSaved": True,
            "willRetry": attempts < guard.max_attempts,
        }
        if attempts >= guard.max_attempts:
            body["message"] = f"Limit of {guard.max_attempts} attempts exceeded. Stopping attempts."
        return JSONResponse(status_code=500, content=body)

    guard.reset()
    return {
        "success": True,
        "message": "Activity recorded and GitHub page updated",
        "githubResult": result,
        "attempts": guard.count,
        "localDataSaved": True,
    }


@router.get("/user-activity")
def activity_status(guard: AttemptGuard = Depends(get_attempt_guard)):
    """Attempt counter status and GitHub configuration summary"""
    return {**guard.status(), "environment": LedgerSettings.from_env().summary()}


@router.post("/user-activity/reset")
def reset_attempts(guard: AttemptGuard = Depends(get_attempt_guard)):
    """Reset the attempt counter"""
    guard.reset()
    return {
        "message": "Attempt counter reset",
        "currentAttempts": guard.count,
        "resetTime": guard.last_reset_time,
    }


@router.get("/user-activity/reset")
def reset_attempts_wrong_method():
    return JSONResponse(status_code=405, content={"message": "Use POST to reset the attempt counter"})


@router.get("/user-activity/local")
def local_activities(user_id: Optional[str] = None, store: LocalActivityStore = Depends(get_local_store)):
    """Activities stored locally, optionally for a single user"""
    activities = store.activities(user_id)
    return {"activities": activities, "total": len(activities)}


@router.get("/user-activity/stats")
def activity_stats(
    guard: AttemptGuard = Depends(get_attempt_guard),
    store: LocalActivityStore = Depends(get_local_store),
):
    """Local activity statistics"""
    return {
        **store.stats(),
        "attemptCount": guard.count,
        "lastResetTime": guard.last_reset_time,
        "timestamp": utc_now_iso(),
    }
