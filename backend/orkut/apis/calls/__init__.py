"""
Calls API - audio/video call records.

The browsers negotiate media directly with each other; this API keeps the
``calls`` row in step with what they are doing and notifies the receiver:

    ringing -> connected -> ended
    ringing -> declined | missed | ended
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Set

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from orkut.auth import AuthorizedUser, User
from orkut.libs import config
from orkut.libs.call_state import (
    ACTIVE_STATUSES,
    InvalidTransition,
    call_duration,
    ensure_transition,
    format_duration,
    generate_call_id,
)
from orkut.libs.database import DbConnection, get_db_connection
from orkut.libs.models import CallResponse, CallStatus, CallType, NotificationType

logger = logging.getLogger(__name__)

router = APIRouter()


# Pydantic Models

class StartCallRequest(BaseModel):
    """Request to start a call"""
    receiver_id: str = Field(..., min_length=1)
    call_type: CallType = CallType.AUDIO
    offer: Optional[Dict[str, Any]] = Field(None, description="Session description forwarded to the receiver")


class EndCallRequest(BaseModel):
    duration_seconds: Optional[int] = Field(None, ge=0)


class SweepRequest(BaseModel):
    timeout_seconds: Optional[int] = Field(None, ge=1)


class CallDetail(CallResponse):
    duration_display: str


# No-answer timers

class MissedCallScheduler:
    """Marks a ringing call as missed when nobody answers in time."""

    def __init__(self):
        self._handles: Dict[str, asyncio.TimerHandle] = {}
        self._tasks: Set[asyncio.Task] = set()

    def schedule(self, call_id: str, timeout_seconds: int) -> None:
        self.cancel(call_id)
        loop = asyncio.get_running_loop()
        self._handles[call_id] = loop.call_later(timeout_seconds, self._start_expire, call_id)

    def _start_expire(self, call_id: str) -> None:
        task = asyncio.ensure_future(self._expire(call_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def cancel(self, call_id: str) -> None:
        handle = self._handles.pop(call_id, None)
        if handle:
            handle.cancel()

    def cancel_all(self) -> None:
        for call_id in list(self._handles):
            self.cancel(call_id)
        for task in list(self._tasks):
            task.cancel()

    async def _expire(self, call_id: str) -> None:
        self._handles.pop(call_id, None)
        try:
            conn = await get_db_connection()
            try:
                result = await conn.fetchval(
                    """
                    UPDATE calls SET status = 'missed', ended_at = NOW()
                    WHERE id = $1 AND status = 'ringing'
                    RETURNING id
                    """,
                    call_id
                )
            finally:
                await conn.close()
        except Exception:
            logger.exception("Failed to expire call %s", call_id)
            return
        if result:
            logger.info("Call %s marked as missed after timeout", call_id)


missed_call_scheduler = MissedCallScheduler()


def get_missed_call_scheduler() -> MissedCallScheduler:
    return missed_call_scheduler


# Helper Functions

def _error(status_code: int, error: str, message: str, **extra) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"error": error, "message": message, **extra})


def _call_from_row(row) -> CallResponse:
    data = dict(row)
    for key in ("id", "caller_id", "receiver_id"):
        data[key] = str(data[key])
    return CallResponse(**data)


async def _load_call_for(conn, call_id: str, user: User):
    row = await conn.fetchrow("SELECT * FROM calls WHERE id = $1", call_id)
    if not row:
        raise _error(404, "call_not_found", "Call not found")
    if user.sub not in (str(row["caller_id"]), str(row["receiver_id"])):
        raise _error(403, "forbidden", "You are not a participant of this call")
    return row


async def _transition(conn, row, target: CallStatus, **columns) -> CallResponse:
    try:
        ensure_transition(row["status"], target.value)
    except InvalidTransition as e:
        raise _error(409, "invalid_transition", str(e), currentStatus=row["status"])

    assignments = ", ".join(f"{column} = ${i}" for i, column in enumerate(columns, start=2))
    sql = "UPDATE calls SET status = $1"
    if assignments:
        sql += ", " + assignments
    sql += f" WHERE id = ${len(columns) + 2} AND status = ${len(columns) + 3} RETURNING *"

    updated = await conn.fetchrow(sql, target.value, *columns.values(), row["id"], row["status"])
    if not updated:
        # status changed between our read and this update
        raise _error(409, "call_state_changed", "Call was updated by someone else, reload it")
    logger.info("Call %s: %s -> %s", row["id"], row["status"], target.value)
    return _call_from_row(updated)


# API Endpoints

@router.post("/calls", response_model=CallResponse)
async def start_call(
    request: StartCallRequest,
    user: AuthorizedUser,
    conn: DbConnection,
    scheduler: MissedCallScheduler = Depends(get_missed_call_scheduler),
):
    """
    Start a call to another user.

    Creates the ``ringing`` row, notifies the receiver (with the caller's
    session-description offer, when given) and starts the no-answer timer.
    """
    if request.receiver_id == user.sub:
        raise _error(400, "self_call", "You cannot call yourself")

    receiver = await conn.fetchrow(
        "SELECT id, display_name, username, photo_url FROM profiles WHERE id = $1",
        request.receiver_id
    )
    if not receiver:
        raise _error(404, "user_not_found", "Receiver not found")

    busy = await conn.fetchval(
        """
        SELECT id FROM calls
        WHERE status = ANY($3::text[])
          AND (caller_id IN ($1, $2) OR receiver_id IN ($1, $2))
        LIMIT 1
        """,
        user.sub,
        request.receiver_id,
        list(ACTIVE_STATUSES)
    )
    if busy:
        raise _error(409, "busy", "One of the participants is already in a call", callId=str(busy))

    caller = await conn.fetchrow(
        "SELECT id, display_name, username, photo_url FROM profiles WHERE id = $1",
        user.sub
    )
    caller_info = {
        "id": user.sub,
        "name": (caller and caller["display_name"]) or user.display_name or user.email or "User",
        "photo": caller["photo_url"] if caller else None,
        "username": caller["username"] if caller else None,
    }

    call_id = generate_call_id(user.sub, request.receiver_id, request.call_type)
    started_at = datetime.now(timezone.utc)

    async with conn.transaction():
        row = await conn.fetchrow(
            """
            INSERT INTO calls (id, caller_id, receiver_id, call_type, status, caller_info, started_at)
            VALUES ($1, $2, $3, $4, 'ringing', $5, $6)
            RETURNING *
            """,
            call_id,
            user.sub,
            request.receiver_id,
            request.call_type.value,
            caller_info,
            started_at
        )
        await conn.execute(
            """
            INSERT INTO notifications (profile_id, type, payload, read)
            VALUES ($1, $2, $3, FALSE)
            """,
            request.receiver_id,
            NotificationType.CALL.value,
            {
                "call_id": call_id,
                "call_type": request.call_type.value,
                "caller": caller_info,
                "offer": request.offer,
            }
        )

    scheduler.schedule(call_id, config.call_timeout_seconds())
    logger.info("Call %s created: %s -> %s (%s)", call_id, user.sub, request.receiver_id, request.call_type.value)
    return _call_from_row(row)


@router.post("/calls/timeout/sweep")
async def sweep_timed_out_calls(request: SweepRequest, user: AuthorizedUser, conn: DbConnection):
    """Mark every call that has been ringing longer than the timeout as missed."""
    timeout_seconds = request.timeout_seconds or config.call_timeout_seconds()
    cutoff = datetime.now(timezone.utc) - timedelta(seconds=timeout_seconds)
    rows = await conn.fetch(
        """
        UPDATE calls SET status = 'missed', ended_at = NOW()
        WHERE status = 'ringing' AND started_at < $1
        RETURNING id
        """,
        cutoff
    )
    logger.info("Timeout sweep by %s marked %d calls as missed", user.sub, len(rows))
    return {"success": True, "timeoutSeconds": timeout_seconds, "updatedCount": len(rows)}


@router.get("/calls/history", response_model=List[CallResponse])
async def call_history(user: AuthorizedUser, conn: DbConnection, limit: int = Query(50, ge=1, le=100)):
    """Calls the current user made or received, newest first."""
    rows = await conn.fetch(
        """
        SELECT * FROM calls
        WHERE caller_id = $1 OR receiver_id = $1
        ORDER BY started_at DESC
        LIMIT $2
        """,
        user.sub,
        limit
    )
    return [_call_from_row(r) for r in rows]


@router.get("/calls/{call_id}", response_model=CallDetail)
async def get_call(call_id: str, user: AuthorizedUser, conn: DbConnection):
    row = await _load_call_for(conn, call_id, user)
    call = _call_from_row(row)
    return CallDetail(**call.model_dump(), duration_display=format_duration(call.duration_seconds))


@router.post("/calls/{call_id}/accept", response_model=CallResponse)
async def accept_call(
    call_id: str,
    user: AuthorizedUser,
    conn: DbConnection,
    scheduler: MissedCallScheduler = Depends(get_missed_call_scheduler),
):
    row = await _load_call_for(conn, call_id, user)
    if str(row["receiver_id"]) != user.sub:
        raise _error(403, "forbidden", "Only the receiver can accept a call")

    call = await _transition(conn, row, CallStatus.CONNECTED, answered_at=datetime.now(timezone.utc))
    scheduler.cancel(call_id)
    return call


@router.post("/calls/{call_id}/decline", response_model=CallResponse)
async def decline_call(
    call_id: str,
    user: AuthorizedUser,
    conn: DbConnection,
    scheduler: MissedCallScheduler = Depends(get_missed_call_scheduler),
):
    row = await _load_call_for(conn, call_id, user)
    if str(row["receiver_id"]) != user.sub:
        raise _error(403, "forbidden", "Only the receiver can decline a call")

    call = await _transition(conn, row, CallStatus.DECLINED, ended_at=datetime.now(timezone.utc))
    scheduler.cancel(call_id)
    return call


@router.post("/calls/{call_id}/end", response_model=CallDetail)
async def end_call(
    call_id: str,
    user: AuthorizedUser,
    conn: DbConnection,
    request: Optional[EndCallRequest] = None,
    scheduler: MissedCallScheduler = Depends(get_missed_call_scheduler),
):
    """
    Hang up. Either participant may end the call.

    The duration is measured from answered_at (0 for a call that never
    connected) unless the client reports its own.
    """
    row = await _load_call_for(conn, call_id, user)
    ended_at = datetime.now(timezone.utc)
    duration = request.duration_seconds if request and request.duration_seconds is not None else None
    if duration is None:
        duration = call_duration(row["answered_at"], ended_at)

    call = await _transition(conn, row, CallStatus.ENDED, ended_at=ended_at, duration_seconds=duration)
    scheduler.cancel(call_id)
    return CallDetail(**call.model_dump(), duration_display=format_duration(duration))


@router.post("/calls/{call_id}/missed", response_model=CallResponse)
async def mark_call_missed(
    call_id: str,
    user: AuthorizedUser,
    conn: DbConnection,
    scheduler: MissedCallScheduler = Depends(get_missed_call_scheduler),
):
    """Client-side no-answer timeout fired."""
    row = await _load_call_for(conn, call_id, user)
    call = await _transition(conn, row, CallStatus.MISSED, ended_at=datetime.now(timezone.utc))
    scheduler.cancel(call_id)
    return call
