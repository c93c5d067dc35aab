"""
Call lifecycle rules.

A call row starts as ``ringing``. The receiver accepts (``connected``) or
declines it, nobody answers in time (``missed``), or the caller hangs up
(``ended``). A connected call can only end. Media transport itself happens
peer to peer in the browsers; the server only keeps the row consistent.
"""

import time
from datetime import datetime
from typing import Optional

from orkut.libs.models import CallStatus, CallType


class InvalidTransition(Exception):
    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move call from '{current}' to '{target}'")


TRANSITIONS = {
    CallStatus.RINGING: {CallStatus.CONNECTED, CallStatus.DECLINED, CallStatus.MISSED, CallStatus.ENDED},
    CallStatus.CONNECTED: {CallStatus.ENDED},
    CallStatus.ENDED: set(),
    CallStatus.DECLINED: set(),
    CallStatus.MISSED: set(),
}

ACTIVE_STATUSES = (CallStatus.RINGING.value, CallStatus.CONNECTED.value)


def can_transition(current: str, target: str) -> bool:
    try:
        return CallStatus(target) in TRANSITIONS[CallStatus(current)]
    except ValueError:
        return False


def ensure_transition(current: str, target: str) -> CallStatus:
    if not can_transition(current, target):
        raise InvalidTransition(current, target)
    return CallStatus(target)


def generate_call_id(user_a: str, user_b: str, call_type: CallType, now_ms: Optional[int] = None) -> str:
    """Same pair and type sort to the same prefix regardless of who calls."""
    first, second = sorted([user_a, user_b])
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"call_{CallType(call_type).value}_{first}_{second}_{now_ms}"


def call_duration(answered_at: Optional[datetime], ended_at: datetime) -> int:
    if answered_at is None:
        return 0
    return max(0, int((ended_at - answered_at).total_seconds()))


def format_duration(seconds: Optional[int]) -> str:
    seconds = max(0, int(seconds or 0))
    mins, secs = divmod(seconds, 60)
    return f"{mins:02d}:{secs:02d}"
