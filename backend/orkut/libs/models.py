"""
Database Models for the Orkut clone

This module contains the status enums and Pydantic response models for the hosted database schema.
The schema itself (tables, row-level security, triggers) is owned by the database provider;
these models are used for type safety and for the status rules the route handlers enforce.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel


# =============================================================================
# ENUMS
# =============================================================================


class FriendshipStatus(str, Enum):
    """Friendship status values"""
    PENDING = "pending"
    ACCEPTED = "accepted"
    BLOCKED = "blocked"


class FriendshipAction(str, Enum):
    """Actions an addressee can take on a friend request"""
    ACCEPT = "accept"
    REJECT = "reject"


class CallType(str, Enum):
    """Call type values"""
    AUDIO = "audio"
    VIDEO = "video"


class CallStatus(str, Enum):
    """Call status values"""
    RINGING = "ringing"
    CONNECTED = "connected"
    ENDED = "ended"
    DECLINED = "declined"
    MISSED = "missed"


class CommunityVisibility(str, Enum):
    """Community visibility values"""
    PUBLIC = "public"
    PRIVATE = "private"
    RESTRICTED = "restricted"


class NotificationType(str, Enum):
    """Notification type values"""
    FRIEND_REQUEST = "friend_request"
    FRIEND_ACCEPTED = "friend_accepted"
    CALL = "call"
    MESSAGE = "message"


# Schema only allows 'pending', 'accepted', 'blocked'; a rejected request becomes blocked.
FRIENDSHIP_TRANSITIONS: dict[FriendshipStatus, dict[FriendshipAction, FriendshipStatus]] = {
    FriendshipStatus.PENDING: {
        FriendshipAction.ACCEPT: FriendshipStatus.ACCEPTED,
        FriendshipAction.REJECT: FriendshipStatus.BLOCKED,
    },
    FriendshipStatus.ACCEPTED: {},
    FriendshipStatus.BLOCKED: {},
}


def next_friendship_status(current: str, action: str) -> Optional[FriendshipStatus]:
    """Return the status a friendship moves to, or None if the action is not allowed."""
    try:
        return FRIENDSHIP_TRANSITIONS[FriendshipStatus(current)].get(FriendshipAction(action))
    except ValueError:
        return None


# =============================================================================
# API RESPONSE MODELS (using Pydantic for validation)
# =============================================================================


class ProfileSummary(BaseModel):
    """Public part of a profile embedded in other responses"""
    id: str
    display_name: Optional[str] = None
    username: Optional[str] = None
    photo_url: Optional[str] = None
    bio: Optional[str] = None


class FriendResponse(BaseModel):
    """A friendship seen from the current user's side"""
    friendship_id: str
    friend_id: str
    friend_display_name: Optional[str]
    friend_username: Optional[str]
    friend_photo_url: Optional[str]
    friend_bio: Optional[str]
    friendship_date: datetime
    status: str


class FriendRequestResponse(BaseModel):
    """Pending friend request with the other party's profile"""
    id: str
    requester_id: str
    addressee_id: str
    status: str
    created_at: datetime
    profile: Optional[ProfileSummary] = None


class CommunityResponse(BaseModel):
    """Response model for a community"""
    id: str
    name: str
    description: str
    category: str
    photo_url: Optional[str] = None
    members_count: int = 0
    owner: Optional[str] = None
    visibility: str = CommunityVisibility.PUBLIC.value
    join_approval_required: bool = False
    rules: Optional[str] = None
    welcome_message: Optional[str] = None
    tags: list[str] = []
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CallResponse(BaseModel):
    """Response model for a call record"""
    id: str
    caller_id: str
    receiver_id: str
    call_type: str
    status: str
    caller_info: Optional[dict[str, Any]] = None
    started_at: Optional[datetime] = None
    answered_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration_seconds: Optional[int] = None


class MessageResponse(BaseModel):
    """Response model for a direct message"""
    id: int
    from_profile_id: str
    to_profile_id: str
    content: str
    created_at: datetime
    read_at: Optional[datetime] = None
