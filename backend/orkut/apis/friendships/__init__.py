"""Friendships API - friend lists, requests, accept/reject and removal."""

import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from orkut.auth import AuthorizedUser
from orkut.libs.database import DbConnection
from orkut.libs.models import (
    FriendRequestResponse,
    FriendResponse,
    FriendshipStatus,
    NotificationType,
    ProfileSummary,
    next_friendship_status,
)

logger = logging.getLogger(__name__)

router = APIRouter()

LIST_TYPES = ("all", "friends", "pending_received", "pending_sent")


# Pydantic Models

class FriendRequestCreate(BaseModel):
    """Request model for sending a friend request."""
    addressee_id: Optional[str] = None


class FriendRequestAnswer(BaseModel):
    """Request model for accepting or rejecting a pending request."""
    friendship_id: Optional[str] = None
    action: Optional[str] = None


class FriendAcceptRequest(BaseModel):
    """Accept a request straight from a notification."""
    model_config = ConfigDict(populate_by_name=True)

    requester_id: Optional[str] = Field(None, alias="requesterId")
    addressee_id: Optional[str] = Field(None, alias="addresseeId")
    notification_id: Optional[str] = Field(None, alias="notificationId")
    from_user: Optional[dict] = Field(None, alias="fromUser")


class FriendshipLists(BaseModel):
    friends: Optional[List[FriendResponse]] = None
    pending_received: Optional[List[FriendRequestResponse]] = None
    pending_sent: Optional[List[FriendRequestResponse]] = None


# Helper Functions

def _error(status_code: int, error: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"error": error, "message": message})


def _friendship_dict(row) -> dict:
    data = dict(row)
    for key in ("id", "requester_id", "addressee_id"):
        if data.get(key) is not None:
            data[key] = str(data[key])
    return data


def _request_from_row(row) -> FriendRequestResponse:
    return FriendRequestResponse(
        id=str(row["id"]),
        requester_id=str(row["requester_id"]),
        addressee_id=str(row["addressee_id"]),
        status=row["status"],
        created_at=row["created_at"],
        profile=ProfileSummary(
            id=str(row["profile_id"]),
            display_name=row["display_name"],
            username=row["username"],
            photo_url=row["photo_url"],
        ),
    )


async def _find_between(conn, user_a: str, user_b: str):
    return await conn.fetchrow(
        """
        SELECT * FROM friendships
        WHERE (requester_id = $1 AND addressee_id = $2)
           OR (requester_id = $2 AND addressee_id = $1)
        LIMIT 1
        """,
        user_a,
        user_b
    )


async def _mark_notification_read(conn, profile_id: str, notification_id: str) -> None:
    try:
        await conn.execute(
            "UPDATE notifications SET read = TRUE WHERE id = $1 AND profile_id = $2",
            notification_id,
            profile_id
        )
    except Exception as e:
        # friendship is already committed at this point
        logger.warning("Could not mark notification %s as read: %s", notification_id, e)


# API Endpoints

@router.get("/friendships")
async def list_friendships(user: AuthorizedUser, conn: DbConnection, type: str = "all"):
    """
    Friends and pending requests of the current user.

    type: all, friends, pending_received or pending_sent
    """
    if type not in LIST_TYPES:
        raise _error(400, "invalid_type", f"type must be one of: {', '.join(LIST_TYPES)}")

    lists = FriendshipLists()

    if type in ("all", "friends"):
        rows = await conn.fetch(
            """
            SELECT
                f.id AS friendship_id,
                f.status,
                f.created_at AS friendship_date,
                p.id AS friend_id,
                p.display_name AS friend_display_name,
                p.username AS friend_username,
                p.photo_url AS friend_photo_url,
                p.bio AS friend_bio
            FROM friendships f
            JOIN profiles p ON p.id = CASE WHEN f.requester_id = $1 THEN f.addressee_id ELSE f.requester_id END
            WHERE f.status = 'accepted' AND (f.requester_id = $1 OR f.addressee_id = $1)
            ORDER BY f.created_at DESC
            """,
            user.sub
        )
        lists.friends = [
            FriendResponse(**{**dict(r), "friendship_id": str(r["friendship_id"]), "friend_id": str(r["friend_id"])})
            for r in rows
        ]

    if type in ("all", "pending_received"):
        rows = await conn.fetch(
            """
            SELECT f.*, p.id AS profile_id, p.display_name, p.username, p.photo_url
            FROM friendships f
            JOIN profiles p ON p.id = f.requester_id
            WHERE f.addressee_id = $1 AND f.status = 'pending'
            ORDER BY f.created_at DESC
            """,
            user.sub
        )
        lists.pending_received = [_request_from_row(r) for r in rows]

    if type in ("all", "pending_sent"):
        rows = await conn.fetch(
            """
            SELECT f.*, p.id AS profile_id, p.display_name, p.username, p.photo_url
            FROM friendships f
            JOIN profiles p ON p.id = f.addressee_id
            WHERE f.requester_id = $1 AND f.status = 'pending'
            ORDER BY f.created_at DESC
            """,
            user.sub
        )
        lists.pending_sent = [_request_from_row(r) for r in rows]

    return {"success": True, "data": lists.model_dump(exclude_none=True)}


@router.post("/friendships")
async def send_friend_request(request: FriendRequestCreate, user: AuthorizedUser, conn: DbConnection):
    """Send a friend request and notify the addressee."""
    addressee_id = request.addressee_id
    if not addressee_id:
        raise _error(400, "missing_addressee_id", "addressee_id is required")
    if addressee_id == user.sub:
        raise _error(400, "self_request", "You cannot send a friend request to yourself")

    existing = await _find_between(conn, user.sub, addressee_id)
    if existing:
        if existing["status"] == FriendshipStatus.ACCEPTED.value:
            raise _error(400, "already_friends", "You are already friends")
        if existing["status"] == FriendshipStatus.PENDING.value:
            raise _error(400, "already_pending", "Friend request already sent")
        raise _error(403, "blocked", "This user cannot receive friend requests from you")

    addressee = await conn.fetchrow(
        "SELECT id, display_name, username FROM profiles WHERE id = $1",
        addressee_id
    )
    if not addressee:
        raise _error(404, "user_not_found", "User not found")

    async with conn.transaction():
        friendship = await conn.fetchrow(
            """
            INSERT INTO friendships (requester_id, addressee_id, status)
            VALUES ($1, $2, 'pending')
            RETURNING *
            """,
            user.sub,
            addressee_id
        )
        await conn.execute(
            """
            INSERT INTO notifications (profile_id, type, payload, read)
            VALUES ($1, $2, $3, FALSE)
            """,
            addressee_id,
            NotificationType.FRIEND_REQUEST.value,
            {"friendship_id": str(friendship["id"]), "from_profile_id": user.sub}
        )

    logger.info("Friend request %s -> %s created", user.sub, addressee_id)
    return {
        "success": True,
        "message": f"Friend request sent to {addressee['display_name']}",
        "data": _friendship_dict(friendship),
    }


@router.put("/friendships")
async def answer_friend_request(request: FriendRequestAnswer, user: AuthorizedUser, conn: DbConnection):
    """
    Accept or reject a pending request addressed to the current user.

    A rejected request is stored as blocked.
    """
    if not request.friendship_id or not request.action:
        raise _error(400, "missing_fields", "friendship_id and action are required")
    if request.action not in ("accept", "reject"):
        raise _error(400, "invalid_action", 'action must be "accept" or "reject"')

    friendship = await conn.fetchrow(
        """
        SELECT * FROM friendships
        WHERE id = $1 AND addressee_id = $2 AND status = 'pending'
        """,
        request.friendship_id,
        user.sub
    )
    if not friendship:
        raise _error(404, "not_found", "Request not found or already processed")

    new_status = next_friendship_status(friendship["status"], request.action)
    if new_status is None:
        raise _error(409, "invalid_transition", f"Cannot {request.action} a {friendship['status']} friendship")

    async with conn.transaction():
        updated = await conn.fetchval(
            "UPDATE friendships SET status = $1 WHERE id = $2 AND status = 'pending' RETURNING id",
            new_status.value,
            request.friendship_id
        )
        if not updated:
            raise _error(409, "request_already_processed", "Request was already accepted or rejected")
        await conn.execute(
            """
            UPDATE notifications SET read = TRUE
            WHERE profile_id = $1 AND type = $2 AND payload @> $3
            """,
            user.sub,
            NotificationType.FRIEND_REQUEST.value,
            {"friendship_id": str(request.friendship_id)}
        )

    message = "Request accepted successfully" if new_status == FriendshipStatus.ACCEPTED else "Request rejected"
    return {"success": True, "message": message, "action": new_status.value}


@router.post("/friendships/accept")
async def accept_friend_request(request: FriendAcceptRequest, user: AuthorizedUser, conn: DbConnection):
    """
    Accept a request from a notification.

    Updates the pending row when there is one, otherwise creates an accepted
    friendship directly. A pair that already has a row in either direction is
    left alone (403 when blocked, 400 otherwise).
    """
    if not request.requester_id or not request.addressee_id:
        raise _error(400, "missing_fields", "requesterId and addresseeId are required")
    if user.sub != request.addressee_id:
        raise _error(403, "forbidden", "You can only accept requests sent to you")

    existing = await conn.fetchrow(
        """
        SELECT * FROM friendships
        WHERE requester_id = $1 AND addressee_id = $2 AND status = 'pending'
        """,
        request.requester_id,
        request.addressee_id
    )
    if not existing:
        other = await _find_between(conn, request.requester_id, request.addressee_id)
        if other:
            if other["status"] == FriendshipStatus.BLOCKED.value:
                raise _error(403, "blocked", "This friendship is blocked")
            if other["status"] == FriendshipStatus.ACCEPTED.value:
                raise _error(400, "already_friends", "You are already friends")
            raise _error(400, "already_pending", "You already sent a friend request to this user")

    async with conn.transaction():
        if existing:
            logger.info("Updating pending request %s", existing["id"])
            friendship = await conn.fetchrow(
                "UPDATE friendships SET status = 'accepted' WHERE id = $1 AND status = 'pending' RETURNING *",
                existing["id"]
            )
            if not friendship:
                raise _error(409, "request_already_processed", "Request was already accepted or rejected")
        else:
            logger.info("No pending request found, creating accepted friendship")
            friendship = await conn.fetchrow(
                """
                INSERT INTO friendships (requester_id, addressee_id, status)
                VALUES ($1, $2, 'accepted')
                RETURNING *
                """,
                request.requester_id,
                request.addressee_id
            )
        await conn.execute(
            """
            INSERT INTO notifications (profile_id, type, payload, read)
            VALUES ($1, $2, $3, FALSE)
            """,
            request.requester_id,
            NotificationType.FRIEND_ACCEPTED.value,
            {"friendship_id": str(friendship["id"]), "from_profile_id": user.sub}
        )

    if request.notification_id:
        await _mark_notification_read(conn, user.sub, request.notification_id)

    from_name = (request.from_user or {}).get("display_name") or "user"
    return {
        "success": True,
        "message": f"Request from {from_name} accepted successfully",
        "data": _friendship_dict(friendship),
    }


@router.delete("/friendships")
async def remove_friendship(
    user: AuthorizedUser,
    conn: DbConnection,
    friendship_id: Optional[str] = None,
    friend_id: Optional[str] = None,
):
    """Remove a friendship by its id or by the other user's id."""
    if not friendship_id and not friend_id:
        raise _error(400, "missing_fields", "friendship_id or friend_id is required")

    if friendship_id:
        deleted = await conn.fetch(
            """
            DELETE FROM friendships
            WHERE id = $1 AND (requester_id = $2 OR addressee_id = $2)
            RETURNING id
            """,
            friendship_id,
            user.sub
        )
    else:
        deleted = await conn.fetch(
            """
            DELETE FROM friendships
            WHERE (requester_id = $1 AND addressee_id = $2)
               OR (requester_id = $2 AND addressee_id = $1)
            RETURNING id
            """,
            user.sub,
            friend_id
        )

    if not deleted:
        raise _error(404, "not_found", "Friendship not found")

    return {"success": True, "message": "Friendship removed successfully"}
