"""Messages API - direct messages between two profiles."""

import logging
from typing import List

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from orkut.auth import AuthorizedUser
from orkut.libs.database import DbConnection
from orkut.libs.models import MessageResponse, NotificationType

logger = logging.getLogger(__name__)

router = APIRouter()

MAX_MESSAGE_LENGTH = 2000


class MessageCreate(BaseModel):
    """Request model for sending a message"""
    to_profile_id: str
    content: str


def _error(status_code: int, error: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"error": error, "message": message})


def _message_from_row(row) -> MessageResponse:
    data = dict(row)
    data["from_profile_id"] = str(data["from_profile_id"])
    data["to_profile_id"] = str(data["to_profile_id"])
    return MessageResponse(**data)


@router.get("/messages", response_model=List[MessageResponse])
async def conversation(
    with_profile_id: str,
    user: AuthorizedUser,
    conn: DbConnection,
    limit: int = Query(50, ge=1, le=200),
):
    """The latest messages exchanged with another profile, oldest first."""
    rows = await conn.fetch(
        """
        SELECT * FROM (
            SELECT * FROM messages
            WHERE (from_profile_id = $1 AND to_profile_id = $2)
               OR (from_profile_id = $2 AND to_profile_id = $1)
            ORDER BY created_at DESC
            LIMIT $3
        ) latest
        ORDER BY created_at ASC
        """,
        user.sub,
        with_profile_id,
        limit
    )
    return [_message_from_row(r) for r in rows]


@router.post("/messages", response_model=MessageResponse)
async def send_message(message: MessageCreate, user: AuthorizedUser, conn: DbConnection):
    content = message.content.strip()
    if not content:
        raise _error(400, "empty_message", "Message content is required")
    if len(content) > MAX_MESSAGE_LENGTH:
        raise _error(400, "message_too_long", f"Messages are limited to {MAX_MESSAGE_LENGTH} characters")
    if message.to_profile_id == user.sub:
        raise _error(400, "self_message", "You cannot send a message to yourself")

    addressee = await conn.fetchval("SELECT id FROM profiles WHERE id = $1", message.to_profile_id)
    if not addressee:
        raise _error(404, "user_not_found", "Recipient not found")

    async with conn.transaction():
        row = await conn.fetchrow(
            """
            INSERT INTO messages (from_profile_id, to_profile_id, content)
            VALUES ($1, $2, $3)
            RETURNING *
            """,
            user.sub,
            message.to_profile_id,
            content
        )
        await conn.execute(
            """
            INSERT INTO notifications (profile_id, type, payload, read)
            VALUES ($1, $2, $3, FALSE)
            """,
            message.to_profile_id,
            NotificationType.MESSAGE.value,
            {"message_id": row["id"], "from_profile_id": user.sub}
        )

    logger.info("Message %s sent %s -> %s", row["id"], user.sub, message.to_profile_id)
    return _message_from_row(row)


@router.put("/messages/{message_id}/read", response_model=MessageResponse)
async def mark_message_read(message_id: int, user: AuthorizedUser, conn: DbConnection):
    """Only the recipient can mark a message as read."""
    row = await conn.fetchrow(
        """
        UPDATE messages SET read_at = COALESCE(read_at, NOW())
        WHERE id = $1 AND to_profile_id = $2
        RETURNING *
        """,
        message_id,
        user.sub
    )
    if not row:
        raise _error(404, "not_found", "Message not found")
    return _message_from_row(row)


@router.delete("/messages/{message_id}")
async def delete_message(message_id: int, user: AuthorizedUser, conn: DbConnection):
    """Only the sender can delete a message."""
    deleted = await conn.fetchval(
        "DELETE FROM messages WHERE id = $1 AND from_profile_id = $2 RETURNING id",
        message_id,
        user.sub
    )
    if not deleted:
        raise _error(404, "not_found", "Message not found")
    return {"success": True, "message": "Message deleted"}
