"""Profiles API - read-only profile lookup."""

from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query

from orkut.auth import AuthorizedUser
from orkut.libs.database import DbConnection
from orkut.libs.models import ProfileSummary

router = APIRouter()


def _profile_from_row(row) -> ProfileSummary:
    data = dict(row)
    data["id"] = str(data["id"])
    return ProfileSummary(**data)


@router.get("/profiles", response_model=List[ProfileSummary])
async def search_profiles(
    user: AuthorizedUser,
    conn: DbConnection,
    search: Optional[str] = None,
    limit: int = Query(20, ge=1, le=100),
):
    """Search profiles by display name or username."""
    if search:
        rows = await conn.fetch(
            """
            SELECT id, display_name, username, photo_url, bio FROM profiles
            WHERE display_name ILIKE $1 OR username ILIKE $1
            ORDER BY display_name
            LIMIT $2
            """,
            f"%{search}%",
            limit
        )
    else:
        rows = await conn.fetch(
            """
            SELECT id, display_name, username, photo_url, bio FROM profiles
            ORDER BY created_at DESC
            LIMIT $1
            """,
            limit
        )
    return [_profile_from_row(r) for r in rows]


@router.get("/profiles/{profile_id}", response_model=ProfileSummary)
async def get_profile(profile_id: str, user: AuthorizedUser, conn: DbConnection):
    row = await conn.fetchrow(
        "SELECT id, display_name, username, photo_url, bio FROM profiles WHERE id = $1",
        profile_id
    )
    if not row:
        raise HTTPException(status_code=404, detail={"error": "user_not_found", "message": "Profile not found"})
    return _profile_from_row(row)
