"""Communities API - list, create, update and remove communities."""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Header, HTTPException, Query
from pydantic import BaseModel

from orkut.libs.admin_auth import (
    admin_emails,
    has_admins_configured,
    log_admin_action,
    require_admin,
)
from orkut.libs.database import OptionalDbConnection
from orkut.libs.models import CommunityResponse, CommunityVisibility

logger = logging.getLogger(__name__)

router = APIRouter()

DEFAULT_PHOTO_URL = "https://images.unsplash.com/photo-1522202176988-66273c2fd55f?w=400&h=300&fit=crop&q=80&auto=format"
DEFAULT_RULES = "Be respectful and keep discussions relevant to the community topic."
ALL_CATEGORIES = {"todos", "all"}

NAME_MIN, NAME_MAX = 3, 50
DESCRIPTION_MIN, DESCRIPTION_MAX = 10, 500

DEMO_COMMUNITIES = [
    {
        "id": "demo-1",
        "name": "Eu odeio acordar cedo",
        "description": "For everyone who hits snooze at least three times every morning.",
        "category": "Humor",
        "members_count": 1523,
        "owner": "demo",
        "tags": ["humor", "sleep"],
    },
    {
        "id": "demo-2",
        "name": "Nostalgia anos 2000",
        "description": "Scraps, testimonials and the music we listened to back then.",
        "category": "Music",
        "members_count": 874,
        "owner": "demo",
        "tags": ["music", "2000s"],
    },
    {
        "id": "demo-3",
        "name": "Programadores do Brasil",
        "description": "Developers sharing code, jobs and terrible puns.",
        "category": "Technology",
        "members_count": 2301,
        "owner": "demo",
        "tags": ["code", "jobs"],
    },
    {
        "id": "demo-4",
        "name": "Amo viajar",
        "description": "Travel tips, photos and stories from every corner of the world.",
        "category": "Travel",
        "members_count": 642,
        "owner": "demo",
        "tags": ["travel"],
    },
]


# Pydantic Models

class CommunityCreate(BaseModel):
    """Request model for creating a community."""
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    privacy: Optional[CommunityVisibility] = None
    rules: Optional[str] = None
    photo_url: Optional[str] = None
    owner: Optional[str] = None
    tags: List[str] = []
    user_email: Optional[str] = None


class CommunityUpdate(BaseModel):
    """Request model for updating a community. Only provided fields change."""
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    privacy: Optional[CommunityVisibility] = None
    rules: Optional[str] = None
    photo_url: Optional[str] = None
    tags: Optional[List[str]] = None
    user_email: Optional[str] = None


class Pagination(BaseModel):
    limit: int
    offset: int
    has_more: bool


class CommunityListResponse(BaseModel):
    success: bool = True
    communities: List[CommunityResponse]
    total: int
    pagination: Pagination
    demo: bool = False
    source: str


# Helper Functions

def _bad_request(message: str) -> HTTPException:
    return HTTPException(status_code=400, detail={"error": "validation_error", "message": message})


def _validate_name(name: str) -> None:
    if not NAME_MIN <= len(name) <= NAME_MAX:
        raise _bad_request(f"Name must be between {NAME_MIN} and {NAME_MAX} characters")


def _validate_description(description: str) -> None:
    if not DESCRIPTION_MIN <= len(description) <= DESCRIPTION_MAX:
        raise _bad_request(f"Description must be between {DESCRIPTION_MIN} and {DESCRIPTION_MAX} characters")


def _ensure_admin(email: Optional[str], action: str, details: dict) -> None:
    if not has_admins_configured():
        logger.warning("No administrators configured - allowing %s without checks", action)
        return

    check = require_admin(email)
    if not check.authorized:
        raise HTTPException(status_code=403, detail={
            "success": False,
            "error": "access_denied",
            "message": check.error,
            "admin_emails": admin_emails(),
            "current_user": email,
            "is_admin": False,
        })
    log_admin_action(action, check.user.email, details)


def _community_from_row(row) -> CommunityResponse:
    data = dict(row)
    data["id"] = str(data["id"])
    data["tags"] = list(data.get("tags") or [])
    return CommunityResponse(**data)


def _matches(community: dict, category: Optional[str], search: Optional[str]) -> bool:
    if category and category.lower() not in ALL_CATEGORIES and community["category"] != category:
        return False
    if search:
        term = search.lower()
        return term in community["name"].lower() or term in community["description"].lower()
    return True


# API Endpoints

@router.get("/communities", response_model=CommunityListResponse)
async def list_communities(
    conn: OptionalDbConnection,
    category: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    """
    List active communities.

    Filters by category (``Todos``/``all`` disables the filter) and by a
    case-insensitive search over name and description. Without a database the
    built-in demo communities are returned.
    """
    if conn is None:
        filtered = [c for c in DEMO_COMMUNITIES if _matches(c, category, search)]
        page = filtered[offset:offset + limit]
        return CommunityListResponse(
            communities=[CommunityResponse(**c) for c in page],
            total=len(filtered),
            pagination=Pagination(limit=limit, offset=offset, has_more=len(filtered) > offset + limit),
            demo=True,
            source="demo",
        )

    conditions = ["is_active = TRUE"]
    params: list = []
    if category and category.lower() not in ALL_CATEGORIES:
        params.append(category)
        conditions.append(f"category = ${len(params)}")
    if search:
        params.append(f"%{search}%")
        conditions.append(f"(name ILIKE ${len(params)} OR description ILIKE ${len(params)})")
    where = " AND ".join(conditions)

    total = await conn.fetchval(f"SELECT COUNT(*) FROM communities WHERE {where}", *params)
    rows = await conn.fetch(
        f"""
        SELECT * FROM communities
        WHERE {where}
        ORDER BY members_count DESC, created_at DESC
        LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
        """,
        *params, limit, offset
    )
    logger.info("%d communities found (total %d)", len(rows), total or 0)

    total = total or 0
    return CommunityListResponse(
        communities=[_community_from_row(r) for r in rows],
        total=total,
        pagination=Pagination(limit=limit, offset=offset, has_more=total > offset + limit),
        source="database",
    )


@router.post("/communities")
async def create_community(
    community: CommunityCreate,
    conn: OptionalDbConnection,
    x_user_email: Optional[str] = Header(None),
):
    """
    Create a community. Restricted to administrators when any are configured.

    The requesting email comes from the ``x-user-email`` header or the
    ``user_email`` body field.
    """
    email = x_user_email or community.user_email
    _ensure_admin(email, "CREATE_COMMUNITY", {
        "community_name": community.name,
        "category": community.category,
    })

    name = (community.name or "").strip()
    description = (community.description or "").strip()
    category = (community.category or "").strip()
    if not name or not description or not category:
        raise _bad_request("Name, description and category are required")
    _validate_name(name)
    _validate_description(description)

    if conn is None:
        raise HTTPException(status_code=503, detail={
            "success": False,
            "error": "database_unavailable",
            "message": "Set DATABASE_URL to create communities",
        })

    visibility = community.privacy or CommunityVisibility.PUBLIC
    row = await conn.fetchrow(
        """
        INSERT INTO communities (
            name, description, category, photo_url, members_count, owner, visibility,
            join_approval_required, rules, welcome_message, tags, is_active
        )
        VALUES ($1, $2, $3, $4, 1, $5, $6, $7, $8, $9, $10, TRUE)
        RETURNING *
        """,
        name,
        description,
        category,
        community.photo_url or DEFAULT_PHOTO_URL,
        community.owner or email or "anonymous",
        visibility.value,
        visibility in (CommunityVisibility.PRIVATE, CommunityVisibility.RESTRICTED),
        (community.rules or "").strip() or DEFAULT_RULES,
        f"Welcome to the {name} community!",
        community.tags,
    )
    created = _community_from_row(row)
    logger.info("Community created: id=%s name=%s category=%s", created.id, created.name, created.category)

    return {
        "success": True,
        "community": created,
        "message": f'Community "{name}" created successfully',
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.put("/communities/{community_id}")
async def update_community(
    community_id: str,
    update: CommunityUpdate,
    conn: OptionalDbConnection,
    x_user_email: Optional[str] = Header(None),
):
    """Update the provided fields of a community (administrators only)."""
    email = x_user_email or update.user_email
    _ensure_admin(email, "EDIT_COMMUNITY", {"community_id": community_id})

    fields = {}
    if update.name is not None:
        fields["name"] = update.name.strip()
        _validate_name(fields["name"])
    if update.description is not None:
        fields["description"] = update.description.strip()
        _validate_description(fields["description"])
    if update.category is not None:
        if not update.category.strip():
            raise _bad_request("Category cannot be empty")
        fields["category"] = update.category.strip()
    if update.privacy is not None:
        fields["visibility"] = update.privacy.value
        fields["join_approval_required"] = update.privacy in (
            CommunityVisibility.PRIVATE, CommunityVisibility.RESTRICTED
        )
    if update.rules is not None:
        fields["rules"] = update.rules.strip() or DEFAULT_RULES
    if update.photo_url is not None:
        fields["photo_url"] = update.photo_url
    if update.tags is not None:
        fields["tags"] = update.tags

    if not fields:
        raise _bad_request("No fields to update")

    if conn is None:
        raise HTTPException(status_code=503, detail={
            "success": False,
            "error": "database_unavailable",
            "message": "Set DATABASE_URL to edit communities",
        })

    assignments = ", ".join(f"{column} = ${i}" for i, column in enumerate(fields, start=1))
    row = await conn.fetchrow(
        f"""
        UPDATE communities
        SET {assignments}, updated_at = NOW()
        WHERE id = ${len(fields) + 1} AND is_active = TRUE
        RETURNING *
        """,
        *fields.values(), community_id
    )
    if not row:
        raise HTTPException(status_code=404, detail={"error": "not_found", "message": "Community not found"})

    return {"success": True, "community": _community_from_row(row), "message": "Community updated"}


@router.delete("/communities/{community_id}")
async def delete_community(
    community_id: str,
    conn: OptionalDbConnection,
    x_user_email: Optional[str] = Header(None),
):
    """
    Soft delete a community (administrators only).

    Sets is_active to false instead of removing the row, so posts keep their reference.
    """
    _ensure_admin(x_user_email, "DELETE_COMMUNITY", {"community_id": community_id})

    if conn is None:
        raise HTTPException(status_code=503, detail={
            "success": False,
            "error": "database_unavailable",
            "message": "Set DATABASE_URL to remove communities",
        })

    result = await conn.fetchval(
        """
        UPDATE communities
        SET is_active = FALSE, updated_at = NOW()
        WHERE id = $1 AND is_active = TRUE
        RETURNING id
        """,
        community_id
    )
    if not result:
        raise HTTPException(status_code=404, detail={"error": "not_found", "message": "Community not found"})

    return {"success": True, "message": "Community removed successfully"}
