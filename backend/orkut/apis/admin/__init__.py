"""Admin API - administrator login and status checks."""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from orkut.libs.admin_auth import (
    ADMIN_PERMISSIONS,
    generate_admin_token,
    log_admin_action,
    require_admin,
    validate_admin_token,
)

logger = logging.getLogger(__name__)

router = APIRouter()

admin_bearer = HTTPBearer(auto_error=False)


class AdminLoginRequest(BaseModel):
    """Request model for admin login"""
    email: Optional[str] = None
    action: Optional[str] = None


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.post("/admin/login")
async def admin_login(body: AdminLoginRequest, request: Request):
    """
    Log in as administrator.

    Returns a signed admin token and the permission list when the email is one
    of the configured administrators.
    """
    if not body.email:
        raise HTTPException(status_code=400, detail={"success": False, "error": "Email is required"})

    check = require_admin(body.email)
    if not check.authorized:
        log_admin_action("FAILED_LOGIN_ATTEMPT", body.email, {"reason": check.error})
        raise HTTPException(status_code=403, detail={
            "success": False,
            "error": check.error,
            "is_admin": False,
            "email": body.email,
            "message": "This email does not have administrator permissions",
            "timestamp": _now(),
        })

    token = generate_admin_token(check.user.email)
    client_ip = request.client.host if request.client else None
    log_admin_action("SUCCESSFUL_LOGIN", check.user.email, {"action": body.action, "ip": client_ip})
    logger.info("Admin login authorized for %s", check.user.email)

    return {
        "success": True,
        "is_admin": True,
        "user": check.user.to_dict(),
        "token": token,
        "message": f"Welcome, administrator! Login authorized for {check.user.email}",
        "permissions": ADMIN_PERMISSIONS,
        "timestamp": _now(),
    }


@router.get("/admin/login")
async def admin_status(email: Optional[str] = None):
    """Check whether an email has administrator permissions."""
    if not email:
        raise HTTPException(status_code=400, detail={
            "success": False,
            "error": "Email is required as a query parameter",
        })

    check = require_admin(email)
    return {
        "success": True,
        "is_admin": check.authorized,
        "email": email,
        "user": check.user.to_dict() if check.user else None,
        "error": check.error,
        "message": (
            "Email has administrator permissions" if check.authorized
            else "Email does not have administrator permissions"
        ),
        "timestamp": _now(),
    }


@router.get("/admin/verify")
async def verify_admin_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(admin_bearer),
):
    """Validate an admin token issued by /admin/login."""
    result = validate_admin_token(credentials.credentials if credentials else None)
    if not result.valid:
        raise HTTPException(status_code=401, detail={
            "success": False,
            "valid": False,
            "error": result.error,
        })
    return {"success": True, "valid": True, "email": result.email}
