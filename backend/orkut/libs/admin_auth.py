"""
Administrator permissions.

Administrators are the emails listed in ADMIN_EMAILS. They are the only users
allowed to create, edit and remove communities. Admin sessions are short-lived
HS256 tokens signed with ADMIN_TOKEN_SECRET.
"""

import json
import logging
import re
import time
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import jwt

from orkut.libs import config

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("orkut.audit")

ADMIN_PERMISSIONS = [
    "CREATE_COMMUNITY",
    "EDIT_COMMUNITY",
    "DELETE_COMMUNITY",
    "MANAGE_USERS",
    "VIEW_ADMIN_PANEL",
]


@dataclass
class AdminUser:
    email: str
    name: Optional[str] = None
    github_username: Optional[str] = None
    is_admin: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AdminCheck:
    authorized: bool
    user: Optional[AdminUser] = None
    error: Optional[str] = None


@dataclass
class TokenCheck:
    valid: bool
    email: Optional[str] = None
    error: Optional[str] = None


def admin_emails() -> List[str]:
    return config.admin_emails()


def has_admins_configured() -> bool:
    return len(admin_emails()) > 0


def is_admin(email: Optional[str]) -> bool:
    if not email:
        return False
    result = email.lower().strip() in admin_emails()
    logger.debug("Admin check for %s: %s", email, result)
    return result


def build_admin_user(email: str) -> AdminUser:
    """Admin user derived from the email alone; there is no admin table."""
    normalized = email.lower().strip()
    local_part = normalized.split("@")[0]
    return AdminUser(
        email=normalized,
        name=local_part,
        github_username=re.sub(r"[^a-zA-Z0-9]", "", local_part),
        is_admin=is_admin(normalized),
    )


def require_admin(email: Optional[str]) -> AdminCheck:
    if not email:
        return AdminCheck(authorized=False, error="User email not provided")

    user = build_admin_user(email)
    if not user.is_admin:
        return AdminCheck(
            authorized=False,
            user=user,
            error="Access denied - only administrators can perform this action",
        )

    logger.info("Admin access granted for %s", user.email)
    return AdminCheck(authorized=True, user=user)


def log_admin_action(action: str, email: str, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Write an audit record for an administrative action and return it."""
    entry = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "action": action,
        "admin": email,
        "details": details,
    }
    audit_logger.info(json.dumps(entry, default=str))
    return entry


def generate_admin_token(email: str) -> str:
    if not is_admin(email):
        raise PermissionError("Only administrators can receive admin tokens")

    now = int(time.time())
    payload = {
        "email": email.lower().strip(),
        "is_admin": True,
        "iat": now,
        "exp": now + config.admin_token_ttl_hours() * 3600,
    }
    token = jwt.encode(payload, config.admin_token_secret(), algorithm="HS256")
    logger.info("Admin token issued for %s", payload["email"])
    return token


def validate_admin_token(token: Optional[str]) -> TokenCheck:
    if not token:
        return TokenCheck(valid=False, error="Token not provided")
    try:
        payload = jwt.decode(token, config.admin_token_secret(), algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        return TokenCheck(valid=False, error="Token expired")
    except jwt.InvalidTokenError:
        return TokenCheck(valid=False, error="Invalid token")

    email = payload.get("email")
    if not is_admin(email):
        return TokenCheck(valid=False, email=email, error="Email is no longer an administrator")
    return TokenCheck(valid=True, email=email)
