"""
Environment configuration.

Every value is read from the process environment when it is requested, so a
deployment can change settings without a code change and tests can use
monkeypatch.setenv.
"""

import os
from typing import List, Optional


DEFAULT_GITHUB_FILE_PATH = "user-activity.json"
DEFAULT_LOCAL_ACTIVITY_FILE = "data/local-activity.json"
DEFAULT_CORS_ORIGINS = "http://localhost:3000,http://127.0.0.1:3000"


def _split_csv(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _int_env(key: str, default: int) -> int:
    try:
        return int(os.environ.get(key, default))
    except (TypeError, ValueError):
        return default


def database_url() -> Optional[str]:
    return os.environ.get("DATABASE_URL")


def jwt_secret() -> Optional[str]:
    """Secret the hosted auth provider signs user access tokens with."""
    return os.environ.get("SUPABASE_JWT_SECRET")


def jwt_audience() -> str:
    return os.environ.get("SUPABASE_JWT_AUDIENCE", "authenticated")


def admin_emails() -> List[str]:
    return [email.lower() for email in _split_csv(os.environ.get("ADMIN_EMAILS"))]


def admin_token_secret() -> str:
    return os.environ.get("ADMIN_TOKEN_SECRET") or os.environ.get("SUPABASE_JWT_SECRET") or "unsafe-dev-admin-secret"


def admin_token_ttl_hours() -> int:
    return _int_env("ADMIN_TOKEN_TTL_HOURS", 24)


def github_token() -> Optional[str]:
    return os.environ.get("GITHUB_TOKEN")


def github_owner() -> Optional[str]:
    return os.environ.get("GITHUB_OWNER")


def github_repo() -> Optional[str]:
    return os.environ.get("GITHUB_REPO")


def github_file_path() -> str:
    return os.environ.get("GITHUB_FILE_PATH") or DEFAULT_GITHUB_FILE_PATH


def github_branch() -> str:
    return os.environ.get("GITHUB_BRANCH") or "main"


def local_activity_file() -> str:
    return os.environ.get("LOCAL_ACTIVITY_FILE") or DEFAULT_LOCAL_ACTIVITY_FILE


def cors_origins() -> List[str]:
    return _split_csv(os.environ.get("CORS_ORIGINS", DEFAULT_CORS_ORIGINS))


def log_level() -> str:
    return os.environ.get("LOG_LEVEL", "INFO").upper()


def call_timeout_seconds() -> int:
    return _int_env("CALL_TIMEOUT_SECONDS", 30)
