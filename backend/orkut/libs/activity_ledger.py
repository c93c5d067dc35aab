"""
User activity ledger.

Activities are appended to a JSON document committed to a GitHub repository
(``{"activities": [...], "lastUpdate": iso}``), and mirrored to a local JSON
file. Writes to GitHub are guarded by an attempt counter that stops further
tries after MAX_ATTEMPTS consecutive failures.

Each entry carries an id. Recording an id that is already in the remote file
is a no-op, and a commit rejected because the file changed underneath us
(stale blob SHA) is retried against the fresh content.
"""

import json
import logging
import os
import shutil
import tempfile
import threading
import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests

from orkut.libs import config
from orkut.libs.github_client import GitHubClient, GitHubError

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 5
REMOTE_MAX_ENTRIES = 50
LOCAL_MAX_ENTRIES = 100
CONFLICT_RETRIES = 3


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class LedgerNotConfigured(Exception):
    """GitHub token, owner or repo is missing."""


class LedgerWriteError(Exception):
    """A GitHub write failed; the message is safe to show to clients."""


class AttemptsExhausted(Exception):
    def __init__(self, attempts: int, max_attempts: int):
        self.attempts = attempts
        self.max_attempts = max_attempts
        super().__init__(f"Maximum of {max_attempts} attempts reached")


def describe_github_error(exc: Exception) -> str:
    """Readable message for a failed GitHub call."""
    if isinstance(exc, requests.ConnectionError):
        return "Could not connect to GitHub"
    status = getattr(exc, "status_code", None)
    if status == 401:
        return "GitHub token is invalid or lacks permissions"
    if status == 403:
        return "No permission to access the GitHub repository"
    if status == 404:
        return "GitHub repository or file not found"
    return f"GitHub error: {exc}"


class AttemptGuard:
    """Counts consecutive failed GitHub writes; any success resets it."""

    def __init__(self, max_attempts: int = MAX_ATTEMPTS):
        self.max_attempts = max_attempts
        self._count = 0
        self._last_reset_time = utc_now_iso()
        self._lock = threading.Lock()

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    @property
    def last_reset_time(self) -> str:
        with self._lock:
            return self._last_reset_time

    def can_try(self) -> bool:
        return self.count < self.max_attempts

    def acquire(self) -> int:
        """Check the cap and count the attempt in one step; returns the new count."""
        with self._lock:
            if self._count >= self.max_attempts:
                raise AttemptsExhausted(self._count, self.max_attempts)
            self._count += 1
            logger.debug("Attempt %d registered", self._count)
            return self._count

    def reset(self) -> int:
        with self._lock:
            self._count = 0
            self._last_reset_time = utc_now_iso()
        logger.info("Attempt counter reset")
        return 0

    def status(self) -> Dict[str, Any]:
        with self._lock:
            count = self._count
            last_reset = self._last_reset_time
        remaining = self.max_attempts - count
        return {
            "currentAttempts": count,
            "maxAttempts": self.max_attempts,
            "canTryAgain": count < self.max_attempts,
            "lastResetTime": last_reset,
            "message": "Attempt limit exceeded" if remaining <= 0 else f"{remaining} attempts remaining",
        }


@dataclass
class LedgerSettings:
    token: Optional[str]
    owner: Optional[str]
    repo: Optional[str]
    file_path: str
    branch: str = "main"

    @classmethod
    def from_env(cls) -> "LedgerSettings":
        return cls(
            token=config.github_token(),
            owner=config.github_owner(),
            repo=config.github_repo(),
            file_path=config.github_file_path(),
            branch=config.github_branch(),
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.token and self.owner and self.repo)

    def summary(self) -> Dict[str, Any]:
        return {
            "hasGithubToken": bool(self.token),
            "githubOwner": self.owner,
            "githubRepo": self.repo,
            "githubFilePath": self.file_path,
        }


class ActivityLedger:
    """Append-only activity log stored as a JSON file in a GitHub repository."""

    def __init__(self, settings: Optional[LedgerSettings] = None, client: Optional[GitHubClient] = None,
                 max_entries: int = REMOTE_MAX_ENTRIES):
        self.settings = settings or LedgerSettings.from_env()
        self._client = client
        self.max_entries = max_entries

    @property
    def client(self) -> GitHubClient:
        if self._client is None:
            self._client = GitHubClient(token=self.settings.token)
        return self._client

    def _read(self) -> tuple:
        remote = self.client.get_file(
            self.settings.owner, self.settings.repo, self.settings.file_path, self.settings.branch
        )
        if remote is None:
            logger.info("File %s does not exist yet, it will be created", self.settings.file_path)
            return {"activities": [], "lastUpdate": ""}, None
        try:
            document = json.loads(remote.content) if remote.content.strip() else {}
        except json.JSONDecodeError:
            logger.warning("File %s is not valid JSON, starting a new document", self.settings.file_path)
            document = {}
        if not isinstance(document, dict):
            document = {}
        if not isinstance(document.get("activities"), list):
            document["activities"] = []
        return document, remote.sha

    def record(self, user_id: str, action: str, data: Any = None, entry_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Append one activity and commit the file.

        Returns a dict with commitUrl, sha, message, timestamp and duplicate.
        Raises LedgerNotConfigured or LedgerWriteError.
        """
        if not self.settings.is_configured:
            raise LedgerNotConfigured("Incomplete GitHub configuration. Check GITHUB_TOKEN, GITHUB_OWNER and GITHUB_REPO")

        entry_id = entry_id or uuid.uuid4().hex
        message = f"Automatic update: {action} by user {user_id}"

        for attempt in range(1, CONFLICT_RETRIES + 1):
            try:
                document, sha = self._read()
                if any(a.get("id") == entry_id for a in document["activities"]):
                    logger.info("Activity %s already recorded, skipping commit", entry_id)
                    return {"commitUrl": None, "sha": sha, "message": message,
                            "timestamp": document.get("lastUpdate"), "duplicate": True}

                timestamp = utc_now_iso()
                document["activities"].append({
                    "id": entry_id,
                    "userId": user_id,
                    "action": action,
                    "data": data,
                    "timestamp": timestamp,
                })
                document["activities"] = document["activities"][-self.max_entries:]
                document["lastUpdate"] = timestamp

                commit = self.client.push_file(
                    owner=self.settings.owner,
                    repo=self.settings.repo,
                    path=self.settings.file_path,
                    content=json.dumps(document, indent=2),
                    message=message,
                    branch=self.settings.branch,
                    sha=sha,
                )
            except GitHubError as e:
                # 409/422: the blob SHA we sent is stale, someone else committed first
                if e.status_code in (409, 422) and attempt < CONFLICT_RETRIES:
                    logger.warning("SHA conflict on %s, retrying (%d/%d)",
                                   self.settings.file_path, attempt, CONFLICT_RETRIES)
                    continue
                logger.error("Error updating GitHub: %s", e.message)
                raise LedgerWriteError(describe_github_error(e)) from e
            except requests.RequestException as e:
                logger.error("Error updating GitHub: %s", e)
                raise LedgerWriteError(describe_github_error(e)) from e

            logger.info("GitHub updated: %s", commit.html_url)
            return {"commitUrl": commit.html_url, "sha": commit.content_sha, "message": message,
                    "timestamp": timestamp, "duplicate": False}

        raise LedgerWriteError("GitHub error: too many concurrent updates")


class LocalActivityStore:
    """Activity mirror kept in a local JSON file."""

    def __init__(self, path: Optional[str] = None, max_entries: int = LOCAL_MAX_ENTRIES):
        self.path = Path(path or config.local_activity_file())
        self.max_entries = max_entries
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, Any]:
        try:
            if self.path.exists():
                data = json.loads(self.path.read_text(encoding="utf-8"))
                if isinstance(data, dict):
                    data.setdefault("activities", [])
                    return data
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Error reading local data %s: %s", self.path, e)
        return {"activities": []}

    def _write(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".activity-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2)
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def record(self, user_id: str, action: str, data: Any = None, entry_id: Optional[str] = None) -> Dict[str, Any]:
        activity = {
            "id": entry_id or uuid.uuid4().hex,
            "userId": user_id,
            "action": action,
            "data": data,
            "timestamp": utc_now_iso(),
        }
        with self._lock:
            document = self._read()
            if entry_id:
                for existing in document["activities"]:
                    if existing.get("id") == entry_id:
                        logger.info("Activity %s already recorded locally", entry_id)
                        return existing
            document["activities"].append(activity)
            document["activities"] = document["activities"][-self.max_entries:]
            self._write(document)
        logger.info("Activity recorded locally: %s for user %s", action, user_id)
        return activity

    def activities(self, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._lock:
            items = self._read()["activities"]
        if user_id is not None:
            items = [a for a in items if a.get("userId") == user_id]
        return items

    def stats(self) -> Dict[str, Any]:
        items = self.activities()
        return {
            "totalActivities": len(items),
            "uniqueUsers": len({a.get("userId") for a in items}),
            "actionCounts": dict(Counter(a.get("action") for a in items)),
        }

    def clean_old(self, days: int = 7) -> int:
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        with self._lock:
            document = self._read()
            before = len(document["activities"])
            document["activities"] = [
                a for a in document["activities"]
                if _parse_timestamp(a.get("timestamp")) > cutoff
            ]
            removed = before - len(document["activities"])
            if removed:
                self._write(document)
        if removed:
            logger.info("Removed %d old records", removed)
        return removed

    def backup(self) -> Optional[Path]:
        if not self.path.exists():
            return None
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S%f")
        target = self.path.with_name(f"backup-{stamp}.json")
        with self._lock:
            shutil.copyfile(self.path, target)
        logger.info("Backup created: %s", target)
        return target


def _parse_timestamp(value: Optional[str]) -> datetime:
    if not value:
        return datetime.min.replace(tzinfo=timezone.utc)
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return datetime.min.replace(tzinfo=timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed

