"""
GitHub API Client Library

Provides a wrapper around the GitHub REST API contents endpoint, used to keep
a JSON document as a committed file:
- Reading a file and its blob SHA (base64-decoded)
- Creating or replacing a file with a commit
- Checking that the token is valid

Requires GITHUB_TOKEN environment variable with the `repo` scope
(or `contents: write` for fine-grained tokens).
"""

import base64
import logging
from typing import Optional, Dict, Any

import requests
from pydantic import BaseModel

from orkut.libs import config

logger = logging.getLogger(__name__)


class GitHubFile(BaseModel):
    """File content fetched from a repository"""
    path: str
    content: str  # decoded text
    sha: str


class GitHubCommitResponse(BaseModel):
    """Response from file commit operation"""
    sha: str
    url: str
    html_url: str
    content_sha: Optional[str] = None


class GitHubError(Exception):
    """Custom exception for GitHub API errors"""
    def __init__(self, message: str, status_code: Optional[int] = None, response: Optional[Dict] = None):
        self.message = message
        self.status_code = status_code
        self.response = response
        super().__init__(self.message)


def _response_body(response: requests.Response) -> Optional[Dict]:
    if not response.text:
        return None
    try:
        return response.json()
    except ValueError:
        return {"raw": response.text}


class GitHubClient:
    """
    GitHub API Client

    Handles the contents-API interactions needed by the activity ledger.
    """

    BASE_URL = "https://api.github.com"
    TIMEOUT = 15

    def __init__(self, token: Optional[str] = None, session: Optional[requests.Session] = None):
        """
        Initialize GitHub client

        Args:
            token: GitHub Personal Access Token. If not provided, will use GITHUB_TOKEN env var.
            session: Optional requests session (connection reuse)
        """
        self.token = token or config.github_token()
        if not self.token:
            raise GitHubError("GitHub token not found. Please set GITHUB_TOKEN environment variable.")

        self.session = session or requests.Session()
        self.headers = {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28"
        }

    def get_authenticated_user(self) -> Dict[str, Any]:
        """Get authenticated user information"""
        response = self.session.get(
            f"{self.BASE_URL}/user",
            headers=self.headers,
            timeout=self.TIMEOUT
        )

        if response.status_code != 200:
            raise GitHubError(
                f"Failed to authenticate with GitHub: {response.status_code}",
                status_code=response.status_code,
                response=_response_body(response)
            )

        return response.json()

    def test_connection(self) -> bool:
        """Return True when the token authenticates"""
        try:
            user = self.get_authenticated_user()
        except (GitHubError, requests.RequestException) as e:
            logger.error("GitHub connection check failed: %s", e)
            return False
        logger.info("GitHub connection OK for user %s", user.get("login"))
        return True

    def get_file(self, owner: str, repo: str, path: str, branch: str = "main") -> Optional[GitHubFile]:
        """
        Fetch a file and its SHA

        Args:
            owner: Repository owner username
            repo: Repository name
            path: File path in repo
            branch: Branch name

        Returns:
            GitHubFile or None if the file doesn't exist
        """
        response = self.session.get(
            f"{self.BASE_URL}/repos/{owner}/{repo}/contents/{path}",
            headers=self.headers,
            params={"ref": branch},
            timeout=self.TIMEOUT
        )

        if response.status_code == 404:
            return None  # File doesn't exist
        if response.status_code != 200:
            raise GitHubError(
                f"Failed to get file {path}: {response.status_code}",
                status_code=response.status_code,
                response=_response_body(response)
            )

        data = response.json()
        content = base64.b64decode(data.get("content") or "").decode("utf-8")
        return GitHubFile(path=path, content=content, sha=data["sha"])

    def push_file(
        self,
        owner: str,
        repo: str,
        path: str,
        content: str,
        message: str,
        branch: str = "main",
        sha: Optional[str] = None
    ) -> GitHubCommitResponse:
        """
        Create or update a file in a repository

        Args:
            owner: Repository owner username
            repo: Repository name
            path: File path in repo
            content: File content (will be base64-encoded)
            message: Commit message
            branch: Branch name (default: main)
            sha: Blob SHA the update is based on; required when the file exists

        Returns:
            GitHubCommitResponse with commit details
        """
        content_encoded = base64.b64encode(content.encode('utf-8')).decode('utf-8')

        payload = {
            "message": message,
            "content": content_encoded,
            "branch": branch
        }

        # If updating existing file, need to provide SHA
        if sha:
            payload["sha"] = sha

        response = self.session.put(
            f"{self.BASE_URL}/repos/{owner}/{repo}/contents/{path}",
            headers=self.headers,
            json=payload,
            timeout=self.TIMEOUT
        )

        if response.status_code not in [200, 201]:
            raise GitHubError(
                f"Failed to push file {path}: {response.status_code}",
                status_code=response.status_code,
                response=_response_body(response)
            )

        body = response.json()
        commit_data = body['commit']
        logger.info("Pushed file %s: %s", path, commit_data.get('html_url'))
        return GitHubCommitResponse(
            sha=commit_data['sha'],
            url=commit_data['url'],
            html_url=commit_data['html_url'],
            content_sha=(body.get('content') or {}).get('sha')
        )
