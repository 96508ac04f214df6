"""Async GitHub REST client used by the sync pipeline."""

from __future__ import annotations

import asyncio
import base64
import logging
from pathlib import PurePosixPath
from typing import Any
from urllib.parse import quote

import httpx

from skillgraph.core.concurrency import AsyncRateLimiter
from skillgraph.core.credentials import ReauthorizationRequired

LOGGER = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com"
REPO_AFFILIATION = "owner,collaborator,organization_member"
COMMIT_SAMPLE_SIZE = 10
MAX_PER_PAGE = 100
BINARY_EXTENSIONS = frozenset(
    {
        ".png",
        ".jpg",
        ".jpeg",
        ".gif",
        ".webp",
        ".svg",
        ".ico",
        ".pdf",
        ".zip",
        ".gz",
        ".tar",
        ".mp4",
        ".mp3",
        ".wav",
        ".woff",
        ".woff2",
        ".ttf",
        ".otf",
        ".exe",
        ".dll",
        ".bin",
    }
)


class GitHubApiError(Exception):
    """Raised when a GitHub API call fails after retries."""

    def __init__(self, message: str, status_code: int | None = None, path: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.path = path


def is_probably_binary(path: str, content: bytes) -> bool:
    """Detect binary payload by extension and null-byte check."""
    if PurePosixPath(path.lower()).suffix in BINARY_EXTENSIONS:
        return True
    return b"\x00" in content


def decode_blob_payload(payload: dict[str, Any], path: str = "") -> str:
    """Decode a git blob/contents payload to text; undecodable or binary blobs yield ''."""
    content = payload.get("content")
    if not isinstance(content, str):
        return ""
    if payload.get("encoding") != "base64":
        return content
    try:
        raw = base64.b64decode(content.replace("\n", ""), validate=False)
    except ValueError:
        return ""
    if is_probably_binary(path, raw):
        return ""
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return raw.decode("utf-8", errors="replace")


class GitHubClient:
    """Thin wrapper over the GitHub REST API with pacing and retry on transient failures."""

    def __init__(
        self,
        token: str,
        base_url: str = GITHUB_API_BASE,
        timeout_seconds: float = 20.0,
        rate_limit: float = 10.0,
        attempts: int = 2,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.attempts = max(1, attempts)
        self._limiter = AsyncRateLimiter(rate_limit)
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers(token),
            timeout=timeout_seconds,
            transport=transport,
        )

    @staticmethod
    def _headers(token: str) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": "skillgraph-sync",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def __aenter__(self) -> GitHubClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        last_error: Exception | None = None
        for attempt in range(1, self.attempts + 1):
            await self._limiter.acquire()
            try:
                response = await self._client.get(path, params=params)
            except httpx.HTTPError as exc:
                last_error = exc
            else:
                if response.status_code == 401:
                    raise ReauthorizationRequired("GitHub rejected the access token")
                if response.status_code < 400:
                    try:
                        return response.json()
                    except ValueError as exc:
                        raise GitHubApiError(
                            f"GitHub returned non-JSON for {path}",
                            status_code=response.status_code,
                            path=path,
                        ) from exc
                error = GitHubApiError(
                    f"GitHub API HTTP {response.status_code} for {path}: {response.text[:200]}",
                    status_code=response.status_code,
                    path=path,
                )
                if response.status_code < 500:
                    raise error
                last_error = error
            if attempt < self.attempts:
                await asyncio.sleep(min(10.0, 0.8 * (2 ** (attempt - 1))))

        if isinstance(last_error, GitHubApiError):
            raise last_error
        raise GitHubApiError(f"Failed API request {path}: {last_error}", path=path) from last_error

    async def get_user(self) -> dict[str, Any]:
        payload = await self._get_json("/user")
        if not isinstance(payload, dict):
            raise GitHubApiError("Invalid /user payload", path="/user")
        return payload

    async def list_repositories(
        self, limit: int, include_private: bool = True
    ) -> list[dict[str, Any]]:
        params = {
            "sort": "updated",
            "direction": "desc",
            "per_page": min(max(limit, 1), MAX_PER_PAGE),
            "visibility": "all" if include_private else "public",
            "affiliation": REPO_AFFILIATION,
        }
        payload = await self._get_json("/user/repos", params=params)
        return payload if isinstance(payload, list) else []

    async def get_languages(self, owner: str, repo: str) -> dict[str, int]:
        payload = await self._get_json(f"/repos/{owner}/{repo}/languages")
        if not isinstance(payload, dict):
            return {}
        return {str(name): int(size or 0) for name, size in payload.items()}

    async def get_commits(
        self, owner: str, repo: str, per_page: int = COMMIT_SAMPLE_SIZE
    ) -> list[dict[str, Any]]:
        payload = await self._get_json(
            f"/repos/{owner}/{repo}/commits", params={"per_page": per_page}
        )
        return payload if isinstance(payload, list) else []

    async def get_tree(self, owner: str, repo: str, ref: str) -> list[dict[str, Any]]:
        payload = await self._get_json(
            f"/repos/{owner}/{repo}/git/trees/{quote(ref, safe='')}",
            params={"recursive": 1},
        )
        tree = payload.get("tree") if isinstance(payload, dict) else None
        if not isinstance(tree, list):
            raise GitHubApiError(f"Invalid tree payload for {owner}/{repo}@{ref}")
        return tree

    async def get_blob(self, owner: str, repo: str, sha: str, path: str = "") -> str:
        payload = await self._get_json(f"/repos/{owner}/{repo}/git/blobs/{sha}")
        if not isinstance(payload, dict):
            return ""
        return decode_blob_payload(payload, path)
