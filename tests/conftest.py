from __future__ import annotations

import base64
import copy
import itertools
import json
from typing import Any

import httpx
import pytest

from skillgraph.core.cache import ScanCache
from skillgraph.core.config import Settings
from skillgraph.core.db import DatastoreError
from skillgraph.core.nlp_client import EntityServiceClient
from skillgraph.fetchers.github_client import GitHubClient


def _matches(row: dict[str, Any], filters: dict[str, Any] | None) -> bool:
    for column, expected in (filters or {}).items():
        value = row.get(column)
        if isinstance(expected, (list, tuple, set)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


class MemoryDatastore:
    """In-memory stand-in for the Supabase tables."""

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.rpc_calls: list[tuple[str, dict[str, Any]]] = []
        self.rpc_results: dict[str, Any] = {}
        self.failing_tables: set[str] = set()
        self._ids = itertools.count(1)

    def rows(self, table: str) -> list[dict[str, Any]]:
        return self.tables.setdefault(table, [])

    def _check(self, table: str) -> None:
        if table in self.failing_tables:
            raise DatastoreError(f"{table} unavailable")

    async def find(self, table: str, filters: dict[str, Any]) -> dict[str, Any] | None:
        rows = await self.select(table, filters, limit=1)
        return rows[0] if rows else None

    async def select(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        lte: dict[str, Any] | None = None,
        order_by: str | None = None,
        ascending: bool = True,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        self._check(table)
        rows = [row for row in self.rows(table) if _matches(row, filters)]
        for column, bound in (lte or {}).items():
            rows = [row for row in rows if row.get(column) is not None and row[column] <= bound]
        if order_by:
            rows.sort(key=lambda row: (row.get(order_by) is None, row.get(order_by) or ""))
            if not ascending:
                rows.reverse()
        if limit is not None:
            rows = rows[:limit]
        return copy.deepcopy(rows)

    async def insert(self, table: str, record: dict[str, Any]) -> dict[str, Any]:
        self._check(table)
        row = copy.deepcopy(record)
        row.setdefault("id", next(self._ids))
        self.rows(table).append(row)
        return copy.deepcopy(row)

    async def update(self, table: str, row_id: Any, patch: dict[str, Any]) -> dict[str, Any]:
        self._check(table)
        for row in self.rows(table):
            if row.get("id") == row_id:
                row.update(copy.deepcopy(patch))
                return copy.deepcopy(row)
        return {}

    async def upsert(self, table: str, record: dict[str, Any], on_conflict: str) -> dict[str, Any]:
        self._check(table)
        keys = [key.strip() for key in on_conflict.split(",")]
        for row in self.rows(table):
            if all(row.get(key) == record.get(key) for key in keys):
                row.update(copy.deepcopy(record))
                return copy.deepcopy(row)
        return await self.insert(table, record)

    async def delete(self, table: str, filters: dict[str, Any]) -> None:
        self._check(table)
        self.tables[table] = [row for row in self.rows(table) if not _matches(row, filters)]

    async def rpc(self, function: str, params: dict[str, Any]) -> Any:
        self.rpc_calls.append((function, params))
        return self.rpc_results.get(function)


class FakeGitHub:
    """Route table for an `httpx.MockTransport` standing in for api.github.com."""

    def __init__(self) -> None:
        self.routes: dict[str, Any] = {}
        self.calls: list[str] = []

    def add_repo(
        self,
        owner: str,
        name: str,
        repo_id: int,
        *,
        language: str | None = None,
        languages: dict[str, int] | None = None,
        topics: list[str] | None = None,
        description: str = "",
        stars: int = 0,
        pushed_at: str = "2026-01-01T00:00:00Z",
        files: dict[str, str] | None = None,
        commits: int = 3,
    ) -> dict[str, Any]:
        payload = {
            "id": repo_id,
            "name": name,
            "full_name": f"{owner}/{name}",
            "owner": {"login": owner},
            "description": description,
            "private": False,
            "html_url": f"https://github.com/{owner}/{name}",
            "default_branch": "main",
            "language": language,
            "topics": topics or [],
            "stargazers_count": stars,
            "forks_count": 0,
            "open_issues_count": 0,
            "watchers_count": stars,
            "created_at": "2025-01-01T00:00:00Z",
            "updated_at": pushed_at,
            "pushed_at": pushed_at,
        }
        self.routes.setdefault("/user/repos", []).append(payload)
        base = f"/repos/{owner}/{name}"
        self.routes[f"{base}/languages"] = languages or {}
        self.routes[f"{base}/commits"] = [{"sha": f"c{i}"} for i in range(commits)]
        tree = []
        for index, (path, content) in enumerate((files or {}).items()):
            sha = f"{repo_id}-{index}"
            tree.append({"path": path, "type": "blob", "sha": sha, "size": len(content)})
            self.routes[f"{base}/git/blobs/{sha}"] = {
                "sha": sha,
                "encoding": "base64",
                "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            }
        self.routes[f"{base}/git/trees/main"] = {"tree": tree}
        return payload

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append(path)
        route = self.routes.get(path)
        if route is None:
            return httpx.Response(404, json={"message": "Not Found"})
        if isinstance(route, httpx.Response):
            return route
        return httpx.Response(200, json=route)

    def client_factory(self, token: str) -> GitHubClient:
        return GitHubClient(
            token,
            rate_limit=1000.0,
            attempts=1,
            transport=httpx.MockTransport(self.handler),
        )

    def calls_matching(self, fragment: str) -> list[str]:
        return [call for call in self.calls if fragment in call]


class FakeEntityService:
    def __init__(self) -> None:
        self.entities: list[dict[str, Any]] = []
        self.fail_extract = False
        self.requests: list[tuple[str, Any]] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content or b"{}")
        self.requests.append((request.url.path, payload))
        if request.url.path == "/extract/entities":
            if self.fail_extract:
                return httpx.Response(503, text="model loading")
            return httpx.Response(200, json={"entities": self.entities})
        if request.url.path == "/embed":
            return httpx.Response(200, json={"embedding": [0.25, 0.5, 0.75]})
        return httpx.Response(404)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def client(self) -> EntityServiceClient:
        return EntityServiceClient("http://nlp.test", transport=self.transport())


@pytest.fixture
def memory_store() -> MemoryDatastore:
    return MemoryDatastore()


@pytest.fixture
def fake_github() -> FakeGitHub:
    github = FakeGitHub()
    github.routes["/user"] = {
        "id": 7,
        "login": "alice",
        "name": "Alice",
        "html_url": "https://github.com/alice",
        "public_repos": 2,
        "followers": 1,
        "following": 0,
    }
    return github


@pytest.fixture
def fake_entities() -> FakeEntityService:
    return FakeEntityService()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        supabase_url="",
        supabase_key="",
        github_token="static-token",
        github_rate_limit=1000.0,
        deep_scan_budget=35,
        blob_concurrency=4,
    )


@pytest.fixture
def scan_cache() -> ScanCache:
    return ScanCache(capacity=600)
