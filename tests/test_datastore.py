from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest

from skillgraph.core.db import (
    DatastoreError,
    SupabaseDatastore,
    db_get_or_create_node,
    db_load_cached_profile,
)


class RecordingQuery:
    def __init__(self, calls: list, data: list) -> None:
        self.calls = calls
        self.data = data

    def __getattr__(self, name: str):
        def method(*args, **kwargs):
            self.calls.append((name, args, kwargs))
            return self

        return method

    def execute(self):
        return SimpleNamespace(data=self.data)


class RecordingClient:
    def __init__(self, data: list) -> None:
        self.calls: list = []
        self.data = data

    def table(self, name: str) -> RecordingQuery:
        self.calls.append(("table", (name,), {}))
        return RecordingQuery(self.calls, self.data)


def test_select_translates_filters() -> None:
    client = RecordingClient([{"id": 1}])
    store = SupabaseDatastore(lambda: client)

    rows = asyncio.run(
        store.select(
            "sync_queue",
            {"status": ["queued", "failed"], "locked_at": None, "student_id": "s1"},
            lte={"next_run_at": "2026-05-01T00:00:00+00:00"},
            order_by="next_run_at",
            limit=1,
        )
    )

    assert rows == [{"id": 1}]
    assert client.calls == [
        ("table", ("sync_queue",), {}),
        ("select", ("*",), {}),
        ("in_", ("status", ["queued", "failed"]), {}),
        ("is_", ("locked_at", "null"), {}),
        ("eq", ("student_id", "s1"), {}),
        ("lte", ("next_run_at", "2026-05-01T00:00:00+00:00"), {}),
        ("order", ("next_run_at",), {"desc": False}),
        ("limit", (1,), {}),
    ]


def test_client_failures_are_wrapped() -> None:
    def broken_client():
        raise RuntimeError("connection refused")

    store = SupabaseDatastore(broken_client)
    with pytest.raises(DatastoreError, match="insert sync_runs failed"):
        asyncio.run(store.insert("sync_runs", {"status": "running"}))


def test_get_or_create_node_normalizes_name(memory_store) -> None:
    first = asyncio.run(db_get_or_create_node(memory_store, "skill", "  React "))
    second = asyncio.run(db_get_or_create_node(memory_store, "skill", "react"))

    assert first == second
    assert first.name == "react"
    assert memory_store.rows("skills") == [{"name": "react", "id": first.id}]
    assert asyncio.run(db_get_or_create_node(memory_store, "concept", "   ")) is None


def test_cached_profile_joins_skill_names(memory_store) -> None:
    memory_store.rows("github_repos").append(
        {"id": 5, "student_id": "s1", "name": "dash", "raw": {"big": True}, "pushed_at": "2026"}
    )
    memory_store.rows("skills").append({"id": 9, "name": "react"})
    memory_store.rows("student_skills").append(
        {
            "student_id": "s1",
            "skill_id": 9,
            "proficiency_score": 0.5,
            "confidence_score": 0.4,
            "usage_count": 1,
            "last_used": "2026-01-01T00:00:00+00:00",
        }
    )
    memory_store.rows("integration_accounts").append(
        {"student_id": "s1", "provider": "github", "external_username": "alice"}
    )

    profile = asyncio.run(db_load_cached_profile(memory_store, "s1"))

    assert profile["repositories"] == [{"id": 5, "student_id": "s1", "name": "dash", "pushed_at": "2026"}]
    assert profile["skills"][0]["skill"] == "react"
    assert profile["github_user"]["login"] == "alice"
    assert profile["totals"] == {"repositories": 1, "skills": 1, "projects": 0}
