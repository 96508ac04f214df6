"""Supabase datastore access and typed helpers for the skill graph tables."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from threading import Lock
from typing import Any, Protocol

from supabase import Client, create_client

from skillgraph.core.config import get_settings
from skillgraph.core.models import (
    GraphNode,
    IntelligenceRun,
    NodeType,
    QueueJob,
    StudentSkillRecord,
    SyncRun,
    to_iso,
    utc_now,
)

LOGGER = logging.getLogger(__name__)

NODE_TABLES: dict[str, str] = {
    "skill": "skills",
    "technology": "technologies",
    "concept": "concepts",
}
PROJECT_LINK_TABLES: dict[str, tuple[str, str]] = {
    "skill": ("project_skills", "skill_id"),
    "technology": ("project_technologies", "technology_id"),
    "concept": ("project_concepts", "concept_id"),
}
ELIGIBLE_JOB_STATUSES = ("queued", "failed")

_client: Client | None = None
_client_lock = Lock()


class DatastoreError(Exception):
    """Raised when a datastore call fails."""


class Datastore(Protocol):
    async def find(self, table: str, filters: dict[str, Any]) -> dict[str, Any] | None: ...

    async def select(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        lte: dict[str, Any] | None = None,
        order_by: str | None = None,
        ascending: bool = True,
        limit: int | None = None,
    ) -> list[dict[str, Any]]: ...

    async def insert(self, table: str, record: dict[str, Any]) -> dict[str, Any]: ...

    async def update(self, table: str, row_id: Any, patch: dict[str, Any]) -> dict[str, Any]: ...

    async def upsert(
        self, table: str, record: dict[str, Any], on_conflict: str
    ) -> dict[str, Any]: ...

    async def delete(self, table: str, filters: dict[str, Any]) -> None: ...

    async def rpc(self, function: str, params: dict[str, Any]) -> Any: ...


def get_supabase_client() -> Client:
    """Return a singleton Supabase client."""
    global _client
    if _client is not None:
        return _client

    with _client_lock:
        if _client is None:
            settings = get_settings()
            if not settings.supabase_url or not settings.supabase_key:
                raise RuntimeError(
                    "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY (or SUPABASE_KEY) must be set"
                )
            _client = create_client(settings.supabase_url, settings.supabase_key)
    return _client


def _apply_filters(query: Any, filters: dict[str, Any] | None) -> Any:
    for column, value in (filters or {}).items():
        if isinstance(value, (list, tuple, set)):
            query = query.in_(column, list(value))
        elif value is None:
            query = query.is_(column, "null")
        else:
            query = query.eq(column, value)
    return query


class SupabaseDatastore:
    """Datastore backed by the Supabase client; blocking calls run in worker threads."""

    def __init__(self, client_factory: Callable[[], Client] = get_supabase_client) -> None:
        self._client_factory = client_factory

    async def _run(self, description: str, operation: Callable[[Client], Any]) -> Any:
        def _call() -> Any:
            return operation(self._client_factory())

        try:
            return await asyncio.to_thread(_call)
        except Exception as exc:  # noqa: BLE001
            raise DatastoreError(f"{description} failed: {exc}") from exc

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
        def _query(client: Client) -> list[dict[str, Any]]:
            query = _apply_filters(client.table(table).select("*"), filters)
            for column, bound in (lte or {}).items():
                query = query.lte(column, bound)
            if order_by:
                query = query.order(order_by, desc=not ascending)
            if limit is not None:
                query = query.limit(limit)
            return query.execute().data or []

        return await self._run(f"select {table}", _query)

    async def insert(self, table: str, record: dict[str, Any]) -> dict[str, Any]:
        def _insert(client: Client) -> dict[str, Any]:
            rows = client.table(table).insert(record).execute().data or []
            return rows[0] if rows else {}

        return await self._run(f"insert {table}", _insert)

    async def update(self, table: str, row_id: Any, patch: dict[str, Any]) -> dict[str, Any]:
        def _update(client: Client) -> dict[str, Any]:
            rows = client.table(table).update(patch).eq("id", row_id).execute().data or []
            return rows[0] if rows else {}

        return await self._run(f"update {table}", _update)

    async def upsert(self, table: str, record: dict[str, Any], on_conflict: str) -> dict[str, Any]:
        def _upsert(client: Client) -> dict[str, Any]:
            rows = (
                client.table(table).upsert(record, on_conflict=on_conflict).execute().data or []
            )
            return rows[0] if rows else {}

        return await self._run(f"upsert {table}", _upsert)

    async def delete(self, table: str, filters: dict[str, Any]) -> None:
        def _delete(client: Client) -> None:
            _apply_filters(client.table(table).delete(), filters).execute()

        await self._run(f"delete {table}", _delete)

    async def rpc(self, function: str, params: dict[str, Any]) -> Any:
        def _call(client: Client) -> Any:
            return client.rpc(function, params).execute().data

        return await self._run(f"rpc {function}", _call)


def _normalize_node_name(name: str) -> str:
    return (name or "").strip().lower()


async def db_get_or_create_node(
    store: Datastore, node_type: NodeType, name: str
) -> GraphNode | None:
    """Find a skill/technology/concept row by name, creating it when missing."""
    normalized = _normalize_node_name(name)
    if not normalized:
        return None
    table = NODE_TABLES[node_type]
    row = await store.find(table, {"name": normalized})
    if row is None:
        row = await store.upsert(table, {"name": normalized}, on_conflict="name")
    if not row or row.get("id") is None:
        return None
    return GraphNode(id=row["id"], name=normalized, node_type=node_type)


async def db_find_node(store: Datastore, node_type: NodeType, name: str) -> GraphNode | None:
    normalized = _normalize_node_name(name)
    if not normalized:
        return None
    row = await store.find(NODE_TABLES[node_type], {"name": normalized})
    if not row or row.get("id") is None:
        return None
    return GraphNode(id=row["id"], name=normalized, node_type=node_type)


async def db_get_or_create_source(store: Datastore, name: str, kind: str) -> dict[str, Any]:
    normalized = _normalize_node_name(name)
    row = await store.find("sources", {"name": normalized})
    if row:
        return row
    return await store.upsert("sources", {"name": normalized, "kind": kind}, on_conflict="name")


async def db_update_node_embedding(
    store: Datastore, node: GraphNode, embedding: list[float]
) -> None:
    if not embedding:
        return
    await store.update(NODE_TABLES[node.node_type], node.id, {"embedding_384": embedding})


async def db_link_project_node(store: Datastore, project_id: Any, node: GraphNode) -> None:
    table, column = PROJECT_LINK_TABLES[node.node_type]
    record: dict[str, Any] = {"project_id": project_id, column: node.id}
    if node.node_type == "skill":
        record["usage_count"] = 1
        record["last_used"] = to_iso(utc_now())
    await store.upsert(table, record, on_conflict=f"project_id,{column}")


async def db_upsert_student_skill(store: Datastore, record: StudentSkillRecord) -> dict[str, Any]:
    return await store.upsert("student_skills", record.to_row(), on_conflict="student_id,skill_id")


async def db_delete_student_skill(store: Datastore, student_id: str, skill_id: Any) -> None:
    await store.delete("student_skills", {"student_id": student_id, "skill_id": skill_id})


async def db_create_sync_run(
    store: Datastore,
    student_id: str | None,
    provider: str,
    status: str,
    message: str | None = None,
    details: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> SyncRun:
    started = now or utc_now()
    row = await store.insert(
        "sync_runs",
        {
            "student_id": student_id,
            "provider": provider,
            "status": status,
            "message": message,
            "details": details or {},
            "started_at": to_iso(started),
            "finished_at": to_iso(started) if status in {"success", "failed"} else None,
        },
    )
    return SyncRun.from_row(row)


async def db_update_sync_run(
    store: Datastore,
    run_id: Any,
    status: str,
    message: str | None = None,
    details: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> SyncRun | None:
    if run_id is None:
        return None
    row = await store.update(
        "sync_runs",
        run_id,
        {
            "status": status,
            "message": message,
            "details": details or {},
            "finished_at": to_iso(now or utc_now()),
        },
    )
    return SyncRun.from_row(row) if row else None


async def db_enqueue_job(
    store: Datastore,
    student_id: str,
    provider: str,
    payload: dict[str, Any] | None = None,
    max_attempts: int = 5,
    now: datetime | None = None,
) -> QueueJob:
    """Insert one queued job eligible to run immediately."""
    row = await store.insert(
        "sync_queue",
        {
            "student_id": student_id,
            "provider": provider,
            "payload": payload or {},
            "status": "queued",
            "attempts": 0,
            "max_attempts": max_attempts,
            "next_run_at": to_iso(now or utc_now()),
            "last_error": None,
        },
    )
    if not row:
        raise DatastoreError("Failed to enqueue job: no row returned")
    return QueueJob.from_row(row)


async def db_claim_next_job(store: Datastore, now: datetime | None = None) -> QueueJob | None:
    """Lease the oldest eligible job and mark it running with one more attempt."""
    now_iso = to_iso(now or utc_now())
    rows = await store.select(
        "sync_queue",
        {"status": list(ELIGIBLE_JOB_STATUSES)},
        lte={"next_run_at": now_iso},
        order_by="next_run_at",
        ascending=True,
        limit=1,
    )
    if not rows:
        return None
    job = QueueJob.from_row(rows[0])
    updated = await store.update(
        "sync_queue",
        job.id,
        {"status": "running", "attempts": job.attempts + 1, "locked_at": now_iso},
    )
    return QueueJob.from_row(updated) if updated else None


async def db_finish_job(
    store: Datastore,
    job_id: Any,
    status: str,
    error: str | None = None,
    next_run_at: datetime | None = None,
) -> QueueJob | None:
    patch: dict[str, Any] = {"status": status, "last_error": error}
    if next_run_at is not None:
        patch["next_run_at"] = to_iso(next_run_at)
    row = await store.update("sync_queue", job_id, patch)
    return QueueJob.from_row(row) if row else None


async def db_create_intelligence_run(
    store: Datastore, student_id: str, provider: str, now: datetime | None = None
) -> IntelligenceRun:
    row = await store.insert(
        "intelligence_runs",
        {
            "student_id": student_id,
            "provider": provider,
            "status": "running",
            "started_at": to_iso(now or utc_now()),
        },
    )
    if not row or row.get("id") is None:
        raise DatastoreError("Failed to create intelligence run")
    return IntelligenceRun.from_row(row)


async def db_finish_intelligence_run(
    store: Datastore,
    run_id: Any,
    status: str,
    stats: dict[str, Any] | None = None,
    error_message: str | None = None,
) -> None:
    patch: dict[str, Any] = {"status": status, "finished_at": to_iso(utc_now())}
    if stats is not None:
        patch["stats"] = stats
    if error_message:
        patch["error_message"] = error_message
    await store.update("intelligence_runs", run_id, patch)


async def db_resolve_alias(store: Datastore, alias: str) -> tuple[str, NodeType] | None:
    if not alias:
        return None
    row = await store.find("entity_aliases", {"alias": alias})
    if not row or not row.get("canonical_name"):
        return None
    target_type = row.get("target_type")
    if target_type not in NODE_TABLES:
        return None
    return str(row["canonical_name"]), target_type


async def db_get_integration_token(
    store: Datastore, student_id: str, provider: str = "github"
) -> str | None:
    row = await store.find(
        "integration_accounts", {"student_id": student_id, "provider": provider}
    )
    token = (row or {}).get("access_token")
    return token if isinstance(token, str) and token.strip() else None


async def db_recompute_student_scores(store: Datastore, student_id: str) -> None:
    await store.rpc("recompute_student_skill_scores", {"input_student_id": student_id})


async def db_match_knowledge_nodes(
    store: Datastore, embedding: list[float], threshold: float, count: int
) -> list[dict[str, Any]]:
    data = await store.rpc(
        "match_knowledge_nodes",
        {"query_embedding": embedding, "match_threshold": threshold, "match_count": count},
    )
    return data if isinstance(data, list) else []


async def db_load_cached_profile(store: Datastore, student_id: str) -> dict[str, Any]:
    """Read the stored repositories and scored skills for one student."""
    repositories, skill_rows, projects, integration = await asyncio.gather(
        store.select(
            "github_repos", {"student_id": student_id}, order_by="pushed_at", ascending=False
        ),
        store.select(
            "student_skills",
            {"student_id": student_id},
            order_by="proficiency_score",
            ascending=False,
        ),
        store.select(
            "projects", {"student_id": student_id}, order_by="last_synced_at", ascending=False
        ),
        store.find("integration_accounts", {"student_id": student_id, "provider": "github"}),
    )

    names: dict[Any, str] = {}
    skill_ids = [row.get("skill_id") for row in skill_rows if row.get("skill_id") is not None]
    if skill_ids:
        for row in await store.select("skills", {"id": skill_ids}):
            names[row.get("id")] = row.get("name")

    skills = [
        {
            "skill": names.get(row.get("skill_id")),
            "proficiency_score": row.get("proficiency_score"),
            "confidence_score": row.get("confidence_score"),
            "usage_count": row.get("usage_count"),
            "last_used": row.get("last_used"),
        }
        for row in skill_rows
    ]
    github_user = None
    if integration:
        github_user = {
            "login": integration.get("external_username"),
            "id": integration.get("external_user_id"),
        }
    return {
        "repositories": [
            {key: value for key, value in row.items() if key != "raw"} for row in repositories
        ],
        "skills": skills,
        "projects": projects,
        "github_user": github_user,
        "totals": {
            "repositories": len(repositories),
            "skills": len(skills),
            "projects": len(projects),
        },
    }

