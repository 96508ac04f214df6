"""Persist synced repositories, projects, and scored student skills."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any

from skillgraph.analyzers.proficiency import NOISE_SKILLS, score_skill
from skillgraph.analyzers.skills import canonical_skill_name
from skillgraph.core.concurrency import gather_bounded
from skillgraph.core.db import (
    Datastore,
    DatastoreError,
    db_delete_student_skill,
    db_find_node,
    db_get_or_create_node,
    db_get_or_create_source,
    db_link_project_node,
    db_upsert_student_skill,
)
from skillgraph.core.models import (
    InferredSkill,
    RepositorySummary,
    StudentSkillRecord,
    to_iso,
    utc_now,
)

LOGGER = logging.getLogger(__name__)

PERSIST_CONCURRENCY = 6


@dataclass(frozen=True)
class PersistStats:
    saved_repos: int = 0
    saved_skills: int = 0
    saved_projects: int = 0
    student_skills_updated: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


def _repo_row(student_id: str, repo: RepositorySummary, now: datetime) -> dict[str, Any]:
    return {
        "student_id": student_id,
        "github_repo_id": repo.id,
        "name": repo.name,
        "full_name": repo.full_name,
        "description": repo.description,
        "html_url": repo.html_url,
        "is_private": repo.private,
        "default_branch": repo.default_branch,
        "language": repo.language,
        "topics": ",".join(repo.topics),
        "stars": repo.stars,
        "forks": repo.forks,
        "watchers": repo.watchers,
        "open_issues": repo.open_issues,
        "pushed_at": repo.pushed_at,
        "repo_updated_at": repo.updated_at,
        "last_synced_at": to_iso(now),
        "raw": repo.to_dict(),
    }


def _project_row(
    student_id: str, source_id: Any, repo: RepositorySummary, now: datetime
) -> dict[str, Any]:
    return {
        "student_id": student_id,
        "source_id": source_id,
        "name": repo.name,
        "description": repo.description,
        "url": repo.html_url,
        "source_external_id": str(repo.id),
        "metadata": {
            "stars": repo.stars,
            "forks": repo.forks,
            "watchers": repo.watchers,
            "language": repo.language,
            "topics": list(repo.topics),
            "private": repo.private,
            "pushed_at": repo.pushed_at,
            "created_at": repo.created_at,
            "open_issues": repo.open_issues,
            "default_branch": repo.default_branch,
            "full_name": repo.full_name,
        },
        "updated_at": to_iso(now),
        "last_synced_at": to_iso(now),
    }


async def _upsert_project(
    store: Datastore, student_id: str, source_id: Any, repo: RepositorySummary, now: datetime
) -> dict[str, Any]:
    record = _project_row(student_id, source_id, repo, now)
    existing = await store.find(
        "projects",
        {"student_id": student_id, "source_id": source_id, "source_external_id": str(repo.id)},
    )
    if existing:
        return await store.update("projects", existing["id"], record)
    return await store.insert("projects", record)


async def _persist_repository(
    store: Datastore, student_id: str, source_id: Any, repo: RepositorySummary, now: datetime
) -> tuple[bool, bool]:
    saved = await store.upsert(
        "github_repos", _repo_row(student_id, repo, now), on_conflict="student_id,github_repo_id"
    )
    if not saved or saved.get("id") is None:
        return False, False

    for language, size in repo.language_bytes.items():
        await store.upsert(
            "github_repo_languages",
            {"repo_id": saved["id"], "language": language, "bytes": size},
            on_conflict="repo_id,language",
        )
    for topic in repo.topics:
        await store.upsert(
            "github_repo_topics",
            {"repo_id": saved["id"], "topic": topic},
            on_conflict="repo_id,topic",
        )

    if source_id is None:
        return True, False
    project = await _upsert_project(store, student_id, source_id, repo, now)
    if not project or project.get("id") is None:
        return True, False

    for name in (*repo.languages, *repo.topics):
        skill = await db_get_or_create_node(store, "skill", canonical_skill_name(name))
        if skill:
            await db_link_project_node(store, project["id"], skill)
    for language in repo.languages:
        technology = await db_get_or_create_node(store, "technology", canonical_skill_name(language))
        if technology:
            await db_link_project_node(store, project["id"], technology)
    return True, True


async def update_student_skills(
    store: Datastore,
    student_id: str,
    skills: Sequence[InferredSkill],
    repositories: Sequence[RepositorySummary],
    now: datetime | None = None,
) -> int:
    """Score each inferred skill, upsert `student_skills`, and drop stale noise labels."""
    now = now or utc_now()
    inferred = {canonical_skill_name(item.skill) for item in skills}
    updated = 0

    for item in skills:
        node = await db_get_or_create_node(store, "skill", canonical_skill_name(item.skill))
        if node is None:
            continue
        scored = score_skill(node.name, repositories)
        record = StudentSkillRecord(
            student_id=student_id,
            skill_id=node.id,
            proficiency_score=scored.proficiency,
            confidence_score=scored.confidence,
            usage_count=scored.evidence.repo_count,
            last_used=scored.evidence.last_used or now,
        )
        try:
            await db_upsert_student_skill(store, record)
        except DatastoreError as exc:
            LOGGER.warning("Could not upsert student skill %s: %s", node.name, exc)
            continue
        updated += 1

    for label in NOISE_SKILLS:
        if label in inferred:
            continue
        node = await db_find_node(store, "skill", label)
        if node is not None:
            await db_delete_student_skill(store, student_id, node.id)
    return updated


async def persist_github_data(
    store: Datastore,
    student_id: str,
    repositories: Sequence[RepositorySummary],
    skills: Sequence[InferredSkill],
    now: datetime | None = None,
) -> PersistStats:
    """Write repositories, project links, skills, and student scores for one sync pass."""
    now = now or utc_now()
    source = await db_get_or_create_source(store, "github", "github")
    source_id = (source or {}).get("id")

    results = await gather_bounded(
        PERSIST_CONCURRENCY,
        (_persist_repository(store, student_id, source_id, repo, now) for repo in repositories),
        return_exceptions=True,
    )
    saved_repos = 0
    saved_projects = 0
    for repo, result in zip(repositories, results):
        if isinstance(result, BaseException):
            LOGGER.warning("Failed to persist repository %s: %s", repo.full_name, result)
            continue
        saved_repos += int(result[0])
        saved_projects += int(result[1])

    saved_skills = 0
    for item in skills:
        if await db_get_or_create_node(store, "skill", canonical_skill_name(item.skill)):
            saved_skills += 1

    updated = await update_student_skills(store, student_id, skills, repositories, now=now)
    return PersistStats(
        saved_repos=saved_repos,
        saved_skills=saved_skills,
        saved_projects=saved_projects,
        student_skills_updated=updated,
    )
