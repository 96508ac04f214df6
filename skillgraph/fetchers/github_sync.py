"""Fetch orchestration for one GitHub account: metadata, deep scans, inference, persistence."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import PurePosixPath
from typing import Any

from skillgraph.analyzers.signals import (
    has_source_extension,
    import_signals,
    is_scan_text_file,
    manifest_signals,
    readme_plain_text,
)
from skillgraph.analyzers.skills import canonical_skill_name, infer_skills
from skillgraph.core.cache import ScanCache, scan_cache_key
from skillgraph.core.concurrency import gather_bounded
from skillgraph.core.config import Settings, get_settings
from skillgraph.core.credentials import (
    CredentialResolver,
    ReauthorizationRequired,
    ResolvedCredential,
)
from skillgraph.core.db import Datastore, DatastoreError, db_create_sync_run, db_update_sync_run
from skillgraph.core.models import (
    GitHubAccount,
    InferredSkill,
    RepositorySummary,
    ScanCacheEntry,
    to_iso,
    utc_now,
)
from skillgraph.core.profile_store import PersistStats, persist_github_data
from skillgraph.fetchers.github_client import GitHubApiError, GitHubClient

LOGGER = logging.getLogger(__name__)

PROVIDER = "github"
MANIFEST_SIZE_LIMIT = 650_000
MANIFEST_FILE_LIMIT = 28
SOURCE_SIZE_LIMIT = 220_000
SOURCE_FILE_LIMIT = 44
SCAN_FILE_LIMIT = 52
SCAN_PART_CHARS = 22_000
SCAN_TEXT_CHARS = 50_000
DEFAULT_EXCLUDED_PATH_PARTS = frozenset(
    {
        "node_modules",
        "dist",
        "build",
        ".git",
        "__pycache__",
        ".next",
        ".cache",
        ".venv",
        "venv",
        "vendor",
        "target",
        "coverage",
    }
)

ClientFactory = Callable[[str], GitHubClient]


@dataclass(frozen=True)
class SyncResult:
    account: GitHubAccount
    repositories: list[RepositorySummary]
    skills: list[InferredSkill]
    synced_at: datetime
    credential_source: str | None = None
    sync_run_id: Any = None
    persisted: PersistStats | None = None
    cache_hits: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": PROVIDER,
            "synced_at": to_iso(self.synced_at),
            "source": self.credential_source,
            "sync_run_id": self.sync_run_id,
            "github_user": {
                "id": self.account.id,
                "login": self.account.login,
                "name": self.account.name,
                "avatar_url": self.account.avatar_url,
                "profile_url": self.account.profile_url,
                "public_repos": self.account.public_repos,
                "followers": self.account.followers,
                "following": self.account.following,
            },
            "repositories": [repo.to_dict() for repo in self.repositories],
            "inferred_skills": [skill.to_dict() for skill in self.skills],
            "persisted": self.persisted.to_dict() if self.persisted else None,
            "totals": {
                "repositories": len(self.repositories),
                "inferred_skills": len(self.skills),
                "cache_hits": self.cache_hits,
            },
        }


@dataclass
class _PassCounters:
    cache_hits: int = 0
    degraded: list[str] = field(default_factory=list)


def is_excluded_path(path: str, excluded_parts: Iterable[str] = DEFAULT_EXCLUDED_PATH_PARTS) -> bool:
    parts = {part.lower() for part in PurePosixPath(path).parts}
    return bool(parts & {part.lower() for part in excluded_parts})


def select_scan_candidates(
    tree: list[dict[str, Any]],
    excluded_parts: Iterable[str] = DEFAULT_EXCLUDED_PATH_PARTS,
) -> list[dict[str, Any]]:
    """Pick manifest/readme/workflow blobs first, then source blobs, under size and count caps."""
    excluded = frozenset(excluded_parts)
    blobs = [
        entry
        for entry in tree
        if entry.get("type") == "blob"
        and entry.get("path")
        and entry.get("sha")
        and not is_excluded_path(entry["path"], excluded)
    ]
    manifests = [
        entry
        for entry in blobs
        if int(entry.get("size") or 0) <= MANIFEST_SIZE_LIMIT and is_scan_text_file(entry["path"])
    ][:MANIFEST_FILE_LIMIT]
    sources = [
        entry
        for entry in blobs
        if int(entry.get("size") or 0) <= SOURCE_SIZE_LIMIT and has_source_extension(entry["path"])
    ][:SOURCE_FILE_LIMIT]
    return [*manifests, *sources][:SCAN_FILE_LIMIT]


def canonical_unique(tokens: Iterable[str]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for token in tokens:
        skill = canonical_skill_name(token)
        if skill:
            seen.setdefault(skill, None)
    return tuple(seen)


def build_scan_entry(files: Iterable[tuple[str, str]]) -> ScanCacheEntry:
    """Run the extractors over decoded `(path, text)` pairs."""
    manifest_tokens: list[str] = []
    import_tokens: list[str] = []
    text_parts: list[str] = []
    for path, text in files:
        if not text:
            continue
        base = PurePosixPath(path).name
        if is_scan_text_file(path):
            visible = readme_plain_text(text) if base.lower().startswith("readme") else text
            text_parts.append(visible[:SCAN_PART_CHARS])
            manifest_tokens.extend(manifest_signals(base, text))
        if has_source_extension(path):
            import_tokens.extend(import_signals(path, text))
    return ScanCacheEntry(
        manifest_signals=canonical_unique(manifest_tokens),
        import_signals=canonical_unique(import_tokens),
        scan_text="\n".join(text_parts)[:SCAN_TEXT_CHARS],
    )


class GitHubSyncOrchestrator:
    def __init__(
        self,
        store: Datastore | None,
        cache: ScanCache,
        settings: Settings | None = None,
        credentials: CredentialResolver | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self.store = store
        self.cache = cache
        self.settings = settings or get_settings()
        self.credentials = credentials
        self._client_factory = client_factory or self._default_client

    def _default_client(self, token: str) -> GitHubClient:
        return GitHubClient(
            token,
            base_url=self.settings.github_api_base,
            timeout_seconds=self.settings.github_timeout_seconds,
            rate_limit=self.settings.github_rate_limit,
        )

    def resolve_limit(self, max_repos: int | None) -> int:
        limit = max_repos if max_repos and max_repos > 0 else self.settings.default_max_repos
        return max(1, min(limit, self.settings.max_repos_ceiling))

    async def sync_student(
        self,
        student_id: str,
        max_repos: int | None = None,
        include_private: bool = True,
        allow_static: bool = True,
        persist: bool = True,
    ) -> SyncResult:
        if self.credentials is None:
            raise ReauthorizationRequired("No credential resolver configured", student_id=student_id)
        credential = await self.credentials.resolve(student_id, allow_static=allow_static)
        return await self.sync(
            credential,
            max_repos=max_repos,
            include_private=include_private,
            student_id=student_id if persist else None,
        )

    async def sync(
        self,
        credential: ResolvedCredential | str,
        max_repos: int | None = None,
        include_private: bool = True,
        student_id: str | None = None,
    ) -> SyncResult:
        """Run one full pass; any fatal failure is recorded on the sync run and re-raised."""
        if isinstance(credential, ResolvedCredential):
            token, source = credential.token, credential.source.value
        else:
            token, source = credential, None
        limit = self.resolve_limit(max_repos)
        record_runs = self.store is not None and bool(student_id)

        run = None
        if record_runs:
            run = await db_create_sync_run(
                self.store, student_id, PROVIDER, "running", "Fetching GitHub data..."
            )
        LOGGER.info("GitHub sync started student=%s limit=%d", student_id or "-", limit)

        try:
            counters = _PassCounters()
            async with self._client_factory(token) as client:
                user_payload, repo_payloads = await asyncio.gather(
                    client.get_user(), client.list_repositories(limit, include_private)
                )
                repo_payloads = [
                    payload for payload in repo_payloads[:limit] if payload.get("id") is not None
                ]
                repositories = list(
                    await asyncio.gather(
                        *(
                            self._summarize(client, payload, index, counters)
                            for index, payload in enumerate(repo_payloads)
                        )
                    )
                )

            skills = infer_skills(repositories)
            persisted = None
            if self.store is not None and student_id:
                persisted = await persist_github_data(self.store, student_id, repositories, skills)

            result = SyncResult(
                account=GitHubAccount.from_api(user_payload),
                repositories=repositories,
                skills=skills,
                synced_at=utc_now(),
                credential_source=source,
                sync_run_id=run.id if run else None,
                persisted=persisted,
                cache_hits=counters.cache_hits,
            )
        except Exception as exc:
            LOGGER.exception("GitHub sync failed student=%s", student_id or "-")
            if run is not None:
                await self._record_failure(run.id, exc)
            raise

        if run is not None:
            await db_update_sync_run(
                self.store,
                run.id,
                "success",
                f"Synced {len(repositories)} repositories",
                details={
                    "repositories": len(repositories),
                    "inferred_skills": len(skills),
                    "cache_hits": counters.cache_hits,
                    "degraded": counters.degraded,
                    "credential_source": source,
                    "persisted": persisted.to_dict() if persisted else None,
                },
            )
        LOGGER.info(
            "GitHub sync finished student=%s repositories=%d skills=%d cache_hits=%d",
            student_id or "-",
            len(repositories),
            len(skills),
            counters.cache_hits,
        )
        return result

    async def _record_failure(self, run_id: Any, exc: Exception) -> None:
        try:
            await db_update_sync_run(
                self.store,
                run_id,
                "failed",
                str(exc) or exc.__class__.__name__,
                details={"error": exc.__class__.__name__},
            )
        except DatastoreError:
            LOGGER.exception("Could not record failed sync run %s", run_id)

    async def _summarize(
        self,
        client: GitHubClient,
        payload: dict[str, Any],
        index: int,
        counters: _PassCounters,
    ) -> RepositorySummary:
        owner = (payload.get("owner") or {}).get("login") or "unknown"
        name = str(payload.get("name") or "")
        full_name = payload.get("full_name") or f"{owner}/{name}"

        languages, commits = await asyncio.gather(
            client.get_languages(owner, name),
            client.get_commits(owner, name),
            return_exceptions=True,
        )
        if isinstance(languages, BaseException):
            LOGGER.warning("Languages unavailable for %s: %s", full_name, languages)
            counters.degraded.append(f"{full_name}:languages")
            languages = {}
        if isinstance(commits, BaseException):
            LOGGER.warning("Commits unavailable for %s: %s", full_name, commits)
            counters.degraded.append(f"{full_name}:commits")
            commits = []

        scan = None
        if index < self.settings.deep_scan_budget:
            scan = await self._deep_scan(client, payload, owner, name, counters)
        return RepositorySummary.from_api(
            payload, language_bytes=languages, commit_sample_count=len(commits), scan=scan
        )

    async def _deep_scan(
        self,
        client: GitHubClient,
        payload: dict[str, Any],
        owner: str,
        name: str,
        counters: _PassCounters,
    ) -> ScanCacheEntry | None:
        branch = payload.get("default_branch") or "main"
        key = scan_cache_key(
            owner, name, branch, payload.get("pushed_at") or payload.get("updated_at")
        )
        cached = self.cache.get(key)
        if cached is not None:
            counters.cache_hits += 1
            return cached

        try:
            tree = await client.get_tree(owner, name, branch)
        except (GitHubApiError, ReauthorizationRequired) as exc:
            LOGGER.warning("Tree unavailable for %s/%s, using metadata only: %s", owner, name, exc)
            counters.degraded.append(f"{owner}/{name}:tree")
            return None

        candidates = select_scan_candidates(tree)
        blobs = await gather_bounded(
            self.settings.blob_concurrency,
            (client.get_blob(owner, name, entry["sha"], entry["path"]) for entry in candidates),
            return_exceptions=True,
        )
        files: list[tuple[str, str]] = []
        for entry, blob in zip(candidates, blobs):
            if isinstance(blob, BaseException):
                LOGGER.warning("Blob %s in %s/%s skipped: %s", entry["path"], owner, name, blob)
                continue
            files.append((entry["path"], blob))

        entry = build_scan_entry(files)
        if candidates and not files:
            counters.degraded.append(f"{owner}/{name}:blobs")
            return entry
        self.cache.put(key, entry)
        return entry
