"""Record types shared by the sync pipeline, queue worker, and datastore helpers."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

SyncRunStatus = Literal["running", "success", "failed"]
QueueJobStatus = Literal["queued", "running", "success", "failed", "dead"]
NodeType = Literal["skill", "technology", "concept"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).replace(microsecond=0).isoformat()


def parse_ts(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp (GitHub or Postgres style) into an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


@dataclass(frozen=True)
class GitHubAccount:
    id: int | None
    login: str
    name: str | None = None
    avatar_url: str | None = None
    profile_url: str | None = None
    public_repos: int | None = None
    followers: int | None = None
    following: int | None = None

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> GitHubAccount:
        return cls(
            id=payload.get("id"),
            login=str(payload.get("login") or ""),
            name=payload.get("name"),
            avatar_url=payload.get("avatar_url"),
            profile_url=payload.get("html_url"),
            public_repos=payload.get("public_repos"),
            followers=payload.get("followers"),
            following=payload.get("following"),
        )


@dataclass(frozen=True)
class RepositorySummary:
    id: int
    owner: str
    name: str
    full_name: str
    description: str = ""
    private: bool = False
    html_url: str = ""
    default_branch: str = "main"
    language: str | None = None
    languages: tuple[str, ...] = ()
    language_bytes: dict[str, int] = field(default_factory=dict)
    topics: tuple[str, ...] = ()
    stars: int = 0
    forks: int = 0
    open_issues: int = 0
    watchers: int = 0
    commit_sample_count: int = 0
    created_at: str | None = None
    updated_at: str | None = None
    pushed_at: str | None = None
    manifest_signals: tuple[str, ...] = ()
    import_signals: tuple[str, ...] = ()
    scan_text: str = ""

    @classmethod
    def from_api(
        cls,
        payload: dict[str, Any],
        language_bytes: dict[str, int] | None = None,
        commit_sample_count: int = 0,
        scan: ScanCacheEntry | None = None,
    ) -> RepositorySummary:
        owner = payload.get("owner") or {}
        byte_map = {str(key): int(value or 0) for key, value in (language_bytes or {}).items()}
        topics = payload.get("topics")
        return cls(
            id=int(payload["id"]),
            owner=str(owner.get("login") or "unknown"),
            name=str(payload.get("name") or ""),
            full_name=str(payload.get("full_name") or ""),
            description=str(payload.get("description") or ""),
            private=bool(payload.get("private")),
            html_url=str(payload.get("html_url") or ""),
            default_branch=str(payload.get("default_branch") or "main"),
            language=payload.get("language"),
            languages=tuple(byte_map),
            language_bytes=byte_map,
            topics=tuple(str(item) for item in topics) if isinstance(topics, list) else (),
            stars=int(payload.get("stargazers_count") or 0),
            forks=int(payload.get("forks_count") or 0),
            open_issues=int(payload.get("open_issues_count") or 0),
            watchers=int(payload.get("watchers_count") or 0),
            commit_sample_count=commit_sample_count,
            created_at=payload.get("created_at"),
            updated_at=payload.get("updated_at"),
            pushed_at=payload.get("pushed_at"),
            manifest_signals=scan.manifest_signals if scan else (),
            import_signals=scan.import_signals if scan else (),
            scan_text=scan.scan_text if scan else "",
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["languages"] = list(self.languages)
        data["topics"] = list(self.topics)
        data["manifest_signals"] = list(self.manifest_signals)
        data["import_signals"] = list(self.import_signals)
        data.pop("scan_text")
        return data


@dataclass(frozen=True)
class ScanCacheEntry:
    manifest_signals: tuple[str, ...] = ()
    import_signals: tuple[str, ...] = ()
    scan_text: str = ""


@dataclass(frozen=True)
class InferredSkill:
    skill: str
    score: float

    def to_dict(self) -> dict[str, Any]:
        return {"skill": self.skill, "score": self.score}


@dataclass(frozen=True)
class SkillEvidence:
    skill: str
    repo_count: int = 0
    total_bytes: int = 0
    total_commits: int = 0
    total_stars: int = 0
    last_used: datetime | None = None


@dataclass(frozen=True)
class StudentSkillRecord:
    student_id: str
    skill_id: Any
    proficiency_score: float
    confidence_score: float
    usage_count: int
    last_used: datetime

    def to_row(self) -> dict[str, Any]:
        return {
            "student_id": self.student_id,
            "skill_id": self.skill_id,
            "proficiency_score": self.proficiency_score,
            "confidence_score": self.confidence_score,
            "usage_count": self.usage_count,
            "last_used": to_iso(self.last_used),
        }


@dataclass(frozen=True)
class GraphNode:
    id: Any
    name: str
    node_type: NodeType


@dataclass(frozen=True)
class SyncRun:
    id: Any
    student_id: str | None
    provider: str
    status: SyncRunStatus
    message: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> SyncRun:
        return cls(
            id=row.get("id"),
            student_id=row.get("student_id"),
            provider=str(row.get("provider") or ""),
            status=row.get("status") or "running",
            message=row.get("message"),
            details=row.get("details") or {},
            started_at=parse_ts(row.get("started_at")),
            finished_at=parse_ts(row.get("finished_at")),
        )


@dataclass(frozen=True)
class IntelligenceRun:
    id: Any
    student_id: str
    provider: str
    status: SyncRunStatus
    stats: dict[str, Any] = field(default_factory=dict)
    error_message: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> IntelligenceRun:
        return cls(
            id=row.get("id"),
            student_id=row.get("student_id"),
            provider=str(row.get("provider") or ""),
            status=row.get("status") or "running",
            stats=row.get("stats") or {},
            error_message=row.get("error_message"),
        )


@dataclass(frozen=True)
class QueueJob:
    id: Any
    student_id: str
    provider: str
    payload: dict[str, Any]
    status: QueueJobStatus
    attempts: int = 0
    max_attempts: int = 5
    next_run_at: datetime | None = None
    last_error: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> QueueJob:
        payload = row.get("payload")
        return cls(
            id=row.get("id"),
            student_id=row.get("student_id"),
            provider=str(row.get("provider") or ""),
            payload=payload if isinstance(payload, dict) else {},
            status=row.get("status") or "queued",
            attempts=int(row.get("attempts") or 0),
            max_attempts=int(row.get("max_attempts") or 5),
            next_run_at=parse_ts(row.get("next_run_at")),
            last_error=row.get("last_error"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "student_id": self.student_id,
            "provider": self.provider,
            "payload": self.payload,
            "status": self.status,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "next_run_at": to_iso(self.next_run_at),
            "last_error": self.last_error,
        }


@dataclass(slots=True)
class BackgroundSyncStatus:
    in_progress: bool = False
    started_at: datetime | None = None
    last_sync_at: datetime | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "in_progress": self.in_progress,
            "started_at": to_iso(self.started_at),
            "last_sync_at": to_iso(self.last_sync_at),
            "error": self.error,
        }
