"""Durable queue worker that runs intelligence jobs with retry and dead-letter accounting."""

from __future__ import annotations

import argparse
import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from skillgraph.analyzers.intelligence import IntelligencePipeline, IntelligenceRequest
from skillgraph.core.config import configure_logging, get_settings
from skillgraph.core.db import (
    Datastore,
    SupabaseDatastore,
    db_claim_next_job,
    db_enqueue_job,
    db_finish_job,
)
from skillgraph.core.models import QueueJob, utc_now
from skillgraph.core.nlp_client import EntityServiceClient

LOGGER = logging.getLogger(__name__)

DEFAULT_BACKOFF_SECONDS = 300
DEFAULT_MAX_ATTEMPTS = 5
MAX_ERROR_CHARS = 1000
SOURCE_TEXT_FIELDS = ("title", "description", "readme", "tags")


@dataclass(frozen=True)
class WorkerResult:
    processed: bool
    job_id: Any = None
    status: str | None = None
    error: str | None = None
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"processed": self.processed}
        if self.job_id is not None:
            data["job_id"] = self.job_id
        if self.status:
            data["status"] = self.status
        if self.error:
            data["error"] = self.error
        if self.reason:
            data["reason"] = self.reason
        return data


def payload_source_text(payload: dict[str, Any]) -> str:
    text = payload.get("sourceText")
    if isinstance(text, str) and text.strip():
        return text
    parts = []
    for key in SOURCE_TEXT_FIELDS:
        value = payload.get(key)
        if isinstance(value, list):
            value = ", ".join(str(item) for item in value if item)
        if value:
            parts.append(str(value))
    return "\n".join(parts)


def build_request(job: QueueJob) -> IntelligenceRequest:
    """Map a queued job's payload onto an intelligence pipeline request."""
    payload = job.payload
    default_table = "github_repos" if job.provider == "github" else "notion_pages"
    source_pk = payload.get("sourcePk") or payload.get("repoId") or payload.get("pageId") or job.id
    return IntelligenceRequest(
        student_id=job.student_id,
        source_text=payload_source_text(payload),
        provider=job.provider,
        source_table=payload.get("sourceTable") or default_table,
        source_pk=str(source_pk),
        project_id=payload.get("projectId"),
    )


async def enqueue_job(
    store: Datastore,
    student_id: str,
    provider: str,
    payload: dict[str, Any] | None = None,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> QueueJob:
    if not student_id or not (provider or "").strip():
        raise ValueError("student_id and provider are required")
    job = await db_enqueue_job(
        store, student_id, provider.strip(), payload or {}, max_attempts=max(1, max_attempts)
    )
    LOGGER.info("Enqueued job %s provider=%s student=%s", job.id, job.provider, student_id)
    return job


async def run_worker_once(
    store: Datastore,
    pipeline: IntelligencePipeline,
    backoff_seconds: int = DEFAULT_BACKOFF_SECONDS,
    clock: Callable[[], datetime] = utc_now,
) -> WorkerResult:
    """Lease the oldest eligible job, run it, and record success, retry, or dead-letter."""
    job = await db_claim_next_job(store, clock())
    if job is None:
        return WorkerResult(processed=False, reason="no queued jobs")

    LOGGER.info("Leased job %s attempt=%d/%d", job.id, job.attempts, job.max_attempts)
    try:
        await pipeline.run(build_request(job))
    except Exception as exc:  # noqa: BLE001
        error = (str(exc) or exc.__class__.__name__)[:MAX_ERROR_CHARS]
        exhausted = job.attempts >= job.max_attempts
        status = "dead" if exhausted else "failed"
        next_run_at = None if exhausted else clock() + timedelta(seconds=backoff_seconds)
        await db_finish_job(store, job.id, status, error=error, next_run_at=next_run_at)
        LOGGER.warning("Job %s %s after attempt %d: %s", job.id, status, job.attempts, error)
        return WorkerResult(processed=True, job_id=job.id, status=status, error=error)

    await db_finish_job(store, job.id, "success")
    LOGGER.info("Job %s succeeded", job.id)
    return WorkerResult(processed=True, job_id=job.id, status="success")


async def drain_queue(
    store: Datastore,
    pipeline: IntelligencePipeline,
    max_jobs: int,
    backoff_seconds: int = DEFAULT_BACKOFF_SECONDS,
) -> int:
    processed = 0
    while processed < max_jobs:
        result = await run_worker_once(store, pipeline, backoff_seconds=backoff_seconds)
        if not result.processed:
            break
        processed += 1
    return processed


async def _run(once: bool, max_jobs: int) -> int:
    settings = get_settings()
    store = SupabaseDatastore()
    async with EntityServiceClient(
        settings.nlp_service_url, timeout_seconds=settings.nlp_timeout_seconds
    ) as entities:
        pipeline = IntelligencePipeline(
            store, entities, concurrency=settings.intelligence_concurrency
        )
        return await drain_queue(
            store,
            pipeline,
            max_jobs=1 if once else max_jobs,
            backoff_seconds=settings.queue_backoff_seconds,
        )


def main() -> int:
    parser = argparse.ArgumentParser(description="skillgraph queue worker")
    parser.add_argument("--once", action="store_true", help="Process at most one eligible job")
    parser.add_argument(
        "--max-jobs",
        type=int,
        default=100,
        help="Upper bound on jobs processed in one invocation",
    )
    args = parser.parse_args()

    configure_logging()
    processed = asyncio.run(_run(args.once, max(args.max_jobs, 1)))
    print(f"processed={processed}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
