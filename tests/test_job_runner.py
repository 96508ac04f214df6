from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from skillgraph.core.models import QueueJob, utc_now
from skillgraph.workers.job_runner import (
    build_request,
    drain_queue,
    enqueue_job,
    payload_source_text,
    run_worker_once,
)


class RecordingPipeline:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.requests = []

    async def run(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return None


class Clock:
    def __init__(self) -> None:
        self.current = utc_now() + timedelta(minutes=1)

    def __call__(self):
        return self.current

    def advance(self, minutes: int) -> None:
        self.current += timedelta(minutes=minutes)


def test_successful_job_is_marked_success(memory_store) -> None:
    pipeline = RecordingPipeline()
    payload = {"repoId": 42, "title": "dash", "tags": ["react", "vite"]}
    job = asyncio.run(enqueue_job(memory_store, "s1", "github", payload))

    result = asyncio.run(run_worker_once(memory_store, pipeline, clock=Clock()))

    assert result.to_dict() == {"processed": True, "job_id": job.id, "status": "success"}
    request = pipeline.requests[0]
    assert request.student_id == "s1"
    assert request.provider == "github"
    assert request.source_table == "github_repos"
    assert request.source_pk == "42"
    assert request.source_text == "dash\nreact, vite"
    row = memory_store.rows("sync_queue")[0]
    assert row["status"] == "success"
    assert row["attempts"] == 1


def test_failed_job_backs_off_then_dead_letters(memory_store) -> None:
    pipeline = RecordingPipeline(error=RuntimeError("entity service down"))
    clock = Clock()
    asyncio.run(enqueue_job(memory_store, "s1", "notion", {"sourceText": "Rust"}, max_attempts=3))

    first = asyncio.run(run_worker_once(memory_store, pipeline, clock=clock))
    assert first.status == "failed"
    assert first.error == "entity service down"
    row = memory_store.rows("sync_queue")[0]
    assert row["next_run_at"] > row["locked_at"]

    clock.advance(1)
    assert asyncio.run(run_worker_once(memory_store, pipeline, clock=clock)).processed is False

    clock.advance(5)
    assert asyncio.run(run_worker_once(memory_store, pipeline, clock=clock)).status == "failed"
    clock.advance(6)
    third = asyncio.run(run_worker_once(memory_store, pipeline, clock=clock))
    assert third.status == "dead"

    clock.advance(60)
    idle = asyncio.run(run_worker_once(memory_store, pipeline, clock=clock))
    assert idle.to_dict() == {"processed": False, "reason": "no queued jobs"}
    row = memory_store.rows("sync_queue")[0]
    assert row["attempts"] == 3
    assert row["last_error"] == "entity service down"
    assert len(pipeline.requests) == 3


def test_empty_queue_reports_nothing_processed(memory_store) -> None:
    result = asyncio.run(run_worker_once(memory_store, RecordingPipeline()))
    assert result.processed is False


def test_drain_queue_processes_up_to_limit(memory_store) -> None:
    for index in range(3):
        asyncio.run(enqueue_job(memory_store, "s1", "notion", {"sourceText": f"note {index}"}))
    pipeline = RecordingPipeline()

    processed = asyncio.run(drain_queue(memory_store, pipeline, max_jobs=2))

    assert processed == 2
    assert [request.source_text for request in pipeline.requests] == ["note 0", "note 1"]


def test_enqueue_requires_student_and_provider(memory_store) -> None:
    with pytest.raises(ValueError):
        asyncio.run(enqueue_job(memory_store, "", "github"))
    with pytest.raises(ValueError):
        asyncio.run(enqueue_job(memory_store, "s1", "  "))
    assert memory_store.rows("sync_queue") == []


def test_build_request_defaults() -> None:
    job = QueueJob(
        id=9,
        student_id="s1",
        provider="certification",
        payload={"sourceTable": "certifications", "description": "AWS Solutions Architect"},
        status="running",
    )
    request = build_request(job)
    assert request.source_table == "certifications"
    assert request.source_pk == "9"
    assert request.source_text == "AWS Solutions Architect"
    assert payload_source_text({"sourceText": "  "}) == ""
