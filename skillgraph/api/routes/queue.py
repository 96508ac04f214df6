from typing import Any
from uuid import uuid4

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from skillgraph.api.dependencies import Services, current_student_id, get_services
from skillgraph.core.db import DatastoreError
from skillgraph.workers.job_runner import enqueue_job, run_worker_once

router = APIRouter(tags=["queue"])


class EnqueueRequest(BaseModel):
    provider: str = Field(min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)
    max_attempts: int | None = Field(default=None, ge=1)


class NotionSyncRequest(BaseModel):
    source_text: str = Field(min_length=1)
    source_pk: str | None = None
    title: str | None = None
    tags: list[str] | None = None
    project_id: int | str | None = None


class CertificationSyncRequest(BaseModel):
    name: str = ""
    issuer: str = ""
    source_text: str | None = None
    source_pk: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


def _upstream_error(message: str, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=502, content={"error": message, "details": str(exc)})


async def _enqueue(
    services: Services, student_id: str, provider: str, payload: dict[str, Any]
) -> Any:
    try:
        job = await enqueue_job(
            services.store,
            student_id,
            provider,
            payload,
            max_attempts=services.settings.queue_max_attempts,
        )
    except DatastoreError as exc:
        return _upstream_error(f"{provider} sync enqueue failed", exc)
    return JSONResponse(
        status_code=202, content={"queued": True, "provider": provider, "job": job.to_dict()}
    )


@router.post("/sync/queue")
async def queue_job(
    request: EnqueueRequest,
    student_id: str = Depends(current_student_id),
    services: Services = Depends(get_services),
) -> Any:
    try:
        job = await enqueue_job(
            services.store,
            student_id,
            request.provider,
            request.payload,
            max_attempts=request.max_attempts or services.settings.queue_max_attempts,
        )
    except ValueError as exc:
        return JSONResponse(status_code=400, content={"error": str(exc)})
    except DatastoreError as exc:
        return _upstream_error("Failed to enqueue sync job", exc)
    return JSONResponse(status_code=201, content={"queued": True, "job": job.to_dict()})


@router.post("/sync/worker/run-once")
async def worker_run_once(
    _: str = Depends(current_student_id),
    services: Services = Depends(get_services),
) -> Any:
    try:
        result = await run_worker_once(
            services.store,
            services.pipeline,
            backoff_seconds=services.settings.queue_backoff_seconds,
        )
    except DatastoreError as exc:
        return _upstream_error("Sync worker execution failed", exc)
    return result.to_dict()


@router.post("/integrations/notion/sync")
async def notion_sync(
    request: NotionSyncRequest,
    student_id: str = Depends(current_student_id),
    services: Services = Depends(get_services),
) -> Any:
    payload: dict[str, Any] = {
        "sourceTable": "notion_pages",
        "sourcePk": request.source_pk or str(uuid4()),
        "sourceText": request.source_text,
        "title": request.title,
        "tags": request.tags,
    }
    if request.project_id is not None:
        payload["projectId"] = request.project_id
    return await _enqueue(services, student_id, "notion", payload)


@router.post("/integrations/certifications/sync")
async def certification_sync(
    request: CertificationSyncRequest,
    student_id: str = Depends(current_student_id),
    services: Services = Depends(get_services),
) -> Any:
    source_text = (request.source_text or f"{request.name} {request.issuer}").strip()
    if not source_text:
        return JSONResponse(
            status_code=400, content={"error": "source_text or name/issuer is required"}
        )
    payload = {
        "sourceTable": "certifications",
        "sourcePk": request.source_pk or str(uuid4()),
        "sourceText": source_text,
        "metadata": request.metadata,
    }
    return await _enqueue(services, student_id, "certification", payload)
