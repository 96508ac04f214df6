from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from skillgraph.api.dependencies import Services, current_student_id, get_services
from skillgraph.core.credentials import ReauthorizationRequired
from skillgraph.core.db import DatastoreError, db_load_cached_profile
from skillgraph.fetchers.github_client import GitHubApiError

router = APIRouter(prefix="/integrations/github", tags=["github"])


class SyncRequest(BaseModel):
    limit: int | None = Field(default=None, ge=1)
    include_private: bool = True
    allow_static: bool = True


def _needs_auth(exc: ReauthorizationRequired) -> JSONResponse:
    return JSONResponse(status_code=409, content={"error": str(exc), "needs_auth": True})


@router.post("/sync")
async def sync_github(
    payload: SyncRequest | None = None,
    student_id: str = Depends(current_student_id),
    services: Services = Depends(get_services),
) -> Any:
    payload = payload or SyncRequest()
    try:
        result = await services.orchestrator.sync_student(
            student_id,
            max_repos=payload.limit,
            include_private=payload.include_private,
            allow_static=payload.allow_static,
        )
    except ReauthorizationRequired as exc:
        return _needs_auth(exc)
    except (GitHubApiError, DatastoreError) as exc:
        return JSONResponse(
            status_code=502, content={"error": "GitHub sync failed", "details": str(exc)}
        )
    return result.to_dict()


@router.post("/background-sync")
async def background_sync(
    payload: SyncRequest | None = None,
    student_id: str = Depends(current_student_id),
    services: Services = Depends(get_services),
) -> Any:
    payload = payload or SyncRequest()
    try:
        await services.credentials.resolve(student_id, allow_static=payload.allow_static)
    except ReauthorizationRequired as exc:
        return _needs_auth(exc)

    outcome = services.tracker.trigger_sync(
        student_id,
        max_repos=payload.limit,
        include_private=payload.include_private,
        allow_static=payload.allow_static,
    )
    return JSONResponse(status_code=202 if outcome["started"] else 409, content=outcome)


@router.get("/sync-status")
async def sync_status(
    student_id: str = Depends(current_student_id),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    return services.tracker.get_status(student_id).to_dict()


@router.get("/auto-sync")
async def auto_sync(
    student_id: str = Depends(current_student_id),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    try:
        await services.credentials.resolve(student_id)
    except ReauthorizationRequired:
        return {
            "connected": False,
            "needs_auth": True,
            "repositories": [],
            "skills": [],
            "projects": [],
            "github_user": None,
        }

    async def load_cached(key: str) -> dict[str, Any]:
        return await db_load_cached_profile(services.store, key)

    data = await services.tracker.auto_sync(student_id, load_cached)
    return {"connected": True, **data}


@router.get("/data")
async def github_data(
    student_id: str = Depends(current_student_id),
    services: Services = Depends(get_services),
) -> Any:
    try:
        return await db_load_cached_profile(services.store, student_id)
    except DatastoreError as exc:
        return JSONResponse(
            status_code=502, content={"error": "Failed to load GitHub data", "details": str(exc)}
        )
