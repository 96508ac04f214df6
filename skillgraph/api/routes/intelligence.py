from typing import Any
from uuid import uuid4

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from skillgraph.analyzers.intelligence import IntelligenceRequest, search_knowledge_nodes
from skillgraph.api.dependencies import Services, current_student_id, get_services
from skillgraph.core.db import DatastoreError
from skillgraph.core.nlp_client import EntityServiceError

router = APIRouter(tags=["intelligence"])


class ExtractRequest(BaseModel):
    source_text: str = Field(min_length=1)
    provider: str = "manual"
    source_table: str = "notion_pages"
    source_pk: str | None = None
    project_id: int | str | None = None


class SemanticSearchRequest(BaseModel):
    text: str = Field(min_length=1)
    threshold: float = Field(default=0.55, ge=0, le=1)
    count: int = Field(default=20, ge=1, le=200)


@router.post("/intelligence/extract")
async def extract(
    request: ExtractRequest,
    student_id: str = Depends(current_student_id),
    services: Services = Depends(get_services),
) -> Any:
    try:
        result = await services.pipeline.run(
            IntelligenceRequest(
                student_id=student_id,
                source_text=request.source_text,
                provider=request.provider,
                source_table=request.source_table,
                source_pk=request.source_pk or str(uuid4()),
                project_id=request.project_id,
            )
        )
    except ValueError as exc:
        return JSONResponse(status_code=400, content={"error": str(exc)})
    except (DatastoreError, EntityServiceError) as exc:
        return JSONResponse(
            status_code=502,
            content={"error": "Intelligence extraction failed", "details": str(exc)},
        )
    return {"success": True, **result.to_dict()}


@router.post("/search/semantic")
async def semantic_search(
    request: SemanticSearchRequest,
    _: str = Depends(current_student_id),
    services: Services = Depends(get_services),
) -> Any:
    try:
        results = await search_knowledge_nodes(
            services.store,
            services.entities,
            request.text,
            threshold=request.threshold,
            count=request.count,
        )
    except (DatastoreError, EntityServiceError) as exc:
        return JSONResponse(
            status_code=502, content={"error": "Semantic search failed", "details": str(exc)}
        )
    return {"query": request.text, "results": results}
