"""HTTP client for the entity-extraction and embedding service."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import BaseModel, Field, ValidationError

LOGGER = logging.getLogger(__name__)

DEFAULT_ENTITY_LABELS = (
    "Language",
    "Framework",
    "Database",
    "CloudService",
    "Tool",
    "Concept",
)


class EntityServiceError(Exception):
    """Raised when the entity/embedding service fails or answers with an invalid payload."""


class ExtractedEntity(BaseModel):
    text: str
    label: str
    start: int | None = None
    end: int | None = None
    score: float | None = None


class _EntitiesResponse(BaseModel):
    entities: list[ExtractedEntity] = Field(default_factory=list)


class _EmbeddingResponse(BaseModel):
    embedding: list[float] = Field(default_factory=list)


class EntityServiceClient:
    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 45.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout_seconds,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    async def __aenter__(self) -> EntityServiceClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, path: str, body: dict[str, Any]) -> Any:
        try:
            response = await self._client.post(path, json=body)
        except httpx.HTTPError as exc:
            raise EntityServiceError(f"Entity service request {path} failed: {exc}") from exc
        if response.status_code >= 400:
            raise EntityServiceError(
                f"Entity service HTTP {response.status_code} for {path}: {response.text[:200]}"
            )
        try:
            return response.json()
        except ValueError as exc:
            raise EntityServiceError(f"Entity service returned non-JSON for {path}") from exc

    async def extract_entities(
        self, text: str, labels: tuple[str, ...] | list[str] = DEFAULT_ENTITY_LABELS
    ) -> list[ExtractedEntity]:
        payload = await self._post("/extract/entities", {"text": text, "labels": list(labels)})
        try:
            return _EntitiesResponse.model_validate(payload).entities
        except ValidationError as exc:
            raise EntityServiceError(f"Invalid entity payload: {exc}") from exc

    async def embed(self, text: str) -> list[float]:
        payload = await self._post("/embed", {"text": text})
        try:
            return _EmbeddingResponse.model_validate(payload).embedding
        except ValidationError as exc:
            raise EntityServiceError(f"Invalid embedding payload: {exc}") from exc
