"""Entity extraction, canonicalization, and knowledge-graph linking for free text."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from skillgraph.core.concurrency import gather_bounded
from skillgraph.core.db import (
    Datastore,
    db_create_intelligence_run,
    db_finish_intelligence_run,
    db_get_or_create_node,
    db_link_project_node,
    db_match_knowledge_nodes,
    db_recompute_student_scores,
    db_resolve_alias,
    db_update_node_embedding,
)
from skillgraph.core.models import GraphNode, NodeType
from skillgraph.core.nlp_client import DEFAULT_ENTITY_LABELS, EntityServiceClient, ExtractedEntity

LOGGER = logging.getLogger(__name__)

RELATION_TYPE = "RELATED_TO"
DEFAULT_EVIDENCE_WEIGHT = 0.75
DEFAULT_MATCH_THRESHOLD = 0.55
DEFAULT_MATCH_COUNT = 20
SKILL_LABELS = frozenset({"language", "framework"})
TECHNOLOGY_LABELS = frozenset({"database", "cloudservice", "tool"})
EVIDENCE_TYPES = {"github": "github_repo", "certification": "certification"}

_WHITESPACE_RE = re.compile(r"\s+")
_ENTITY_DISALLOWED_RE = re.compile(r"[^\w.+# -]")


def normalize_entity_text(value: str) -> str:
    text = _WHITESPACE_RE.sub(" ", (value or "").lower())
    return _ENTITY_DISALLOWED_RE.sub("", text)


def label_to_node_type(label: str | None) -> NodeType:
    value = (label or "").strip().lower()
    if value in SKILL_LABELS:
        return "skill"
    if value in TECHNOLOGY_LABELS:
        return "technology"
    return "concept"


def evidence_type_for(provider: str) -> str:
    return EVIDENCE_TYPES.get(provider, "notion_page")


@dataclass(frozen=True)
class IntelligenceRequest:
    student_id: str
    source_text: str
    provider: str = "manual"
    source_table: str = "notion_pages"
    source_pk: str = "manual"
    project_id: Any = None


@dataclass(frozen=True)
class IntelligenceResult:
    run_id: Any
    processed: int
    nodes: list[GraphNode] = field(default_factory=list)
    edges: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "processed": self.processed,
            "edges": self.edges,
            "nodes": [
                {"id": node.id, "name": node.name, "type": node.node_type} for node in self.nodes
            ],
        }


class IntelligencePipeline:
    """Turn free text into canonical graph nodes, mentions, evidence, and co-occurrence edges."""

    def __init__(
        self,
        store: Datastore,
        entities: EntityServiceClient,
        concurrency: int = 4,
        labels: tuple[str, ...] = DEFAULT_ENTITY_LABELS,
    ) -> None:
        self.store = store
        self.entities = entities
        self.concurrency = max(1, concurrency)
        self.labels = labels

    async def run(self, request: IntelligenceRequest) -> IntelligenceResult:
        if not (request.source_text or "").strip():
            raise ValueError("source_text is required")

        run = await db_create_intelligence_run(self.store, request.student_id, request.provider)
        LOGGER.info(
            "Intelligence run %s started student=%s provider=%s",
            run.id,
            request.student_id,
            request.provider,
        )
        try:
            extracted = await self.entities.extract_entities(request.source_text, self.labels)
            linked = await gather_bounded(
                self.concurrency,
                (self._process_entity(request, run.id, entity) for entity in extracted),
            )
            nodes = _unique_nodes(node for node in linked if node is not None)
            edges = await self._create_cooccurrence_edges(nodes)
            await db_recompute_student_scores(self.store, request.student_id)
        except Exception as exc:
            LOGGER.exception("Intelligence run %s failed", run.id)
            await db_finish_intelligence_run(
                self.store,
                run.id,
                "failed",
                error_message=str(exc) or "Intelligence pipeline failed",
            )
            raise

        processed = sum(1 for node in linked if node is not None)
        await db_finish_intelligence_run(
            self.store, run.id, "success", stats={"processed_entities": processed}
        )
        LOGGER.info("Intelligence run %s finished entities=%d edges=%d", run.id, processed, edges)
        return IntelligenceResult(run_id=run.id, processed=processed, nodes=nodes, edges=edges)

    async def _resolve(self, entity: ExtractedEntity) -> tuple[str, NodeType]:
        text = entity.text.strip()
        fallback_type = label_to_node_type(entity.label)
        alias = normalize_entity_text(text)
        resolved = await db_resolve_alias(self.store, alias) if alias else None
        if resolved is None:
            return text, fallback_type
        return resolved

    async def _process_entity(
        self, request: IntelligenceRequest, run_id: Any, entity: ExtractedEntity
    ) -> GraphNode | None:
        extracted_text = (entity.text or "").strip()
        if not extracted_text:
            return None

        canonical_name, node_type = await self._resolve(entity)
        node = await db_get_or_create_node(self.store, node_type, canonical_name)
        if node is None:
            return None

        embedding = await self.entities.embed(canonical_name)
        await db_update_node_embedding(self.store, node, embedding)

        await self.store.insert(
            "entity_mentions",
            {
                "student_id": request.student_id,
                "project_id": request.project_id,
                "source_table": request.source_table,
                "source_pk": str(request.source_pk),
                "source_text": request.source_text,
                "extracted_text": extracted_text,
                "normalized_text": node.name,
                "target_type": node_type,
                "target_id": node.id,
                "label": entity.label or None,
                "extraction_confidence": entity.score,
                "metadata": {"start": entity.start, "end": entity.end, "run_id": run_id},
            },
        )

        if node_type == "skill":
            await self.store.insert(
                "student_skill_evidence",
                {
                    "student_id": request.student_id,
                    "skill_id": node.id,
                    "evidence_type": evidence_type_for(request.provider),
                    "evidence_ref": str(request.source_pk),
                    "weight": (
                        entity.score if entity.score is not None else DEFAULT_EVIDENCE_WEIGHT
                    ),
                    "metadata": {"source_table": request.source_table, "label": entity.label},
                },
            )

        if request.project_id:
            await db_link_project_node(self.store, request.project_id, node)
        return node

    async def _create_cooccurrence_edges(self, nodes: list[GraphNode]) -> int:
        created = 0
        for index, source in enumerate(nodes):
            for target in nodes[index + 1 :]:
                await self.store.insert(
                    "knowledge_edges",
                    {
                        "source_id": source.id,
                        "target_id": target.id,
                        "source_type": source.node_type,
                        "target_type": target.node_type,
                        "relation_type": RELATION_TYPE,
                        "weight": 1,
                    },
                )
                created += 1
        return created


def _unique_nodes(nodes: Any) -> list[GraphNode]:
    seen: dict[tuple[str, Any], GraphNode] = {}
    for node in nodes:
        seen.setdefault((node.node_type, node.id), node)
    return list(seen.values())


async def search_knowledge_nodes(
    store: Datastore,
    entities: EntityServiceClient,
    text: str,
    threshold: float = DEFAULT_MATCH_THRESHOLD,
    count: int = DEFAULT_MATCH_COUNT,
) -> list[dict[str, Any]]:
    """Embed a query and return the nearest graph nodes by vector similarity."""
    query = (text or "").strip()
    if not query:
        raise ValueError("text is required")
    embedding = await entities.embed(query)
    return await db_match_knowledge_nodes(store, embedding, threshold, count)
