from __future__ import annotations

import asyncio

import pytest

from skillgraph.analyzers.intelligence import (
    IntelligencePipeline,
    IntelligenceRequest,
    label_to_node_type,
    normalize_entity_text,
    search_knowledge_nodes,
)
from skillgraph.core.nlp_client import EntityServiceError


def _names(memory_store, table: str) -> set[str]:
    return {row["name"] for row in memory_store.rows(table)}


def test_label_mapping_and_normalization() -> None:
    assert label_to_node_type("Language") == "skill"
    assert label_to_node_type("Framework") == "skill"
    assert label_to_node_type("CloudService") == "technology"
    assert label_to_node_type("Tool") == "technology"
    assert label_to_node_type("Concept") == "concept"
    assert label_to_node_type(None) == "concept"
    assert normalize_entity_text("Node.JS") == "node.js"
    assert normalize_entity_text("C#  Dev!") == "c# dev"


def test_pipeline_links_entities_into_graph(memory_store, fake_entities) -> None:
    memory_store.rows("entity_aliases").append(
        {"alias": "reactjs", "canonical_name": "react", "target_type": "skill"}
    )
    fake_entities.entities = [
        {"text": "Python", "label": "Language", "start": 0, "end": 6, "score": 0.9},
        {"text": "ReactJS", "label": "Framework"},
        {"text": "PostgreSQL", "label": "Database", "score": 0.8},
        {"text": "python", "label": "Language"},
        {"text": "  ", "label": "Concept"},
    ]
    pipeline = IntelligencePipeline(memory_store, fake_entities.client())
    request = IntelligenceRequest(
        student_id="s1",
        source_text="Built a Python + ReactJS app on PostgreSQL",
        provider="github",
        source_table="github_repos",
        source_pk="42",
        project_id="p1",
    )

    result = asyncio.run(pipeline.run(request))

    assert result.processed == 4
    assert {node.name for node in result.nodes} == {"python", "react", "postgresql"}
    assert result.edges == 3
    assert _names(memory_store, "skills") == {"python", "react"}
    assert _names(memory_store, "technologies") == {"postgresql"}
    assert all(row["embedding_384"] == [0.25, 0.5, 0.75] for row in memory_store.rows("skills"))

    mentions = memory_store.rows("entity_mentions")
    assert len(mentions) == 4
    assert {row["normalized_text"] for row in mentions} == {"python", "react", "postgresql"}

    evidence = memory_store.rows("student_skill_evidence")
    assert len(evidence) == 3
    assert {row["evidence_type"] for row in evidence} == {"github_repo"}
    assert sorted(row["weight"] for row in evidence) == [0.75, 0.75, 0.9]

    edges = memory_store.rows("knowledge_edges")
    assert {row["relation_type"] for row in edges} == {"RELATED_TO"}
    assert len(memory_store.rows("project_skills")) == 2
    assert len(memory_store.rows("project_technologies")) == 1

    assert memory_store.rpc_calls[-1] == ("recompute_student_skill_scores", {"input_student_id": "s1"})
    run = memory_store.rows("intelligence_runs")[0]
    assert run["status"] == "success"
    assert run["stats"] == {"processed_entities": 4}

    extract_calls = [body for path, body in fake_entities.requests if path == "/extract/entities"]
    assert extract_calls[0]["text"] == request.source_text


def test_extraction_failure_marks_run_failed(memory_store, fake_entities) -> None:
    fake_entities.fail_extract = True
    pipeline = IntelligencePipeline(memory_store, fake_entities.client())

    with pytest.raises(EntityServiceError):
        asyncio.run(pipeline.run(IntelligenceRequest(student_id="s1", source_text="Rust")))

    run = memory_store.rows("intelligence_runs")[0]
    assert run["status"] == "failed"
    assert "503" in run["error_message"]
    assert memory_store.rows("entity_mentions") == []


def test_empty_text_is_rejected_before_any_run(memory_store, fake_entities) -> None:
    pipeline = IntelligencePipeline(memory_store, fake_entities.client())
    with pytest.raises(ValueError):
        asyncio.run(pipeline.run(IntelligenceRequest(student_id="s1", source_text="   ")))
    assert memory_store.rows("intelligence_runs") == []


def test_semantic_search_embeds_and_matches(memory_store, fake_entities) -> None:
    memory_store.rpc_results["match_knowledge_nodes"] = [
        {"id": 1, "name": "python", "node_type": "skill", "similarity": 0.91}
    ]

    results = asyncio.run(
        search_knowledge_nodes(memory_store, fake_entities.client(), "backend python")
    )

    assert results[0]["name"] == "python"
    function, params = memory_store.rpc_calls[-1]
    assert function == "match_knowledge_nodes"
    assert params == {
        "query_embedding": [0.25, 0.5, 0.75],
        "match_threshold": 0.55,
        "match_count": 20,
    }
