from datetime import datetime, timezone

import pytest

from skillgraph.analyzers.proficiency import collect_evidence, score_evidence, score_skill
from skillgraph.core.models import RepositorySummary, SkillEvidence


def _repo(repo_id: int, **overrides) -> RepositorySummary:
    values = {
        "id": repo_id,
        "owner": "alice",
        "name": f"repo-{repo_id}",
        "full_name": f"alice/repo-{repo_id}",
    }
    values.update(overrides)
    return RepositorySummary(**values)


REPOSITORIES = [
    _repo(
        1,
        language_bytes={"Python": 9999},
        languages=("Python",),
        stars=3,
        commit_sample_count=10,
        pushed_at="2026-01-01T00:00:00Z",
    ),
    _repo(2, topics=("python",), commit_sample_count=2, pushed_at="2026-03-01T00:00:00Z"),
    _repo(3, language_bytes={"Go": 100}, stars=50, commit_sample_count=10),
]


def test_collect_evidence_matches_language_topic_and_text() -> None:
    evidence = collect_evidence("Python", REPOSITORIES)

    assert evidence.skill == "python"
    assert evidence.repo_count == 2
    assert evidence.total_bytes == 9999
    assert evidence.total_commits == 12
    assert evidence.total_stars == 3
    assert evidence.last_used == datetime(2026, 3, 1, tzinfo=timezone.utc)


def test_text_mention_counts_without_bytes() -> None:
    repos = [_repo(4, description="Experiments with scikit learn pipelines", commit_sample_count=1)]
    evidence = collect_evidence("scikit-learn", repos)
    assert evidence.repo_count == 1
    assert evidence.total_bytes == 0


def test_score_formula() -> None:
    scored = score_skill("python", REPOSITORIES)
    assert scored.proficiency == pytest.approx(0.62)
    assert scored.confidence == pytest.approx(0.7)


def test_scores_clamped_to_unit_interval() -> None:
    heavy = SkillEvidence(
        skill="rust", repo_count=10, total_bytes=10**12, total_commits=200, total_stars=100
    )
    assert score_evidence(heavy) == (1.0, 1.0)
    assert score_evidence(SkillEvidence(skill="rust")) == (0.0, 0.0)


def test_unmatched_skill_has_no_evidence() -> None:
    scored = score_skill("elixir", REPOSITORIES)
    assert scored.evidence.repo_count == 0
    assert scored.evidence.last_used is None
    assert scored.proficiency == 0.0
