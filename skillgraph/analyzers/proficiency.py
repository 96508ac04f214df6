"""Proficiency and confidence scoring from repository-level evidence."""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from skillgraph.analyzers.skills import canonical_skill_name
from skillgraph.core.models import RepositorySummary, SkillEvidence, parse_ts

USAGE_POINTS_PER_REPO = 15
USAGE_CAP = 40
VOLUME_MULTIPLIER = 5
VOLUME_CAP = 30
STAR_POINTS = 2
COMMIT_POINTS = 0.5
QUALITY_CAP = 30
CONFIDENCE_PER_DATA_POINT = 0.05

# Generic labels removed from a student's profile when the current pass no longer infers them.
NOISE_SKILLS = ("ai", "ml", "llm", "gpt", "jupyter", "notebook", "jupyter-nb", "api", "apis")


@dataclass(frozen=True)
class ProficiencyScore:
    evidence: SkillEvidence
    proficiency: float
    confidence: float


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def _language_bytes_for(skill: str, repo: RepositorySummary) -> int | None:
    matched = None
    for language, size in repo.language_bytes.items():
        if canonical_skill_name(language) == skill:
            matched = (matched or 0) + max(0, int(size or 0))
    return matched


def _text_mentions(skill: str, repo: RepositorySummary) -> bool:
    text = f"{repo.name} {repo.description} {repo.full_name}".lower()
    return skill.replace("-", " ") in text or skill in text


def collect_evidence(skill: str, repositories: Iterable[RepositorySummary]) -> SkillEvidence:
    """Aggregate usage evidence for one skill across every synced repository."""
    normalized = canonical_skill_name(skill)
    repo_count = 0
    total_bytes = 0
    total_commits = 0
    total_stars = 0
    last_used: datetime | None = None

    for repo in repositories:
        language_bytes = _language_bytes_for(normalized, repo)
        topic_match = any(canonical_skill_name(topic) == normalized for topic in repo.topics)
        if language_bytes is None and not topic_match and not _text_mentions(normalized, repo):
            continue

        repo_count += 1
        total_stars += max(0, repo.stars)
        total_commits += max(0, repo.commit_sample_count)
        total_bytes += language_bytes or 0
        pushed = parse_ts(repo.pushed_at)
        if pushed and (last_used is None or pushed > last_used):
            last_used = pushed

    return SkillEvidence(
        skill=normalized,
        repo_count=repo_count,
        total_bytes=total_bytes,
        total_commits=total_commits,
        total_stars=total_stars,
        last_used=last_used,
    )


def score_evidence(evidence: SkillEvidence) -> tuple[float, float]:
    """Return `(proficiency, confidence)`, both clamped to [0, 1]."""
    repo_count = max(0, evidence.repo_count)
    total_bytes = max(0, evidence.total_bytes)
    total_commits = max(0, evidence.total_commits)
    total_stars = max(0, evidence.total_stars)

    usage = min(repo_count * USAGE_POINTS_PER_REPO, USAGE_CAP)
    volume = min(math.log10(total_bytes + 1) * VOLUME_MULTIPLIER, VOLUME_CAP)
    quality = min(total_stars * STAR_POINTS + total_commits * COMMIT_POINTS, QUALITY_CAP)

    proficiency = clamp((usage + volume + quality) / 100)
    confidence = clamp((repo_count + total_commits) * CONFIDENCE_PER_DATA_POINT)
    return proficiency, confidence


def score_skill(skill: str, repositories: Iterable[RepositorySummary]) -> ProficiencyScore:
    evidence = collect_evidence(skill, repositories)
    proficiency, confidence = score_evidence(evidence)
    return ProficiencyScore(evidence=evidence, proficiency=proficiency, confidence=confidence)
