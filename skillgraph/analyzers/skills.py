"""Skill inference: normalize, alias, weight, filter, and rank raw skill signals."""

from __future__ import annotations

import re
from collections.abc import Iterable

from skillgraph.core.models import InferredSkill, RepositorySummary

PRIMARY_LANGUAGE_WEIGHT = 2.5
LANGUAGE_WEIGHT = 2.75
TOPIC_WEIGHT = 3.25
MANIFEST_WEIGHT = 4.5
IMPORT_WEIGHT = 3.5
KEYWORD_WEIGHT = 1.25

MIN_SCORE = 1.5
GENERIC_MIN_SCORE = 4.0
BACKFILL_MIN_SCORE = 1.0
BACKFILL_FLOOR = 30
MAX_SKILLS = 100
SHORT_KEYWORD_LENGTH = 4

SKILL_ALIASES = {
    "cpp": "c++",
    "c-plus-plus": "c++",
    "node": "node.js",
    "nodejs": "node.js",
    "reactnative": "react-native",
    "nextjs": "next.js",
    "vuejs": "vue.js",
    "expressjs": "express",
    "nestjs": "nest.js",
    "mongo": "mongodb",
    "jupyter-notebook": "jupyter",
    "jupyter-nb": "jupyter",
    "nb": "notebook",
    "postgres": "postgresql",
    "ts": "typescript",
    "js": "javascript",
    "cicd": "ci/cd",
    "scikitlearn": "scikit-learn",
}

# Matched against repository name, description, and scanned text. Entries of
# SHORT_KEYWORD_LENGTH characters or fewer must stand alone as a word.
SKILL_KEYWORDS = (
    # languages
    "javascript", "typescript", "python", "java", "c#", "c++", "go", "rust",
    "php", "ruby", "swift", "kotlin", "sql",
    # frontend
    "react", "next.js", "vue.js", "angular", "svelte", "tailwind", "bootstrap", "mui",
    # backend
    "node.js", "express", "nest.js", "fastapi", "flask", "django", "spring", ".net",
    "graphql", "grpc",
    # databases
    "mongodb", "postgresql", "mysql", "sqlite", "redis", "supabase", "firebase", "dynamodb",
    # cloud and devops
    "docker", "kubernetes", "aws", "azure", "gcp", "cloudflare", "vercel", "netlify",
    "terraform", "ansible",
    # tooling
    "git", "github-actions", "gitlab-ci", "jest", "pytest", "playwright", "cypress",
    "webpack", "vite", "npm", "yarn", "pnpm",
    # data
    "pandas", "numpy", "scikit-learn", "tensorflow", "pytorch", "langchain", "openai",
)

HARD_BLOCK_TERMS = frozenset(
    {
        "ai",
        "llm",
        "gpt",
        "jupyter",
        "notebook",
        "jupyter-nb",
        "github",
        "gitlab",
        "bitbucket",
        "api",
        "apis",
    }
)
GENERIC_NOISE = frozenset({"ai", "ml", "llm", "gpt", "rest", "restful"})
# Survive the strict filter at any score; the hard block list still applies.
CORE_KEEP_SKILLS = frozenset(
    {"mongodb", "fastapi", "git", "docker", "kubernetes", "postgresql", "mysql", "redis"}
)

_SEPARATOR_RE = re.compile(r"[_\s]+")
_DISALLOWED_RE = re.compile(r"[^\w.+#/-]")


def normalize_skill_token(raw: object) -> str:
    """Lowercase, trim, turn whitespace/underscores into `-`, drop unsupported characters."""
    if raw is None:
        return ""
    value = str(raw).lower().strip()
    value = _SEPARATOR_RE.sub("-", value)
    return _DISALLOWED_RE.sub("", value)


def canonical_skill_name(raw: object) -> str:
    normalized = normalize_skill_token(raw)
    return SKILL_ALIASES.get(normalized, normalized)


def _keyword_variants(keyword: str) -> tuple[str, ...]:
    lowered = keyword.lower()
    return tuple(dict.fromkeys((lowered, lowered.replace(".", ""), lowered.replace("-", " "))))


def _variant_pattern(variant: str) -> str:
    if len(variant) <= SHORT_KEYWORD_LENGTH:
        return rf"(?<![a-z0-9]){re.escape(variant)}(?![a-z0-9])"
    return re.escape(variant)


def _keyword_pattern(keyword: str) -> re.Pattern[str]:
    return re.compile("|".join(_variant_pattern(variant) for variant in _keyword_variants(keyword)))


_KEYWORD_PATTERNS = tuple((keyword, _keyword_pattern(keyword)) for keyword in SKILL_KEYWORDS)


def keyword_matches(text: str) -> list[str]:
    """Return vocabulary keywords found in text (plain, dot-less, or dash-as-space form)."""
    haystack = (text or "").lower()
    if not haystack:
        return []
    return [keyword for keyword, pattern in _KEYWORD_PATTERNS if pattern.search(haystack)]


def _repository_text(repo: RepositorySummary) -> str:
    return " ".join((repo.name, repo.full_name, repo.description, repo.scan_text))


def _accumulate(
    repositories: Iterable[RepositorySummary],
) -> tuple[dict[str, float], dict[str, int]]:
    counts: dict[str, float] = {}
    stars: dict[str, int] = {}

    for repo in repositories:
        contributed: set[str] = set()

        def bump(raw: object, weight: float) -> None:
            skill = canonical_skill_name(raw)
            if skill:
                counts[skill] = counts.get(skill, 0.0) + weight
                contributed.add(skill)

        bump(repo.language, PRIMARY_LANGUAGE_WEIGHT)
        for language in repo.languages:
            bump(language, LANGUAGE_WEIGHT)
        for topic in repo.topics:
            bump(topic, TOPIC_WEIGHT)
        for signal in repo.manifest_signals:
            bump(signal, MANIFEST_WEIGHT)
        for signal in repo.import_signals:
            bump(signal, IMPORT_WEIGHT)
        for keyword in keyword_matches(_repository_text(repo)):
            bump(keyword, KEYWORD_WEIGHT)
        for skill in contributed:
            stars[skill] = stars.get(skill, 0) + repo.stars
    return counts, stars


def accumulate_skill_weights(repositories: Iterable[RepositorySummary]) -> dict[str, float]:
    counts, _ = _accumulate(repositories)
    return counts


def accumulate_skill_stars(repositories: Iterable[RepositorySummary]) -> dict[str, int]:
    """Summed stars of the repositories that contributed any weight to each skill."""
    _, stars = _accumulate(repositories)
    return stars


def _passes_strict_filter(skill: str, score: float) -> bool:
    if skill in HARD_BLOCK_TERMS:
        return False
    if skill in CORE_KEEP_SKILLS:
        return True
    if skill in GENERIC_NOISE:
        return score >= GENERIC_MIN_SCORE
    return score >= MIN_SCORE


def _passes_backfill_filter(skill: str, score: float) -> bool:
    return skill not in HARD_BLOCK_TERMS and len(skill) >= 2 and score >= BACKFILL_MIN_SCORE


def _rank(
    items: Iterable[tuple[str, float]], stars: dict[str, int]
) -> list[tuple[str, float]]:
    return sorted(items, key=lambda item: (-item[1], -stars.get(item[0], 0), item[0]))


def rank_skills(
    counts: dict[str, float],
    floor: int = BACKFILL_FLOOR,
    limit: int = MAX_SKILLS,
    stars: dict[str, int] | None = None,
) -> list[InferredSkill]:
    """Filter and rank accumulated weights, backfilling from relaxed candidates below `floor`.

    Equal weights are ordered by the summed stars of the contributing
    repositories, then by name.
    """
    stars = stars or {}
    ranked = _rank(
        ((skill, score) for skill, score in counts.items() if _passes_strict_filter(skill, score)),
        stars,
    )

    if len(ranked) < floor:
        chosen = {skill for skill, _ in ranked}
        backfill = _rank(
            (
                (skill, score)
                for skill, score in counts.items()
                if skill not in chosen and _passes_backfill_filter(skill, score)
            ),
            stars,
        )
        ranked.extend(backfill[: floor - len(ranked)])

    return [InferredSkill(skill=skill, score=score) for skill, score in ranked[:limit]]


def infer_skills(repositories: Iterable[RepositorySummary]) -> list[InferredSkill]:
    counts, stars = _accumulate(repositories)
    return rank_skills(counts, stars=stars)
