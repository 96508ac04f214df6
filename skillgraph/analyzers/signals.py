"""Extract skill signals from manifests, lockfiles, CI config, and source imports.

Every extractor is pure and never raises on malformed content; unparseable
input yields no signals.
"""

from __future__ import annotations

import json
import re
from pathlib import PurePosixPath
from typing import Any

from bs4 import BeautifulSoup

from skillgraph.analyzers.skills import normalize_skill_token

MANIFEST_FILE_NAMES = frozenset(
    {
        "package.json",
        "requirements.txt",
        "pyproject.toml",
        "poetry.lock",
        "pipfile",
        "pipfile.lock",
        "pom.xml",
        "build.gradle",
        "build.gradle.kts",
        "cargo.toml",
        "go.mod",
        "composer.json",
        "composer.lock",
        "gemfile",
        "gemfile.lock",
        "mix.exs",
        "pubspec.yaml",
        "yarn.lock",
        "pnpm-lock.yaml",
        "package-lock.json",
        "go.sum",
        "cargo.lock",
        "dockerfile",
        "docker-compose.yml",
        "docker-compose.yaml",
        ".tool-versions",
        ".nvmrc",
    }
)
SOURCE_FILE_EXTENSIONS = (
    ".js",
    ".jsx",
    ".ts",
    ".tsx",
    ".py",
    ".go",
    ".java",
    ".kt",
    ".kts",
    ".cs",
    ".rb",
    ".php",
)
WORKFLOW_DIR = ".github/workflows/"

# Dependency-name needle -> canonical skill. Needles of three characters or
# fewer must match a whole name segment; longer needles match as substrings.
DEPENDENCY_NAME_HINTS = {
    "react": "react",
    "next": "next.js",
    "nextjs": "next.js",
    "vue": "vue.js",
    "nuxt": "nuxt.js",
    "angular": "angular",
    "svelte": "svelte",
    "tailwindcss": "tailwind",
    "@mui": "mui",
    "bootstrap": "bootstrap",
    "express": "express",
    "fastapi": "fastapi",
    "flask": "flask",
    "django": "django",
    "nestjs": "nest.js",
    "typeorm": "typeorm",
    "prisma": "prisma",
    "mongoose": "mongoose",
    "sqlalchemy": "sqlalchemy",
    "postgres": "postgresql",
    "psycopg": "postgresql",
    "mysql": "mysql",
    "sqlite": "sqlite",
    "mongodb": "mongodb",
    "pymongo": "mongodb",
    "redis": "redis",
    "kafka": "kafka",
    "rabbitmq": "rabbitmq",
    "graphql": "graphql",
    "apollo": "apollo",
    "grpc": "grpc",
    "docker": "docker",
    "kubernetes": "kubernetes",
    "helm": "helm",
    "terraform": "terraform",
    "ansible": "ansible",
    "aws": "aws",
    "@aws-sdk": "aws",
    "boto3": "aws",
    "azure": "azure",
    "google-cloud": "gcp",
    "firebase": "firebase",
    "supabase": "supabase",
    "cloudflare": "cloudflare",
    "vercel": "vercel",
    "netlify": "netlify",
    "jest": "jest",
    "pytest": "pytest",
    "playwright": "playwright",
    "cypress": "cypress",
    "vitest": "vitest",
    "webpack": "webpack",
    "vite": "vite",
    "eslint": "eslint",
    "prettier": "prettier",
    "typescript": "typescript",
    "javascript": "javascript",
    "python": "python",
    "java": "java",
    "go": "go",
    "rust": "rust",
    "tensorflow": "tensorflow",
    "torch": "pytorch",
    "pytorch": "pytorch",
    "scikit-learn": "scikit-learn",
    "numpy": "numpy",
    "pandas": "pandas",
    "langchain": "langchain",
    "openai": "openai",
}
SHORT_NEEDLE_LENGTH = 3

PYTHON_MANIFESTS = frozenset({"requirements.txt", "pipfile", "pipfile.lock", "pyproject.toml"})
TOKEN_MANIFESTS = frozenset(
    {
        "go.mod",
        "cargo.toml",
        "composer.json",
        "composer.lock",
        "gemfile",
        "gemfile.lock",
        "mix.exs",
        "pom.xml",
        "build.gradle",
        "build.gradle.kts",
        "pubspec.yaml",
        ".tool-versions",
        ".nvmrc",
    }
)
PACKAGE_JSON_GROUPS = (
    "dependencies",
    "devDependencies",
    "peerDependencies",
    "optionalDependencies",
)

PYTHON_PACKAGE_RE = re.compile(r"([a-zA-Z0-9._-]+)(?:\[.*?\])?\s*(?:==|>=|<=|~=|>|<|=)?")
MANIFEST_TOKEN_RE = re.compile(r"[a-zA-Z0-9@._/-]{3,}")
JS_LOCK_ENTRY_RE = re.compile(r"(?:^|\n)\s*['\"]?(@?[\w.-]+(?:/[\w.-]+)?)@")
LOCK_NAME_RE = re.compile(r"name\s*=\s*[\"']([^\"']+)[\"']")
GO_SUM_RE = re.compile(r"^(\S+)\s+", re.MULTILINE)
CONTAINER_ORCHESTRATION_RE = re.compile(r"kubernetes|helm", re.IGNORECASE)
CI_WORKFLOW_RE = re.compile(r"github-actions|workflow_dispatch|runs-on:", re.IGNORECASE)
TERRAFORM_RE = re.compile(
    r"terraform|provider\s+\"aws\"|provider\s+\"google\"|provider\s+\"azurerm\"",
    re.IGNORECASE,
)

JS_FROM_RE = re.compile(r"\bfrom\s+['\"]([^'\"]+)['\"]")
JS_REQUIRE_RE = re.compile(r"\brequire\(\s*['\"]([^'\"]+)['\"]\s*\)")
JS_DYNAMIC_IMPORT_RE = re.compile(r"\bimport\(\s*['\"]([^'\"]+)['\"]\s*\)")
PY_IMPORT_RE = re.compile(r"^[ \t]*import[ \t]+([a-zA-Z0-9_., \t]+)", re.MULTILINE)
PY_FROM_RE = re.compile(r"^[ \t]*from[ \t]+([a-zA-Z0-9_.]+)[ \t]+import[ \t]+", re.MULTILINE)
GO_IMPORT_BLOCK_RE = re.compile(r"import\s+(?:\([\s\S]*?\)|\"[^\"]+\")")
GO_QUOTED_RE = re.compile(r"\"([^\"]+)\"")
JVM_IMPORT_RE = re.compile(r"^\s*import\s+(?:static\s+)?([a-zA-Z0-9_.*]+)\s*;?", re.MULTILINE)
DOTNET_USING_RE = re.compile(r"^\s*using\s+([a-zA-Z0-9_.]+)\s*;?", re.MULTILINE)
_SEGMENT_SPLIT_RE = re.compile(r"[@/._-]+")


def dependency_skill_hints(name: str) -> list[str]:
    """Map a dependency or module name to canonical skills by needle lookup."""
    dep = normalize_skill_token(name)
    if not dep:
        return []
    segments = {segment for segment in _SEGMENT_SPLIT_RE.split(dep) if segment}
    hints: list[str] = []
    for needle, skill in DEPENDENCY_NAME_HINTS.items():
        if len(needle) <= SHORT_NEEDLE_LENGTH:
            matched = needle in segments
        else:
            matched = needle in dep
        if matched and skill not in hints:
            hints.append(skill)
    return hints


def _hints_for_names(names: Any) -> list[str]:
    signals: list[str] = []
    for name in names:
        signals.extend(dependency_skill_hints(name))
    return signals


def _package_json_signals(text: str) -> list[str]:
    try:
        payload = json.loads(text)
    except ValueError:
        return []
    if not isinstance(payload, dict):
        return []
    signals: list[str] = []
    for group in PACKAGE_JSON_GROUPS:
        deps = payload.get(group)
        if isinstance(deps, dict):
            signals.extend(_hints_for_names(deps.keys()))
    return signals


def _package_lock_signals(text: str) -> list[str]:
    try:
        payload = json.loads(text)
    except ValueError:
        return []
    if not isinstance(payload, dict):
        return []
    signals: list[str] = []
    deps = payload.get("dependencies")
    if isinstance(deps, dict):
        signals.extend(_hints_for_names(deps.keys()))
    packages = payload.get("packages")
    if isinstance(packages, dict):
        for package_path in packages:
            dep_name = str(package_path).split("node_modules/")[-1]
            if dep_name:
                signals.extend(dependency_skill_hints(dep_name))
    return signals


def manifest_signals(file_name: str, content: str | None) -> list[str]:
    """Return raw skill tokens for one manifest, lockfile, CI file, or README."""
    text = content or ""
    if not text:
        return []
    lowered = PurePosixPath(file_name or "").name.lower()
    signals: list[str] = []

    if lowered == "package.json":
        signals.extend(_package_json_signals(text))
    elif lowered == "package-lock.json":
        signals.extend(_package_lock_signals(text))
    elif lowered in PYTHON_MANIFESTS:
        signals.extend(_hints_for_names(m.group(1) for m in PYTHON_PACKAGE_RE.finditer(text)))
    elif lowered in TOKEN_MANIFESTS:
        signals.extend(_hints_for_names(MANIFEST_TOKEN_RE.findall(text)))
    elif lowered in {"pnpm-lock.yaml", "yarn.lock"}:
        signals.extend(_hints_for_names(m.group(1) for m in JS_LOCK_ENTRY_RE.finditer(text)))
    elif lowered in {"poetry.lock", "cargo.lock"}:
        signals.extend(_hints_for_names(LOCK_NAME_RE.findall(text)))
    elif lowered == "go.sum":
        modules = ("/".join(m.group(1).split("/")[:2]) for m in GO_SUM_RE.finditer(text))
        signals.extend(_hints_for_names(modules))
    elif lowered.startswith("dockerfile") or "docker-compose" in lowered:
        signals.append("docker")
        if CONTAINER_ORCHESTRATION_RE.search(text):
            signals.append("kubernetes")

    if CI_WORKFLOW_RE.search(text):
        signals.append("github-actions")
    if TERRAFORM_RE.search(text):
        signals.append("terraform")
    return signals


def has_source_extension(path: str) -> bool:
    return (path or "").lower().endswith(SOURCE_FILE_EXTENSIONS)


def is_scan_text_file(path: str) -> bool:
    """True for manifests, READMEs, and GitHub workflow files."""
    lowered = (path or "").lower()
    base = PurePosixPath(lowered).name
    return base in MANIFEST_FILE_NAMES or base.startswith("readme") or lowered.startswith(WORKFLOW_DIR)


def canonical_import_module(raw: str) -> str:
    """Reduce an import target to its package root; relative and local imports yield ''."""
    module = (raw or "").strip().strip("'\"")
    if not module or module.startswith((".", "/")):
        return ""
    if module.startswith("@"):
        parts = module.split("/")
        return "/".join(parts[:2]) if len(parts) >= 2 else module
    if "." in module:
        return module.split(".")[0]
    return module.split("/")[0]


def _import_targets(lowered_path: str, text: str) -> list[str]:
    if lowered_path.endswith((".js", ".jsx", ".ts", ".tsx")):
        return [
            *JS_FROM_RE.findall(text),
            *JS_REQUIRE_RE.findall(text),
            *JS_DYNAMIC_IMPORT_RE.findall(text),
        ]
    if lowered_path.endswith(".py"):
        targets: list[str] = []
        for group in PY_IMPORT_RE.findall(text):
            for item in group.split(","):
                # `import numpy as np` keeps only the module part
                targets.append(item.strip().split(" ")[0].split("\t")[0])
        targets.extend(PY_FROM_RE.findall(text))
        return targets
    if lowered_path.endswith(".go"):
        return [
            quoted
            for block in GO_IMPORT_BLOCK_RE.findall(text)
            for quoted in GO_QUOTED_RE.findall(block)
        ]
    if lowered_path.endswith((".java", ".kt", ".kts", ".cs")):
        return [
            *(target.rstrip("*") for target in JVM_IMPORT_RE.findall(text)),
            *DOTNET_USING_RE.findall(text),
        ]
    return []


def import_signals(file_path: str, content: str | None) -> list[str]:
    """Return raw skill tokens from the import/using statements of one source file."""
    text = content or ""
    if not text:
        return []
    signals: list[str] = []
    for target in _import_targets((file_path or "").lower(), text):
        module = canonical_import_module(target)
        if module:
            signals.extend(dependency_skill_hints(module))
    return signals


def readme_plain_text(content: str) -> str:
    """Reduce README markdown/HTML to visible text so badge markup does not leak into scans."""
    if not content or "<" not in content:
        return content or ""
    soup = BeautifulSoup(content, "html.parser")
    for tag in soup(["script", "style", "img"]):
        tag.decompose()
    return soup.get_text(" ")
