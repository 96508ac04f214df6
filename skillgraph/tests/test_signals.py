from skillgraph.analyzers.signals import (
    canonical_import_module,
    dependency_skill_hints,
    has_source_extension,
    import_signals,
    is_scan_text_file,
    manifest_signals,
    readme_plain_text,
)


def test_dependency_hints_short_needles_match_whole_segments() -> None:
    assert dependency_skill_hints("mongodb") == ["mongodb"]
    assert dependency_skill_hints("django") == ["django"]
    assert dependency_skill_hints("go") == ["go"]
    assert dependency_skill_hints("@aws-sdk/client-s3") == ["aws"]
    assert dependency_skill_hints("@mui/material") == ["mui"]
    assert dependency_skill_hints("react-dom") == ["react"]
    assert dependency_skill_hints("") == []


def test_package_json_reads_all_dependency_groups() -> None:
    text = (
        '{"dependencies": {"react": "18.2.0", "next": "14.0.0"},'
        ' "devDependencies": {"jest": "29.0.0"}}'
    )
    signals = manifest_signals("web/package.json", text)
    assert {"react", "next.js", "jest"} <= set(signals)


def test_malformed_manifest_yields_nothing() -> None:
    assert manifest_signals("package.json", "{not json") == []
    assert manifest_signals("package-lock.json", "[1, 2") == []
    assert manifest_signals("requirements.txt", "") == []


def test_requirements_and_poetry_lock() -> None:
    requirements = "fastapi==0.110.0\nnumpy>=1.26\nuvicorn[standard]\n"
    assert {"fastapi", "numpy"} <= set(manifest_signals("requirements.txt", requirements))

    lock = 'name = "django"\nversion = "5.0"\n\nname = "psycopg2-binary"\n'
    assert {"django", "postgresql"} <= set(manifest_signals("poetry.lock", lock))


def test_go_sum_and_container_files() -> None:
    go_sum = "go.mongodb.org/mongo-driver v1.13.0 h1:abc=\n"
    assert "mongodb" in manifest_signals("go.sum", go_sum)

    assert manifest_signals("Dockerfile", "FROM python:3.12-slim\n") == ["docker"]
    compose = "services:\n  api:\n    image: app\n# deployed with helm\n"
    assert manifest_signals("docker-compose.yml", compose) == ["docker", "kubernetes"]


def test_workflow_and_terraform_patterns_apply_to_any_file() -> None:
    workflow = "on: push\njobs:\n  test:\n    runs-on: ubuntu-latest\n"
    assert manifest_signals(".github/workflows/ci.yml", workflow) == ["github-actions"]
    assert "terraform" in manifest_signals("README.md", 'provider "aws" {}')


def test_scan_file_classification() -> None:
    assert is_scan_text_file("package.json")
    assert is_scan_text_file("docs/README.md")
    assert is_scan_text_file(".github/workflows/deploy.yml")
    assert not is_scan_text_file("src/app.py")
    assert has_source_extension("src/App.TSX")
    assert not has_source_extension("notes.txt")


def test_canonical_import_module() -> None:
    assert canonical_import_module("./utils") == ""
    assert canonical_import_module("@tanstack/react-query/devtools") == "@tanstack/react-query"
    assert canonical_import_module("sklearn.model_selection") == "sklearn"
    assert canonical_import_module("lodash/fp") == "lodash"


def test_python_imports() -> None:
    source = (
        "import numpy as np\n"
        "import os, sys\n"
        "from fastapi import FastAPI\n"
        "from .local import helper\n"
    )
    signals = import_signals("app/main.py", source)
    assert set(signals) == {"numpy", "fastapi"}


def test_javascript_imports() -> None:
    source = (
        "import React from 'react';\n"
        'const express = require("express");\n'
        "const Lazy = import('./lazy');\n"
    )
    assert set(import_signals("src/index.tsx", source)) == {"react", "express"}
    assert import_signals("notes.md", source) == []


def test_readme_plain_text_drops_markup() -> None:
    html = '<p align="center"><img src="badge.svg" alt="build"/>Built with <b>Flask</b></p>'
    text = readme_plain_text(html)
    assert "Flask" in text
    assert "badge.svg" not in text
    assert readme_plain_text("plain markdown") == "plain markdown"
