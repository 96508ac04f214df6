"""Environment-backed settings for the sync, queue, and intelligence services."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from threading import Lock

from dotenv import load_dotenv

load_dotenv()

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


@dataclass(frozen=True)
class Settings:
    supabase_url: str
    supabase_key: str
    github_token: str
    github_api_base: str = "https://api.github.com"
    github_timeout_seconds: float = 20.0
    github_rate_limit: float = 10.0
    nlp_service_url: str = "http://127.0.0.1:8000"
    nlp_timeout_seconds: float = 45.0
    default_max_repos: int = 50
    max_repos_ceiling: int = 100
    deep_scan_budget: int = 35
    scan_cache_capacity: int = 600
    blob_concurrency: int = 8
    staleness_seconds: int = 300
    queue_backoff_seconds: int = 300
    queue_max_attempts: int = 5
    intelligence_concurrency: int = 4
    log_level: str = "INFO"


_settings: Settings | None = None
_settings_lock = Lock()


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


def load_settings() -> Settings:
    """Read settings from the process environment."""
    return Settings(
        supabase_url=os.getenv("SUPABASE_URL", "").strip(),
        supabase_key=(
            os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv("SUPABASE_KEY") or ""
        ).strip(),
        github_token=os.getenv("GITHUB_TOKEN", "").strip(),
        github_api_base=os.getenv("GITHUB_API_BASE", "https://api.github.com").rstrip("/"),
        github_timeout_seconds=_env_float("GITHUB_TIMEOUT_SECONDS", 20.0),
        github_rate_limit=_env_float("GITHUB_RATE_LIMIT", 10.0),
        nlp_service_url=os.getenv("NLP_SERVICE_URL", "http://127.0.0.1:8000").rstrip("/"),
        nlp_timeout_seconds=_env_float("NLP_TIMEOUT_SECONDS", 45.0),
        default_max_repos=_env_int("SYNC_DEFAULT_MAX_REPOS", 50, minimum=1),
        max_repos_ceiling=_env_int("SYNC_MAX_REPOS_CEILING", 100, minimum=1),
        deep_scan_budget=_env_int("SYNC_DEEP_SCAN_BUDGET", 35),
        scan_cache_capacity=_env_int("SCAN_CACHE_CAPACITY", 600, minimum=1),
        blob_concurrency=_env_int("SYNC_BLOB_CONCURRENCY", 8, minimum=1),
        staleness_seconds=_env_int("SYNC_STALENESS_SECONDS", 300),
        queue_backoff_seconds=_env_int("QUEUE_BACKOFF_SECONDS", 300),
        queue_max_attempts=_env_int("QUEUE_MAX_ATTEMPTS", 5, minimum=1),
        intelligence_concurrency=_env_int("INTELLIGENCE_CONCURRENCY", 4, minimum=1),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


def get_settings() -> Settings:
    """Return the process-wide settings singleton."""
    global _settings
    if _settings is not None:
        return _settings
    with _settings_lock:
        if _settings is None:
            _settings = load_settings()
    return _settings


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or get_settings().log_level).upper(), logging.INFO),
        format=LOG_FORMAT,
    )
