#!/usr/bin/env python3
"""
One-off GitHub sync: account -> repositories -> deep scan -> inferred skills.

Usage:
  python scripts/sync_github.py --limit 30
  python scripts/sync_github.py --student-id 42 --include-private
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from skillgraph.core.cache import ScanCache  # noqa: E402
from skillgraph.core.config import configure_logging, get_settings  # noqa: E402
from skillgraph.core.credentials import (  # noqa: E402
    CredentialResolver,
    ReauthorizationRequired,
)
from skillgraph.core.db import SupabaseDatastore  # noqa: E402
from skillgraph.fetchers.github_client import GitHubApiError  # noqa: E402
from skillgraph.fetchers.github_sync import GitHubSyncOrchestrator  # noqa: E402

LOGGER = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Sync one GitHub account and print the inferred skill profile."
    )
    parser.add_argument("--limit", type=int, default=30, help="Max repositories to sync.")
    parser.add_argument(
        "--include-private",
        action="store_true",
        help="Include private repositories visible to the token.",
    )
    parser.add_argument(
        "--student-id",
        default=None,
        help="Student id to persist results for; resolves that student's stored token first.",
    )
    parser.add_argument(
        "--no-db-write",
        action="store_true",
        help="Run inference only; do not touch Supabase.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level.",
    )
    return parser.parse_args()


async def run(args: argparse.Namespace) -> dict[str, Any]:
    settings = get_settings()
    store = None if args.no_db_write else SupabaseDatastore()
    credentials = CredentialResolver(store, settings.github_token)
    orchestrator = GitHubSyncOrchestrator(
        store,
        ScanCache(settings.scan_cache_capacity),
        settings=settings,
        credentials=credentials,
    )
    if args.student_id:
        result = await orchestrator.sync_student(
            args.student_id,
            max_repos=args.limit,
            include_private=args.include_private,
            persist=not args.no_db_write,
        )
    else:
        credential = await credentials.resolve(None)
        result = await orchestrator.sync(
            credential, max_repos=args.limit, include_private=args.include_private
        )
    return result.to_dict()


def main() -> int:
    args = parse_args()
    configure_logging(args.log_level)
    try:
        payload = asyncio.run(run(args))
    except ReauthorizationRequired as exc:
        LOGGER.error("No usable GitHub credential: %s", exc)
        return 2
    except GitHubApiError as exc:
        LOGGER.error("GitHub sync failed: %s", exc)
        return 1
    print(json.dumps(payload, indent=2, default=str))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
