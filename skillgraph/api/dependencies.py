"""Process-wide service wiring and request dependencies for the HTTP surface."""

from __future__ import annotations

from dataclasses import dataclass
from threading import Lock

import httpx
from fastapi import Header, HTTPException

from skillgraph.analyzers.intelligence import IntelligencePipeline
from skillgraph.core.cache import ScanCache
from skillgraph.core.config import Settings, get_settings
from skillgraph.core.credentials import CredentialResolver
from skillgraph.core.db import Datastore, SupabaseDatastore
from skillgraph.core.nlp_client import EntityServiceClient
from skillgraph.fetchers.github_sync import ClientFactory, GitHubSyncOrchestrator
from skillgraph.workers.background_sync import BackgroundSyncTracker


@dataclass
class Services:
    settings: Settings
    store: Datastore
    cache: ScanCache
    credentials: CredentialResolver
    orchestrator: GitHubSyncOrchestrator
    tracker: BackgroundSyncTracker
    entities: EntityServiceClient
    pipeline: IntelligencePipeline


_services: Services | None = None
_services_lock = Lock()


def build_services(
    settings: Settings | None = None,
    store: Datastore | None = None,
    github_client_factory: ClientFactory | None = None,
    entity_transport: httpx.AsyncBaseTransport | None = None,
) -> Services:
    settings = settings or get_settings()
    store = store if store is not None else SupabaseDatastore()
    cache = ScanCache(settings.scan_cache_capacity)
    credentials = CredentialResolver(store, settings.github_token)
    orchestrator = GitHubSyncOrchestrator(
        store,
        cache,
        settings=settings,
        credentials=credentials,
        client_factory=github_client_factory,
    )
    tracker = BackgroundSyncTracker(
        orchestrator.sync_student, staleness_seconds=settings.staleness_seconds
    )
    entities = EntityServiceClient(
        settings.nlp_service_url,
        timeout_seconds=settings.nlp_timeout_seconds,
        transport=entity_transport,
    )
    pipeline = IntelligencePipeline(store, entities, concurrency=settings.intelligence_concurrency)
    return Services(
        settings=settings,
        store=store,
        cache=cache,
        credentials=credentials,
        orchestrator=orchestrator,
        tracker=tracker,
        entities=entities,
        pipeline=pipeline,
    )


def get_services() -> Services:
    global _services
    if _services is not None:
        return _services
    with _services_lock:
        if _services is None:
            _services = build_services()
    return _services


def current_student_id(x_student_id: str | None = Header(default=None)) -> str:
    """Identity handed over by the upstream bearer-token layer."""
    student_id = (x_student_id or "").strip()
    if not student_id:
        raise HTTPException(status_code=401, detail="Missing X-Student-Id header")
    return student_id
