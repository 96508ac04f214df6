"""Per-student background sync state, with a staleness policy for automatic refreshes."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any

from skillgraph.core.models import BackgroundSyncStatus, utc_now

LOGGER = logging.getLogger(__name__)

DEFAULT_STALENESS_SECONDS = 300

SyncRunner = Callable[..., Awaitable[Any]]
CachedLoader = Callable[[str], Awaitable[dict[str, Any]]]


class BackgroundSyncTracker:
    """Runs at most one sync per student as a background task and exposes its status for polling.

    State lives in process memory only; a restart reports every student as idle.
    `trigger_sync` must be called from inside a running event loop.
    """

    def __init__(
        self,
        runner: SyncRunner,
        staleness_seconds: int = DEFAULT_STALENESS_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._runner = runner
        self.staleness = timedelta(seconds=max(0, staleness_seconds))
        self._clock = clock
        self._statuses: dict[str, BackgroundSyncStatus] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}

    def get_status(self, student_id: str) -> BackgroundSyncStatus:
        status = self._statuses.get(student_id)
        return replace(status) if status else BackgroundSyncStatus()

    def should_refresh(self, student_id: str) -> bool:
        status = self._statuses.get(student_id)
        if status is None:
            return True
        if status.in_progress:
            return False
        if status.last_sync_at is None:
            return True
        return self._clock() - status.last_sync_at >= self.staleness

    def trigger_sync(self, student_id: str, **options: Any) -> dict[str, Any]:
        """Start a background sync unless one is already running for this student."""
        status = self._statuses.setdefault(student_id, BackgroundSyncStatus())
        if status.in_progress:
            return {
                "started": False,
                "message": "Sync already in progress",
                "status": status.to_dict(),
            }

        status.in_progress = True
        status.started_at = self._clock()
        status.error = None
        task = asyncio.get_running_loop().create_task(self._run(student_id, options))
        self._tasks[student_id] = task
        task.add_done_callback(lambda done, key=student_id: self._forget(key, done))
        LOGGER.info("Background sync started student=%s", student_id)
        return {"started": True, "message": "Sync started", "status": status.to_dict()}

    def _forget(self, student_id: str, task: asyncio.Task[None]) -> None:
        if self._tasks.get(student_id) is task:
            del self._tasks[student_id]

    async def _run(self, student_id: str, options: dict[str, Any]) -> None:
        status = self._statuses[student_id]
        try:
            await self._runner(student_id, **options)
        except Exception as exc:  # noqa: BLE001
            status.error = str(exc) or exc.__class__.__name__
            LOGGER.exception("Background sync failed student=%s", student_id)
        else:
            status.last_sync_at = self._clock()
            status.error = None
            LOGGER.info("Background sync finished student=%s", student_id)
        finally:
            status.in_progress = False

    async def auto_sync(self, student_id: str, load_cached: CachedLoader) -> dict[str, Any]:
        """Return cached data now and refresh in the background when it has gone stale."""
        cached = await load_cached(student_id)
        triggered = False
        if self.should_refresh(student_id):
            triggered = bool(self.trigger_sync(student_id)["started"])
        return {
            **cached,
            "sync_status": self.get_status(student_id).to_dict(),
            "background_sync_triggered": triggered,
        }

    async def wait_idle(self, student_id: str | None = None) -> None:
        if student_id is not None:
            tasks = [self._tasks[student_id]] if student_id in self._tasks else []
        else:
            tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks)
