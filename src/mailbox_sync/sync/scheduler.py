"""Fixed-cadence triggers for sync, poll and retention cycles.

Routine sync and the lighter poll share one cycle lock, so at most one sync
cycle runs at a time; a trigger that fires while a cycle is still running is
skipped, not queued.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

import structlog

from mailbox_sync.config import Settings
from mailbox_sync.models import SyncSummary

if TYPE_CHECKING:
    from mailbox_sync.service import MailboxSyncService

logger = structlog.get_logger()


def seconds_until_hour(now: datetime, hour: int) -> float:
    """Seconds from `now` until the next occurrence of `hour`:00 in now's timezone."""

    target = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


class SyncScheduler:
    """Drives a MailboxSyncService on the configured cadence."""

    def __init__(self, service: MailboxSyncService, settings: Settings) -> None:
        self._service = service
        self._settings = settings
        self._cycle_lock = asyncio.Lock()

    @property
    def cycle_running(self) -> bool:
        return self._cycle_lock.locked()

    async def trigger_sync(self, limit: int | None, *, reason: str) -> SyncSummary | None:
        """Run a sync cycle unless one is already running.

        Returns:
            The cycle summary, or None if the trigger was skipped.
        """

        if self._cycle_lock.locked():
            logger.warning("sync_cycle_skipped", reason=reason, cause="cycle_already_running")
            return None

        async with self._cycle_lock:
            try:
                return await self._service.run_sync_cycle(limit=limit)
            except Exception as exc:  # noqa: BLE001
                logger.exception("sync_cycle_failed", reason=reason, error=str(exc))
                return None

    async def trigger_sweep(self) -> dict[str, int] | None:
        """Run the retention sweep in a worker thread."""

        try:
            return await asyncio.to_thread(self._service.run_retention_sweep)
        except Exception as exc:  # noqa: BLE001
            logger.exception("retention_sweep_failed", error=str(exc))
            return None

    async def run(self, stop: asyncio.Event | None = None) -> None:
        """Run every configured loop until `stop` is set (or forever)."""

        stop = stop or asyncio.Event()
        settings = self._settings

        loops: list[Awaitable[None]] = [
            self._every(
                settings.sync_interval_hours * 3600,
                lambda: self.trigger_sync(settings.sync_max_messages, reason="routine"),
                run_immediately=True,
            ),
            self._daily_sweep(),
        ]
        if settings.poll_interval_minutes > 0:
            loops.append(
                self._every(
                    settings.poll_interval_minutes * 60,
                    lambda: self.trigger_sync(settings.poll_max_messages, reason="poll"),
                    run_immediately=False,
                )
            )

        logger.info(
            "scheduler_started",
            sync_interval_hours=settings.sync_interval_hours,
            poll_interval_minutes=settings.poll_interval_minutes,
            retention_hour=settings.retention_hour,
        )

        tasks = [asyncio.create_task(loop) for loop in loops]
        try:
            await stop.wait()
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("scheduler_stopped")

    async def _every(
        self,
        interval_seconds: float,
        job: Callable[[], Awaitable[object]],
        *,
        run_immediately: bool,
    ) -> None:
        if not run_immediately:
            await asyncio.sleep(interval_seconds)
        while True:
            await job()
            await asyncio.sleep(interval_seconds)

    async def _daily_sweep(self) -> None:
        while True:
            delay = seconds_until_hour(datetime.now().astimezone(), self._settings.retention_hour)
            await asyncio.sleep(delay)
            await self.trigger_sweep()
