import asyncio
import logging
from contextlib import suppress
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI

from media_transfer.core.errors import TransferError
from media_transfer.core.states import SessionStatus
from media_transfer.schemas import SweepReport
from media_transfer.services.events import EventBus, UploadFailed
from media_transfer.services.locks import SessionLocks
from media_transfer.services.reconciler import OrphanReconciler
from media_transfer.services.session_store import UploadSessionStore
from media_transfer.services.storage import StorageBackend

logger = logging.getLogger("cleanup_service")

class CleanupScheduler:
    """
    Periodic sweep: expire sessions idle for longer than the TTL, then
    reconcile storage against the session table.
    """

    def __init__(
        self,
        store: UploadSessionStore,
        storage: StorageBackend,
        reconciler: OrphanReconciler,
        locks: SessionLocks,
        ttl_seconds: int,
        interval_seconds: int,
        events: Optional[EventBus] = None,
    ):
        self.store = store
        self.storage = storage
        self.reconciler = reconciler
        self.locks = locks
        self.ttl_seconds = ttl_seconds
        self.interval_seconds = interval_seconds
        self.events = events
        self._task: Optional[asyncio.Task] = None

    async def run_once(self) -> SweepReport:
        logger.info("Running cleanup task for stale uploads")
        report = SweepReport()
        await self.expire_sessions(report)
        await self.reconciler.reconcile(report)
        logger.info(
            f"Cleanup complete: {report.expired_sessions} expired, {report.purged_sessions} purged, "
            f"{report.orphans_deleted} orphans deleted, {report.sessions_failed} marked failed"
        )
        return report

    async def expire_sessions(self, report: SweepReport) -> None:
        """
        Remove sessions idle past the TTL together with their placeholder.
        A row is only deleted once its storage entry is gone or finalized.
        """
        for session in self.store.expired(self.ttl_seconds):
            async with self.locks.hold(session.id):
                current = self.store.get(session.id)
                if current is None or not self._is_expired(current):
                    continue
                if current.status is not SessionStatus.COMPLETED:
                    try:
                        await self.storage.cancel(current.storage_handle)
                    except TransferError as e:
                        # Keep the row so the next sweep tries again
                        logger.error(f"Error deleting storage for expired upload {current.id}: {e.message}")
                        report.errors.append(f"session {current.id}: {e.message}")
                        continue
                self.store.delete(current.id)

            if current.status is SessionStatus.IN_PROGRESS:
                report.expired_sessions += 1
                logger.info(f"Expired stale upload {current.id} ({current.filename})")
                if self.events is not None:
                    self.events.publish(UploadFailed(upload_id=current.id, filename=current.filename, reason="expired"))
            else:
                report.purged_sessions += 1

    def _is_expired(self, session) -> bool:
        return session.last_updated_at < self.store.clock() - timedelta(seconds=self.ttl_seconds)

    async def run_forever(self) -> None:
        while True:
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Error in cleanup task: {str(e)}")

            # Wait for next run
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run_forever())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
            self._task = None

def setup_cleanup_tasks(app: FastAPI, scheduler: CleanupScheduler):
    """
    Set up background tasks for the FastAPI application.
    """
    @app.on_event("startup")
    async def start_cleanup_task():
        scheduler.start()

    @app.on_event("shutdown")
    async def stop_cleanup_task():
        await scheduler.stop()
