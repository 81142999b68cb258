import logging
from typing import Optional

from media_transfer.core.errors import TransferError
from media_transfer.core.states import SessionStatus
from media_transfer.schemas import OrphanedStorageEntry, SweepReport
from media_transfer.services.events import EventBus, UploadFailed
from media_transfer.services.locks import SessionLocks
from media_transfer.services.session_store import UploadSessionStore
from media_transfer.services.storage import StorageBackend

logger = logging.getLogger("reconciler")


class OrphanReconciler:
    """
    Brings storage and the session table back in line after a crash or an
    external deletion.

    Storage entries no live session points at are deleted. Live sessions
    whose storage entry is gone are marked FAILED. An entry that belongs to
    an IN_PROGRESS session is never touched here, however old it is; only
    the TTL sweep acts on staleness.
    """

    def __init__(self, store: UploadSessionStore, storage: StorageBackend, locks: SessionLocks,
                 events: Optional[EventBus] = None):
        self.store = store
        self.storage = storage
        self.locks = locks
        self.events = events

    async def find_orphans(self):
        live = self.store.live_handles()
        return [
            OrphanedStorageEntry(handle=entry.handle, display_name=entry.display_name, size=entry.size)
            for entry in await self.storage.list_pending()
            if entry.handle not in live
        ]

    async def reconcile(self, report: Optional[SweepReport] = None) -> SweepReport:
        report = report or SweepReport()
        # Lock order is session lock, then admission. Never wait on a session
        # lock while holding admission.
        async with self.locks.admission:
            await self._delete_orphans(report)
        await self._fail_missing(report)
        return report

    async def _delete_orphans(self, report: SweepReport) -> None:
        for orphan in await self.find_orphans():
            try:
                if await self.storage.cancel(orphan.handle):
                    report.orphans_deleted += 1
                    logger.info(f"Deleted orphaned storage entry {orphan.display_name} ({orphan.size} bytes)")
            except TransferError as e:
                logger.error(f"Failed to delete orphaned entry {orphan.handle}: {e.message}")
                report.errors.append(f"orphan {orphan.handle}: {e.message}")

    async def _fail_missing(self, report: SweepReport) -> None:
        for session in self.store.list_in_progress():
            async with self.locks.hold(session.id):
                current = self.store.get(session.id)
                if current is None or current.status is not SessionStatus.IN_PROGRESS:
                    continue
                if await self.storage.durable_size(current.storage_handle) is not None:
                    continue
                self.store.set_status(current.id, SessionStatus.FAILED)
            report.sessions_failed += 1
            logger.warning(f"Upload {current.id} ({current.filename}) lost its storage entry, marked FAILED")
            if self.events is not None:
                self.events.publish(UploadFailed(
                    upload_id=current.id,
                    filename=current.filename,
                    reason="storage entry vanished",
                ))
