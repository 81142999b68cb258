import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Set

from media_transfer import crud
from media_transfer.core.states import SessionStatus
from media_transfer.database import create_session_factory
from media_transfer.schemas import UploadSessionRecord
from media_transfer.utils.clock import utcnow

logger = logging.getLogger("session_store")

def _snapshot(row) -> Optional[UploadSessionRecord]:
    return UploadSessionRecord.model_validate(row) if row is not None else None

class UploadSessionStore:
    """
    Durable record of every upload attempt.

    Each call opens its own short-lived ORM session and returns immutable
    snapshots, so the cleanup sweep, the listing endpoints and the engine's
    per-session writer never share ORM state.
    """

    def __init__(self, session_factory, clock: Callable[[], datetime] = utcnow):
        self._session_factory = session_factory
        self.clock = clock

    @classmethod
    def from_url(cls, database_url: str, clock: Callable[[], datetime] = utcnow) -> "UploadSessionStore":
        _, SessionLocal = create_session_factory(database_url)
        return cls(SessionLocal, clock=clock)

    def create(self, upload_id: str, filename: str, mime_type: str, expected_size: int,
               storage_handle: str) -> UploadSessionRecord:
        with self._session_factory() as db:
            row = crud.create_session(db, upload_id, filename, mime_type, expected_size,
                                      storage_handle, self.clock())
            return _snapshot(row)

    def get(self, upload_id: str) -> Optional[UploadSessionRecord]:
        with self._session_factory() as db:
            return _snapshot(crud.get_session(db, upload_id))

    def get_by_handle(self, storage_handle: str) -> Optional[UploadSessionRecord]:
        with self._session_factory() as db:
            return _snapshot(crud.get_session_by_handle(db, storage_handle))

    def list_in_progress(self) -> List[UploadSessionRecord]:
        with self._session_factory() as db:
            return [_snapshot(row) for row in crud.list_sessions(db, SessionStatus.IN_PROGRESS)]

    def list_all(self) -> List[UploadSessionRecord]:
        with self._session_factory() as db:
            return [_snapshot(row) for row in crud.list_sessions(db)]

    def live_handles(self) -> Set[str]:
        return {session.storage_handle for session in self.list_in_progress()}

    def update_progress(self, upload_id: str, bytes_received: int) -> Optional[UploadSessionRecord]:
        with self._session_factory() as db:
            return _snapshot(crud.update_progress(db, upload_id, bytes_received, self.clock()))

    def set_status(self, upload_id: str, status: SessionStatus,
                   final_path: Optional[str] = None) -> Optional[UploadSessionRecord]:
        with self._session_factory() as db:
            row = crud.update_status(db, upload_id, status, self.clock(), final_path=final_path)
            if row is not None:
                logger.info(f"Upload {upload_id} -> {status.value}")
            return _snapshot(row)

    def find_active(self, idle_seconds: int, exclude_id: Optional[str] = None) -> Optional[UploadSessionRecord]:
        cutoff = self.clock() - timedelta(seconds=idle_seconds)
        with self._session_factory() as db:
            return _snapshot(crud.find_active(db, cutoff, exclude_id=exclude_id))

    def count_active(self, idle_seconds: int) -> int:
        cutoff = self.clock() - timedelta(seconds=idle_seconds)
        with self._session_factory() as db:
            return crud.count_active(db, cutoff)

    def count_by_status(self, status: SessionStatus) -> int:
        with self._session_factory() as db:
            return crud.count_by_status(db, status)

    def expired(self, ttl_seconds: int) -> List[UploadSessionRecord]:
        """Sessions whose last activity is older than ``ttl_seconds``."""
        cutoff = self.clock() - timedelta(seconds=ttl_seconds)
        with self._session_factory() as db:
            return [_snapshot(row) for row in crud.list_older_than(db, cutoff)]

    def delete(self, upload_id: str) -> bool:
        with self._session_factory() as db:
            return crud.delete_session(db, upload_id)
