from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from media_transfer.core.states import SessionStatus, UploadPhase, phase_for

class UploadSessionRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str
    filename: str
    mime_type: str
    expected_size: int
    bytes_received: int
    storage_handle: str
    status: SessionStatus
    final_path: Optional[str] = None
    created_at: datetime
    last_updated_at: datetime

    @property
    def progress_percent(self) -> int:
        if self.expected_size <= 0:
            return 100 if self.status is SessionStatus.COMPLETED else 0
        return max(0, min(100, self.bytes_received * 100 // self.expected_size))

    @property
    def phase(self) -> UploadPhase:
        return phase_for(self.status, self.bytes_received)

class IncompleteUpload(BaseModel):
    session: UploadSessionRecord
    storage_exists: bool
    current_size: int

    @property
    def can_resume(self) -> bool:
        return self.storage_exists and self.session.bytes_received > 0

class OrphanedStorageEntry(BaseModel):
    handle: str
    display_name: str
    size: int

class SweepReport(BaseModel):
    expired_sessions: int = 0
    purged_sessions: int = 0
    orphans_deleted: int = 0
    sessions_failed: int = 0
    errors: List[str] = []
