from datetime import datetime
from pydantic import BaseModel
from typing import Any, Dict, Optional, List

from media_transfer.core.states import SessionStatus

class CreateUploadResponse(BaseModel):
    upload_id: str
    location: str
    offset: int

class UploadStatus(BaseModel):
    upload_id: str
    filename: str
    mime_type: str
    status: SessionStatus
    expected_size: int
    bytes_received: int
    progress_percent: int
    last_updated_at: datetime

    @classmethod
    def from_record(cls, record, **extra):
        return cls(
            upload_id=record.id,
            filename=record.filename,
            mime_type=record.mime_type,
            status=record.status,
            expected_size=record.expected_size,
            bytes_received=record.bytes_received,
            progress_percent=record.progress_percent,
            last_updated_at=record.last_updated_at,
            **extra,
        )

class ResumableUpload(UploadStatus):
    storage_exists: bool
    current_size: int
    can_resume: bool

class ResumableUploadList(BaseModel):
    uploads: List[ResumableUpload]

class UploadedFile(BaseModel):
    filename: str
    path: str
    size: int
    uploaded_at: datetime

class ServerStatus(BaseModel):
    running: bool
    storage_available: int
    storage_available_formatted: str
    pin_required: bool
    tus_enabled: bool = True
    active_uploads: int
    completed_uploads: int
    recent_uploads: List[UploadedFile] = []
    last_activity: Optional[datetime] = None

class PinRequest(BaseModel):
    pin: Optional[str] = None

class PinResponse(BaseModel):
    success: bool
    error: Optional[str] = None

class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    message: str
    detail: Dict[str, Any] = {}
