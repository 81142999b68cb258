import logging

from fastapi import APIRouter, Depends

from media_transfer.api.dependencies import (
    get_access_gate,
    get_activity,
    get_scheduler,
    get_upload_service,
)
from media_transfer.api.schemas import (
    ResumableUpload,
    ResumableUploadList,
    ServerStatus,
    UploadedFile,
    UploadStatus,
)
from media_transfer.core.auth import require_pin
from media_transfer.core.security import AccessGate
from media_transfer.schemas import SweepReport
from media_transfer.services.cleanup_service import CleanupScheduler
from media_transfer.services.events import TransferActivity
from media_transfer.services.upload_service import UploadService
from media_transfer.services.validation import format_bytes

logger = logging.getLogger("status")

router = APIRouter(tags=["status"])

@router.get("/status", response_model=ServerStatus)
async def server_status(
    upload_service: UploadService = Depends(get_upload_service),
    access_gate: AccessGate = Depends(get_access_gate),
    activity: TransferActivity = Depends(get_activity),
):
    """
    Health and activity summary shown by the sending device.
    """
    free = upload_service.storage.free_space()
    return ServerStatus(
        running=True,
        storage_available=free,
        storage_available_formatted=format_bytes(free),
        pin_required=access_gate.enabled,
        active_uploads=upload_service.active_upload_count(),
        completed_uploads=upload_service.completed_upload_count(),
        recent_uploads=[
            UploadedFile(filename=e.filename, path=e.path, size=e.size, uploaded_at=e.at)
            for e in activity.uploaded_files
        ],
        last_activity=activity.last_activity,
    )

@router.get("/uploads", response_model=ResumableUploadList)
async def list_resumable_uploads(upload_service: UploadService = Depends(get_upload_service)):
    """
    Incomplete uploads a client may resume after reconnecting.
    """
    uploads = await upload_service.list_resumable()
    return ResumableUploadList(uploads=[
        ResumableUpload.from_record(
            item.session,
            storage_exists=item.storage_exists,
            current_size=item.current_size,
            can_resume=item.can_resume,
        )
        for item in uploads
    ])

@router.get("/uploads/{upload_id}", response_model=UploadStatus)
async def get_upload_status(upload_id: str, upload_service: UploadService = Depends(get_upload_service)):
    record = await upload_service.get_offset(upload_id)
    return UploadStatus.from_record(record)

@router.post("/uploads/cleanup", response_model=SweepReport, dependencies=[Depends(require_pin)])
async def run_cleanup(scheduler: CleanupScheduler = Depends(get_scheduler)):
    """
    Run one cleanup sweep now instead of waiting for the scheduler.
    """
    report = await scheduler.run_once()
    logger.info(f"Manual cleanup requested: {report.model_dump()}")
    return report
