from fastapi import Request

from media_transfer.core.config import Settings
from media_transfer.core.security import AccessGate
from media_transfer.services.cleanup_service import CleanupScheduler
from media_transfer.services.events import TransferActivity
from media_transfer.services.upload_service import UploadService

# Collaborators are attached to app.state by TransferServer.build_app()

def get_upload_service(request: Request) -> UploadService:
    return request.app.state.upload_service

def get_settings(request: Request) -> Settings:
    return request.app.state.settings

def get_access_gate(request: Request) -> AccessGate:
    return request.app.state.access_gate

def get_scheduler(request: Request) -> CleanupScheduler:
    return request.app.state.scheduler

def get_activity(request: Request) -> TransferActivity:
    return request.app.state.activity
