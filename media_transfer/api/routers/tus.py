import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, Response, status
from fastapi.responses import JSONResponse
from starlette.requests import ClientDisconnect

from media_transfer.api.dependencies import get_settings, get_upload_service
from media_transfer.api.schemas import CreateUploadResponse, ErrorResponse
from media_transfer.core.auth import require_pin
from media_transfer.core.config import Settings
from media_transfer.core.errors import UploadTimeout, ValidationError
from media_transfer.services.upload_service import TUS_VERSION, UploadService
from media_transfer.utils.headers import parse_content_range, parse_length, parse_upload_metadata
from media_transfer.utils.streams import iter_with_timeout

logger = logging.getLogger("tus")

router = APIRouter(
    prefix="/tus",
    tags=["tus"],
    responses={code: {"model": ErrorResponse} for code in (400, 401, 404, 409, 410, 413, 415, 423, 507)},
)

OFFSET_CONTENT_TYPES = ("application/offset+octet-stream", "application/octet-stream")

def tus_headers(**extra) -> dict:
    headers = {"Tus-Resumable": TUS_VERSION}
    headers.update({key.replace("_", "-").title(): value for key, value in extra.items()})
    return headers

@router.options("/")
async def discover_capabilities(upload_service: UploadService = Depends(get_upload_service)):
    """
    Capability discovery. Never needs the PIN and never touches sessions.
    """
    capabilities = upload_service.capabilities()
    headers = tus_headers(
        tus_version=capabilities["version"],
        tus_extension=",".join(capabilities["extensions"]),
    )
    if capabilities["max_size"]:
        headers["Tus-Max-Size"] = str(capabilities["max_size"])
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers=headers)

@router.post("/", status_code=status.HTTP_201_CREATED, response_model=CreateUploadResponse,
             dependencies=[Depends(require_pin)])
async def create_upload(
    upload_length: Optional[str] = Header(None),
    upload_metadata: Optional[str] = Header(None),
    upload_service: UploadService = Depends(get_upload_service),
):
    """
    Create a new upload from Upload-Length and the filename/filetype metadata.
    """
    length = parse_length(upload_length, "Upload-Length")
    metadata = parse_upload_metadata(upload_metadata)
    filename = metadata.get("filename") or metadata.get("name") or ""
    mime_type = metadata.get("filetype") or metadata.get("type")

    record = await upload_service.create(filename, length, mime_type)

    location = f"{router.prefix}/{record.id}"
    body = CreateUploadResponse(upload_id=record.id, location=location, offset=record.bytes_received)
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=body.model_dump(),
        headers=tus_headers(location=location, upload_offset=str(record.bytes_received)),
    )

@router.head("/{upload_id}")
async def get_upload_offset(upload_id: str, upload_service: UploadService = Depends(get_upload_service)):
    """
    Durable offset of an upload, so a client can resume after an interruption.
    """
    record = await upload_service.get_offset(upload_id)
    return Response(
        status_code=status.HTTP_200_OK,
        headers=tus_headers(
            upload_offset=str(record.bytes_received),
            upload_length=str(record.expected_size),
            cache_control="no-store",
        ),
    )

@router.patch("/{upload_id}", dependencies=[Depends(require_pin)])
async def append_chunk(
    upload_id: str,
    request: Request,
    upload_offset: Optional[str] = Header(None),
    content_range: Optional[str] = Header(None),
    content_type: Optional[str] = Header(None),
    content_length: Optional[str] = Header(None),
    upload_service: UploadService = Depends(get_upload_service),
    settings: Settings = Depends(get_settings),
):
    """
    Append a chunk at Upload-Offset (or the start of a Content-Range).
    """
    if content_type and content_type.split(";")[0].strip().lower() not in OFFSET_CONTENT_TYPES:
        raise ValidationError(
            "Content-Type must be application/offset+octet-stream",
            {"content_type": content_type},
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
        )

    total_length = None
    declared_length = parse_length(content_length, "Content-Length") if content_length else None
    if upload_offset is not None:
        offset = parse_length(upload_offset, "Upload-Offset")
    elif content_range:
        offset, end, total_length = parse_content_range(content_range)
        declared_length = end - offset + 1
    else:
        raise ValidationError("Upload-Offset or Content-Range header is required")

    body = iter_with_timeout(request.stream(), settings.READ_TIMEOUT_SECONDS)
    try:
        record = await upload_service.append(
            upload_id, offset, body, declared_length=declared_length, total_length=total_length
        )
    except UploadTimeout as e:
        e.detail["offset"] = (await upload_service.get_offset(upload_id)).bytes_received
        logger.warning(f"Upload {upload_id} stalled, kept at offset {e.detail['offset']}")
        raise
    except ClientDisconnect:
        logger.warning(f"Client disconnected during chunk for {upload_id}")
        raise ValidationError(
            "Client disconnected before the chunk finished",
            {"offset": (await upload_service.get_offset(upload_id)).bytes_received},
        )

    return Response(
        status_code=status.HTTP_204_NO_CONTENT,
        headers=tus_headers(upload_offset=str(record.bytes_received)),
    )

@router.delete("/{upload_id}", dependencies=[Depends(require_pin)])
async def cancel_upload(upload_id: str, upload_service: UploadService = Depends(get_upload_service)):
    """
    Cancel an upload and delete its partial data.
    """
    await upload_service.cancel(upload_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers=tus_headers())
