import logging
import mimetypes
import uuid
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.exc import SQLAlchemyError

from media_transfer.core.errors import (
    Busy,
    InternalIO,
    NotFound,
    NotResumable,
    OffsetMismatch,
    TransferError,
    ValidationError,
)
from media_transfer.core.states import SessionStatus, UploadPhase, check_transition
from media_transfer.schemas import IncompleteUpload, UploadSessionRecord
from media_transfer.services.events import (
    EventBus,
    UploadCancelled,
    UploadFailed,
    UploadFinalized,
    UploadProgress,
    UploadStarted,
)
from media_transfer.services.locks import SessionLocks
from media_transfer.services.session_store import UploadSessionStore
from media_transfer.services.storage import StorageBackend
from media_transfer.services.validation import SIGNATURE_BYTES, FileValidator

logger = logging.getLogger("upload_service")

TUS_VERSION = "1.0.0"
TUS_EXTENSIONS = ("creation", "termination")
WRITE_BUFFER_SIZE = 256 * 1024
PROGRESS_INTERVAL = 4 * 1024 * 1024


class UploadService:
    """
    Resumable upload engine: create, query offset, append, finalize, cancel.

    Progress is always measured against the storage backend. The session row
    is a record of what storage already holds, written after the bytes are
    durable, so a crash can only leave the row behind storage, never ahead.
    """

    def __init__(
        self,
        store: UploadSessionStore,
        storage: StorageBackend,
        events: EventBus,
        validator: FileValidator,
        locks: Optional[SessionLocks] = None,
        active_idle_seconds: int = 300,
        verify_signature: bool = True,
    ):
        self.store = store
        self.storage = storage
        self.events = events
        self.validator = validator
        self.locks = locks or SessionLocks()
        self.active_idle_seconds = active_idle_seconds
        self.verify_signature = verify_signature

    def capabilities(self) -> Dict[str, Any]:
        return {
            "version": TUS_VERSION,
            "extensions": list(TUS_EXTENSIONS),
            "max_size": self.validator.max_upload_size or None,
        }

    async def create(self, filename: str, expected_size: int, mime_type: Optional[str] = None) -> UploadSessionRecord:
        """
        Validate the file, reserve a storage placeholder and open a session.
        """
        name = self.validator.validate_filename(filename)
        self.validator.validate_type(name, mime_type)
        self.validator.validate_size(expected_size, self.storage.free_space())
        mime_type = mime_type or mimetypes.guess_type(name)[0] or "application/octet-stream"

        async with self.locks.admission:
            self._ensure_not_busy()
            handle = await self.storage.create_pending(name, mime_type)
            try:
                record = self.store.create(uuid.uuid4().hex, name, mime_type, expected_size, handle)
            except SQLAlchemyError as e:
                await self.storage.cancel(handle)
                raise InternalIO(f"Could not record upload session: {e}") from e

        logger.info(f"Upload {record.id} created for {name} ({expected_size} bytes)")
        self.events.publish(UploadStarted(upload_id=record.id, filename=name, expected_size=expected_size))

        if expected_size == 0:
            async with self.locks.hold(record.id):
                record = await self._finalize(record)
        return record

    async def get_offset(self, upload_id: str) -> UploadSessionRecord:
        """
        Current durable offset of an upload, read from storage.

        Never waits for an append streaming on another connection and never
        writes. Corrections to the session row, failure marking and the
        finalize retry all happen on the next PATCH.
        """
        record = self._check_readable(self._require(upload_id))
        if record.status is SessionStatus.COMPLETED:
            return record
        durable = await self.storage.durable_size(record.storage_handle)
        if durable is None:
            raise NotResumable(
                f"Stored data for {record.filename} is gone, start over",
                {"upload_id": record.id, "filename": record.filename},
            )
        return record.model_copy(update={"bytes_received": min(durable, record.expected_size)})

    async def append(
        self,
        upload_id: str,
        offset: int,
        body: AsyncIterator[bytes],
        declared_length: Optional[int] = None,
        total_length: Optional[int] = None,
    ) -> UploadSessionRecord:
        """
        Append the request body at ``offset``.

        ``offset`` must equal the durable offset exactly. Bytes are credited
        only after storage reports them written. ``total_length``, when the
        client sends one, must match the size declared at create time. An
        empty append at ``offset == expected_size`` retries a failed finalize.
        """
        async with self.locks.hold(upload_id):
            record = self._check_readable(self._require(upload_id))
            if total_length is not None and total_length != record.expected_size:
                raise ValidationError(
                    "Total length does not match this upload",
                    {
                        "upload_id": upload_id,
                        "filename": record.filename,
                        "expected_size": record.expected_size,
                        "provided_size": total_length,
                    },
                )
            if record.status is SessionStatus.IN_PROGRESS:
                record = await self._sync_with_storage(record)

            if offset != record.bytes_received:
                raise OffsetMismatch(record.bytes_received, offset)
            if record.status is SessionStatus.COMPLETED:
                # Retry of a chunk that already completed the upload
                return record
            if declared_length is not None and offset + declared_length > record.expected_size:
                raise ValidationError(
                    "Chunk exceeds the declared upload length",
                    {"offset": offset, "length": declared_length, "expected_size": record.expected_size},
                    status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                )

            async with self.locks.admission:
                self._ensure_not_busy(exclude_id=upload_id)
                # Touching the row marks this upload as the active one
                record = await run_in_threadpool(self.store.update_progress, upload_id, record.bytes_received)

            record = await self._receive(record, body)
            if record.bytes_received == record.expected_size:
                record = await self._finalize(record)
        return record

    async def cancel(self, upload_id: str) -> UploadSessionRecord:
        """
        Delete the placeholder and mark the upload cancelled. Cancelling a
        finished upload changes nothing.
        """
        async with self.locks.hold(upload_id):
            record = self._require(upload_id)
            if record.status.is_terminal:
                return record
            await self.storage.cancel(record.storage_handle)
            record = self.store.set_status(upload_id, SessionStatus.CANCELLED)

        logger.info(f"Upload {upload_id} cancelled")
        self.events.publish(UploadCancelled(upload_id=upload_id, filename=record.filename))
        return record

    async def list_resumable(self) -> List[IncompleteUpload]:
        uploads = []
        for session in self.store.list_in_progress():
            size = await self.storage.durable_size(session.storage_handle)
            uploads.append(IncompleteUpload(
                session=session,
                storage_exists=size is not None,
                current_size=size or 0,
            ))
        return uploads

    def active_upload_count(self) -> int:
        return self.store.count_active(self.active_idle_seconds)

    def completed_upload_count(self) -> int:
        return self.store.count_by_status(SessionStatus.COMPLETED)

    def _require(self, upload_id: str) -> UploadSessionRecord:
        record = self.store.get(upload_id)
        if record is None:
            raise NotFound(f"Upload {upload_id} not found", {"upload_id": upload_id})
        return record

    def _check_readable(self, record: UploadSessionRecord) -> UploadSessionRecord:
        if record.status is SessionStatus.CANCELLED:
            raise NotFound(f"Upload {record.id} was cancelled", {"upload_id": record.id})
        if record.status is SessionStatus.FAILED:
            raise NotResumable(
                f"Upload {record.id} can no longer be resumed, start over",
                {"upload_id": record.id, "filename": record.filename},
            )
        return record

    def _ensure_not_busy(self, exclude_id: Optional[str] = None) -> None:
        active = self.store.find_active(self.active_idle_seconds, exclude_id=exclude_id)
        if active is not None:
            raise Busy(
                "Another upload is in progress, try again later",
                {"active_upload_id": active.id, "active_filename": active.filename},
            )

    async def _sync_with_storage(self, record: UploadSessionRecord) -> UploadSessionRecord:
        """
        Bring the session row in line with storage. Caller holds the lock.
        """
        durable = await self.storage.durable_size(record.storage_handle)
        if durable is None:
            self._mark_failed(record, "storage entry vanished")
            raise NotResumable(
                f"Stored data for {record.filename} is gone, start over",
                {"upload_id": record.id, "filename": record.filename},
            )
        if durable > record.expected_size:
            self._mark_failed(record, "storage holds more bytes than declared")
            await self.storage.cancel(record.storage_handle)
            raise NotResumable(
                f"Stored data for {record.filename} is corrupt, start over",
                {"upload_id": record.id, "durable_size": durable, "expected_size": record.expected_size},
            )
        if durable != record.bytes_received:
            logger.warning(
                f"Upload {record.id}: session said {record.bytes_received} bytes, storage has {durable}"
            )
            record = self.store.update_progress(record.id, durable)
        if durable == record.expected_size:
            record = await self._finalize(record)
        return record

    async def _receive(self, record: UploadSessionRecord, body: AsyncIterator[bytes]) -> UploadSessionRecord:
        received = record.bytes_received
        reported = received
        # The signature is checked once its bytes exist, however the client splits them
        needed = min(SIGNATURE_BYTES, record.expected_size)
        check_signature = self.verify_signature and received < needed
        head = b""
        if check_signature and received:
            head = await self._read_head(record, received)
        buffer = bytearray()

        async def flush():
            nonlocal received, check_signature, head
            if check_signature:
                head += bytes(buffer[:needed - len(head)])
                if len(head) >= needed:
                    self.validator.validate_signature(head, record.filename)
                    check_signature = False
            written = await self._write(record, bytes(buffer))
            received += written
            if written != len(buffer):
                raise InternalIO(
                    f"Short write: {written} of {len(buffer)} bytes stored",
                    {"offset": received},
                )
            buffer.clear()

        try:
            async for piece in body:
                if not piece:
                    continue
                if received + len(buffer) + len(piece) > record.expected_size:
                    raise ValidationError(
                        "Chunk exceeds the declared upload length",
                        {"offset": received, "expected_size": record.expected_size},
                        status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                    )
                buffer.extend(piece)
                if len(buffer) >= WRITE_BUFFER_SIZE:
                    await flush()
                    if received - reported >= PROGRESS_INTERVAL:
                        record = await run_in_threadpool(self.store.update_progress, record.id, received)
                        reported = received
                        self.events.publish(UploadProgress(
                            upload_id=record.id,
                            filename=record.filename,
                            bytes_received=received,
                            expected_size=record.expected_size,
                        ))
            if buffer:
                await flush()
        finally:
            if received != record.bytes_received:
                record = await run_in_threadpool(self.store.update_progress, record.id, received)

        self.events.publish(UploadProgress(
            upload_id=record.id,
            filename=record.filename,
            bytes_received=record.bytes_received,
            expected_size=record.expected_size,
        ))
        return record

    async def _read_head(self, record: UploadSessionRecord, size: int) -> bytes:
        try:
            return await self.storage.read_head(record.storage_handle, size)
        except FileNotFoundError:
            self._mark_failed(record, "storage entry vanished")
            raise NotResumable(
                f"Stored data for {record.filename} is gone, start over",
                {"upload_id": record.id, "filename": record.filename},
            )

    async def _write(self, record: UploadSessionRecord, data: bytes) -> int:
        try:
            return await self.storage.append(record.storage_handle, data)
        except FileNotFoundError:
            self._mark_failed(record, "storage entry vanished")
            raise NotResumable(
                f"Stored data for {record.filename} is gone, start over",
                {"upload_id": record.id, "filename": record.filename},
            )

    async def _finalize(self, record: UploadSessionRecord) -> UploadSessionRecord:
        check_transition(record.phase, UploadPhase.COMPLETING)
        try:
            path = await self.storage.finalize(record.storage_handle, record.filename)
        except TransferError as e:
            logger.error(f"Could not finalize {record.id} ({record.filename}): {e.message}")
            raise InternalIO(
                f"Could not commit {record.filename}, retry to finish the upload",
                {"upload_id": record.id, "offset": record.bytes_received},
            ) from e

        record = self.store.set_status(record.id, SessionStatus.COMPLETED, final_path=path)
        logger.info(f"Upload {record.id} complete: {path}")
        self.events.publish(UploadFinalized(
            upload_id=record.id,
            filename=record.filename,
            path=path,
            size=record.expected_size,
            mime_type=record.mime_type,
        ))
        return record

    def _mark_failed(self, record: UploadSessionRecord, reason: str) -> None:
        logger.warning(f"Upload {record.id} ({record.filename}) failed: {reason}")
        self.store.set_status(record.id, SessionStatus.FAILED)
        self.events.publish(UploadFailed(upload_id=record.id, filename=record.filename, reason=reason))
