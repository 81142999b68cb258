"""
Error taxonomy for the transfer service.

Every error carries an HTTP status, a machine-readable code and a ``detail``
dict so callers can decide whether to retry, resume or start over.
"""
from typing import Any, Dict, Optional

from fastapi import status


class TransferError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "transfer_error"
    retryable: bool = False

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.detail = dict(detail or {})
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        detail = dict(self.detail)
        if self.retryable:
            detail.setdefault("retryable", True)
        return {
            "success": False,
            "error": self.code,
            "message": self.message,
            "detail": detail,
        }


class BindConflict(TransferError):
    code = "bind_conflict"

    def __init__(self, ports):
        super().__init__(f"All ports are in use: {list(ports)}", {"ports": list(ports)})


class Busy(TransferError):
    status_code = status.HTTP_423_LOCKED
    code = "busy"
    retryable = True


class AuthRequired(TransferError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "auth_required"


class AuthFailed(AuthRequired):
    code = "auth_failed"


class ValidationError(TransferError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "validation_error"


class OffsetMismatch(TransferError):
    status_code = status.HTTP_409_CONFLICT
    code = "offset_mismatch"

    def __init__(self, expected: int, provided: int):
        super().__init__(
            f"Offset mismatch: server has {expected} bytes, request starts at {provided}",
            {"expected_offset": expected, "provided_offset": provided},
        )
        self.expected = expected
        self.provided = provided


class NotFound(TransferError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class StorageFull(TransferError):
    status_code = status.HTTP_507_INSUFFICIENT_STORAGE
    code = "storage_full"
    retryable = True


class InternalIO(TransferError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "internal_io"
    retryable = True


class NotResumable(TransferError):
    status_code = status.HTTP_410_GONE
    code = "not_resumable"


class UploadTimeout(TransferError):
    status_code = status.HTTP_408_REQUEST_TIMEOUT
    code = "upload_timeout"
    retryable = True


class InvalidTransition(TransferError):
    status_code = status.HTTP_409_CONFLICT
    code = "invalid_transition"
