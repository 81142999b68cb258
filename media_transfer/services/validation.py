from pathlib import PurePosixPath, PureWindowsPath
from typing import Iterable, Optional

from fastapi import status

from media_transfer.core.errors import StorageFull, ValidationError

MP4_MAGIC = b"ftyp"
MKV_MAGIC = b"\x1a\x45\xdf\xa3"
SIGNATURE_BYTES = 12


def file_extension(filename: str) -> str:
    return filename.rsplit(".", 1)[-1].lower() if "." in filename else ""


def format_bytes(size: int) -> str:
    """
    Human readable byte count, e.g. "2.5 GB".
    """
    if size >= 1_000_000_000:
        return f"{size / 1_000_000_000:.1f} GB"
    if size >= 1_000_000:
        return f"{size / 1_000_000:.1f} MB"
    if size >= 1_000:
        return f"{size / 1_000:.1f} KB"
    return f"{size} B"


class FileValidator:
    """
    Checks uploads against the accepted media types and the space left.
    """

    def __init__(
        self,
        allowed_extensions: Iterable[str],
        allowed_mime_types: Iterable[str],
        max_upload_size: int = 0,
        min_free_space: int = 0,
    ):
        self.allowed_extensions = {e.lower().lstrip(".") for e in allowed_extensions}
        self.allowed_mime_types = {m.lower() for m in allowed_mime_types}
        self.max_upload_size = max_upload_size
        self.min_free_space = min_free_space

    def validate_filename(self, filename: str) -> str:
        name = (filename or "").strip()
        if not name or name in (".", ".."):
            raise ValidationError("Filename is required", {"filename": filename})
        if PurePosixPath(name).name != name or PureWindowsPath(name).name != name:
            raise ValidationError("Filename must not contain a path", {"filename": filename})
        return name

    def validate_type(self, filename: str, mime_type: Optional[str]) -> None:
        extension = file_extension(filename)
        if extension not in self.allowed_extensions:
            raise ValidationError(
                f"Unsupported file type. Supported: {self.supported_display()}",
                {"filename": filename, "extension": extension},
                status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            )
        if mime_type:
            normalized = mime_type.strip().lower()
            if normalized not in self.allowed_mime_types and not normalized.startswith("video/"):
                raise ValidationError(
                    f"Unsupported MIME type {mime_type}",
                    {"filename": filename, "mime_type": mime_type},
                    status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
                )

    def validate_size(self, expected_size: int, free_space: int) -> None:
        if expected_size < 0:
            raise ValidationError("Upload length must not be negative", {"expected_size": expected_size})
        if self.max_upload_size and expected_size > self.max_upload_size:
            raise ValidationError(
                f"File too large, limit is {format_bytes(self.max_upload_size)}",
                {"expected_size": expected_size, "max_size": self.max_upload_size},
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            )
        if free_space < expected_size + self.min_free_space:
            raise StorageFull(
                f"Not enough storage: {format_bytes(free_space)} available",
                {"expected_size": expected_size, "available": free_space},
            )

    def validate_signature(self, header: bytes, filename: str) -> None:
        """
        Check the first bytes of the file against the container format its
        extension claims.
        """
        extension = file_extension(filename)
        if extension == "mp4":
            valid = header[4:8] == MP4_MAGIC
        elif extension == "mkv":
            valid = header[:4] == MKV_MAGIC
        else:
            # Formats without a known signature are accepted on extension alone
            valid = True
        if not valid:
            raise ValidationError(
                f"File content does not look like a .{extension} file",
                {"filename": filename},
                status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            )

    def supported_display(self) -> str:
        return ", ".join(sorted(e.upper() for e in self.allowed_extensions))
