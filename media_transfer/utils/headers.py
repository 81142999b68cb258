import base64
import binascii
from typing import Dict, Mapping, Optional, Tuple

from media_transfer.core.errors import ValidationError

def parse_length(value: Optional[str], header: str) -> int:
    """
    Parse a non-negative integer header such as Upload-Length or Upload-Offset.
    """
    if value is None or value.strip() == "":
        raise ValidationError(f"{header} header is required", {"header": header})
    try:
        number = int(value.strip())
    except ValueError:
        raise ValidationError(f"Invalid {header} header", {"header": header, "value": value})
    if number < 0:
        raise ValidationError(f"{header} must not be negative", {"header": header, "value": value})
    return number

def parse_upload_metadata(header: Optional[str]) -> Dict[str, str]:
    """
    Decode a tus Upload-Metadata header.

    The format is comma separated pairs of a key and a base64 value:
    ``filename dmlkLm1wNA==,filetype dmlkZW8vbXA0``. A key may have no value.
    """
    metadata = {}
    if not header:
        return metadata
    for pair in header.split(","):
        pair = pair.strip()
        if not pair:
            continue
        key, _, encoded = pair.partition(" ")
        try:
            metadata[key] = base64.b64decode(encoded.strip(), validate=True).decode("utf-8") if encoded else ""
        except (binascii.Error, UnicodeDecodeError):
            raise ValidationError("Invalid Upload-Metadata header", {"key": key})
    return metadata

def encode_upload_metadata(values: Mapping[str, str]) -> str:
    """
    Build an Upload-Metadata header value from plain strings.
    """
    return ",".join(
        f"{key} {base64.b64encode(value.encode('utf-8')).decode('ascii')}" if value else key
        for key, value in values.items()
    )

def parse_content_range(header: str) -> Tuple[int, int, Optional[int]]:
    """
    Parse ``bytes start-end/total`` into ``(start, end, total)``.

    ``end`` is inclusive and ``total`` is None when sent as ``*``.
    """
    if not header or not header.startswith("bytes "):
        raise ValidationError("Invalid Content-Range header", {"value": header})
    range_value = header[len("bytes "):].strip()
    try:
        span, _, total_str = range_value.partition("/")
        start_str, end_str = span.split("-")
        start = int(start_str)
        end = int(end_str)
        total = None if total_str in ("", "*") else int(total_str)
    except ValueError:
        raise ValidationError("Invalid Content-Range header", {"value": header})
    if start < 0 or end < start:
        raise ValidationError("Invalid byte range (end < start)", {"value": header})
    if total is not None and end >= total:
        raise ValidationError("Byte range ends past the total length", {"value": header})
    return start, end, total
