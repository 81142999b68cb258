import pytest

from media_transfer.core.errors import ValidationError
from media_transfer.utils.headers import (
    encode_upload_metadata,
    parse_content_range,
    parse_length,
    parse_upload_metadata,
)

def test_parse_length():
    assert parse_length("1024", "Upload-Length") == 1024
    assert parse_length(" 0 ", "Upload-Offset") == 0

@pytest.mark.parametrize("value", [None, "", "abc", "-1", "1.5"])
def test_parse_length_rejects(value):
    with pytest.raises(ValidationError):
        parse_length(value, "Upload-Length")

def test_parse_upload_metadata():
    header = "filename dmlkLm1wNA==,filetype dmlkZW8vbXA0,is_confidential"

    assert parse_upload_metadata(header) == {
        "filename": "vid.mp4",
        "filetype": "video/mp4",
        "is_confidential": "",
    }

def test_upload_metadata_unicode_filename():
    header = encode_upload_metadata({"filename": "fête.mkv"})

    assert parse_upload_metadata(header) == {"filename": "fête.mkv"}

def test_parse_upload_metadata_invalid_base64():
    with pytest.raises(ValidationError):
        parse_upload_metadata("filename not-base64!")

def test_parse_content_range():
    assert parse_content_range("bytes 0-99/200") == (0, 99, 200)
    assert parse_content_range("bytes 100-199/*") == (100, 199, None)

@pytest.mark.parametrize("value", ["0-99/200", "bytes 99-0/200", "bytes 0-200/200", "bytes a-b/c"])
def test_parse_content_range_rejects(value):
    with pytest.raises(ValidationError):
        parse_content_range(value)
