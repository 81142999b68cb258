import pytest
from datetime import datetime, timedelta
from fastapi.testclient import TestClient

from media_transfer.core.config import Settings
from media_transfer.server import build_app
from media_transfer.utils.headers import encode_upload_metadata

TEST_PIN = "4821"
MP4_HEADER = b"\x00\x00\x00\x18ftypmp42"

def make_video(size):
    """Deterministic bytes that pass the MP4 signature check."""
    filler = bytes(i % 251 for i in range(max(0, size - len(MP4_HEADER))))
    return (MP4_HEADER + filler)[:size]

async def chunked(data, size=64 * 1024):
    for start in range(0, len(data), size):
        yield data[start:start + size]

class FakeClock:
    def __init__(self, now=datetime(2026, 1, 1, 12, 0, 0)):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)

@pytest.fixture
def anyio_backend():
    return "asyncio"

@pytest.fixture
def clock():
    return FakeClock()

@pytest.fixture
def test_settings(tmp_path):
    """Settings pointing at a throwaway data directory."""
    return Settings(
        DATA_DIR=tmp_path / "data",
        MEDIA_DIR=tmp_path / "media",
        CLEANUP_ENABLED=False,
        MIN_FREE_SPACE_BYTES=0,
        PIN_ENABLED=False,
        UPLOAD_PIN=None,
    )

@pytest.fixture
def pin_settings(test_settings):
    return test_settings.model_copy(update={"PIN_ENABLED": True, "UPLOAD_PIN": TEST_PIN})

@pytest.fixture
def test_app(test_settings, clock):
    return build_app(test_settings, clock=clock)

@pytest.fixture
def upload_service(test_app):
    return test_app.state.upload_service

@pytest.fixture
def published_events(test_app):
    """Every event the app publishes, in order."""
    events = []
    test_app.state.events.subscribe(events.append)
    return events

@pytest.fixture
def test_client(test_app):
    """Create a test client for the FastAPI app."""
    with TestClient(test_app) as client:
        yield client

@pytest.fixture
def pin_client(pin_settings, clock):
    with TestClient(build_app(pin_settings, clock=clock)) as client:
        yield client

def tus_headers(**extra):
    headers = {"Tus-Resumable": "1.0.0"}
    headers.update(extra)
    return headers

@pytest.fixture
def create_upload(test_client):
    def _create(filename="clip.mp4", size=1024, client=None, headers=None, filetype="video/mp4"):
        metadata = {"filename": filename}
        if filetype:
            metadata["filetype"] = filetype
        return (client or test_client).post(
            "/tus/",
            headers={
                **tus_headers(),
                "Upload-Length": str(size),
                "Upload-Metadata": encode_upload_metadata(metadata),
                **(headers or {}),
            },
        )
    return _create

@pytest.fixture
def patch_chunk(test_client):
    def _patch(upload_id, offset, data, client=None, headers=None):
        return (client or test_client).patch(
            f"/tus/{upload_id}",
            content=data,
            headers={
                **tus_headers(),
                "Upload-Offset": str(offset),
                "Content-Type": "application/offset+octet-stream",
                **(headers or {}),
            },
        )
    return _patch
