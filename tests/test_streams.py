import asyncio

import pytest

from media_transfer.core.errors import UploadTimeout
from media_transfer.utils.streams import iter_with_timeout

pytestmark = pytest.mark.anyio

async def stalled_stream():
    yield b"first"
    await asyncio.sleep(1)
    yield b"never"

async def test_pieces_pass_through():
    async def stream():
        yield b"a"
        yield b"b"

    assert [piece async for piece in iter_with_timeout(stream(), 1.0)] == [b"a", b"b"]

async def test_stall_raises_timeout():
    received = []

    with pytest.raises(UploadTimeout) as excinfo:
        async for piece in iter_with_timeout(stalled_stream(), 0.05):
            received.append(piece)

    assert received == [b"first"]
    assert excinfo.value.status_code == 408
    assert excinfo.value.retryable
