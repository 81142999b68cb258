import asyncio
from typing import AsyncIterator

from media_transfer.core.errors import UploadTimeout


async def iter_with_timeout(stream: AsyncIterator[bytes], timeout: float) -> AsyncIterator[bytes]:
    """
    Re-yield ``stream``, giving up with ``UploadTimeout`` when no piece
    arrives for ``timeout`` seconds.
    """
    iterator = stream.__aiter__()
    while True:
        try:
            piece = await asyncio.wait_for(iterator.__anext__(), timeout)
        except StopAsyncIteration:
            return
        except asyncio.TimeoutError:
            raise UploadTimeout(f"No data received for {timeout:g} seconds")
        yield piece
