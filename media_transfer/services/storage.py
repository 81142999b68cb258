"""
Pending/visible storage for uploaded media.

A pending entry is reserved and written to while hidden from every other
consumer of the media directory; ``finalize`` makes it visible in one step
and ``cancel`` throws it away.
"""
import abc
import asyncio
import errno
import logging
import os
import shutil
import uuid
from pathlib import Path
from typing import Iterator, List, NamedTuple, Optional

import aiofiles
import aiofiles.os

from media_transfer.core.errors import InternalIO, StorageFull

logger = logging.getLogger("storage")

PENDING_DIRNAME = ".pending"
LINK_UNSUPPORTED = {errno.EPERM, errno.ENOTSUP, errno.EOPNOTSUPP, errno.EXDEV}


class PendingEntry(NamedTuple):
    handle: str
    display_name: str
    size: int


def _io_error(action: str, handle: str, e: OSError):
    if e.errno == errno.ENOSPC:
        return StorageFull(f"No space left while trying to {action}", {"handle": handle})
    return InternalIO(f"Storage failed to {action}: {e}", {"handle": handle})


class StorageBackend(abc.ABC):
    """Interface the upload engine writes through."""

    @abc.abstractmethod
    async def create_pending(self, filename: str, mime_type: str) -> str:
        """Reserve a hidden placeholder and return its handle."""

    @abc.abstractmethod
    async def append(self, handle: str, data: bytes) -> int:
        """Append ``data`` durably and return how many bytes were written."""

    @abc.abstractmethod
    async def durable_size(self, handle: str) -> Optional[int]:
        """Bytes durably stored for ``handle``, or ``None`` if it is gone."""

    @abc.abstractmethod
    async def read_head(self, handle: str, size: int) -> bytes:
        """Up to ``size`` bytes from the start of a pending entry."""

    @abc.abstractmethod
    async def finalize(self, handle: str, filename: str) -> str:
        """Make the entry visible and return where it ended up."""

    @abc.abstractmethod
    async def cancel(self, handle: str) -> bool:
        """Delete a pending entry. Returns False if it did not exist."""

    @abc.abstractmethod
    async def list_pending(self) -> List[PendingEntry]:
        """Every pending entry in this backend's namespace."""

    @abc.abstractmethod
    def free_space(self) -> int:
        """Bytes available for new uploads."""


class FileSystemStorage(StorageBackend):
    """
    Storage backend on a local directory.

    Pending entries live in ``<media_dir>/.pending`` and are moved into
    ``media_dir`` on finalize, never overwriting an existing file.
    """

    def __init__(self, media_dir: Path):
        self.media_dir = Path(media_dir)
        self.pending_dir = self.media_dir / PENDING_DIRNAME
        self.pending_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, handle: str) -> Path:
        # Handles are generated here, but they also come back from the database
        if Path(handle).name != handle:
            raise InternalIO("Invalid storage handle", {"handle": handle})
        return self.pending_dir / handle

    async def create_pending(self, filename: str, mime_type: str) -> str:
        handle = f"{uuid.uuid4().hex}_{Path(filename).name}"
        try:
            async with aiofiles.open(self._path(handle), "xb"):
                pass
        except OSError as e:
            raise _io_error("create a placeholder", handle, e) from e
        logger.info(f"Created pending entry {handle} ({mime_type})")
        return handle

    async def durable_size(self, handle: str) -> Optional[int]:
        try:
            stat = await aiofiles.os.stat(self._path(handle))
        except FileNotFoundError:
            return None
        return stat.st_size

    async def append(self, handle: str, data: bytes) -> int:
        path = self._path(handle)
        before = await self.durable_size(handle)
        if before is None:
            raise FileNotFoundError(path)
        if not data:
            return 0
        try:
            async with aiofiles.open(path, "ab") as f:
                await f.write(data)
                await f.flush()
                await asyncio.get_running_loop().run_in_executor(None, os.fsync, f.fileno())
        except OSError as e:
            # Nothing from a failed write is credited, so drop whatever landed
            await self._truncate(path, before)
            raise _io_error("append data", handle, e) from e
        after = await self.durable_size(handle)
        return (after or 0) - before

    async def _truncate(self, path: Path, size: int) -> None:
        try:
            await asyncio.get_running_loop().run_in_executor(None, os.truncate, path, size)
        except OSError as e:
            logger.error(f"Could not roll back partial write on {path}: {str(e)}")

    async def read_head(self, handle: str, size: int) -> bytes:
        try:
            async with aiofiles.open(self._path(handle), "rb") as f:
                return await f.read(size)
        except FileNotFoundError:
            raise
        except OSError as e:
            raise _io_error("read the stored prefix", handle, e) from e

    def _candidates(self, filename: str) -> Iterator[Path]:
        target = self.media_dir / Path(filename).name
        yield target
        counter = 1
        while True:
            yield self.media_dir / f"{target.stem} ({counter}){target.suffix}"
            counter += 1

    async def _claim(self, source: Path, target: Path) -> None:
        """
        Publish ``source`` at ``target``, raising FileExistsError if the name
        is taken. A hard link fails on an existing name instead of replacing it.
        """
        try:
            await aiofiles.os.link(source, target)
        except OSError as e:
            if e.errno not in LINK_UNSUPPORTED:
                raise
            # Filesystems without hard links: reserve the name, then move over it
            async with aiofiles.open(target, "xb"):
                pass
            await aiofiles.os.replace(source, target)
            return
        try:
            await aiofiles.os.remove(source)
        except OSError as e:
            # The file is already visible; the leftover link is swept as an orphan
            logger.error(f"Could not remove pending link {source}: {str(e)}")

    async def finalize(self, handle: str, filename: str) -> str:
        source = self._path(handle)
        for target in self._candidates(filename):
            try:
                await self._claim(source, target)
            except FileExistsError:
                continue
            except OSError as e:
                raise _io_error("finalize the upload", handle, e) from e
            break
        logger.info(f"Finalized {handle} -> {target}")
        return str(target)

    async def cancel(self, handle: str) -> bool:
        try:
            await aiofiles.os.remove(self._path(handle))
        except FileNotFoundError:
            return False
        except OSError as e:
            raise _io_error("delete the pending entry", handle, e) from e
        logger.info(f"Deleted pending entry {handle}")
        return True

    async def list_pending(self) -> List[PendingEntry]:
        entries = []
        for path in self.pending_dir.glob("*"):
            if not path.is_file():
                continue
            display_name = path.name.split("_", 1)[-1]
            try:
                size = path.stat().st_size
            except FileNotFoundError:
                continue
            entries.append(PendingEntry(path.name, display_name, size))
        return entries

    def free_space(self) -> int:
        try:
            return shutil.disk_usage(self.media_dir).free
        except OSError:
            return 0
