import asyncio
from contextlib import asynccontextmanager
from typing import Dict


class SessionLocks:
    """
    Per-upload exclusive locks plus one admission lock.

    Appends, finalize, cancel and reconciliation marks on one upload id take
    that id's lock. Create and the reconciliation sweep take ``admission`` so
    a placeholder allocated by an in-flight create is never seen as orphaned.

    A per-upload lock only exists while some task holds or waits for it.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}
        self.admission = asyncio.Lock()

    @asynccontextmanager
    async def hold(self, upload_id: str):
        lock = self._locks.setdefault(upload_id, asyncio.Lock())
        self._users[upload_id] = self._users.get(upload_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[upload_id] -= 1
            if not self._users[upload_id]:
                del self._users[upload_id]
                del self._locks[upload_id]

    def is_held(self, upload_id: str) -> bool:
        lock = self._locks.get(upload_id)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
