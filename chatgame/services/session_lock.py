import asyncio
from contextlib import asynccontextmanager
from typing import Dict


class SessionLocks:
    """
    Per-session mutual exclusion for actions.

    Entries are reference counted and dropped when the last holder or waiter
    leaves, so the table only ever contains sessions with actions in flight.
    """

    def __init__(self) -> None:
        self._locks: Dict[int, asyncio.Lock] = {}
        self._holders: Dict[int, int] = {}

    @asynccontextmanager
    async def hold(self, session_id: int):
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        self._holders[session_id] = self._holders.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[session_id] -= 1
            if self._holders[session_id] == 0:
                del self._holders[session_id]
                del self._locks[session_id]

    def __len__(self) -> int:
        return len(self._locks)


session_locks = SessionLocks()
