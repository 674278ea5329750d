import asyncio
from collections import defaultdict
from contextlib import AbstractAsyncContextManager

import structlog

from session_cache.models.session import StoredSession

logger = structlog.get_logger(__name__)


class MemoryStorageStateStore:
    """
    In-memory store for tests and single-process runs.

    Not shared between processes and lost on exit.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, StoredSession] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def read(self, key: str) -> StoredSession | None:
        return self._sessions.get(key)

    async def write(self, key: str, session: StoredSession) -> None:
        self._sessions[key] = session
        logger.debug("Storage state saved (in-memory)", key=key)

    def lock(self, key: str) -> AbstractAsyncContextManager[object]:
        return self._locks[key]

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, key: str) -> bool:
        return key in self._sessions
