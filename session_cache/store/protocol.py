"""
Storage state store protocol definition.

This defines the interface for persisting storage states, allowing different
backends (filesystem, in-memory) to be swapped without changing the manager.
"""

from contextlib import AbstractAsyncContextManager
from typing import Protocol, runtime_checkable

from session_cache.models.session import StoredSession


@runtime_checkable
class StorageStateStore(Protocol):
    """
    Durable mapping of session key to (storage state, metadata).

    Writes must be atomic from a reader's point of view: a concurrent
    ``read`` returns either the previous pair or the new one, never a mix.
    """

    async def read(self, key: str) -> StoredSession | None:
        """
        Read the stored session for a key.

        Args:
            key: Session key.

        Returns:
            StoredSession, or None if nothing usable is stored.

        Raises:
            StoreReadError: If the backend fails.
        """
        ...

    async def write(self, key: str, session: StoredSession) -> None:
        """
        Replace the stored session for a key.

        Args:
            key: Session key.
            session: Storage state and metadata to persist.

        Raises:
            StoreWriteError: If the backend fails.
        """
        ...

    def lock(self, key: str) -> AbstractAsyncContextManager[object]:
        """
        Exclusive lock on producing a session for a key.

        Shared by every process using the same backend.
        """
        ...
