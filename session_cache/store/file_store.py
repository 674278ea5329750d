"""
Filesystem storage state store.

Each session key maps to one JSON envelope file holding the storage state
and its metadata:

    {root}/{key}.json = {"metadata": {...}, "storageState": {...}}

Writes go to a unique temporary file in the same directory which is then
renamed over the target. ``os.replace`` is atomic on POSIX and Windows, so
readers see either the old envelope or the new one.
"""

import asyncio
import json
import os
import tempfile
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Self

import structlog

from session_cache.config import SessionCacheConfig
from session_cache.core.file_lock import DirectoryLock
from session_cache.exceptions import StoreReadError, StoreWriteError
from session_cache.models.session import StorageStateMetadata, StoredSession

logger = structlog.get_logger(__name__)

_SUFFIX = ".json"
_LOCK_DIR = ".locks"


class FileStorageStateStore:
    """
    Stores sessions as JSON files under an explicit root directory.

    Safe to share between worker processes: writes are atomic renames and
    ``lock()`` is a cross-process directory lock.
    """

    def __init__(
        self,
        root: Path | str,
        *,
        lock_timeout: float = 600.0,
        lock_poll_interval: float = 0.1,
        lock_stale_after: float = 900.0,
    ) -> None:
        """
        Args:
            root: Directory holding the session files. Created on first write.
            lock_timeout: Maximum seconds to wait for a session lock.
            lock_poll_interval: Seconds between lock attempts.
            lock_stale_after: Age in seconds after which a held lock is taken over.
        """
        self._root = Path(root)
        self._lock_timeout = lock_timeout
        self._lock_poll_interval = lock_poll_interval
        self._lock_stale_after = lock_stale_after

    @classmethod
    def from_config(cls, config: SessionCacheConfig) -> Self:
        """Create a store rooted at ``config.storage_root`` with its lock settings."""
        return cls(
            config.storage_root,
            lock_timeout=config.lock_timeout,
            lock_poll_interval=config.lock_poll_interval,
            lock_stale_after=config.lock_stale_after,
        )

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, key: str) -> Path:
        """Return the file holding the session for ``key``."""
        return self._root / f"{key}{_SUFFIX}"

    async def read(self, key: str) -> StoredSession | None:
        return await asyncio.to_thread(self._read_sync, key)

    async def write(self, key: str, session: StoredSession) -> None:
        await asyncio.to_thread(self._write_sync, key, session)

    def lock(self, key: str) -> DirectoryLock:
        return DirectoryLock(
            self._root / _LOCK_DIR / f"{key}.lock",
            key=key,
            timeout=self._lock_timeout,
            poll_interval=self._lock_poll_interval,
            stale_after=self._lock_stale_after,
        )

    def _read_sync(self, key: str) -> StoredSession | None:
        path = self.path_for(key)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug("No stored session", key=key)
            return None
        except OSError as e:
            msg = "Failed to read stored session"
            logger.error(msg, key=key, error_type=type(e).__name__)
            raise StoreReadError(msg, key=key) from e

        try:
            return _decode(raw)
        except (ValueError, KeyError, TypeError) as e:
            # Corrupt files count as a miss; the next write replaces them
            logger.warning(
                "Ignoring unreadable stored session",
                key=key,
                error_type=type(e).__name__,
            )
            return None

    def _write_sync(self, key: str, session: StoredSession) -> None:
        path = self.path_for(key)
        try:
            payload = _encode(session)
        except (TypeError, ValueError) as e:
            msg = "Storage state is not JSON serializable"
            raise StoreWriteError(msg, key=key) from e

        tmp_name: str | None = None
        try:
            self._root.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{key}.", suffix=".tmp", dir=self._root)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as e:
            msg = "Failed to write stored session"
            logger.error(msg, key=key, error_type=type(e).__name__)
            raise StoreWriteError(msg, key=key) from e
        finally:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)

        logger.debug("Storage state saved", key=key, path=str(path))


def _encode(session: StoredSession) -> str:
    envelope = {
        "metadata": session.metadata.to_dict(),
        "storageState": dict(session.storage_state),
    }
    return json.dumps(envelope, indent=2)


def _decode(raw: str) -> StoredSession:
    envelope: Any = json.loads(raw)
    if not isinstance(envelope, Mapping):
        msg = "Session envelope must be a JSON object"
        raise TypeError(msg)

    storage_state = envelope["storageState"]
    if not isinstance(storage_state, Mapping):
        msg = "storageState must be a JSON object"
        raise TypeError(msg)

    return StoredSession(
        storage_state=storage_state,
        metadata=StorageStateMetadata.from_dict(envelope["metadata"]),
    )
