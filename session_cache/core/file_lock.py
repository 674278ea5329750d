"""
Cross-process lock on a directory entry.

``os.mkdir`` is atomic on local and network filesystems, so whichever
process creates the lock directory owns the lock. A lock directory older
than ``stale_after`` is assumed abandoned by a crashed process and is
taken over. Takeover happens under a second ``.break`` directory and
re-checks the lock's age, so two waiters never both remove it and a
freshly created lock is never removed.
"""

import asyncio
import os
import time
from pathlib import Path
from types import TracebackType

import structlog

from session_cache.exceptions import LockTimeoutError

logger = structlog.get_logger(__name__)


class DirectoryLock:
    """
    Async, cross-process mutual exclusion keyed by a path.

    Not reentrant.

    Example:
        ```python
        async with DirectoryLock(root / ".locks" / "user-1a2b3c4d.lock", key="user-1a2b3c4d"):
            ...  # Only one process at a time gets here
        ```
    """

    def __init__(
        self,
        path: Path,
        *,
        key: str,
        timeout: float = 600.0,
        poll_interval: float = 0.1,
        stale_after: float = 900.0,
    ) -> None:
        """
        Args:
            path: Lock directory to create.
            key: Session key, used in logs and errors.
            timeout: Maximum seconds to wait for the lock.
            poll_interval: Seconds between attempts.
            stale_after: Age in seconds after which a held lock is taken over.
        """
        self._path = path
        self._key = key
        self._timeout = timeout
        self._poll_interval = poll_interval
        self._stale_after = stale_after
        self._held = False

    async def __aenter__(self) -> "DirectoryLock":
        await self.acquire()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.release()

    async def acquire(self) -> None:
        """
        Wait until the lock is ours.

        Raises:
            LockTimeoutError: If the lock is not obtained within ``timeout``.
        """
        self._path.parent.mkdir(parents=True, exist_ok=True)
        deadline = time.monotonic() + self._timeout
        waited = False

        while True:
            try:
                os.mkdir(self._path)
            except FileExistsError:
                if self._break_if_stale():
                    continue
                if time.monotonic() >= deadline:
                    msg = "Timed out waiting for session lock"
                    raise LockTimeoutError(msg, key=self._key) from None
                if not waited:
                    logger.debug("Waiting for session lock held by another process", key=self._key)
                    waited = True
                await asyncio.sleep(self._poll_interval)
            else:
                self._held = True
                return

    def release(self) -> None:
        """Release the lock. No-op if not held."""
        if not self._held:
            return
        self._held = False
        try:
            os.rmdir(self._path)
        except FileNotFoundError:
            logger.warning("Session lock already removed", key=self._key)

    def _break_if_stale(self) -> bool:
        age = _age(self._path)
        if age is None:
            # Released between our mkdir and stat; retry immediately
            return True
        if age < self._stale_after:
            return False

        # Only the waiter holding the breaker may remove the lock
        breaker = self._path.with_name(f"{self._path.name}.break")
        try:
            os.mkdir(breaker)
        except FileExistsError:
            self._clear_abandoned_breaker(breaker)
            return False

        try:
            # Another waiter may have replaced the stale lock since we looked
            age = _age(self._path)
            if age is None:
                return True
            if age < self._stale_after:
                return False

            logger.warning("Taking over stale session lock", key=self._key, age=round(age, 1))
            try:
                os.rmdir(self._path)
            except FileNotFoundError:
                pass
            return True
        finally:
            os.rmdir(breaker)

    def _clear_abandoned_breaker(self, breaker: Path) -> None:
        age = _age(breaker)
        if age is None or age < self._stale_after:
            return
        logger.warning("Removing abandoned stale lock breaker", key=self._key)
        try:
            os.rmdir(breaker)
        except FileNotFoundError:
            pass


def _age(path: Path) -> float | None:
    """Seconds since ``path`` was last modified, or None if it is gone."""
    try:
        return time.time() - path.stat().st_mtime
    except FileNotFoundError:
        return None
