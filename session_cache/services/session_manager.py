"""
Session manager.

Serves cached storage states and coordinates logins so that each session
key is produced by at most one login at a time.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime

import structlog

from session_cache.browser.protocol import BrowserAuthenticator
from session_cache.config import SessionCacheConfig
from session_cache.core.keys import session_key
from session_cache.core.single_flight import SingleFlight
from session_cache.exceptions import StaleCacheRejectedError
from session_cache.models.session import (
    SessionConfig,
    SessionType,
    StorageState,
    StorageStateMetadata,
    StoredSession,
)
from session_cache.models.two_factor import TwoFAOptions
from session_cache.services.login_flow import LoginFlow
from session_cache.store.protocol import StorageStateStore

logger = structlog.get_logger(__name__)

StateVerifier = Callable[[StorageState], Awaitable[bool]]


@dataclass(frozen=True, kw_only=True)
class TrackedSession:
    """A session acquired in this process, with what is needed to renew it."""

    key: str
    config: SessionConfig
    two_fa: TwoFAOptions | None = None


class SessionManager:
    """
    Cache and coordination core for storage states.

    Construct one per process and share it between test workers and the
    StorageStateUpdater.

    Concurrency:
    - A valid cached state is returned without any locking.
    - On a miss, exactly one caller per key runs the login; everyone else
      asking for that key meanwhile waits for and receives the same result.
    - Across processes, logins for a key are serialized by the store lock
      and a process that waited adopts the state the other one wrote.
    - Different keys never wait on each other.
    """

    def __init__(
        self,
        store: StorageStateStore,
        login_flow: LoginFlow,
        config: SessionCacheConfig,
    ) -> None:
        """
        Args:
            store: Persistence for storage states.
            login_flow: Produces fresh storage states.
            config: Cache policy (TTL, renewal settings, manual 2FA window).
        """
        self._store = store
        self._login_flow = login_flow
        self._config = config

        self._flights: SingleFlight[StorageState] = SingleFlight()
        self._invalidated: set[str] = set()
        self._tracked: dict[str, TrackedSession] = {}

    @property
    def config(self) -> SessionCacheConfig:
        return self._config

    async def acquire(
        self,
        config: SessionConfig,
        two_fa: TwoFAOptions | None = None,
        *,
        force_refresh: bool = False,
    ) -> StorageState:
        """
        Return a valid storage state for a session, logging in if needed.

        Args:
            config: Session to acquire.
            two_fa: How to answer a 2FA challenge if a login is needed.
            force_refresh: Skip the cache and log in again.

        Returns:
            Storage state. Treat it as immutable.

        Raises:
            LoginError: If the login fails.
            TwoFAError: If the 2FA code is rejected.
            TwoFATimeoutError: If manual 2FA times out.
            StoreReadError: If the store cannot be read.
            StoreWriteError: If the new state cannot be persisted.
        """
        key = session_key(config.session_type, config.email)
        requested_at = datetime.now(UTC)
        self._track(key, config, two_fa)

        joined, storage_state = await self._flights.join(key)
        if joined:
            logger.debug("Received storage state from in-progress flight", key=key)
            return storage_state

        if not force_refresh and key not in self._invalidated:
            stored = await self._store.read(key)
            if stored is not None and stored.is_valid():
                logger.debug("Storage state cache hit", key=key)
                return stored.storage_state
            logger.debug("Storage state cache miss", key=key, stored=stored is not None)

        return await self._flights.do(key, lambda: self._login(key, config, two_fa, requested_at))

    async def adopt(self, config: SessionConfig, storage_state: StorageState) -> StorageState:
        """
        Persist a storage state the browser obtained on its own.

        Used when the application refreshed its tokens inside a test. Goes
        through the same single flight as ``acquire``, so it never
        interleaves with a login for the same key.

        Args:
            config: Session the state belongs to.
            storage_state: Refreshed storage state.

        Returns:
            The persisted storage state, or the result of a login already in
            progress for the key.
        """
        key = session_key(config.session_type, config.email)

        async def _save() -> StorageState:
            async with self._store.lock(key):
                await self._persist(key, config, storage_state)
            self._invalidated.discard(key)
            logger.info("Adopted refreshed storage state", key=key)
            return storage_state

        return await self._flights.do(key, _save)

    def invalidate(self, session_type: SessionType | str, email: str) -> None:
        """
        Stop serving the cached state for a session.

        The next ``acquire`` logs in again even if the cached state has not
        expired. Use when the application rejected a cached state.
        """
        key = session_key(session_type, email)
        self._invalidated.add(key)
        logger.info("Storage state invalidated", key=key)

    async def install(
        self,
        browser: BrowserAuthenticator,
        config: SessionConfig,
        two_fa: TwoFAOptions | None = None,
        *,
        verify: StateVerifier | None = None,
    ) -> StorageState:
        """
        Acquire a storage state and load it into a browser context.

        Args:
            browser: Browser context to authenticate.
            config: Session to acquire.
            two_fa: How to answer a 2FA challenge if a login is needed.
            verify: Checks the installed state is accepted by the application.
                On rejection the state is invalidated and acquired again once.

        Returns:
            The installed storage state.

        Raises:
            StaleCacheRejectedError: If a freshly acquired state is rejected too.
        """
        storage_state = await self.acquire(config, two_fa)
        await browser.install_storage_state(storage_state)
        if verify is None or await verify(storage_state):
            return storage_state

        key = session_key(config.session_type, config.email)
        logger.warning("Cached storage state rejected, logging in again", key=key)
        self.invalidate(config.session_type, config.email)

        storage_state = await self.acquire(config, two_fa)
        await browser.clear_cookies()
        await browser.install_storage_state(storage_state)
        if not await verify(storage_state):
            msg = "Storage state rejected after fresh login"
            raise StaleCacheRejectedError(msg, key=key)
        return storage_state

    async def status(self, key: str) -> StoredSession | None:
        """Return what the store currently holds for a key."""
        return await self._store.read(key)

    def tracked(self) -> list[TrackedSession]:
        """Return the sessions acquired in this process."""
        return list(self._tracked.values())

    def is_in_flight(self, key: str) -> bool:
        return self._flights.in_flight(key)

    def _track(self, key: str, config: SessionConfig, two_fa: TwoFAOptions | None) -> None:
        self._tracked[key] = TrackedSession(key=key, config=config, two_fa=two_fa)

    async def _login(
        self,
        key: str,
        config: SessionConfig,
        two_fa: TwoFAOptions | None,
        requested_at: datetime,
    ) -> StorageState:
        async with self._store.lock(key):
            # Another process may have logged in while we waited for the lock
            stored = await self._store.read(key)
            if (
                stored is not None
                and stored.is_valid()
                and stored.metadata.created_at > requested_at
            ):
                logger.info("Adopted storage state written by another worker", key=key)
                self._invalidated.discard(key)
                return stored.storage_state

            logger.info("Logging in for storage state", key=key)
            storage_state = await self._login_flow.run(
                config, two_fa, manual_timeout_ms=self._config.manual_two_fa_timeout_ms
            )
            await self._persist(key, config, storage_state)

        self._invalidated.discard(key)
        return storage_state

    async def _persist(self, key: str, config: SessionConfig, storage_state: StorageState) -> None:
        metadata = StorageStateMetadata.issue(config.session_type, config.email, self._config.ttl)
        await self._store.write(key, StoredSession(storage_state=storage_state, metadata=metadata))
        logger.debug("Storage state persisted", key=key, expires_at=metadata.expires_at.isoformat())
