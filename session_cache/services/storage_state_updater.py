"""
Background renewal of storage states.

Renews sessions before their cached state expires, and records states the
browser refreshed on its own. All writes go through SessionManager so they
share its single flight with foreground acquisition.
"""

import asyncio
from datetime import timedelta
from types import TracebackType
from typing import Self

import structlog

from session_cache.browser.protocol import BrowserAuthenticator, Cookie
from session_cache.models.session import SessionConfig, SessionType
from session_cache.services.session_manager import SessionManager, TrackedSession

logger = structlog.get_logger(__name__)

_REFRESH_PATHS = ("/auth/refresh", "/refresh-token")


class StorageStateUpdater:
    """
    Periodically renews tracked sessions that are close to expiry.

    Start once at suite setup and stop at teardown:

    Example:
        ```python
        async with StorageStateUpdater(manager):
            ...  # run tests
        ```

    A failed renewal is logged and retried on the next cycle; the loop only
    ends through ``stop()``.
    """

    def __init__(
        self,
        manager: SessionManager,
        *,
        interval: float | None = None,
        threshold: timedelta | None = None,
        refresh_cookie_timeout: float = 5.0,
        refresh_poll_interval: float = 0.1,
    ) -> None:
        """
        Args:
            manager: Session manager to renew through.
            interval: Seconds between checks. Defaults to the manager's config.
            threshold: Renew when less validity than this remains. Defaults to
                the manager's config.
            refresh_cookie_timeout: Seconds to wait for the refresh token cookie
                after a token refresh before saving anyway.
            refresh_poll_interval: Seconds between refresh cookie checks.
        """
        self._manager = manager
        self._interval = interval if interval is not None else manager.config.renewal_interval
        self._threshold = threshold if threshold is not None else manager.config.renewal_threshold
        self._refresh_cookie_timeout = refresh_cookie_timeout
        self._refresh_poll_interval = refresh_poll_interval

        if self._interval <= 0:
            msg = "interval must be positive"
            raise ValueError(msg)

        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()
        self._pending_refreshes: set[str] = set()
        self._refresh_lock = asyncio.Lock()  # One refresh update at a time

    async def __aenter__(self) -> Self:
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the renewal loop. No-op if already running."""
        if self.is_running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name="storage-state-updater")
        logger.info("Storage state updater started", interval=self._interval)

    async def stop(self) -> None:
        """
        Stop the renewal loop.

        A renewal in progress is allowed to finish, so no waiter on its
        flight is cancelled.
        """
        if self._task is None:
            return
        self._stop_event.set()
        task, self._task = self._task, None
        await task
        logger.info("Storage state updater stopped")

    async def check_once(self) -> list[str]:
        """
        Run one renewal cycle.

        Returns:
            Keys renewed in this cycle.
        """
        renewed = []
        for tracked in self._manager.tracked():
            if await self._renew_if_due(tracked):
                renewed.append(tracked.key)
        return renewed

    async def handle_token_refresh(
        self,
        browser: BrowserAuthenticator,
        config: SessionConfig,
        url: str,
    ) -> bool:
        """
        Record a storage state the application refreshed inside the browser.

        Call for every response ``is_refresh_response`` accepts. Repeated
        events for a refresh URL already being handled are dropped, and
        updates run one at a time. Waits for the refresh token cookie to
        appear, then saves the browser's storage state through
        ``SessionManager.adopt``.

        Failures are logged, not raised: the test keeps running and the
        session is recreated on a later login.

        Args:
            browser: Browser context that performed the refresh.
            config: Session the browser is logged in as.
            url: URL of the refresh response.

        Returns:
            True if the state was persisted.
        """
        if url in self._pending_refreshes:
            logger.debug("Token refresh already being handled", url=url)
            return False

        self._pending_refreshes.add(url)
        try:
            async with self._refresh_lock:
                await self._wait_for_refresh_cookie(browser, config.session_type)
                storage_state = await browser.storage_state()
                await self._manager.adopt(config, storage_state)
        except Exception as e:
            logger.error(
                "Failed to update storage state after token refresh",
                session_type=str(config.session_type),
                error_type=type(e).__name__,
            )
            return False
        finally:
            self._pending_refreshes.discard(url)
        return True

    @staticmethod
    def is_refresh_response(url: str, method: str, status: int) -> bool:
        """Check whether a browser response is a successful token refresh."""
        return (
            method.upper() == "POST"
            and status < 400
            and any(path in url for path in _REFRESH_PATHS)
        )

    async def _wait_for_refresh_cookie(
        self,
        browser: BrowserAuthenticator,
        session_type: SessionType,
    ) -> None:
        cookie_name = session_type.refresh_cookie
        try:
            async with asyncio.timeout(self._refresh_cookie_timeout):
                while not _has_cookie(await browser.get_cookies(), cookie_name):
                    await asyncio.sleep(self._refresh_poll_interval)
        except TimeoutError:
            logger.warning(
                "Refresh token cookie not updated in time, saving anyway",
                cookie=cookie_name,
                timeout=self._refresh_cookie_timeout,
            )

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.check_once()
            except Exception as e:
                logger.error("Renewal cycle failed", error_type=type(e).__name__, exc_info=e)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except TimeoutError:
                pass

    async def _renew_if_due(self, tracked: TrackedSession) -> bool:
        if self._manager.is_in_flight(tracked.key):
            return False

        try:
            stored = await self._manager.status(tracked.key)
            if stored is not None and stored.metadata.remaining() >= self._threshold:
                return False

            logger.info("Renewing storage state", key=tracked.key, stored=stored is not None)
            await self._manager.acquire(tracked.config, tracked.two_fa, force_refresh=True)
        except Exception as e:
            logger.error(
                "Storage state renewal failed",
                key=tracked.key,
                error_type=type(e).__name__,
            )
            return False

        return True


def _has_cookie(cookies: list[Cookie], name: str) -> bool:
    return any(c.get("name") == name and c.get("value") for c in cookies)
