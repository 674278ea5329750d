"""
HTTP probe for cached storage states.

Checks whether the application still honors a storage state by calling a
protected endpoint with the state's cookies. Which endpoint and which
statuses signal rejection depend on the application, so both are
configurable.
"""

import asyncio
from collections.abc import Iterable
from typing import Any, Self
from urllib.parse import urlsplit

import httpx
import structlog

from session_cache.exceptions import NetworkError
from session_cache.models.session import StorageState

logger = structlog.get_logger(__name__)

DEFAULT_REJECTED_STATUSES = frozenset({401, 403})


def cookie_header(storage_state: StorageState, host: str) -> str:
    """
    Build a Cookie header from a storage state for a host.

    Args:
        storage_state: Playwright-style storage state with a ``cookies`` list.
        host: Host the request goes to.

    Returns:
        Header value, empty if no cookie applies.
    """
    cookies: Iterable[dict[str, Any]] = storage_state.get("cookies", ())
    pairs = []
    for cookie in cookies:
        domain = str(cookie.get("domain", "")).lstrip(".")
        if domain and host != domain and not host.endswith(f".{domain}"):
            continue
        pairs.append(f"{cookie['name']}={cookie['value']}")
    return "; ".join(pairs)


class StorageStateProbe:
    """
    Verifies storage states against a protected endpoint.

    Pass ``probe.is_accepted`` as ``verify`` to ``SessionManager.install``.

    Example:
        ```python
        async with StorageStateProbe("https://app.example.com", check_path="/api/me") as probe:
            await manager.install(browser, config, verify=probe.is_accepted)
        ```
    """

    def __init__(
        self,
        base_url: str,
        *,
        check_path: str = "/auth/me",
        rejected_statuses: frozenset[int] = DEFAULT_REJECTED_STATUSES,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Args:
            base_url: Application base URL.
            check_path: Endpoint that requires authentication.
            rejected_statuses: Statuses meaning the state is no longer honored.
            timeout: Request timeout in seconds.
            transport: Optional transport for testing (mock transport).
        """
        self._base_url = base_url
        self._host = urlsplit(base_url).hostname or ""
        self._check_path = check_path
        self._rejected_statuses = rejected_statuses
        self._timeout = timeout
        self._transport = transport

        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    async def __aenter__(self) -> Self:
        await self._ensure_client()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self._base_url,
                    timeout=self._timeout,
                    transport=self._transport,
                )
        return self._client

    async def close(self) -> None:
        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None

    async def is_accepted(self, storage_state: StorageState) -> bool:
        """
        Check whether the application accepts a storage state.

        Args:
            storage_state: State to check.

        Returns:
            False if the endpoint answered with a rejected status.

        Raises:
            NetworkError: If the endpoint cannot be reached.
        """
        client = await self._ensure_client()
        headers = {}
        cookies = cookie_header(storage_state, self._host)
        if cookies:
            headers["Cookie"] = cookies

        try:
            response = await client.get(self._check_path, headers=headers)
        except httpx.HTTPError as e:
            msg = "Storage state probe failed"
            logger.warning(msg, endpoint=self._check_path, error_type=type(e).__name__)
            raise NetworkError(msg, endpoint=self._check_path) from e

        accepted = response.status_code not in self._rejected_statuses
        logger.debug(
            "Storage state probed",
            endpoint=self._check_path,
            status=response.status_code,
            accepted=accepted,
        )
        return accepted
