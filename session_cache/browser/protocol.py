"""
Browser collaborator protocol definition.

The session cache never drives a browser itself. Login pages, cookie plumbing
and storage state export live behind this interface, so any automation
driver (Playwright, Selenium, a fake in tests) can be plugged in.
"""

from collections.abc import Callable, Sequence
from contextlib import AbstractAsyncContextManager
from typing import Any, Protocol, runtime_checkable

from session_cache.models.session import SessionType, StorageState

Cookie = dict[str, Any]


@runtime_checkable
class BrowserAuthenticator(Protocol):
    """
    One isolated browser context able to perform a login.
    """

    async def submit_credentials(
        self, session_type: SessionType, email: str, password: str
    ) -> bool:
        """
        Fill and submit the login form.

        Returns:
            False if the application rejected the credentials.
        """
        ...

    async def detect_two_factor_challenge(self) -> bool:
        """Check whether the application is asking for a 2FA code."""
        ...

    async def submit_two_factor_code(self, code: str) -> bool:
        """
        Submit a 2FA code.

        Returns:
            False if the application rejected the code.
        """
        ...

    async def wait_for_manual_verification(self) -> bool:
        """
        Block until a human completes 2FA through the browser prompt.

        Has no timeout of its own; the caller cancels it.

        Returns:
            False if the code entered was rejected.
        """
        ...

    async def install_storage_state(self, storage_state: StorageState) -> None:
        """Load a storage state into the browser context."""
        ...

    async def storage_state(self) -> StorageState:
        """Export the current storage state (cookies and origins)."""
        ...

    async def get_cookies(self) -> list[Cookie]:
        ...

    async def add_cookies(self, cookies: Sequence[Cookie]) -> None:
        ...

    async def clear_cookies(self) -> None:
        ...


AuthenticatorFactory = Callable[[], AbstractAsyncContextManager[BrowserAuthenticator]]
"""Opens a fresh browser context for one login and closes it afterwards."""
