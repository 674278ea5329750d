"""
Login flow.

Drives the browser collaborator through credentials and 2FA to produce a
fresh storage state.
"""

import asyncio

import structlog

from session_cache.browser.protocol import AuthenticatorFactory, BrowserAuthenticator
from session_cache.exceptions import (
    AuthenticationError,
    LoginError,
    TwoFAError,
    TwoFATimeoutError,
)
from session_cache.models.session import SessionConfig, StorageState
from session_cache.models.two_factor import (
    DEFAULT_MANUAL_TIMEOUT_MS,
    ResolvedTwoFA,
    TwoFAOptions,
    TwoFAStrategy,
)

logger = structlog.get_logger(__name__)


class LoginFlow:
    """
    Performs a full login and exports the resulting storage state.

    Each run opens its own browser context through the factory, so logins
    for different session keys can run concurrently.

    The flow is linear: submit credentials, answer a 2FA challenge if one is
    presented, check the auth cookie is set, export. Any failure aborts the
    run and nothing is returned.
    """

    def __init__(
        self,
        authenticator_factory: AuthenticatorFactory,
        *,
        default_manual_timeout_ms: int = DEFAULT_MANUAL_TIMEOUT_MS,
    ) -> None:
        """
        Args:
            authenticator_factory: Opens a browser context for one login.
            default_manual_timeout_ms: Manual 2FA window when the options set none.
        """
        self._open_browser = authenticator_factory
        self._default_manual_timeout_ms = default_manual_timeout_ms

    async def run(
        self,
        config: SessionConfig,
        two_fa: TwoFAOptions | None = None,
        *,
        manual_timeout_ms: int | None = None,
    ) -> StorageState:
        """
        Log in and return the authenticated storage state.

        Args:
            config: Session to log in as.
            two_fa: How to answer a 2FA challenge. Defaults to manual entry.
            manual_timeout_ms: Manual 2FA window when ``two_fa`` sets none.
                Defaults to the flow's ``default_manual_timeout_ms``.

        Returns:
            Storage state exported from the authenticated browser context.

        Raises:
            LoginError: If credentials are rejected or no auth cookie is set.
            TwoFAError: If the 2FA code is rejected or unusable.
            TwoFATimeoutError: If manual 2FA is not completed in time.
        """
        logger.info("Starting login", session_type=str(config.session_type))

        try:
            async with self._open_browser() as browser:
                await browser.clear_cookies()

                accepted = await browser.submit_credentials(
                    config.session_type, config.email, config.password
                )
                if not accepted:
                    msg = "Login failed: invalid credentials or account issue"
                    raise LoginError(msg, session_type=str(config.session_type))

                if await browser.detect_two_factor_challenge():
                    default_timeout_ms = manual_timeout_ms or self._default_manual_timeout_ms
                    resolved = (two_fa or TwoFAOptions()).resolve(default_timeout_ms)
                    await self._answer_challenge(browser, resolved)

                await self._require_auth_cookie(browser, config)
                storage_state = await browser.storage_state()

        except AuthenticationError:
            raise
        except Exception as e:
            msg = "Login failed"
            logger.error(msg, session_type=str(config.session_type), error_type=type(e).__name__)
            raise LoginError(msg, session_type=str(config.session_type)) from e

        logger.info("Login successful", session_type=str(config.session_type))
        return storage_state

    async def _answer_challenge(self, browser: BrowserAuthenticator, resolved: ResolvedTwoFA) -> None:
        if resolved.strategy is TwoFAStrategy.AUTO:
            logger.info("Submitting 2FA code")
            if not await browser.submit_two_factor_code(resolved.code):
                msg = "2FA code rejected"
                raise TwoFAError(msg)
            return

        timeout_ms = resolved.timeout_ms or self._default_manual_timeout_ms
        logger.info("Waiting for manual 2FA verification", timeout_ms=timeout_ms)
        try:
            async with asyncio.timeout(timeout_ms / 1000):
                verified = await browser.wait_for_manual_verification()
        except TimeoutError:
            msg = "2FA manual verification timeout"
            logger.error(msg, timeout_ms=timeout_ms)
            raise TwoFATimeoutError(msg, timeout_ms=timeout_ms) from None

        if not verified:
            msg = "2FA code rejected"
            raise TwoFAError(msg)

    @staticmethod
    async def _require_auth_cookie(browser: BrowserAuthenticator, config: SessionConfig) -> None:
        cookie_name = config.session_type.cookie_family
        cookies = await browser.get_cookies()
        if not any(c.get("name") == cookie_name and c.get("value") for c in cookies):
            msg = "Auth cookie not found after login"
            raise LoginError(msg, cookie=cookie_name)
