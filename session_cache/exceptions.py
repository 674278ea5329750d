"""
Session cache exception hierarchy.

All exceptions inherit from SessionCacheError for easy catching.
"""

from typing import Any


class SessionCacheError(Exception):
    """Base exception for all session_cache errors."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        if self.context:
            ctx = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx})"
        return self.message


class ConfigurationError(SessionCacheError):
    """Invalid or missing configuration."""


class AuthenticationError(SessionCacheError):
    """Producing a fresh storage state failed."""


class LoginError(AuthenticationError):
    """Credentials rejected or login did not yield an authenticated session."""


class TwoFAError(AuthenticationError):
    """Two-factor code rejected or not usable."""


class TwoFATimeoutError(TwoFAError):
    """Manual two-factor window elapsed without verification."""

    def __init__(self, message: str, *, timeout_ms: int) -> None:
        super().__init__(message, timeout_ms=timeout_ms)
        self.timeout_ms = timeout_ms


class StoreError(SessionCacheError):
    """Persistence layer fault."""

    def __init__(self, message: str, *, key: str) -> None:
        super().__init__(message, key=key)
        self.key = key


class StoreReadError(StoreError):
    """Failed to read a stored session."""


class StoreWriteError(StoreError):
    """Failed to write a stored session."""


class StaleCacheRejectedError(SessionCacheError):
    """Backend rejected a cached storage state despite unexpired metadata."""

    def __init__(self, message: str, *, key: str) -> None:
        super().__init__(message, key=key)
        self.key = key


class LockTimeoutError(StoreError):
    """Timed out waiting for another process to finish producing a session."""


class NetworkError(SessionCacheError):
    """Network-level error (connection failed, timeout)."""
