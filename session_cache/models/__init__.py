"""
Domain models for the session cache.

These are immutable (frozen) dataclasses representing the core domain concepts.
"""

from session_cache.models.session import (
    SessionConfig,
    SessionType,
    StorageState,
    StorageStateMetadata,
    StoredSession,
)
from session_cache.models.two_factor import (
    DEFAULT_MANUAL_TIMEOUT_MS,
    ResolvedTwoFA,
    TwoFAOptions,
    TwoFAStrategy,
)

__all__ = [
    # Session
    "SessionType",
    "SessionConfig",
    "StorageState",
    "StorageStateMetadata",
    "StoredSession",
    # Two-factor
    "DEFAULT_MANUAL_TIMEOUT_MS",
    "TwoFAStrategy",
    "TwoFAOptions",
    "ResolvedTwoFA",
]
