"""
Session cache for browser test suites.

Reuses authenticated browser storage states across tests instead of logging
in (and passing 2FA) before each one. Concurrent workers asking for the same
account share a single login.

Example:
    ```python
    from session_cache import (
        FileStorageStateStore,
        LoginFlow,
        SessionCacheConfig,
        SessionConfig,
        SessionManager,
        StorageStateUpdater,
        TwoFAOptions,
    )

    config = SessionCacheConfig(storage_root=Path(".auth"))
    manager = SessionManager(
        FileStorageStateStore.from_config(config),
        LoginFlow(open_browser_context),
        config,
    )

    async with StorageStateUpdater(manager):
        storage_state = await manager.acquire(
            SessionConfig(session_type="admin", email="admin@example.com", password="..."),
            TwoFAOptions(code="123456"),
        )
    ```
"""

from session_cache.api.probe import StorageStateProbe
from session_cache.browser.protocol import AuthenticatorFactory, BrowserAuthenticator
from session_cache.config import SessionCacheConfig, session_config_from_env
from session_cache.core.keys import session_key
from session_cache.exceptions import (
    AuthenticationError,
    ConfigurationError,
    LockTimeoutError,
    LoginError,
    NetworkError,
    SessionCacheError,
    StaleCacheRejectedError,
    StoreError,
    StoreReadError,
    StoreWriteError,
    TwoFAError,
    TwoFATimeoutError,
)
from session_cache.models.session import (
    SessionConfig,
    SessionType,
    StorageState,
    StorageStateMetadata,
    StoredSession,
)
from session_cache.models.two_factor import TwoFAOptions, TwoFAStrategy
from session_cache.services.login_flow import LoginFlow
from session_cache.services.session_manager import SessionManager
from session_cache.services.storage_state_updater import StorageStateUpdater
from session_cache.store import (
    FileStorageStateStore,
    MemoryStorageStateStore,
    StorageStateStore,
)

__version__ = "0.1.0"

__all__ = [
    # Services
    "SessionManager",
    "StorageStateUpdater",
    "LoginFlow",
    # Configuration
    "SessionCacheConfig",
    "session_config_from_env",
    # Stores
    "StorageStateStore",
    "FileStorageStateStore",
    "MemoryStorageStateStore",
    # Browser collaborator
    "BrowserAuthenticator",
    "AuthenticatorFactory",
    "StorageStateProbe",
    # Models
    "SessionType",
    "SessionConfig",
    "StorageState",
    "StorageStateMetadata",
    "StoredSession",
    "TwoFAOptions",
    "TwoFAStrategy",
    "session_key",
    # Exceptions
    "SessionCacheError",
    "ConfigurationError",
    "AuthenticationError",
    "LoginError",
    "TwoFAError",
    "TwoFATimeoutError",
    "StoreError",
    "StoreReadError",
    "StoreWriteError",
    "LockTimeoutError",
    "StaleCacheRejectedError",
    "NetworkError",
]
