from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from session_cache.config import SessionCacheConfig
from session_cache.models.session import (
    SessionConfig,
    SessionType,
    StorageStateMetadata,
    StoredSession,
)
from session_cache.services.login_flow import LoginFlow
from session_cache.services.session_manager import SessionManager
from session_cache.store.memory_store import MemoryStorageStateStore
from session_cache.tests.fakes import TEST_EMAIL, TEST_PASSWORD, FakeBrowser


@pytest.fixture
def browser() -> FakeBrowser:
    return FakeBrowser()


@pytest.fixture
def store() -> MemoryStorageStateStore:
    return MemoryStorageStateStore()


@pytest.fixture
def cache_config(tmp_path: Path) -> SessionCacheConfig:
    return SessionCacheConfig(storage_root=tmp_path / "states", lock_poll_interval=0.01)


@pytest.fixture
def session_config() -> SessionConfig:
    return SessionConfig(session_type=SessionType.USER, email=TEST_EMAIL, password=TEST_PASSWORD)


@pytest.fixture
def login_flow(browser: FakeBrowser) -> LoginFlow:
    return LoginFlow(browser.open)


@pytest.fixture
def manager(
    store: MemoryStorageStateStore,
    login_flow: LoginFlow,
    cache_config: SessionCacheConfig,
) -> SessionManager:
    return SessionManager(store, login_flow, cache_config)


@pytest.fixture
def make_stored_session() -> Callable[..., StoredSession]:
    def _make(
        value: str = "cached",
        session_type: SessionType = SessionType.USER,
        email: str = TEST_EMAIL,
        created_ago: timedelta = timedelta(hours=1),
        expires_in: timedelta = timedelta(days=6),
    ) -> StoredSession:
        now = datetime.now(UTC)
        return StoredSession(
            storage_state={
                "cookies": [{"name": session_type.cookie_family, "value": value}],
                "origins": [],
            },
            metadata=StorageStateMetadata(
                created_at=now - created_ago,
                expires_at=now + expires_in,
                session_type=session_type,
                email=email,
            ),
        )

    return _make
