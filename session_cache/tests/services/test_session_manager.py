import asyncio
from collections.abc import Callable
from datetime import timedelta
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from session_cache.config import SessionCacheConfig
from session_cache.core.keys import session_key
from session_cache.exceptions import (
    LoginError,
    StaleCacheRejectedError,
    StoreReadError,
    StoreWriteError,
    TwoFATimeoutError,
)
from session_cache.models.session import SessionConfig, SessionType, StoredSession
from session_cache.models.two_factor import TwoFAOptions
from session_cache.services.login_flow import LoginFlow
from session_cache.services.session_manager import SessionManager
from session_cache.store.file_store import FileStorageStateStore
from session_cache.store.memory_store import MemoryStorageStateStore
from session_cache.tests.fakes import TEST_EMAIL, FakeBrowser

KEY = session_key(SessionType.USER, TEST_EMAIL)


@pytest.mark.asyncio
async def test_first_acquire_logs_in_and_persists(
    manager: SessionManager,
    browser: FakeBrowser,
    store: MemoryStorageStateStore,
    session_config: SessionConfig,
) -> None:
    storage_state = await manager.acquire(session_config)

    assert browser.logins == 1
    stored = await store.read(KEY)
    assert stored is not None
    assert stored.storage_state == storage_state
    assert stored.metadata.session_type is SessionType.USER
    assert stored.metadata.email == TEST_EMAIL
    assert stored.metadata.expires_at - stored.metadata.created_at == timedelta(days=7)


@pytest.mark.asyncio
async def test_second_acquire_is_served_from_cache(
    manager: SessionManager,
    browser: FakeBrowser,
    session_config: SessionConfig,
) -> None:
    first = await manager.acquire(session_config)
    second = await manager.acquire(session_config)

    assert second == first
    assert browser.logins == 1


@pytest.mark.asyncio
async def test_unexpired_stored_state_is_returned_without_login(
    manager: SessionManager,
    browser: FakeBrowser,
    store: MemoryStorageStateStore,
    session_config: SessionConfig,
    make_stored_session: Callable[..., StoredSession],
) -> None:
    cached = make_stored_session(value="cached")
    await store.write(KEY, cached)

    storage_state = await manager.acquire(session_config)

    assert storage_state is cached.storage_state
    assert browser.logins == 0


@pytest.mark.asyncio
async def test_expired_state_triggers_one_login_for_concurrent_batch(
    manager: SessionManager,
    browser: FakeBrowser,
    store: MemoryStorageStateStore,
    session_config: SessionConfig,
    make_stored_session: Callable[..., StoredSession],
) -> None:
    await store.write(
        KEY,
        make_stored_session(created_ago=timedelta(days=8), expires_in=timedelta(days=-1)),
    )
    browser.login_delay = 0.02

    results = await asyncio.gather(*(manager.acquire(session_config) for _ in range(5)))

    assert browser.logins == 1
    assert all(result is results[0] for result in results)
    assert results[0]["cookies"][0]["value"] == "token-1"


@pytest.mark.asyncio
async def test_ten_workers_on_empty_store_share_one_login(
    manager: SessionManager,
    browser: FakeBrowser,
    store: MemoryStorageStateStore,
) -> None:
    browser.login_delay = 0.02
    config = SessionConfig(session_type="user", email="a@x.com", password="p")

    results = await asyncio.gather(*(manager.acquire(config) for _ in range(10)))

    assert browser.logins == 1
    assert browser.max_active == 1
    assert all(result is results[0] for result in results)
    assert len(store) == 1
    assert KEY in store


@pytest.mark.asyncio
async def test_different_keys_log_in_concurrently(
    manager: SessionManager,
    browser: FakeBrowser,
) -> None:
    browser.login_delay = 0.02
    configs = [
        SessionConfig(session_type=session_type, email=TEST_EMAIL, password="p")
        for session_type in (SessionType.USER, SessionType.ADMIN, SessionType.OWNER)
    ]

    results = await asyncio.gather(*(manager.acquire(config) for config in configs))

    assert browser.logins == 3
    assert browser.max_active == 3
    assert len({r["cookies"][0]["value"] for r in results}) == 3
    assert all(len(r["cookies"]) == 1 for r in results)


@pytest.mark.asyncio
async def test_login_failure_reaches_all_waiters_and_persists_nothing(
    manager: SessionManager,
    browser: FakeBrowser,
    store: MemoryStorageStateStore,
    session_config: SessionConfig,
) -> None:
    browser.accept_credentials = False
    browser.login_delay = 0.02

    results = await asyncio.gather(
        *(manager.acquire(session_config) for _ in range(4)),
        return_exceptions=True,
    )

    assert all(isinstance(r, LoginError) for r in results)
    assert len(store) == 0
    assert not manager.is_in_flight(KEY)

    browser.accept_credentials = True
    await manager.acquire(session_config)

    assert browser.logins == 1


@pytest.mark.asyncio
async def test_manual_two_fa_timeout_releases_key(
    manager: SessionManager,
    browser: FakeBrowser,
    session_config: SessionConfig,
) -> None:
    browser.challenge = True
    browser.manual_result = None

    with pytest.raises(TwoFATimeoutError):
        await manager.acquire(session_config, TwoFAOptions(timeout_ms=20))

    assert not manager.is_in_flight(KEY)

    browser.manual_result = True
    storage_state = await manager.acquire(session_config, TwoFAOptions(timeout_ms=20))

    assert browser.manual_waits == 2
    assert storage_state["cookies"]


@pytest.mark.asyncio
async def test_configured_manual_two_fa_window_applies_to_logins(
    store: MemoryStorageStateStore,
    browser: FakeBrowser,
    session_config: SessionConfig,
    tmp_path: Path,
) -> None:
    config = SessionCacheConfig(storage_root=tmp_path, manual_two_fa_timeout_ms=50)
    manager = SessionManager(store, LoginFlow(browser.open), config)
    browser.challenge = True
    browser.manual_result = None

    with pytest.raises(TwoFATimeoutError) as exc_info:
        await asyncio.wait_for(manager.acquire(session_config), timeout=2)

    assert exc_info.value.timeout_ms == 50


@pytest.mark.asyncio
async def test_two_fa_options_timeout_overrides_configured_window(
    store: MemoryStorageStateStore,
    browser: FakeBrowser,
    session_config: SessionConfig,
    tmp_path: Path,
) -> None:
    config = SessionCacheConfig(storage_root=tmp_path, manual_two_fa_timeout_ms=60_000)
    manager = SessionManager(store, LoginFlow(browser.open), config)
    browser.challenge = True
    browser.manual_result = None

    with pytest.raises(TwoFATimeoutError) as exc_info:
        await asyncio.wait_for(manager.acquire(session_config, TwoFAOptions(timeout_ms=30)), timeout=2)

    assert exc_info.value.timeout_ms == 30


@pytest.mark.asyncio
async def test_invalidate_forces_fresh_login(
    manager: SessionManager,
    browser: FakeBrowser,
    session_config: SessionConfig,
) -> None:
    first = await manager.acquire(session_config)

    manager.invalidate(SessionType.USER, TEST_EMAIL)
    second = await manager.acquire(session_config)
    third = await manager.acquire(session_config)

    assert second != first
    assert third == second
    assert browser.logins == 2


@pytest.mark.asyncio
async def test_invalidation_survives_failed_login(
    manager: SessionManager,
    browser: FakeBrowser,
    session_config: SessionConfig,
) -> None:
    first = await manager.acquire(session_config)
    manager.invalidate("user", TEST_EMAIL)
    browser.accept_credentials = False

    with pytest.raises(LoginError):
        await manager.acquire(session_config)

    browser.accept_credentials = True
    second = await manager.acquire(session_config)

    assert second != first


@pytest.mark.asyncio
async def test_force_refresh_bypasses_cache(
    manager: SessionManager,
    browser: FakeBrowser,
    session_config: SessionConfig,
) -> None:
    first = await manager.acquire(session_config)
    second = await manager.acquire(session_config, force_refresh=True)

    assert second != first
    assert browser.logins == 2


@pytest.mark.asyncio
async def test_acquire_during_flight_joins_it_even_with_valid_cache(
    manager: SessionManager,
    browser: FakeBrowser,
    store: MemoryStorageStateStore,
    session_config: SessionConfig,
    make_stored_session: Callable[..., StoredSession],
) -> None:
    await store.write(KEY, make_stored_session(value="cached"))
    browser.login_delay = 0.05

    renewal = asyncio.create_task(manager.acquire(session_config, force_refresh=True))
    await asyncio.sleep(0.01)
    assert manager.is_in_flight(KEY)

    foreground = await manager.acquire(session_config)

    assert foreground is await renewal
    assert foreground["cookies"][0]["value"] == "token-1"
    assert browser.logins == 1


@pytest.mark.asyncio
async def test_store_read_failure_propagates(
    manager: SessionManager,
    browser: FakeBrowser,
    store: MemoryStorageStateStore,
    session_config: SessionConfig,
) -> None:
    with (
        patch.object(store, "read", AsyncMock(side_effect=StoreReadError("boom", key=KEY))),
        pytest.raises(StoreReadError),
    ):
        await manager.acquire(session_config)

    assert browser.logins == 0


@pytest.mark.asyncio
async def test_store_write_failure_propagates_and_is_not_retried(
    manager: SessionManager,
    browser: FakeBrowser,
    store: MemoryStorageStateStore,
    session_config: SessionConfig,
) -> None:
    write = AsyncMock(side_effect=StoreWriteError("disk full", key=KEY))
    with patch.object(store, "write", write), pytest.raises(StoreWriteError):
        await manager.acquire(session_config)

    write.assert_awaited_once()
    assert not manager.is_in_flight(KEY)


@pytest.mark.asyncio
async def test_adopt_persists_refreshed_state(
    manager: SessionManager,
    browser: FakeBrowser,
    store: MemoryStorageStateStore,
    session_config: SessionConfig,
) -> None:
    await manager.acquire(session_config)
    refreshed = {"cookies": [{"name": "userAuth", "value": "refreshed"}], "origins": []}

    await manager.adopt(session_config, refreshed)

    assert await manager.acquire(session_config) == refreshed
    stored = await store.read(KEY)
    assert stored is not None
    assert stored.storage_state == refreshed
    assert browser.logins == 1


@pytest.mark.asyncio
async def test_adopt_clears_invalidation(
    manager: SessionManager,
    browser: FakeBrowser,
    session_config: SessionConfig,
) -> None:
    await manager.acquire(session_config)
    manager.invalidate(SessionType.USER, TEST_EMAIL)
    refreshed = {"cookies": [{"name": "userAuth", "value": "refreshed"}], "origins": []}

    await manager.adopt(session_config, refreshed)

    assert await manager.acquire(session_config) == refreshed
    assert browser.logins == 1


@pytest.mark.asyncio
async def test_install_loads_state_into_browser(
    manager: SessionManager,
    browser: FakeBrowser,
    session_config: SessionConfig,
) -> None:
    target = FakeBrowser()

    storage_state = await manager.install(target, session_config)

    assert target.installed == [storage_state]


@pytest.mark.asyncio
async def test_install_relogs_once_when_cached_state_is_rejected(
    manager: SessionManager,
    browser: FakeBrowser,
    store: MemoryStorageStateStore,
    session_config: SessionConfig,
    make_stored_session: Callable[..., StoredSession],
) -> None:
    stale = make_stored_session(value="revoked")
    await store.write(KEY, stale)
    target = FakeBrowser()

    async def verify(storage_state: dict) -> bool:
        return storage_state["cookies"][0]["value"] != "revoked"

    storage_state = await manager.install(target, session_config, verify=verify)

    assert storage_state["cookies"][0]["value"] == "token-1"
    assert target.installed == [stale.storage_state, storage_state]
    assert browser.logins == 1


@pytest.mark.asyncio
async def test_install_raises_when_fresh_state_is_rejected(
    manager: SessionManager,
    session_config: SessionConfig,
) -> None:
    with pytest.raises(StaleCacheRejectedError) as exc_info:
        await manager.install(FakeBrowser(), session_config, verify=AsyncMock(return_value=False))

    assert exc_info.value.key == KEY


@pytest.mark.asyncio
async def test_acquire_tracks_sessions_for_renewal(
    manager: SessionManager,
    session_config: SessionConfig,
) -> None:
    two_fa = TwoFAOptions(code="123456")

    await manager.acquire(session_config, two_fa)

    [tracked] = manager.tracked()
    assert tracked.key == KEY
    assert tracked.config == session_config
    assert tracked.two_fa == two_fa


@pytest.mark.asyncio
async def test_workers_in_separate_processes_share_one_login(tmp_path: Path) -> None:
    """Two managers over one directory stand in for two worker processes."""
    config = SessionCacheConfig(storage_root=tmp_path, lock_poll_interval=0.01)
    browser = FakeBrowser(login_delay=0.05)
    session_config = SessionConfig(session_type=SessionType.ADMIN, email=TEST_EMAIL, password="p")

    def make_worker() -> SessionManager:
        store = FileStorageStateStore.from_config(config)
        return SessionManager(store, LoginFlow(browser.open), config)

    first, second = await asyncio.gather(
        make_worker().acquire(session_config),
        make_worker().acquire(session_config),
    )

    assert browser.logins == 1
    assert first == second
