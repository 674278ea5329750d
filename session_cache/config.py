"""
Session cache configuration.
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from session_cache.exceptions import ConfigurationError
from session_cache.models.session import SessionConfig, SessionType
from session_cache.models.two_factor import DEFAULT_MANUAL_TIMEOUT_MS


@dataclass(frozen=True, kw_only=True)
class SessionCacheConfig:
    """
    Attributes:
        storage_root: Directory holding one storage state file per session key.
        ttl: Heuristic lifetime of a cached storage state.
        renewal_interval: Seconds between updater renewal checks.
        renewal_threshold: Remaining validity below which the updater renews.
        manual_two_fa_timeout_ms: Default manual 2FA window in milliseconds.
        lock_timeout: Maximum seconds to wait for another process's login lock.
        lock_poll_interval: Seconds between login lock attempts.
        lock_stale_after: Seconds after which an abandoned login lock is taken over.
    """

    storage_root: Path
    ttl: timedelta = timedelta(days=7)
    renewal_interval: float = 300.0
    renewal_threshold: timedelta = timedelta(minutes=15)
    manual_two_fa_timeout_ms: int = DEFAULT_MANUAL_TIMEOUT_MS
    lock_timeout: float = 600.0
    lock_poll_interval: float = 0.1
    lock_stale_after: float = 900.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "storage_root", Path(self.storage_root))
        if self.ttl <= timedelta(0):
            msg = "ttl must be positive"
            raise ValueError(msg)
        if self.renewal_interval <= 0:
            msg = "renewal_interval must be positive"
            raise ValueError(msg)
        if self.renewal_threshold <= timedelta(0):
            msg = "renewal_threshold must be positive"
            raise ValueError(msg)
        if self.manual_two_fa_timeout_ms <= 0:
            msg = "manual_two_fa_timeout_ms must be positive"
            raise ValueError(msg)
        if self.lock_timeout <= 0:
            msg = "lock_timeout must be positive"
            raise ValueError(msg)
        if self.lock_poll_interval <= 0:
            msg = "lock_poll_interval must be positive"
            raise ValueError(msg)
        if self.lock_stale_after <= 0:
            msg = "lock_stale_after must be positive"
            raise ValueError(msg)


def session_config_from_env(
    session_type: SessionType | str,
    *,
    environ: Mapping[str, str] | None = None,
    prefix: str = "QE",
) -> SessionConfig:
    """
    Build a SessionConfig from environment variables.

    Looks up ``{prefix}_{TYPE}_EMAIL`` / ``{prefix}_{TYPE}_PASSWORD`` first,
    then falls back to ``{prefix}_DEV_EMAIL`` / ``{prefix}_DEV_PASSWORD``.

    Args:
        session_type: Session type to build the config for.
        environ: Mapping to read from. Defaults to os.environ.
        prefix: Variable name prefix.

    Returns:
        SessionConfig.

    Raises:
        ConfigurationError: If the email or password cannot be found.
    """
    session_type = SessionType(session_type)
    env = os.environ if environ is None else environ
    type_part = session_type.upper().replace("-", "_")

    specific = (f"{prefix}_{type_part}_EMAIL", f"{prefix}_{type_part}_PASSWORD")
    fallback = (f"{prefix}_DEV_EMAIL", f"{prefix}_DEV_PASSWORD")

    email = (env.get(specific[0]) or env.get(fallback[0]) or "").strip()
    password = (env.get(specific[1]) or env.get(fallback[1]) or "").strip()

    if not email or not password:
        msg = "Session credentials not found in environment"
        raise ConfigurationError(
            msg,
            tried=[*specific, *fallback],
            email_found=bool(email),
            password_found=bool(password),
        )

    return SessionConfig(session_type=session_type, email=email, password=password)
