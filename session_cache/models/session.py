"""
Session domain models.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any

StorageState = Mapping[str, Any]


class SessionType(StrEnum):
    """
    Session types, one per application role.

    All non-trial roles share the ``userAuth`` cookie family but stay
    separate cache entries for data isolation and logging.
    """

    TRIAL = "trial"
    USER = "user"
    ADMIN = "admin"
    OWNER = "owner"
    SUPER_ADMIN = "super-admin"

    @property
    def cookie_family(self) -> str:
        """Name of the authentication cookie for this session type."""
        return "trialAuth" if self is SessionType.TRIAL else "userAuth"

    @property
    def refresh_cookie(self) -> str:
        """Name of the refresh-token cookie for this session type."""
        return f"{self.cookie_family}RefreshToken"

    @property
    def route_prefixes(self) -> tuple[str, ...]:
        """Route prefixes an authenticated session of this type lands on."""
        if self is SessionType.TRIAL:
            return ("/trial/", "/affiliate/")
        return ("/lobby/",)

    @classmethod
    def from_role(cls, role: str) -> "SessionType":
        """
        Map an application role name to a session type.

        Args:
            role: Role such as "ADMIN" or "super_admin".

        Returns:
            Matching SessionType, USER for unknown roles.
        """
        normalized = role.strip().lower().replace("_", "-")
        try:
            return cls(normalized)
        except ValueError:
            return cls.USER


@dataclass(frozen=True, kw_only=True)
class SessionConfig:
    """
    Input to session acquisition.

    Attributes:
        session_type: Role the session authenticates as.
        email: Account email, part of the session key.
        password: Account password. Only used inside the login flow.
    """

    session_type: SessionType
    email: str
    password: str = field(repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "session_type", SessionType(self.session_type))
        object.__setattr__(self, "email", self.email.strip())
        object.__setattr__(self, "password", self.password.strip())
        if not self.email:
            msg = "email must not be empty"
            raise ValueError(msg)
        if not self.password:
            msg = "password must not be empty"
            raise ValueError(msg)


@dataclass(frozen=True, kw_only=True)
class StorageStateMetadata:
    """
    Metadata stored alongside each storage state.

    ``expires_at`` is a heuristic bound; the backend decides real expiry.

    Attributes:
        created_at: When the storage state was produced (UTC).
        expires_at: When the cache stops serving it (UTC).
        session_type: Session type the state belongs to.
        email: Account email, for reference.
    """

    created_at: datetime
    expires_at: datetime
    session_type: SessionType
    email: str

    def __post_init__(self) -> None:
        if self.created_at.tzinfo is None or self.expires_at.tzinfo is None:
            msg = "timestamps must be timezone-aware"
            raise ValueError(msg)
        if self.expires_at <= self.created_at:
            msg = "expires_at must be after created_at"
            raise ValueError(msg)

    @classmethod
    def issue(
        cls,
        session_type: SessionType,
        email: str,
        ttl: timedelta,
        *,
        now: datetime | None = None,
    ) -> "StorageStateMetadata":
        """Build metadata for a storage state produced at ``now``."""
        created_at = now or datetime.now(UTC)
        return cls(
            created_at=created_at,
            expires_at=created_at + ttl,
            session_type=session_type,
            email=email,
        )

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or datetime.now(UTC)) >= self.expires_at

    def remaining(self, now: datetime | None = None) -> timedelta:
        """Time left before expiry, negative once expired."""
        return self.expires_at - (now or datetime.now(UTC))

    def to_dict(self) -> dict[str, str]:
        return {
            "createdAt": self.created_at.isoformat(),
            "expiresAt": self.expires_at.isoformat(),
            "sessionType": str(self.session_type),
            "email": self.email,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StorageStateMetadata":
        """
        Parse metadata from its serialized form.

        Raises:
            KeyError: If a field is missing.
            ValueError: If a field is malformed.
        """
        return cls(
            created_at=_parse_timestamp(data["createdAt"]),
            expires_at=_parse_timestamp(data["expiresAt"]),
            session_type=SessionType(data["sessionType"]),
            email=data["email"],
        )


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@dataclass(frozen=True, kw_only=True)
class StoredSession:
    """A storage state paired with its metadata."""

    storage_state: StorageState
    metadata: StorageStateMetadata

    def is_valid(self, now: datetime | None = None) -> bool:
        return not self.metadata.is_expired(now)
