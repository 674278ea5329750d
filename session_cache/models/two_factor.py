"""
Two-factor verification options.
"""

from dataclasses import dataclass
from enum import StrEnum

from session_cache.exceptions import TwoFAError

DEFAULT_MANUAL_TIMEOUT_MS = 300_000


class TwoFAStrategy(StrEnum):
    """How a two-factor challenge is answered."""

    AUTO = "auto"
    MANUAL = "manual"


@dataclass(frozen=True, kw_only=True)
class ResolvedTwoFA:
    """
    Two-factor options with the strategy decided.

    Attributes:
        strategy: Strategy to apply.
        code: Code to submit, set for AUTO.
        timeout_ms: Manual entry window, set for MANUAL.
    """

    strategy: TwoFAStrategy
    code: str | None = None
    timeout_ms: int | None = None


@dataclass(frozen=True, kw_only=True)
class TwoFAOptions:
    """
    Options for answering a two-factor challenge.

    When ``strategy`` is unset it is inferred: AUTO if a code is given,
    MANUAL otherwise. ``timeout_ms`` only applies to MANUAL.

    Attributes:
        strategy: Explicit strategy, or None to infer.
        code: 6-digit code.
        timeout_ms: Manual entry window in milliseconds.
    """

    strategy: TwoFAStrategy | None = None
    code: str | None = None
    timeout_ms: int | None = None

    def __post_init__(self) -> None:
        if self.strategy is not None:
            object.__setattr__(self, "strategy", TwoFAStrategy(self.strategy))
        if self.timeout_ms is not None and self.timeout_ms <= 0:
            msg = "timeout_ms must be positive"
            raise ValueError(msg)

    def resolve(self, default_timeout_ms: int = DEFAULT_MANUAL_TIMEOUT_MS) -> ResolvedTwoFA:
        """
        Decide the strategy to apply.

        Args:
            default_timeout_ms: Manual window used when ``timeout_ms`` is unset.

        Returns:
            ResolvedTwoFA.

        Raises:
            TwoFAError: If AUTO has no code or the code is not 6 digits.
        """
        strategy = self.strategy
        if strategy is None:
            strategy = TwoFAStrategy.AUTO if self.code else TwoFAStrategy.MANUAL

        if strategy is TwoFAStrategy.MANUAL:
            return ResolvedTwoFA(
                strategy=strategy,
                timeout_ms=self.timeout_ms or default_timeout_ms,
            )

        if not self.code:
            msg = "2FA code required for auto strategy"
            raise TwoFAError(msg)
        if not self.code.isdigit() or len(self.code) != 6:
            msg = "Invalid 2FA code format"
            raise TwoFAError(msg)
        return ResolvedTwoFA(strategy=strategy, code=self.code)
