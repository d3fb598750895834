# core/budget.py
"""Total-operation time budget shared by every call in one generation request."""

from __future__ import annotations

import time
from collections.abc import Callable

from config import EngineSettings, settings
from core.errors import BudgetExhaustedError


class TimeBudget:
    """Monotonic deadline with helpers for sizing individual calls.

    ``clock`` is injectable so tests can expire a budget without sleeping.
    """

    def __init__(
        self,
        total_seconds: float,
        *,
        per_call_seconds: float = settings.PER_CALL_TIMEOUT_SECONDS,
        min_call_seconds: float = settings.MIN_CALL_BUDGET_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self.total_seconds = total_seconds
        self.per_call_seconds = per_call_seconds
        self.min_call_seconds = min_call_seconds
        self._deadline = clock() + total_seconds

    @classmethod
    def from_settings(
        cls,
        config: EngineSettings = settings,
        clock: Callable[[], float] = time.monotonic,
    ) -> TimeBudget:
        return cls(
            config.TOTAL_BUDGET_SECONDS,
            per_call_seconds=config.PER_CALL_TIMEOUT_SECONDS,
            min_call_seconds=config.MIN_CALL_BUDGET_SECONDS,
            clock=clock,
        )

    def remaining(self) -> float:
        return max(0.0, self._deadline - self._clock())

    def elapsed(self) -> float:
        return self.total_seconds - self.remaining()

    def expired(self) -> bool:
        return self.remaining() <= 0.0

    def can_start(self, required: float | None = None) -> bool:
        """True when at least ``required`` seconds (default: one minimal call) remain."""
        needed = self.min_call_seconds if required is None else required
        return self.remaining() >= needed

    def ensure(self, required: float | None = None) -> None:
        """Raise :class:`BudgetExhaustedError` unless a call may start."""
        needed = self.min_call_seconds if required is None else required
        remaining = self.remaining()
        if remaining < needed:
            raise BudgetExhaustedError(remaining, needed)

    def call_timeout(self) -> float:
        """Timeout for the next call: the per-call cap, clipped to what remains."""
        return min(self.per_call_seconds, self.remaining())

    def __repr__(self) -> str:
        return (
            f"TimeBudget(remaining={self.remaining():.1f}s, "
            f"total={self.total_seconds:.1f}s, per_call={self.per_call_seconds:.1f}s)"
        )
