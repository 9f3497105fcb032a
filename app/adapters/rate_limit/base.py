"""Window store interfaces and admission result types.

The admission controller depends on this abstraction (not the concrete
implementation) so the in-memory store can later be replaced by a shared
backend (e.g., Redis) with minimal changes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from dataclasses import dataclass


@dataclass
class RateWindow:
    """Counting state for one key's current fixed window.

    Attributes:
        key: Window identity (route class + client key).
        count: Requests counted in the current window, admitted or not.
        window_start_ms: Epoch milliseconds when the window opened.
        reset_at_ms: Epoch milliseconds when the window ends.
    """

    key: str
    count: int
    window_start_ms: int
    reset_at_ms: int

    @property
    def duration_ms(self) -> int:
        return self.reset_at_ms - self.window_start_ms


@dataclass(frozen=True)
class AdmissionDecision:
    """Allow/deny verdict for one evaluated request.

    Attributes:
        allowed: Whether the request may proceed.
        limit: Max requests per window for the matched policy.
        remaining: Remaining requests in the current window (0 when denied).
        reset_at_ms: Epoch milliseconds when the counter resets.
        retry_after_seconds: Suggested wait in seconds, only set when denied.
        policy: Name of the policy that was applied.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at_ms: int
    retry_after_seconds: int | None
    policy: str


class AbstractWindowStore(ABC):
    """Interface for the key -> RateWindow mapping."""

    @abstractmethod
    def lock_for(self, key: str) -> AbstractContextManager:
        """Return the lock that serializes read-modify-write on ``key``.

        Callers hold it across ``get_or_create`` and ``increment`` so the pair
        is indivisible for a given key.
        """
        raise NotImplementedError

    @abstractmethod
    def get_or_create(self, key: str, now_ms: int, window_ms: int) -> RateWindow:
        """Return the live window for key, opening a fresh one when needed."""
        raise NotImplementedError

    @abstractmethod
    def increment(self, window: RateWindow) -> int:
        """Increment the window counter and return the new count."""
        raise NotImplementedError

    @abstractmethod
    def purge_expired(self, now_ms: int, *, grace_windows: int = 0) -> int:
        """Remove expired windows and return how many were removed."""
        raise NotImplementedError

    @abstractmethod
    def __len__(self) -> int:
        raise NotImplementedError
