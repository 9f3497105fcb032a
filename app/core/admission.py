"""Per-client admission control.

Combines the route policy resolver with a window store to decide whether a
request is admitted. Every evaluation counts against the window, denied
requests included, and the decision carries the quota metadata the HTTP
layer turns into headers.
"""

from __future__ import annotations

import math
import time
from typing import Callable

from app.adapters.rate_limit.base import AbstractWindowStore, AdmissionDecision
from app.core.rate_policy import RatePolicy, RatePolicyResolver

UNKNOWN_CLIENT_KEY = "unknown"


def epoch_ms() -> int:
    """Current UNIX time in integer milliseconds."""
    return time.time_ns() // 1_000_000


class AdmissionController:
    """Fixed-window admission gate keyed by client and route class.

    The store and resolver are injected so each application (and each test)
    owns its own state.
    """

    def __init__(
        self,
        *,
        store: AbstractWindowStore,
        resolver: RatePolicyResolver,
        clock: Callable[[], int] = epoch_ms,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._clock = clock

    @property
    def store(self) -> AbstractWindowStore:
        return self._store

    def now_ms(self) -> int:
        return self._clock()

    @staticmethod
    def window_key(client_key: str, policy: RatePolicy) -> str:
        """Namespaced store key; empty client keys share the fallback bucket."""
        return f"{policy.name}:{client_key or UNKNOWN_CLIENT_KEY}"

    def evaluate(self, client_key: str, path: str, now_ms: int | None = None) -> AdmissionDecision:
        """Count one request and decide whether it is admitted.

        Args:
            client_key: Client identity (usually the IP address).
            path: Request path, used to pick the rate policy.
            now_ms: Evaluation time in epoch milliseconds; defaults to the clock.

        Returns:
            AdmissionDecision for this request.
        """
        if now_ms is None:
            now_ms = self._clock()

        policy = self._resolver.resolve(path)
        key = self.window_key(client_key, policy)

        with self._store.lock_for(key):
            window = self._store.get_or_create(key, now_ms, policy.window_ms)
            count = self._store.increment(window)
            reset_at_ms = window.reset_at_ms

        if count > policy.max_requests:
            # Clamp so a denied client is never told to retry immediately.
            retry_after = max(1, math.ceil((reset_at_ms - now_ms) / 1000))
            return AdmissionDecision(
                allowed=False,
                limit=policy.max_requests,
                remaining=0,
                reset_at_ms=reset_at_ms,
                retry_after_seconds=retry_after,
                policy=policy.name,
            )

        return AdmissionDecision(
            allowed=True,
            limit=policy.max_requests,
            remaining=policy.max_requests - count,
            reset_at_ms=reset_at_ms,
            retry_after_seconds=None,
            policy=policy.name,
        )
