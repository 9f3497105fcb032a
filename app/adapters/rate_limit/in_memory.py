"""In-memory fixed-window store with sharded locks.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: keys are spread over independent shards, each guarded by its
  own lock, so requests for different keys rarely contend.
"""

from __future__ import annotations

import threading
import zlib
from dataclasses import dataclass, field

from app.adapters.rate_limit.base import AbstractWindowStore, RateWindow

# A request arriving exactly at reset_at still belongs to the current window.
EXPIRE_AT_RESET_INSTANT = False


def is_window_expired(window: RateWindow, now_ms: int) -> bool:
    """Tell whether ``window`` has ended at ``now_ms``."""
    if EXPIRE_AT_RESET_INSTANT:
        return now_ms >= window.reset_at_ms
    return now_ms > window.reset_at_ms


@dataclass
class _Shard:
    lock: threading.RLock = field(default_factory=threading.RLock)
    windows: dict[str, RateWindow] = field(default_factory=dict)


class ShardedInMemoryWindowStore(AbstractWindowStore):
    """Window store keeping one RateWindow per key in process memory.

    Lookups and increments are O(1). Memory grows with the number of distinct
    keys seen since the last purge; ``purge_expired`` is the only thing that
    shrinks it.
    """

    def __init__(self, *, shard_count: int = 64) -> None:
        """Initialize the store.

        Args:
            shard_count: Number of independently locked partitions.

        Raises:
            ValueError: If shard_count is not positive.
        """
        if shard_count < 1:
            raise ValueError("shard_count must be >= 1")

        self._shards = tuple(_Shard() for _ in range(shard_count))

    def _shard_for(self, key: str) -> _Shard:
        # crc32 is stable across processes, unlike hash() with PYTHONHASHSEED.
        return self._shards[zlib.crc32(key.encode()) % len(self._shards)]

    def lock_for(self, key: str) -> threading.RLock:
        return self._shard_for(key).lock

    def get_or_create(self, key: str, now_ms: int, window_ms: int) -> RateWindow:
        """Return the live window for key or replace an absent/expired one.

        Args:
            key: Window identity.
            now_ms: Current time in epoch milliseconds.
            window_ms: Length of a newly opened window.

        Returns:
            The window that ``now_ms`` falls into, with count 0 when fresh.
        """
        shard = self._shard_for(key)
        with shard.lock:
            window = shard.windows.get(key)
            if window is None or is_window_expired(window, now_ms):
                window = RateWindow(
                    key=key,
                    count=0,
                    window_start_ms=now_ms,
                    reset_at_ms=now_ms + window_ms,
                )
                shard.windows[key] = window
            return window

    def increment(self, window: RateWindow) -> int:
        with self._shard_for(window.key).lock:
            window.count += 1
            return window.count

    def purge_expired(self, now_ms: int, *, grace_windows: int = 0) -> int:
        """Drop windows whose reset time has passed.

        A window is removed when ``reset_at + grace_windows * duration`` is
        strictly before ``now_ms``. Shards are swept one at a time so only keys
        in the shard being swept wait on the purge.

        Args:
            now_ms: Current time in epoch milliseconds.
            grace_windows: Extra whole window lengths to keep an expired entry.

        Returns:
            Number of windows removed.
        """
        if grace_windows < 0:
            raise ValueError("grace_windows must be >= 0")

        removed = 0
        for shard in self._shards:
            with shard.lock:
                stale = [
                    key
                    for key, window in shard.windows.items()
                    if window.reset_at_ms + grace_windows * window.duration_ms < now_ms
                ]
                for key in stale:
                    del shard.windows[key]
                removed += len(stale)
        return removed

    def __len__(self) -> int:
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.windows)
        return total
