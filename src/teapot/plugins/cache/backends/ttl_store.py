"""TTL store where each entry has its own TTL.

Brief:
  Thread-safe in-memory mapping where each entry has an independent expiry
  and an optional capacity bound.

Notes:
  - Expired entries are removed opportunistically on get()/set_if_absent()
    and via purge_expired().
  - When maxsize is configured, entries beyond that bound are evicted
    according to eviction_policy ("none", "lru" or "fifo").
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Dict, Optional, Tuple

_logger = logging.getLogger(__name__)


class TTLStore:
    """Thread-safe in-memory store with per-entry TTL and optional eviction.

    Inputs:
        - maxsize: Optional positive capacity bound. None or <= 0 means
          unbounded; only TTL expiry applies.
        - eviction_policy: "none", "lru" or "fifo"; used when maxsize is hit.
        - clock: Callable returning epoch seconds (injectable for tests).

    Outputs:
        TTLStore instance

    Notes:
        All dictionary operations are synchronized with an RLock, which makes
        set_if_absent() an atomic check-and-insert.

    Example use:
        >>> store = TTLStore()
        >>> store.set_if_absent("k", 60, b"first")
        b'first'
        >>> store.set_if_absent("k", 60, b"second")
        b'first'
    """

    def __init__(
        self,
        *,
        maxsize: Optional[int] = None,
        eviction_policy: str = "none",
        clock=time.time,
    ) -> None:
        self._store: Dict[str, Tuple[float, Any]] = {}
        self._lock = threading.RLock()
        self._clock = clock

        self._maxsize: Optional[int] = int(maxsize) if maxsize else None
        if isinstance(self._maxsize, int) and self._maxsize <= 0:
            self._maxsize = None
        policy = (eviction_policy or "none").strip().lower()
        if policy not in {"none", "lru", "fifo"}:
            raise ValueError(f"unsupported eviction_policy {eviction_policy!r}")
        self._eviction_policy = policy

        # Metadata used by eviction policies when capacity is enforced.
        self._op_counter: int = 0
        self._last_access: Dict[str, int] = {}
        self._insert_index: Dict[str, int] = {}

        self.evictions_ttl: int = 0
        self.evictions_capacity: int = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def _bump_op_counter_locked(self) -> int:
        self._op_counter += 1
        return self._op_counter

    def _drop_locked(self, key: str) -> None:
        self._store.pop(key, None)
        self._last_access.pop(key, None)
        self._insert_index.pop(key, None)

    def _live_entry_locked(self, key: str, now: float) -> Optional[Tuple[float, Any]]:
        entry = self._store.get(key)
        if entry is None:
            return None
        if now >= entry[0]:
            self._drop_locked(key)
            self.evictions_ttl += 1
            _logger.debug("TTLStore TTL eviction: key=%r", key)
            return None
        return entry

    def get(self, key: str) -> Any | None:
        """
        Retrieves an item from the store.

        Inputs:
            key: The key to retrieve.

        Outputs:
            The stored value, or None if the key is absent or has expired.
        """
        now = self._clock()
        with self._lock:
            entry = self._live_entry_locked(key, now)
            if entry is None:
                return None
            self._last_access[key] = self._bump_op_counter_locked()
            return entry[1]

    def set_if_absent(self, key: str, ttl: int, data: Any) -> Any:
        """
        Stores data under key unless a live entry exists.

        Inputs:
            key: The key to store the value under.
            ttl: The Time-To-Live in seconds.
            data: The value to store.
        Outputs:
            The value held under key after the call.
        """
        ttl_int = max(0, int(ttl))
        now = self._clock()
        with self._lock:
            existing = self._live_entry_locked(key, now)
            if existing is not None:
                return existing[1]
            if ttl_int <= 0:
                return data
            self._store[key] = (now + ttl_int, data)
            idx = self._bump_op_counter_locked()
            self._insert_index[key] = idx
            self._last_access[key] = idx

            if isinstance(self._maxsize, int):
                over = len(self._store) - self._maxsize
                if over > 0:
                    self._purge_expired_locked(now)
                    over = len(self._store) - self._maxsize
                    if over > 0:
                        self._evict_locked(over, protect=key)
            return data

    def purge_expired(self) -> int:
        """Remove all expired entries.

        Inputs:
            None
        Outputs:
            Number of entries removed.
        """
        with self._lock:
            return self._purge_expired_locked(self._clock())

    def _purge_expired_locked(self, now: float) -> int:
        removed = 0
        for k, (exp, _) in list(self._store.items()):
            if exp <= now:
                self._drop_locked(k)
                removed += 1
        self.evictions_ttl += removed
        return removed

    def _evict_locked(self, to_evict: int, protect: Optional[str] = None) -> int:
        """Brief: Evict up to ``to_evict`` entries according to eviction_policy.

        Inputs:
          - to_evict: Positive integer number of entries to evict.
          - protect: Key that must survive (the entry just inserted).

        Outputs:
          - int: Number of entries actually evicted.
        """

        if to_evict <= 0 or self._eviction_policy == "none":
            return 0

        if self._eviction_policy == "lru":
            scores = self._last_access
        else:
            scores = self._insert_index
        candidates = [k for k in self._store if k != protect]
        victims = sorted(candidates, key=lambda k: scores.get(k, 0))[:to_evict]
        for k in victims:
            self._drop_locked(k)
            _logger.debug(
                "TTLStore size eviction: policy=%s key=%r", self._eviction_policy, k
            )
        self.evictions_capacity += len(victims)
        return len(victims)
