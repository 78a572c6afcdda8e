from __future__ import annotations

from typing import Optional

from teapot.plugins.cache.backends.ttl_store import TTLStore

from .base import CachePlugin, cache_aliases


@cache_aliases("in_memory_ttl", "memory", "ttl")
class InMemoryTTLCache(CachePlugin):
    """In-memory TTL cache plugin.

    Brief:
      Default CachePlugin implementation backed by
      `teapot.plugins.cache.backends.ttl_store.TTLStore`. Entries live in the
      process, so every worker process has its own cache.

    Inputs:
      - **config: Optional implementation-specific config.
          - maxsize: Optional positive int capacity bound.
          - eviction_policy: "none" (default), "lru" or "fifo".

    Outputs:
      - InMemoryTTLCache instance.
    """

    def __init__(self, **config: object) -> None:
        maxsize = config.get("maxsize")
        self._store = TTLStore(
            maxsize=int(maxsize) if maxsize else None,
            eviction_policy=str(config.get("eviction_policy", "none") or "none"),
        )

    def get(self, key: str) -> Optional[bytes]:
        return self._store.get(key)

    def get_or_set(self, key: str, value: bytes, ttl: int) -> bytes:
        """Brief: Atomically store value unless a live entry exists.

        Inputs:
          - key: Cache key string.
          - value: Answer bytes.
          - ttl: Lifetime in seconds.

        Outputs:
          - bytes: Value held for key after the call.
        """

        return self._store.set_if_absent(key, ttl, bytes(value))

    def purge(self) -> int:
        return int(self._store.purge_expired())

    def __len__(self) -> int:
        return len(self._store)
