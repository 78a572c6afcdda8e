"""Null cache plugin.

Brief:
  Disables caching: every lookup misses and nothing is stored.

Inputs:
  - None

Outputs:
  - NullCache
"""

from __future__ import annotations

from typing import Optional

from .base import CachePlugin, cache_aliases


@cache_aliases("none", "null", "off", "disabled")
class NullCache(CachePlugin):
    """CachePlugin that never stores anything."""

    def __init__(self, **config: object) -> None:
        self.config = dict(config)

    def get(self, key: str) -> Optional[bytes]:
        return None

    def get_or_set(self, key: str, value: bytes, ttl: int) -> bytes:
        return bytes(value)

    def purge(self) -> int:
        return 0
