"""Cache plugins.

Brief: Defines the CachePlugin interface and the bundled cache backends.

Inputs:
  - None

Outputs:
  - None
"""

from __future__ import annotations

from .base import CachePlugin, cache_aliases
from .in_memory_ttl import InMemoryTTLCache
from .null import NullCache
from .registry import get_cache_plugin_class, load_cache_plugin

__all__ = [
    "CachePlugin",
    "InMemoryTTLCache",
    "NullCache",
    "cache_aliases",
    "get_cache_plugin_class",
    "load_cache_plugin",
]
