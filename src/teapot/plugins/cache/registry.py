from __future__ import annotations

import difflib
import importlib
import inspect
from typing import Any, Dict, Mapping, Optional, Tuple, Type

from .base import CachePlugin
from .in_memory_ttl import InMemoryTTLCache
from .null import NullCache
from .redis_cache import RedisCache

DEFAULT_CACHE = "in_memory_ttl"

# RedisCache imports redis on first instantiation.
BUNDLED_CACHES: Tuple[Type[CachePlugin], ...] = (InMemoryTTLCache, NullCache, RedisCache)


def _normalize(alias: str) -> str:
    return str(alias).strip().lower().replace("-", "_")


def alias_table() -> Dict[str, Type[CachePlugin]]:
    """Brief: Map every normalized alias of the bundled backends to its class.

    Inputs:
      - None

    Outputs:
      - Dict[str, Type[CachePlugin]]
    """

    table: Dict[str, Type[CachePlugin]] = {}
    for cls in BUNDLED_CACHES:
        for alias in cls.aliases:
            table[_normalize(alias)] = cls
    return table


def _import_dotted(identifier: str) -> Type[CachePlugin]:
    modname, _, classname = identifier.rpartition(".")
    if not modname or not classname:
        raise ValueError(f"Invalid cache plugin path '{identifier}'")
    cls = getattr(importlib.import_module(modname), classname)
    if not (inspect.isclass(cls) and issubclass(cls, CachePlugin)):
        raise TypeError(f"{identifier} is not a CachePlugin subclass")
    return cls


def get_cache_plugin_class(identifier: str) -> Type[CachePlugin]:
    """Brief: Resolve a config `cache.module` value to a backend class.

    Inputs:
      - identifier: Alias such as "memory" or "redis", or a dotted path to a
        CachePlugin subclass living outside this package.

    Outputs:
      - CachePlugin subclass.

    Raises:
      - KeyError: Unknown alias; the message lists close matches.
      - TypeError: Dotted path that is not a CachePlugin subclass.
      - ValueError: Malformed dotted path.
    """

    ident = str(identifier).strip()
    if "." in ident:
        return _import_dotted(ident)

    table = alias_table()
    key = _normalize(ident)
    if key in table:
        return table[key]
    suggestions = difflib.get_close_matches(key, list(table), n=3)
    raise KeyError(
        f"Unknown cache plugin alias '{identifier}'. "
        f"Known aliases: {', '.join(sorted(table))}. "
        f"Suggestions: {suggestions}"
    )


def load_cache_plugin(
    module: Optional[str], config: Optional[Mapping[str, Any]] = None
) -> CachePlugin:
    """Brief: Build the configured cache plugin.

    Inputs:
      - module: Alias or dotted import path; None selects the in-memory cache.
      - config: Backend-specific keyword arguments.

    Outputs:
      - CachePlugin instance.

    Example:
      cache:
        module: in_memory_ttl
        config:
          maxsize: 100000
          eviction_policy: lru
    """

    cls = get_cache_plugin_class(module or DEFAULT_CACHE)
    return cls(**dict(config or {}))
