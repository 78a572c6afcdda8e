from __future__ import annotations

from typing import Optional


def cache_aliases(*aliases: str):
    """Brief: Decorator to set aliases on a cache plugin class for the alias table.

    Inputs:
      - *aliases: Variable number of alias strings.

    Outputs:
      - Callable that applies the aliases to a CachePlugin subclass and returns it.

    Example:
      >>> from teapot.plugins.cache.base import CachePlugin, cache_aliases
      >>> @cache_aliases('none', 'null')
      ... class NullCache(CachePlugin):
      ...     pass
      >>> NullCache.aliases
      ('none', 'null')
    """

    def _wrap(cls: type) -> type:
        cls.aliases = tuple(aliases)
        return cls

    return _wrap


class CachePlugin:
    """Base class for DoH answer caches.

    Brief:
      Keys are opaque strings produced by ``teapot.cache_keys.cache_key``;
      values are wire-format DNS answers. Subclasses implement get(),
      get_or_set() and purge().

    Inputs:
      - None.

    Outputs:
      - CachePlugin instance.

    Notes:
      - Backend failures must be raised as ``teapot.errors.CacheError`` so the
        pipeline can degrade to a cache miss.
    """

    aliases: tuple[str, ...] = ()

    def get(self, key: str) -> Optional[bytes]:
        """Brief: Lookup a cached answer.

        Inputs:
          - key: Cache key string.

        Outputs:
          - bytes | None: Stored answer, or None on a miss (not an error).
        """

        raise NotImplementedError("CachePlugin.get() must be implemented by a subclass")

    def get_or_set(self, key: str, value: bytes, ttl: int) -> bytes:
        """Brief: Store value unless a live entry already exists.

        Inputs:
          - key: Cache key string.
          - value: Answer bytes offered for storage.
          - ttl: Storage lifetime in seconds.

        Outputs:
          - bytes: The effective stored value. Concurrent callers for the same
            key all receive the value written by the first of them.
        """

        raise NotImplementedError(
            "CachePlugin.get_or_set() must be implemented by a subclass"
        )

    def purge(self) -> int:
        """Brief: Purge expired entries.

        Inputs:
          - None.

        Outputs:
          - int: Number of entries removed (best-effort).
        """

        raise NotImplementedError(
            "CachePlugin.purge() must be implemented by a subclass"
        )

    def close(self) -> None:
        """Brief: Release backend resources. The default does nothing."""

        return None
