from __future__ import annotations

import importlib
from typing import Any, Optional

from teapot.errors import CacheError

from .base import CachePlugin, cache_aliases


def _import_redis() -> Any:
    """Brief: Import the optional `redis` dependency.

    Inputs:
      - None.

    Outputs:
      - redis module.

    Notes:
      - Imported lazily so teapot.plugins.cache works without `redis`
        installed; only selecting this backend requires it.
    """

    try:
        return importlib.import_module("redis")
    except ImportError as exc:  # pragma: no cover
        raise ImportError(
            "RedisCache requires the optional 'redis' dependency. "
            "Install it with: pip install teapot-doh[redis]"
        ) from exc


@cache_aliases("redis", "valkey")
class RedisCache(CachePlugin):
    """Redis/Valkey-backed answer cache.

    Brief:
      Shares cached answers between processes and hosts. get_or_set() uses
      ``SET key value NX EX ttl`` so the first writer wins on the server and
      every concurrent caller reads back the same stored bytes.

    Inputs:
      - **config:
          - url (str): Redis URL (e.g. redis://localhost:6379/0). When provided,
            it takes precedence over host/port/db.
          - host (str): Redis host (default '127.0.0.1').
          - port (int): Redis port (default 6379).
          - db (int): Redis DB index (default 0).
          - username (str|None): Optional Redis username.
          - password (str|None): Optional Redis password.
          - socket_timeout (float|None): Optional socket timeout seconds.
          - namespace (str): Key prefix (default 'teapot:doh:').

    Outputs:
      - RedisCache instance.

    Example:
      cache:
        module: redis
        config:
          url: redis://localhost:6379/0
          namespace: teapot:doh:
    """

    def __init__(self, **config: object) -> None:
        namespace = config.get("namespace", "teapot:doh:")
        if not isinstance(namespace, str) or not namespace.strip():
            namespace = "teapot:doh:"
        self.namespace: str = str(namespace)

        redis = _import_redis()
        self._error_types = tuple(
            t for t in (getattr(redis, "RedisError", None),) if isinstance(t, type)
        ) or (OSError,)

        url = config.get("url")
        if isinstance(url, str) and url.strip():
            self._client = redis.Redis.from_url(
                url.strip(),
                decode_responses=False,
                socket_timeout=config.get("socket_timeout"),
            )
            return

        host = str(config.get("host", "127.0.0.1") or "127.0.0.1")
        port = int(config.get("port", 6379) or 6379)
        db = int(config.get("db", 0) or 0)
        username = config.get("username")
        password = config.get("password")

        self._client = redis.Redis(
            host=host,
            port=port,
            db=db,
            username=str(username) if isinstance(username, str) and username else None,
            password=str(password) if isinstance(password, str) and password else None,
            socket_timeout=config.get("socket_timeout"),
            decode_responses=False,
        )

    def _redis_key(self, key: str) -> str:
        return f"{self.namespace}{key}"

    def get(self, key: str) -> Optional[bytes]:
        """Brief: Lookup a cached answer.

        Inputs:
          - key: Cache key string.

        Outputs:
          - bytes | None

        Raises:
          - CacheError: Redis unreachable or command failure.
        """

        try:
            value = self._client.get(self._redis_key(key))
        except self._error_types as exc:
            raise CacheError(f"redis get failed: {exc}") from exc
        return None if value is None else bytes(value)

    def get_or_set(self, key: str, value: bytes, ttl: int) -> bytes:
        """Brief: First-writer-wins store of an answer.

        Inputs:
          - key: Cache key string.
          - value: Answer bytes.
          - ttl: Lifetime in seconds.

        Outputs:
          - bytes: The value stored on the server for key.

        Raises:
          - CacheError: Redis unreachable or command failure.
        """

        redis_key = self._redis_key(key)
        payload = bytes(value)
        ttl_int = max(0, int(ttl))
        if ttl_int <= 0:
            return payload
        try:
            if self._client.set(redis_key, payload, nx=True, ex=ttl_int):
                return payload
            existing = self._client.get(redis_key)
        except self._error_types as exc:
            raise CacheError(f"redis get_or_set failed: {exc}") from exc
        # The competing entry expired between SET NX and GET; our value is
        # as good as any.
        return payload if existing is None else bytes(existing)

    def purge(self) -> int:
        """Redis expires keys itself; nothing to scan."""

        return 0

    def close(self) -> None:
        close = getattr(self._client, "close", None)
        if callable(close):
            close()
