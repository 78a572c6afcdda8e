"""Configuration parsing for teapot.

Brief:
  Reads the YAML configuration file and validates it into typed pydantic
  models. All defaults reproduce the behaviour of an unconfigured proxy:
  dns.google upstream, in-memory cache with a ~30 day storage TTL, and a
  client-facing max-age of 3709 seconds.

Inputs:
  - YAML config paths or already-parsed mappings

Outputs:
  - TeapotConfig instances

Example config::

    listen:
      host: 0.0.0.0
      port: 8053
    upstream:
      url: https://dns.google/resolve
      connect_timeout: 2.0
      read_timeout: 5.0
      retries: 1
    cache:
      module: redis
      ttl: 2628000
      config:
        url: redis://localhost:6379/0
    blocklist:
      path: /etc/teapot/blocklist.txt
    logging:
      level: info
      events:
        queue: true
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from teapot.errors import ConfigError

DEFAULT_UPSTREAM_URL = "https://dns.google/resolve"
DNS_MESSAGE_CT = "application/dns-message"
DEFAULT_CACHE_TTL = 2_628_000
DEFAULT_CLIENT_MAX_AGE = 3709


class ListenConfig(BaseModel):
    """Brief: Where the HTTP listener binds, plus optional TLS material."""

    host: str = "0.0.0.0"
    port: int = Field(default=8053, ge=1, le=65535)
    cert_file: Optional[str] = None
    key_file: Optional[str] = None


class UpstreamConfig(BaseModel):
    """Brief: Upstream DoH resolver endpoint and its timeout/retry budget.

    Inputs:
      - url: Base URL of a JSON-API style DoH resolver accepting ``name``,
        ``type`` and ``ct`` query parameters.
      - connect_timeout: Seconds allowed to establish the connection.
      - read_timeout: Seconds allowed until the first byte and between bytes.
      - retries: Extra attempts after the first; 0 means fail fast.
      - backoff_factor: Exponential backoff base (seconds) between retries.
      - include_qtype: Send the query type upstream so answers match the
        cached record type.
      - verify: Verify TLS certificates.
      - headers: Extra request headers.
    """

    url: str = DEFAULT_UPSTREAM_URL
    connect_timeout: float = Field(default=2.0, gt=0)
    read_timeout: float = Field(default=5.0, gt=0)
    retries: int = Field(default=0, ge=0, le=5)
    backoff_factor: float = Field(default=0.2, ge=0)
    include_qtype: bool = True
    verify: bool = True
    headers: Dict[str, str] = Field(default_factory=dict)


class CacheConfig(BaseModel):
    """Brief: Cache backend selection and storage TTL."""

    module: str = "in_memory_ttl"
    ttl: int = Field(default=DEFAULT_CACHE_TTL, ge=1)
    config: Dict[str, Any] = Field(default_factory=dict)


class BlocklistConfig(BaseModel):
    """Brief: Blocklist source; the packaged list is used when path is unset."""

    path: Optional[str] = None


class ResponseConfig(BaseModel):
    """Brief: Client-facing response headers."""

    max_age: int = Field(default=DEFAULT_CLIENT_MAX_AGE, ge=0)
    server_name: str = "teapot"


class TeapotConfig(BaseModel):
    """Brief: Root configuration model."""

    listen: ListenConfig = Field(default_factory=ListenConfig)
    upstream: UpstreamConfig = Field(default_factory=UpstreamConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    blocklist: BlocklistConfig = Field(default_factory=BlocklistConfig)
    response: ResponseConfig = Field(default_factory=ResponseConfig)
    logging: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        extra = "forbid"


def build_config(raw: Optional[Dict[str, Any]]) -> TeapotConfig:
    """Brief: Validate a parsed mapping into a TeapotConfig.

    Inputs:
      - raw: Mapping loaded from YAML (None means all defaults).

    Outputs:
      - TeapotConfig

    Raises:
      - ConfigError: When the mapping fails validation.

    Example:
      >>> build_config({"listen": {"port": 8443}}).listen.port
      8443
    """

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError("configuration root must be a mapping")
    try:
        return TeapotConfig(**raw)
    except ValidationError as exc:
        raise ConfigError(f"invalid configuration: {exc}") from exc


def parse_config_file(config_path: Optional[str]) -> TeapotConfig:
    """Brief: Read and validate a YAML configuration file.

    Inputs:
      - config_path: Path to the YAML file; None yields the defaults.

    Outputs:
      - TeapotConfig

    Raises:
      - ConfigError: When the file is missing, is not valid YAML, or fails
        validation.
    """

    if not config_path:
        return build_config({})
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except OSError as exc:
        raise ConfigError(f"cannot read config {config_path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"config {config_path} is not valid YAML: {exc}") from exc
    return build_config(raw)
