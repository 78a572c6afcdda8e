from __future__ import annotations

import argparse
import base64
import logging
from typing import List

from dnslib import DNSError, DNSRecord

from .blocklist import load_blocklist
from .config.config_parser import TeapotConfig, parse_config_file
from .config.logging_config import init_logging
from .dns_codec import encode_query
from .errors import ConfigError
from .pipeline import DohPipeline
from .plugins.cache.base import CachePlugin
from .plugins.cache.registry import load_cache_plugin
from .request import DOH_PATH_PREFIX, DohRequest
from .response import ResponseBuilder
from .servers.doh_api import create_doh_app, run_doh_server
from .transports.upstream import UpstreamResolver


_UVICORN_LEVELS = {"warn": "warning", "crit": "critical"}


def _uvicorn_level(level: object) -> str:
    name = str(level or "info").lower()
    return _UVICORN_LEVELS.get(name, name)


def build_cache(cfg: TeapotConfig) -> CachePlugin:
    """
    Brief: Instantiate the configured cache backend.

    Inputs:
      - cfg: TeapotConfig

    Outputs:
      - CachePlugin

    Raises:
      - ConfigError: unknown alias, missing optional dependency, or bad options.
    """
    try:
        return load_cache_plugin(cfg.cache.module, cfg.cache.config)
    except (KeyError, TypeError, ValueError, ImportError) as exc:
        raise ConfigError(f"cannot build cache {cfg.cache.module!r}: {exc}") from exc


def build_pipeline(cfg: TeapotConfig) -> DohPipeline:
    """
    Brief: Wire blocklist, cache, upstream and response settings together.

    Inputs:
      - cfg: TeapotConfig

    Outputs:
      - DohPipeline ready to serve requests.

    Raises:
      - ConfigError: blocklist or cache cannot be loaded.
    """
    blocklist = load_blocklist(cfg.blocklist.path)
    cache = build_cache(cfg)
    try:
        upstream = UpstreamResolver.from_config(cfg.upstream)
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc
    responses = ResponseBuilder(
        max_age=cfg.response.max_age, server_name=cfg.response.server_name
    )
    return DohPipeline(
        blocklist, cache, upstream, responses, cache_ttl=cfg.cache.ttl
    )


def run_query(pipeline: DohPipeline, name: str, qtype: str = "A") -> int:
    """
    Brief: Push one GET query through the pipeline and print the outcome.

    Inputs:
      - pipeline: DohPipeline to exercise.
      - name: Domain name to query.
      - qtype: Record type name, e.g. "A" or "AAAA".

    Outputs:
      - int: 0 when the pipeline answered 200 or 418, 1 otherwise.
    """

    wire = encode_query(name, qtype.upper())
    dns = base64.urlsafe_b64encode(wire).rstrip(b"=").decode("ascii")
    response = pipeline.handle(
        DohRequest(
            "GET", DOH_PATH_PREFIX, {"dns": dns}, url=f"{DOH_PATH_PREFIX}?dns={dns}"
        )
    )
    print(f"{response.status} {response.outcome.value}")
    if response.status == 200:
        try:
            print(DNSRecord.parse(response.body))
        except DNSError as exc:
            print(f"(answer is not a parseable DNS message: {exc})")
    return 0 if response.status in (200, 418) else 1


def main(argv: List[str] | None = None) -> int:
    """
    Main entry point for the DoH proxy.
    Parses arguments, loads configuration and the blocklist, and serves HTTP.

    Args:
        argv: Command-line arguments.

    Returns:
        An exit code: 0 on clean shutdown, 1 when startup configuration is
        unusable.

    Example use:
        CLI:
            teapot --config config.yaml
            teapot --config config.yaml --check
            teapot --query example.com --qtype AAAA
    """
    parser = argparse.ArgumentParser(
        description="Blocklisting DNS-over-HTTPS proxy with answer caching"
    )
    parser.add_argument("--config", default=None, help="Path to YAML config")
    parser.add_argument("--host", default=None, help="Override listen.host")
    parser.add_argument("--port", type=int, default=None, help="Override listen.port")
    parser.add_argument(
        "--check",
        action="store_true",
        help="Validate the config and blocklist, then exit without serving.",
    )
    parser.add_argument(
        "--query",
        default=None,
        metavar="NAME",
        help="Resolve NAME once through the pipeline, print the result and exit.",
    )
    parser.add_argument("--qtype", default="A", help="Record type for --query")
    args = parser.parse_args(argv)

    try:
        cfg = parse_config_file(args.config)
    except ConfigError as exc:
        print(str(exc))
        return 1

    init_logging(cfg.logging)
    logger = logging.getLogger("teapot.main")
    if args.config:
        logger.info("Loaded config from %s", args.config)

    try:
        pipeline = build_pipeline(cfg)
    except ConfigError as exc:
        logger.error("Startup failed: %s", exc)
        return 1

    host = args.host or cfg.listen.host
    port = args.port or cfg.listen.port
    try:
        if args.check:
            logger.info(
                "Configuration OK: %d blocklist entries, cache=%s, upstream=%s",
                len(pipeline.blocklist),
                cfg.cache.module,
                cfg.upstream.url,
            )
            return 0
        if args.query:
            return run_query(pipeline, args.query, args.qtype)

        app = create_doh_app(pipeline)
        run_doh_server(
            app,
            host,
            port,
            cert_file=cfg.listen.cert_file,
            key_file=cfg.listen.key_file,
            log_level=_uvicorn_level(cfg.logging.get("level", "info")),
        )
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    finally:
        pipeline.cache.close()
        pipeline.upstream.close()
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
