"""Exact-match domain blocklist.

Brief:
  Loads a static list of domain names once per process into a frozenset and
  answers membership queries in O(1). Matching is exact on the normalized
  FQDN; subdomains of a listed name are not blocked.

Inputs:
  - A JSON array of domain strings (the packaged default) or a text list file

Outputs:
  - Blocklist instances shared read-only by all requests
"""

from __future__ import annotations

import json
import logging
import os
from importlib import resources
from typing import Iterable, Iterator, Optional

from teapot.errors import ConfigError

logger = logging.getLogger(__name__)

PACKAGED_BLOCKLIST = "blocklist.json"


def normalize_domain(name: str) -> str:
    """
    Brief: Normalize a domain name to lower-case FQDN form.

    Inputs:
      - name: Domain with or without a trailing dot.

    Outputs:
      - str: e.g. "Ads.Example.COM" -> "ads.example.com."

    Example:
      >>> normalize_domain("Ads.Example.COM")
      'ads.example.com.'
    """

    n = str(name).strip().lower()
    if not n:
        return ""
    return n if n.endswith(".") else n + "."


class Blocklist:
    """
    Brief: Immutable set of blocked FQDNs.

    Inputs (constructor):
      - domains: Iterable of domain strings; each is normalized once.
      - source: Optional label used in log messages.

    Outputs:
      - Blocklist with is_blocked() and len().

    Example:
      >>> bl = Blocklist(["ads.example.com"])
      >>> bl.is_blocked("ads.example.com.")
      True
      >>> bl.is_blocked("cdn.ads.example.com.")
      False
    """

    __slots__ = ("_domains", "source")

    def __init__(self, domains: Iterable[str], source: str = "<memory>") -> None:
        self._domains = frozenset(
            d for d in (normalize_domain(x) for x in domains) if d
        )
        self.source = source

    def is_blocked(self, domain_name: str) -> bool:
        return normalize_domain(domain_name) in self._domains

    def __contains__(self, domain_name: object) -> bool:
        return isinstance(domain_name, str) and self.is_blocked(domain_name)

    def __len__(self) -> int:
        return len(self._domains)

    def __repr__(self) -> str:
        return f"Blocklist(source={self.source!r}, entries={len(self)})"


def _normalize_token(token: str) -> str:
    """
    Brief: Strip Adblock-style wrappers and hosts-file addresses from a list token.

    Inputs:
      - token: One non-comment line of a list file.

    Outputs:
      - str: Bare domain, or "" when the line carries modifiers we cannot honour.
    """

    parts = token.split()
    # hosts format: "0.0.0.0 ads.example.com"
    if len(parts) >= 2:
        t = parts[1]
    else:
        t = parts[0] if parts else ""
    if t.startswith("||"):
        t = t[2:]
        caret_idx = t.find("^")
        if caret_idx != -1:
            if t[caret_idx + 1 :].strip():
                return ""
            t = t[:caret_idx]
    return t


def _iter_text_domains(lines: Iterable[str]) -> Iterator[str]:
    for raw in lines:
        line = raw.split("#", 1)[0].strip()
        if not line or line.startswith("!") or line.startswith("["):
            continue
        domain = _normalize_token(line)
        if domain:
            yield domain


def parse_blocklist(text: str, *, source: str = "<memory>") -> Blocklist:
    """
    Brief: Parse blocklist file content.

    Inputs:
      - text: Either a JSON array of strings or a plain-text list (one domain
        per line; '#' and '!' comments; hosts and '||domain^' forms accepted).
      - source: Label for diagnostics.

    Outputs:
      - Blocklist

    Raises:
      - ConfigError: JSON content that is not an array of strings.
    """

    stripped = text.lstrip()
    if stripped.startswith("["):
        try:
            data = json.loads(stripped)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"blocklist {source} is not valid JSON: {exc}") from exc
        if not isinstance(data, list) or not all(isinstance(d, str) for d in data):
            raise ConfigError(f"blocklist {source} must be a JSON array of strings")
        return Blocklist(data, source=source)
    return Blocklist(_iter_text_domains(text.splitlines()), source=source)


def load_blocklist(path: Optional[str] = None) -> Blocklist:
    """
    Brief: Load the blocklist once at process start.

    Inputs:
      - path: Optional file path; None loads the packaged JSON resource.

    Outputs:
      - Blocklist

    Raises:
      - ConfigError: Missing, unreadable, or malformed resource. Callers treat
        this as fatal since the proxy cannot filter without it.
    """

    if path:
        expanded = os.path.abspath(os.path.expanduser(path))
        try:
            with open(expanded, "r", encoding="utf-8") as fh:
                text = fh.read()
        except (OSError, UnicodeDecodeError) as exc:
            raise ConfigError(f"cannot read blocklist {expanded}: {exc}") from exc
        source = expanded
    else:
        source = f"teapot.data/{PACKAGED_BLOCKLIST}"
        try:
            text = (
                resources.files("teapot.data")
                .joinpath(PACKAGED_BLOCKLIST)
                .read_text(encoding="utf-8")
            )
        except (OSError, ModuleNotFoundError, UnicodeDecodeError) as exc:
            raise ConfigError(f"packaged blocklist unavailable: {exc}") from exc

    blocklist = parse_blocklist(text, source=source)
    logger.info("Loaded %d blocklist entries from %s", len(blocklist), source)
    return blocklist
