"""Cache key derivation for DoH answers."""

from __future__ import annotations

import hashlib

from teapot.blocklist import normalize_domain
from teapot.dns_codec import Question


def cache_key(question: Question) -> str:
    """
    Brief: Deterministic cache key for a question.

    Inputs:
      - question: Parsed Question.

    Outputs:
      - str: SHA-256 hex digest of the normalized name, qtype and qclass, so
        A and AAAA answers for one name never share an entry. Stable across
        processes and hosts, which shared backends such as Redis rely on.

    Example:
      >>> cache_key(Question("example.com.", 1, 1)) == cache_key(Question("EXAMPLE.com", 1, 1))
      True
      >>> cache_key(Question("example.com.", 1, 1)) == cache_key(Question("example.com.", 28, 1))
      False
    """

    material = f"{normalize_domain(question.domain_name)}|{int(question.qtype)}|{int(question.qclass)}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()
