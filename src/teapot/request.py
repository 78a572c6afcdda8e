"""Extraction of wire-format DNS queries from DoH HTTP requests (RFC 8484)."""

from __future__ import annotations

import base64
import binascii
import time
from dataclasses import dataclass, field
from typing import Mapping, Optional

from teapot import event_log
from teapot.errors import DecodeError, MethodNotAllowed, RouteNotFound

DOH_PATH_PREFIX = "/dns-query"
ALLOWED_METHODS = ("GET", "POST")


@dataclass
class DohRequest:
    """
    Brief: Framework-independent view of an inbound HTTP request.

    Inputs (fields):
      - method: HTTP method (any case).
      - path: URL path, e.g. "/dns-query".
      - query_params: Decoded query string parameters.
      - body: Raw request body.
      - url: Full request URL, for logging only.
      - started: time.perf_counter() value when the request arrived.
    """

    method: str
    path: str
    query_params: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""
    url: str = ""
    started: float = field(default_factory=time.perf_counter)

    def elapsed_us(self) -> int:
        return int((time.perf_counter() - self.started) * 1_000_000)


def b64url_decode_nopad(s: str) -> bytes:
    """
    Brief: Strictly decode base64url; padding is optional.

    Inputs:
      - s: base64url text, normally without '='

    Outputs:
      - bytes: decoded binary

    Raises:
      - DecodeError: characters outside the base64url alphabet or a length
        that cannot be valid base64.

    Example:
      >>> b64url_decode_nopad('AQI')
      b'\\x01\\x02'
    """
    if not isinstance(s, str):
        raise DecodeError("dns parameter must be text")
    if "+" in s or "/" in s:
        raise DecodeError("dns parameter is not base64url")
    s = s.rstrip("=")
    pad = "=" * ((4 - len(s) % 4) % 4)
    try:
        return base64.b64decode((s + pad).encode("ascii"), altchars=b"-_", validate=True)
    except (binascii.Error, UnicodeEncodeError, ValueError) as exc:
        raise DecodeError(f"dns parameter is not valid base64url: {exc}") from exc


def check_route(request: DohRequest) -> str:
    """
    Brief: Validate method and path, returning the normalized method.

    Raises:
      - MethodNotAllowed: method other than GET/POST (checked first).
      - RouteNotFound: path without the /dns-query prefix.
    """
    method = request.method.upper()
    if method not in ALLOWED_METHODS:
        raise MethodNotAllowed(method)
    if not request.path.startswith(DOH_PATH_PREFIX):
        raise RouteNotFound(request.path)
    return method


def extract_query_bytes(request: DohRequest) -> bytes:
    """
    Brief: Produce the raw wire-format query carried by a DoH request.

    Inputs:
      - request: DohRequest

    Outputs:
      - bytes: Wire-format DNS query (not yet parsed).

    Raises:
      - MethodNotAllowed, RouteNotFound: see check_route().
      - DecodeError: GET without a usable ``dns`` parameter.
    """
    method = check_route(request)

    event_log.info(
        "Incoming DNS Request",
        {
            "request_type": method,
            "duration_since_start": request.elapsed_us(),
            "request_url": request.url or request.path,
        },
    )

    if method == "POST":
        return bytes(request.body)

    dns_param: Optional[str] = request.query_params.get("dns")
    if not dns_param:
        raise DecodeError("missing dns query parameter")
    return b64url_decode_nopad(dns_param)
