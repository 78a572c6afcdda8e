"""Exception hierarchy shared by the DoH pipeline.

Brief:
  Every pipeline stage raises one of these typed errors; only the response
  builder decides which HTTP status a given error becomes.

Inputs:
  - None

Outputs:
  - Exception classes
"""

from __future__ import annotations

from typing import Tuple


class TeapotError(Exception):
    """Base class for all errors raised by teapot."""


class DecodeError(TeapotError):
    """
    Brief: The HTTP request did not carry a decodable DNS query.

    Raised for a missing ``dns`` query parameter or invalid base64url text.
    """


class ParseError(TeapotError):
    """
    Brief: The wire-format DNS message could not be parsed.

    Raised for truncated headers, bad label lengths, broken compression
    pointers, and messages without a question.
    """


class UpstreamError(TeapotError):
    """
    Brief: The upstream resolver could not be reached or returned non-2xx.

    Inputs:
      - message: Description of the failure.
      - status: Optional HTTP status returned by the upstream.
      - timed_out: True when a connect/read timeout expired.

    Outputs:
      - UpstreamError instance
    """

    def __init__(
        self, message: str, *, status: int | None = None, timed_out: bool = False
    ) -> None:
        super().__init__(message)
        self.status = status
        self.timed_out = bool(timed_out)


class CacheError(TeapotError):
    """Brief: The cache store failed; callers treat this as a miss."""


class ConfigError(TeapotError):
    """Brief: Startup configuration or blocklist resource is unusable."""


class RouteNotFound(TeapotError):
    """Brief: Request path is not served by the DoH endpoint."""


class MethodNotAllowed(TeapotError):
    """
    Brief: Request method is not GET or POST.

    Inputs:
      - method: The rejected HTTP method.
    """

    allowed: Tuple[str, ...] = ("GET", "POST")

    def __init__(self, method: str) -> None:
        super().__init__(f"method {method} not allowed")
        self.method = method
