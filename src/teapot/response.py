"""Mapping of pipeline outcomes to HTTP responses.

Brief:
  The only place where pipeline results and errors become HTTP status codes
  and headers. Every response carries an exact Content-Length.

Inputs:
  - Answer bytes or a pipeline exception

Outputs:
  - DohResponse values consumed by the HTTP layer
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from importlib import resources
from typing import Dict

from teapot.config.config_parser import DEFAULT_CLIENT_MAX_AGE, DNS_MESSAGE_CT
from teapot.errors import (
    DecodeError,
    MethodNotAllowed,
    ParseError,
    RouteNotFound,
    UpstreamError,
)

_TEXT_PLAIN = "text/plain; charset=utf-8"
_TEXT_HTML = "text/html; charset=utf-8"


class Outcome(str, Enum):
    RESOLVED = "resolved"
    CACHED = "cached"
    BLOCKED = "blocked"
    NOT_FOUND = "not_found"
    METHOD_NOT_ALLOWED = "method_not_allowed"
    BAD_REQUEST = "bad_request"
    UPSTREAM_FAILED = "upstream_failed"


@dataclass
class DohResponse:
    """
    Brief: Framework-independent HTTP response.

    Inputs (fields):
      - status: HTTP status code.
      - headers: Header mapping; Content-Length is always set.
      - body: Response payload.
      - outcome: Which pipeline branch produced it.
    """

    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    outcome: Outcome = Outcome.RESOLVED

    def __post_init__(self) -> None:
        self.headers["Content-Length"] = str(len(self.body))


@lru_cache(maxsize=1)
def not_found_page() -> bytes:
    """Brief: The packaged 404.html page, read once."""

    return resources.files("teapot.data").joinpath("404.html").read_bytes()


class ResponseBuilder:
    """
    Brief: Build DohResponse values for each pipeline outcome.

    Inputs (constructor):
      - max_age: Client-facing Cache-Control max-age for answers (default 3709).
        Independent of how long the cache stores the answer.
      - server_name: Value of the x-doh-response header.

    Outputs:
      - ResponseBuilder
    """

    def __init__(
        self, max_age: int = DEFAULT_CLIENT_MAX_AGE, server_name: str = "teapot"
    ) -> None:
        self.max_age = int(max_age)
        self.server_name = server_name

    def answer(self, body: bytes, *, cached: bool = False) -> DohResponse:
        headers = {
            "Content-Type": DNS_MESSAGE_CT,
            "Cache-Control": f"max-age={self.max_age}",
        }
        if self.server_name:
            headers["x-doh-response"] = self.server_name
        if cached:
            headers["x-cache-hit"] = "served from cache"
        return DohResponse(
            200,
            headers,
            bytes(body),
            Outcome.CACHED if cached else Outcome.RESOLVED,
        )

    def blocked(self) -> DohResponse:
        return DohResponse(
            418,
            {
                "Content-Type": "BLOCKED",
                "Cache-Control": "max-age=0",
                "x-blocked-on-request": "true",
            },
            b"",
            Outcome.BLOCKED,
        )

    def not_found(self) -> DohResponse:
        return DohResponse(
            404, {"Content-Type": _TEXT_HTML}, not_found_page(), Outcome.NOT_FOUND
        )

    def method_not_allowed(self, allowed=MethodNotAllowed.allowed) -> DohResponse:
        return DohResponse(
            405,
            {"Allow": ", ".join(allowed), "Content-Type": _TEXT_PLAIN},
            b"This method is not allowed\n",
            Outcome.METHOD_NOT_ALLOWED,
        )

    def from_error(self, exc: Exception) -> DohResponse:
        """
        Brief: Map a pipeline error to its HTTP response.

        Inputs:
          - exc: Error raised by a pipeline stage.

        Outputs:
          - DohResponse: 404/405 for routing, 400 for bad client input,
            502 (504 on timeout) for upstream failures, 500 otherwise.
        """

        if isinstance(exc, RouteNotFound):
            return self.not_found()
        if isinstance(exc, MethodNotAllowed):
            return self.method_not_allowed(exc.allowed)
        if isinstance(exc, DecodeError):
            return self._text(400, "Invalid DNS query encoding\n", Outcome.BAD_REQUEST)
        if isinstance(exc, ParseError):
            return self._text(400, "Malformed DNS query\n", Outcome.BAD_REQUEST)
        if isinstance(exc, UpstreamError):
            if exc.timed_out:
                return self._text(
                    504, "Upstream resolver timed out\n", Outcome.UPSTREAM_FAILED
                )
            return self._text(
                502, "Upstream resolver failed\n", Outcome.UPSTREAM_FAILED
            )
        return self._text(500, "Internal error\n", Outcome.UPSTREAM_FAILED)

    @staticmethod
    def _text(status: int, text: str, outcome: Outcome) -> DohResponse:
        return DohResponse(
            status, {"Content-Type": _TEXT_PLAIN}, text.encode("utf-8"), outcome
        )
