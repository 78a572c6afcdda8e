"""DoH request resolution pipeline.

Brief:
  Request normalizer -> DNS codec -> blocklist (short-circuit) -> cache
  (short-circuit on hit) -> upstream resolver -> cache write-through ->
  response builder. Each request is handled synchronously on one thread;
  the cache backend is the only shared mutable state.

Inputs:
  - DohRequest values from the HTTP layer

Outputs:
  - DohResponse values, plus exactly one terminal structured log event per
    request
"""

from __future__ import annotations

import http
import logging
from typing import Optional

from teapot import event_log
from teapot.blocklist import Blocklist
from teapot.cache_keys import cache_key
from teapot.config.config_parser import DEFAULT_CACHE_TTL
from teapot.dns_codec import Question, parse_query
from teapot.errors import (
    CacheError,
    DecodeError,
    MethodNotAllowed,
    ParseError,
    RouteNotFound,
    UpstreamError,
)
from teapot.plugins.cache.base import CachePlugin
from teapot.request import DohRequest, extract_query_bytes
from teapot.response import DohResponse, ResponseBuilder
from teapot.transports.upstream import UpstreamResolver

logger = logging.getLogger(__name__)


def _status_label(code: int) -> str:
    try:
        s = http.HTTPStatus(code)
    except ValueError:
        return str(code)
    return f"{s.value} {s.phrase}"


class DohPipeline:
    """
    Brief: Resolve DoH requests against blocklist, cache and upstream.

    Inputs (constructor):
      - blocklist: Shared read-only Blocklist loaded at startup.
      - cache: CachePlugin used for lookups and write-through.
      - upstream: UpstreamResolver for cache misses.
      - responses: ResponseBuilder (defaults to max-age 3709).
      - cache_ttl: Storage TTL in seconds for new cache entries.

    Outputs:
      - DohPipeline with handle(request) -> DohResponse

    Example:
      >>> # pipeline = DohPipeline(load_blocklist(), InMemoryTTLCache(), UpstreamResolver())
      >>> # pipeline.handle(DohRequest("GET", "/dns-query", {"dns": "..."}))
    """

    def __init__(
        self,
        blocklist: Blocklist,
        cache: CachePlugin,
        upstream: UpstreamResolver,
        responses: Optional[ResponseBuilder] = None,
        *,
        cache_ttl: int = DEFAULT_CACHE_TTL,
    ) -> None:
        self.blocklist = blocklist
        self.cache = cache
        self.upstream = upstream
        self.responses = responses or ResponseBuilder()
        self.cache_ttl = int(cache_ttl)

    def handle(self, request: DohRequest) -> DohResponse:
        """
        Brief: Run the full pipeline for one request.

        Inputs:
          - request: DohRequest

        Outputs:
          - DohResponse; never raises for client input or upstream failures.
        """

        try:
            return self._resolve(request)
        except MethodNotAllowed as exc:
            resp = self.responses.from_error(exc)
            event_log.warn(
                "bad request method",
                {
                    "duration_since_start": request.elapsed_us(),
                    "http_status": _status_label(resp.status),
                    "requested_method": exc.method,
                },
            )
            return resp
        except RouteNotFound as exc:
            resp = self.responses.from_error(exc)
            event_log.warn(
                "bad url",
                {
                    "duration_since_start": request.elapsed_us(),
                    "http_status": _status_label(resp.status),
                    "requested_url": request.url or request.path,
                },
            )
            return resp
        except (DecodeError, ParseError) as exc:
            resp = self.responses.from_error(exc)
            event_log.error(
                "Rejected malformed query",
                {
                    "duration_since_start": request.elapsed_us(),
                    "http_status": _status_label(resp.status),
                    "error_type": type(exc).__name__,
                    "error": exc,
                },
            )
            return resp
        except UpstreamError as exc:
            resp = self.responses.from_error(exc)
            event_log.error(
                "Upstream resolution failed",
                {
                    "duration_since_start": request.elapsed_us(),
                    "http_status": _status_label(resp.status),
                    "upstream_status": exc.status,
                    "timed_out": exc.timed_out,
                    "error": exc,
                },
            )
            return resp
        except Exception as exc:
            logger.exception("unexpected pipeline error")
            resp = self.responses.from_error(exc)
            event_log.error(
                "Request failed",
                {
                    "duration_since_start": request.elapsed_us(),
                    "http_status": _status_label(resp.status),
                    "error": exc,
                },
            )
            return resp

    def _resolve(self, request: DohRequest) -> DohResponse:
        wire = extract_query_bytes(request)
        question = parse_query(wire).first_question
        domain = question.domain_name

        if self.blocklist.is_blocked(domain):
            event_log.info(
                "Blocked request",
                {"url": domain, "duration_since_start": request.elapsed_us()},
            )
            return self.responses.blocked()

        key = cache_key(question)
        cached = self._cache_get(key, question, request)
        if cached is not None:
            event_log.info(
                "Sent URL from Cache",
                {
                    "duration_since_start": request.elapsed_us(),
                    "request_url": domain,
                    "qtype": question.qtype_name,
                },
            )
            return self.responses.answer(cached, cached=True)

        answer = self.upstream.resolve(question, started=request.started)
        self._cache_store(key, answer.body, question, request)

        event_log.info(
            "Sent Response to User",
            {
                "duration_since_start": request.elapsed_us(),
                "request_url": domain,
                "qtype": question.qtype_name,
            },
        )
        return self.responses.answer(answer.body)

    def _cache_get(
        self, key: str, question: Question, request: DohRequest
    ) -> Optional[bytes]:
        try:
            return self.cache.get(key)
        except CacheError as exc:
            event_log.warn(
                "Error reading URL from Cache",
                {
                    "duration_since_start": request.elapsed_us(),
                    "request_url": question.domain_name,
                    "error": exc,
                },
            )
            return None

    def _cache_store(
        self, key: str, body: bytes, question: Question, request: DohRequest
    ) -> None:
        # The client always receives the upstream bytes it just fetched; the
        # stored value only matters for later hits.
        try:
            self.cache.get_or_set(key, body, self.cache_ttl)
        except CacheError as exc:
            event_log.warn(
                "Error Storing URL into Cache",
                {
                    "duration_since_start": request.elapsed_us(),
                    "request_url": question.domain_name,
                    "error": exc,
                },
            )
            return
        event_log.info(
            "Stored URL Into Cache",
            {
                "duration_since_start": request.elapsed_us(),
                "request_url": question.domain_name,
            },
        )
