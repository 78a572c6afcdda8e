import importlib.metadata
import time
import urllib.parse
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.exceptions import TimeoutError as Urllib3TimeoutError
from urllib3.util.retry import Retry

from teapot import event_log
from teapot.config.config_parser import DEFAULT_UPSTREAM_URL, DNS_MESSAGE_CT
from teapot.dns_codec import Question
from teapot.errors import UpstreamError

try:
    TEAPOT_VERSION = importlib.metadata.version("teapot-doh")
except importlib.metadata.PackageNotFoundError:  # pragma: no cover - source tree
    TEAPOT_VERSION = "unknown"

_RETRY_STATUSES = (429, 500, 502, 503, 504)
_HTTP_VERSIONS = {9: "HTTP/0.9", 10: "HTTP/1.0", 11: "HTTP/1.1", 20: "HTTP/2"}


@dataclass
class UpstreamAnswer:
    """
    Brief: Result of one successful upstream exchange.

    Inputs (fields):
      - body: Wire-format DNS answer, passed to the client unmodified.
      - status: HTTP status code.
      - http_version: Protocol label such as "HTTP/1.1".
      - headers: Response headers with lower-cased names.
    """

    body: bytes
    status: int
    http_version: str
    headers: Dict[str, str] = field(default_factory=dict)


def _since_us(started: Optional[float]) -> Optional[int]:
    if started is None:
        return None
    return int((time.perf_counter() - started) * 1_000_000)


def _is_timeout(exc: requests.RequestException) -> bool:
    if isinstance(exc, requests.Timeout):
        return True
    # With a Retry adapter mounted, an exhausted read timeout surfaces as
    # ConnectionError wrapping MaxRetryError(reason=ReadTimeoutError).
    for arg in exc.args:
        if isinstance(getattr(arg, "reason", None), Urllib3TimeoutError):
            return True
    return False


def _with_duration(context: Dict[str, object], started: Optional[float]):
    elapsed = _since_us(started)
    if elapsed is not None:
        context["duration_since_start"] = elapsed
    return context


class UpstreamResolver:
    """
    Brief: Client for a public DoH resolver's name/type query API.

    Inputs (constructor):
      - url: Base endpoint, default https://dns.google/resolve.
      - connect_timeout: Seconds to establish TCP/TLS.
      - read_timeout: Seconds until the first byte and between later bytes.
      - retries: Additional attempts after the first (0 = fail fast).
      - backoff_factor: Exponential backoff base between attempts.
      - include_qtype: Add ``type=<qtype>`` so the answer matches the query.
      - verify: Verify TLS certificates.
      - headers: Extra request headers.
      - session: Optional pre-built requests.Session (tests).

    Outputs:
      - UpstreamResolver with resolve(question).

    Notes:
      - Raises UpstreamError for non-2xx responses or transport failures
        once the retry budget is spent. There is no fallback resolver.
    """

    def __init__(
        self,
        url: str = DEFAULT_UPSTREAM_URL,
        *,
        connect_timeout: float = 2.0,
        read_timeout: float = 5.0,
        retries: int = 0,
        backoff_factor: float = 0.2,
        include_qtype: bool = True,
        verify: bool = True,
        headers: Optional[Mapping[str, str]] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        parsed = urllib.parse.urlparse(url)
        if parsed.scheme not in ("https", "http"):
            raise ValueError(f"Unsupported upstream URL scheme: {parsed.scheme!r}")
        self.url = url
        self.timeout = (float(connect_timeout), float(read_timeout))
        self.include_qtype = bool(include_qtype)
        self.verify = bool(verify)

        extra_headers = {k: v for (k, v) in (headers or {}).items()}
        if not any(k.lower() == "user-agent" for k in extra_headers):
            extra_headers["User-Agent"] = f"teapot/{TEAPOT_VERSION}"
        if not any(k.lower() == "accept" for k in extra_headers):
            extra_headers["Accept"] = DNS_MESSAGE_CT
        self.headers = extra_headers

        if session is None:
            session = requests.Session()
            retry = Retry(
                total=int(retries),
                connect=int(retries),
                read=int(retries),
                status=int(retries),
                backoff_factor=float(backoff_factor),
                status_forcelist=_RETRY_STATUSES,
                allowed_methods=frozenset({"GET"}),
                raise_on_status=False,
            )
            adapter = HTTPAdapter(max_retries=retry)
            session.mount("https://", adapter)
            session.mount("http://", adapter)
        self.session = session

    @classmethod
    def from_config(cls, cfg) -> "UpstreamResolver":
        """Brief: Build from a teapot.config.config_parser.UpstreamConfig."""
        return cls(
            cfg.url,
            connect_timeout=cfg.connect_timeout,
            read_timeout=cfg.read_timeout,
            retries=cfg.retries,
            backoff_factor=cfg.backoff_factor,
            include_qtype=cfg.include_qtype,
            verify=cfg.verify,
            headers=cfg.headers,
        )

    def build_url(self, question: Question) -> str:
        """
        Brief: Compose the upstream request URL for a question.

        Inputs:
          - question: Question to forward.

        Outputs:
          - str: e.g. https://dns.google/resolve?name=example.com.&type=1&ct=application/dns-message

        Example:
          >>> UpstreamResolver().build_url(Question("example.com.", 28, 1))
          'https://dns.google/resolve?name=example.com.&type=28&ct=application/dns-message'
        """
        params = [("name", question.domain_name)]
        if self.include_qtype:
            params.append(("type", str(int(question.qtype))))
        params.append(("ct", DNS_MESSAGE_CT))
        sep = "&" if "?" in self.url else "?"
        return self.url + sep + urllib.parse.urlencode(params, safe="/.")

    def resolve(
        self, question: Question, *, started: Optional[float] = None
    ) -> UpstreamAnswer:
        """
        Brief: Forward one question and return the wire-format answer.

        Inputs:
          - question: First question of the client query.
          - started: perf_counter() at request start, for log durations.

        Outputs:
          - UpstreamAnswer

        Raises:
          - UpstreamError: timeout (timed_out=True), connection/TLS failure, or
            non-2xx status.
        """
        url = self.build_url(question)
        event_log.info(
            "Request sent to upstream", _with_duration({"url": url}, started)
        )

        try:
            response = self.session.get(
                url, headers=self.headers, timeout=self.timeout, verify=self.verify
            )
        except requests.RequestException as exc:
            if _is_timeout(exc):
                raise UpstreamError(
                    f"upstream timed out: {exc}", timed_out=True
                ) from exc
            raise UpstreamError(f"upstream request failed: {exc}") from exc

        status = int(response.status_code)
        raw_version = getattr(getattr(response, "raw", None), "version", None)
        http_version = _HTTP_VERSIONS.get(raw_version, str(raw_version or "unknown"))
        resp_headers = {str(k).lower(): str(v) for k, v in response.headers.items()}

        context: Dict[str, object] = dict(resp_headers)
        context.update({"http_status": status, "http_version": http_version})
        event_log.info("Response from upstream", _with_duration(context, started))

        if not 200 <= status < 300:
            raise UpstreamError(
                f"upstream returned HTTP {status} {response.reason or ''}".rstrip(),
                status=status,
            )

        try:
            body = response.content
        except requests.RequestException as exc:
            raise UpstreamError(f"upstream body read failed: {exc}") from exc

        event_log.info(
            "Successfully fetched from upstream",
            _with_duration({"http_status": status}, started),
        )
        return UpstreamAnswer(
            body=body, status=status, http_version=http_version, headers=resp_headers
        )

    def close(self) -> None:
        self.session.close()
