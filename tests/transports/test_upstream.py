"""
Brief: Unit tests for the upstream DoH resolver client using a local HTTP
server stub.

Inputs:
  - None

Outputs:
  - None
"""

import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import parse_qs, urlparse

import pytest

from teapot.config.config_parser import UpstreamConfig
from teapot.dns_codec import Question
from teapot.errors import UpstreamError
from teapot.transports.upstream import UpstreamResolver

_SEEN = []
_HITS = {}


class _StubHandler(BaseHTTPRequestHandler):
    def do_GET(self):  # noqa: N802
        parsed = urlparse(self.path)
        qs = parse_qs(parsed.query)
        _SEEN.append((parsed.path, qs, dict(self.headers)))
        name = qs.get("name", [""])[0]
        _HITS[name] = _HITS.get(name, 0) + 1
        if name.startswith("fail.") or (name.startswith("flaky.") and _HITS[name] == 1):
            self.send_response(503)
            self.end_headers()
            return
        if name.startswith("slow."):
            time.sleep(0.5)
        body = ("answer:" + name + ":" + qs.get("type", ["?"])[0]).encode()
        self.send_response(200)
        self.send_header("Content-Type", "application/dns-message")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, fmt, *args):  # quiet
        return


@pytest.fixture(scope="module")
def stub_server():
    srv = ThreadingHTTPServer(("127.0.0.1", 0), _StubHandler)
    srv.daemon_threads = True
    host, port = srv.server_address

    t = threading.Thread(target=srv.serve_forever, daemon=True)
    t.start()
    # Give it a moment to bind
    time.sleep(0.05)
    try:
        yield f"http://{host}:{port}/resolve"
    finally:
        srv.shutdown()
        srv.server_close()


@pytest.fixture(autouse=True)
def clear_seen():
    _SEEN.clear()
    _HITS.clear()
    yield


def test_build_url_default_resolver() -> None:
    url = UpstreamResolver().build_url(Question("example.com.", 28, 1))
    assert url == (
        "https://dns.google/resolve?name=example.com.&type=28"
        "&ct=application/dns-message"
    )


def test_build_url_without_qtype() -> None:
    url = UpstreamResolver(include_qtype=False).build_url(Question("a.example.", 1))
    assert "type=" not in url
    assert "name=a.example." in url


def test_rejects_unsupported_scheme() -> None:
    with pytest.raises(ValueError):
        UpstreamResolver("ftp://resolver.example/")


def test_resolve_success(stub_server, events) -> None:
    """Brief: 200 answers are returned verbatim with upstream metadata.

    Inputs:
      - stub_server: local HTTP stub URL.
      - events: captured-events fixture.

    Outputs:
      - None; asserts body, request parameters and events.
    """

    resolver = UpstreamResolver(stub_server, read_timeout=2.0)
    ans = resolver.resolve(Question("example.com.", 28, 1), started=time.perf_counter())
    resolver.close()

    assert ans.body == b"answer:example.com.:28"
    assert ans.status == 200
    assert ans.http_version == "HTTP/1.0"
    assert ans.headers["content-type"] == "application/dns-message"

    path, qs, headers = _SEEN[0]
    assert path == "/resolve"
    assert qs["name"] == ["example.com."]
    assert qs["ct"] == ["application/dns-message"]
    assert headers["Accept"] == "application/dns-message"
    assert headers["User-Agent"].startswith("teapot/")

    messages = [e["message"] for e in events()]
    assert messages == [
        "Request sent to upstream",
        "Response from upstream",
        "Successfully fetched from upstream",
    ]
    assert events()[1]["http_status"] == "200"
    assert "duration_since_start" in events()[0]


def test_resolve_non_2xx_raises(stub_server) -> None:
    resolver = UpstreamResolver(stub_server)
    with pytest.raises(UpstreamError) as excinfo:
        resolver.resolve(Question("fail.example.", 1, 1))
    assert excinfo.value.status == 503
    assert excinfo.value.timed_out is False


def test_resolve_timeout_raises(stub_server) -> None:
    resolver = UpstreamResolver(stub_server, read_timeout=0.1)
    with pytest.raises(UpstreamError) as excinfo:
        resolver.resolve(Question("slow.example.", 1, 1))
    assert excinfo.value.timed_out is True


def test_resolve_connection_refused_raises() -> None:
    resolver = UpstreamResolver("http://127.0.0.1:9/resolve", connect_timeout=0.5)
    with pytest.raises(UpstreamError) as excinfo:
        resolver.resolve(Question("example.com.", 1, 1))
    assert excinfo.value.status is None


def test_from_config_applies_settings() -> None:
    cfg = UpstreamConfig(
        url="http://resolver.example/q",
        connect_timeout=1.5,
        read_timeout=3.0,
        headers={"X-Api-Key": "k", "user-agent": "custom"},
    )
    resolver = UpstreamResolver.from_config(cfg)
    assert resolver.timeout == (1.5, 3.0)
    assert resolver.headers["X-Api-Key"] == "k"
    assert resolver.headers["user-agent"] == "custom"
    assert "User-Agent" not in resolver.headers
    assert resolver.build_url(Question("x.example.", 1)).startswith(
        "http://resolver.example/q?name=x.example."
    )


def test_retry_budget_recovers_from_one_5xx(stub_server) -> None:
    """Brief: With retries=1 a single 503 is retried and the 200 is returned.

    Inputs:
      - stub_server: local HTTP stub URL; "flaky." names fail once.

    Outputs:
      - None; asserts the answer and two upstream requests.
    """

    resolver = UpstreamResolver(stub_server, retries=1, backoff_factor=0)
    ans = resolver.resolve(Question("flaky.example.", 1, 1))
    resolver.close()

    assert ans.status == 200
    assert ans.body == b"answer:flaky.example.:1"
    assert len(_SEEN) == 2


def test_zero_retries_fails_fast(stub_server) -> None:
    resolver = UpstreamResolver(stub_server, retries=0)
    with pytest.raises(UpstreamError) as excinfo:
        resolver.resolve(Question("flaky.example.", 1, 1))
    assert excinfo.value.status == 503
    assert len(_SEEN) == 1


def test_exhausted_retries_on_read_timeout_is_timeout(stub_server) -> None:
    """Brief: A read timeout that survives every retry still reports timed_out.

    Inputs:
      - stub_server: local HTTP stub URL; "slow." names stall past the timeout.

    Outputs:
      - None; asserts the timeout flag and one request per attempt.
    """

    resolver = UpstreamResolver(
        stub_server, retries=1, backoff_factor=0, read_timeout=0.1
    )
    with pytest.raises(UpstreamError) as excinfo:
        resolver.resolve(Question("slow.example.", 1, 1))
    resolver.close()

    assert excinfo.value.timed_out is True
    assert len(_SEEN) == 2
