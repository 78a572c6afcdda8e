"""
Brief: HTTP-level tests for teapot.servers.doh_api using FastAPI's TestClient.

Inputs:
  - None

Outputs:
  - None
"""

from __future__ import annotations

import base64

import pytest
from fastapi.testclient import TestClient

import teapot.servers.doh_api as doh_api
from teapot.blocklist import Blocklist
from teapot.dns_codec import encode_query
from teapot.pipeline import DohPipeline
from teapot.plugins.cache import InMemoryTTLCache


@pytest.fixture
def client(fake_upstream):
    """Brief: TestClient around a pipeline with a fake upstream.

    Inputs:
      - fake_upstream: counting upstream fixture.

    Outputs:
      - TestClient instance.
    """

    pipeline = DohPipeline(
        Blocklist(["ads.example.com."]), InMemoryTTLCache(), fake_upstream
    )
    return TestClient(doh_api.create_doh_app(pipeline))


def _b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def test_get_dns_query_returns_answer(client, fake_upstream) -> None:
    resp = client.get("/dns-query", params={"dns": _b64(encode_query("example.com"))})

    assert resp.status_code == 200
    assert resp.content == b"answer:example.com.:1"
    assert resp.headers["content-type"] == "application/dns-message"
    assert resp.headers["cache-control"] == "max-age=3709"
    assert resp.headers["content-length"] == str(len(resp.content))
    assert len(fake_upstream.calls) == 1


def test_post_dns_query_and_cache_hit(client, fake_upstream) -> None:
    """Brief: A POSTed query is answered, and its repeat comes from cache.

    Inputs:
      - client: TestClient fixture.
      - fake_upstream: counting upstream fixture.

    Outputs:
      - None; asserts bodies, cache header and upstream call count.
    """

    wire = encode_query("example.org", "AAAA")
    headers = {"content-type": "application/dns-message"}
    first = client.post("/dns-query", content=wire, headers=headers)
    second = client.post("/dns-query", content=wire, headers=headers)

    assert first.status_code == second.status_code == 200
    assert first.content == second.content == b"answer:example.org.:28"
    assert "x-cache-hit" not in first.headers
    assert second.headers["x-cache-hit"] == "served from cache"
    assert len(fake_upstream.calls) == 1


def test_blocked_domain_is_418(client, fake_upstream) -> None:
    resp = client.get(
        "/dns-query", params={"dns": _b64(encode_query("ads.example.com"))}
    )
    assert resp.status_code == 418
    assert resp.headers["content-type"] == "BLOCKED"
    assert resp.content == b""
    assert fake_upstream.calls == []


def test_short_post_body_is_400(client, fake_upstream) -> None:
    resp = client.post("/dns-query", content=b"\x00\x01")
    assert resp.status_code == 400
    assert fake_upstream.calls == []


def test_unknown_path_is_404_html(client) -> None:
    resp = client.get("/unknown-path")
    assert resp.status_code == 404
    assert resp.headers["content-type"].startswith("text/html")
    assert b"404 Not Found" in resp.content


@pytest.mark.parametrize("method", ["PUT", "DELETE", "PATCH"])
def test_other_methods_are_405(client, method: str) -> None:
    resp = client.request(method, "/dns-query")
    assert resp.status_code == 405
    assert resp.headers["allow"] == "GET, POST"


@pytest.mark.parametrize("method", ["TRACE", "PURGE", "PROPFIND", "OPTIONS"])
def test_uncommon_methods_reach_pipeline_as_405(client, events, method: str) -> None:
    """Brief: Every HTTP method, not just the usual verbs, gets the proxy's 405.

    Inputs:
      - client: TestClient fixture.
      - events: captured-events fixture.
      - method: HTTP method outside GET/POST.

    Outputs:
      - None; asserts Allow header, plain body and the terminal event.
    """

    resp = client.request(method, "/dns-query")

    assert resp.status_code == 405
    assert resp.headers["allow"] == "GET, POST"
    assert resp.content == b"This method is not allowed\n"
    terminal = [e for e in events() if e["message"] == "bad request method"]
    assert len(terminal) == 1
    assert terminal[0]["requested_method"] == method


def test_trace_header_reaches_events(client, events) -> None:
    client.get(
        "/dns-query",
        params={"dns": _b64(encode_query("example.com"))},
        headers={"X-Trace-Id": "req-123"},
    )
    logged = events()
    assert logged
    assert {e["trace_id"] for e in logged} == {"req-123"}


def test_unexpected_pipeline_exception_is_500(fake_upstream) -> None:
    class ExplodingPipeline:
        def handle(self, request):
            raise RuntimeError("boom")

    client = TestClient(doh_api.create_doh_app(ExplodingPipeline()))
    resp = client.get("/dns-query")
    assert resp.status_code == 500
    assert resp.content == b"Internal error\n"


def test_run_doh_server_builds_uvicorn_config(monkeypatch: pytest.MonkeyPatch) -> None:
    import uvicorn

    seen = {}

    class FakeServer:
        def __init__(self, config) -> None:
            seen["config"] = config

        def run(self) -> None:
            seen["ran"] = True

    monkeypatch.setattr(uvicorn, "Server", FakeServer)
    doh_api.run_doh_server(
        object(), "127.0.0.1", 8443, cert_file="c.pem", key_file="k.pem"
    )

    cfg = seen["config"]
    assert seen["ran"] is True
    assert (cfg.host, cfg.port) == ("127.0.0.1", 8443)
    assert cfg.ssl_certfile == "c.pem"
    assert cfg.ssl_keyfile == "k.pem"
