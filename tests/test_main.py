"""
Brief: Tests for teapot.main startup wiring and exit codes.

Inputs:
  - None

Outputs:
  - None
"""

import logging

import pytest
from dnslib import QTYPE, RR, A, DNSRecord

import teapot.main as main_mod
from teapot.blocklist import Blocklist
from teapot.config import logging_config
from teapot.errors import UpstreamError
from teapot.pipeline import DohPipeline
from teapot.plugins.cache import InMemoryTTLCache, NullCache


@pytest.fixture(autouse=True)
def restore_root_logging():
    """Brief: main() calls init_logging; undo its handler changes afterwards.

    Inputs:
      - None

    Outputs:
      - None
    """

    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    try:
        yield
    finally:
        logging_config.stop_event_queue()
        for h in list(root.handlers):
            root.removeHandler(h)
        for h in handlers:
            root.addHandler(h)
        root.setLevel(level)


@pytest.fixture
def served(monkeypatch: pytest.MonkeyPatch):
    """Brief: Replace run_doh_server with a recorder.

    Inputs:
      - monkeypatch: pytest monkeypatch fixture.

    Outputs:
      - dict filled with the arguments main() passed.
    """

    calls = {}

    def fake_run(app, host, port, **kwargs):
        calls.update(app=app, host=host, port=port, **kwargs)

    monkeypatch.setattr(main_mod, "run_doh_server", fake_run)
    return calls


def _write_config(tmp_path, text: str) -> str:
    p = tmp_path / "config.yaml"
    p.write_text(text, encoding="utf-8")
    return str(p)


def test_main_serves_with_config(tmp_path, served) -> None:
    """Brief: A valid config wires the pipeline and starts the server.

    Inputs:
      - tmp_path: pytest tmp_path fixture.
      - served: recorder fixture.

    Outputs:
      - None; asserts return code and server arguments.
    """

    blocklist = tmp_path / "block.txt"
    blocklist.write_text("ads.example\n", encoding="utf-8")
    path = _write_config(
        tmp_path,
        "listen:\n  host: 127.0.0.1\n  port: 9053\n"
        f"blocklist:\n  path: {blocklist}\n"
        "cache:\n  module: none\n"
        "logging:\n  stderr: false\n  events:\n    stdout: false\n",
    )

    assert main_mod.main(["--config", path]) == 0
    assert served["host"] == "127.0.0.1"
    assert served["port"] == 9053
    assert served["cert_file"] is None


def test_main_cli_overrides_listen(served) -> None:
    assert main_mod.main(["--host", "::1", "--port", "8444"]) == 0
    assert (served["host"], served["port"]) == ("::1", 8444)


def test_main_check_does_not_serve(tmp_path, served) -> None:
    path = _write_config(tmp_path, "logging:\n  stderr: false\n")
    assert main_mod.main(["--config", path, "--check"]) == 0
    assert served == {}


@pytest.mark.parametrize(
    "text",
    [
        "listen:\n  port: not-a-port\n",
        "cache:\n  module: no-such-cache\n",
        "blocklist:\n  path: /nonexistent/teapot/blocklist.txt\n",
        "upstream:\n  url: ftp://resolver.example/\n",
    ],
)
def test_main_bad_config_returns_1(tmp_path, served, text: str) -> None:
    path = _write_config(tmp_path, text + "logging:\n  stderr: false\n")
    assert main_mod.main(["--config", path]) == 1
    assert served == {}


def test_main_missing_config_file_returns_1(tmp_path, served) -> None:
    assert main_mod.main(["--config", str(tmp_path / "missing.yaml")]) == 1


def test_main_keyboard_interrupt_returns_0(monkeypatch: pytest.MonkeyPatch) -> None:
    closed = []

    def interrupted(app, host, port, **kwargs):
        raise KeyboardInterrupt

    monkeypatch.setattr(main_mod, "run_doh_server", interrupted)
    monkeypatch.setattr(NullCache, "close", lambda self: closed.append("cache"))
    monkeypatch.setattr(main_mod, "build_cache", lambda cfg: NullCache())

    assert main_mod.main([]) == 0
    assert closed == ["cache"]


def test_build_pipeline_defaults() -> None:
    cfg = main_mod.parse_config_file(None)
    pipeline = main_mod.build_pipeline(cfg)
    assert isinstance(pipeline, DohPipeline)
    assert isinstance(pipeline.cache, InMemoryTTLCache)
    assert pipeline.cache_ttl == 2_628_000
    assert pipeline.responses.max_age == 3709
    assert len(pipeline.blocklist) > 0


def test_run_query_prints_answer(upstream_factory, capsys) -> None:
    """Brief: --query runs one GET through the pipeline and prints the answer.

    Inputs:
      - upstream_factory: FakeUpstream class fixture.
      - capsys: pytest capsys fixture.

    Outputs:
      - None; asserts exit code and printed record.
    """

    reply = DNSRecord.question("example.com", "A").reply()
    reply.add_answer(RR("example.com", QTYPE.A, rdata=A("192.0.2.1"), ttl=60))
    upstream = upstream_factory(answers={("example.com.", 1): reply.pack()})
    pipeline = DohPipeline(Blocklist(["ads.example."]), NullCache(), upstream)

    assert main_mod.run_query(pipeline, "example.com") == 0
    out = capsys.readouterr().out
    assert out.startswith("200 resolved")
    assert "192.0.2.1" in out

    assert main_mod.run_query(pipeline, "ads.example") == 0
    assert capsys.readouterr().out.startswith("418 blocked")


def test_run_query_upstream_failure_returns_1(upstream_factory, capsys) -> None:
    upstream = upstream_factory(error=UpstreamError("down", status=500))
    pipeline = DohPipeline(Blocklist([]), NullCache(), upstream)
    assert main_mod.run_query(pipeline, "example.com", "aaaa") == 1
    assert capsys.readouterr().out.startswith("502 upstream_failed")
