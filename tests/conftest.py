"""
Brief: Global pytest configuration enforcing per-test 10s timeout, plus shared
fixtures for building pipelines without network access.

Inputs:
  - None

Outputs:
  - None
"""

import json
import logging
import os
import signal
import sys
from typing import Dict, List

import pytest

# Ensure 'src' is on sys.path so 'teapot' package is importable in tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
SRC_DIR = os.path.join(ROOT, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from teapot.dns_codec import Question  # noqa: E402
from teapot.errors import UpstreamError  # noqa: E402
from teapot.event_log import EVENT_LOGGER_NAME  # noqa: E402
from teapot.transports.upstream import UpstreamAnswer  # noqa: E402


def _alarm_handler(signum, frame):
    """
    Brief: Signal handler that raises TimeoutError when alarm triggers.

    Inputs:
      - signum: signal number (int)
      - frame: current frame (ignored)

    Outputs:
      - None: Raises TimeoutError to fail the test
    """
    raise TimeoutError("Test exceeded 10 seconds")


# Install handler if supported on this platform
if hasattr(signal, "SIGALRM"):
    signal.signal(signal.SIGALRM, _alarm_handler)


@pytest.fixture(autouse=True)
def enforce_test_timeout():
    """
    Brief: Enforce a hard 10-second timeout for each test.

    Inputs:
      - None

    Outputs:
      - None: Cancels alarm after test
    """
    if hasattr(signal, "SIGALRM"):
        signal.alarm(10)
        try:
            yield
        finally:
            signal.alarm(0)
    else:
        # Fallback: no-op on platforms without SIGALRM
        yield


@pytest.fixture(autouse=True)
def events_propagate():
    """
    Brief: Let caplog see structured events even after init_logging() ran.

    Inputs:
      - None

    Outputs:
      - None: Restores the events logger afterwards.
    """
    events = logging.getLogger(EVENT_LOGGER_NAME)
    saved_handlers = list(events.handlers)
    saved_propagate = events.propagate
    saved_level = events.level
    events.propagate = True
    events.setLevel(logging.INFO)
    for h in saved_handlers:
        events.removeHandler(h)
    try:
        yield
    finally:
        for h in list(events.handlers):
            events.removeHandler(h)
        for h in saved_handlers:
            events.addHandler(h)
        events.propagate = saved_propagate
        events.setLevel(saved_level)


class FakeUpstream:
    """Brief: UpstreamResolver stand-in that counts calls.

    Inputs:
      - answers: Mapping of (domain_name, qtype) to answer bytes.
      - error: Optional UpstreamError raised on every call.

    Outputs:
      - FakeUpstream with .calls list of Question objects.
    """

    def __init__(
        self,
        answers: Dict[tuple, bytes] | None = None,
        error: UpstreamError | None = None,
    ) -> None:
        self.answers = dict(answers or {})
        self.error = error
        self.calls: List[Question] = []
        self.closed = False

    def resolve(self, question: Question, *, started=None) -> UpstreamAnswer:
        self.calls.append(question)
        if self.error is not None:
            raise self.error
        body = self.answers.get(
            (question.domain_name, question.qtype),
            b"answer:" + question.domain_name.encode() + b":" + str(question.qtype).encode(),
        )
        return UpstreamAnswer(body=body, status=200, http_version="HTTP/1.1")

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_upstream() -> FakeUpstream:
    return FakeUpstream()


def parse_events(caplog) -> List[dict]:
    """Brief: Decode JSON events captured from the teapot.events logger."""

    return [
        json.loads(r.getMessage())
        for r in caplog.records
        if r.name == EVENT_LOGGER_NAME
    ]


@pytest.fixture
def upstream_factory():
    """Brief: Expose FakeUpstream to tests that need custom answers or errors."""

    return FakeUpstream


@pytest.fixture
def events(caplog):
    """Brief: Capture INFO+ records and return a callable decoding the events.

    Inputs:
      - caplog: pytest caplog fixture.

    Outputs:
      - Callable returning the list of JSON events captured so far.
    """

    caplog.set_level(logging.INFO, logger=EVENT_LOGGER_NAME)
    return lambda: parse_events(caplog)
