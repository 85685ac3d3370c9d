"""Shared test fixtures."""
import threading

import pytest
import requests

from metrics_bridge.parser import parse_exposition
from metrics_bridge.sources import Source, SourceResult
from metrics_bridge.errors import FetchFailed

MEMINFO = """\
MemTotal:        1000000 kB
MemFree:          250000 kB
MemAvailable:     400000 kB
Buffers:           10000 kB
Cached:           120000 kB
SwapTotal:        512000 kB
SwapFree:         512000 kB
HugePages_Total:       0
Hugepagesize:       2048 kB
"""

PROC_STAT = """\
cpu  100 0 50 800 50 0 0 0 0 0
cpu0 60 0 30 390 20 0 0 0 0 0
cpu1 40 0 20 410 30 0 0 0 0 0
intr 12345 0 0 0
ctxt 98765
btime 1700000000
processes 4321
procs_running 3
procs_blocked 1
softirq 1 2 3
"""


class FakeResponse:
    def __init__(self, text="", status_code=200):
        self.text = text
        self.status_code = status_code


class FakeSession:
    """Stands in for requests.Session; replays a response or raises."""

    def __init__(self, text="", status_code=200, exc=None, delay=0.0):
        self.text = text
        self.status_code = status_code
        self.exc = exc
        self.delay = delay
        self.calls = []
        self.closed = False

    def get(self, url, timeout=None):
        self.calls.append((url, timeout))
        if self.delay:
            threading.Event().wait(self.delay)
        if self.exc is not None:
            raise self.exc
        return FakeResponse(self.text, self.status_code)

    def close(self):
        self.closed = True


class StaticSource(Source):
    """Source returning a scripted sequence of payloads or failures."""

    kind = "static"

    def __init__(self, name, payloads, delay=0.0):
        super().__init__(name)
        self.payloads = list(payloads)
        self.delay = delay
        self.reads = 0

    def read(self):
        if self.delay:
            threading.Event().wait(self.delay)
        payload = self.payloads[min(self.reads, len(self.payloads) - 1)]
        self.reads += 1
        if payload is None:
            return SourceResult.failure(self.name, FetchFailed(self.name, "timed out after 5.0s"))
        return SourceResult.success(self.name, payload)

    def parse(self, raw):
        return parse_exposition(raw)


@pytest.fixture
def meminfo_file(tmp_path):
    path = tmp_path / "meminfo"
    path.write_text(MEMINFO)
    return str(path)


@pytest.fixture
def stat_file(tmp_path):
    path = tmp_path / "stat"
    path.write_text(PROC_STAT)
    return str(path)


@pytest.fixture
def timeout_session():
    return FakeSession(exc=requests.Timeout("read timed out"))
