"""Tests for the source readers."""
import requests

from conftest import FakeSession
from metrics_bridge.errors import FetchFailed, ReadFailed
from metrics_bridge.sources import CpuStatSource, MeminfoSource, RemoteExpositionSource


def test_remote_fetch_success():
    session = FakeSession(text="up 1\n")
    source = RemoteExpositionSource("rp", "http://rp:9644/metrics", timeout_s=2.5, session=session)

    result = source.read()

    assert result.ok
    assert result.raw == "up 1\n"
    assert session.calls == [("http://rp:9644/metrics", 2.5)]


def test_remote_fetch_timeout(timeout_session):
    source = RemoteExpositionSource("rp", "http://rp/metrics", session=timeout_session)

    result = source.read()

    assert not result.ok
    assert result.raw is None
    assert isinstance(result.error, FetchFailed)
    assert "timed out" in result.error.reason


def test_remote_fetch_connection_error():
    session = FakeSession(exc=requests.ConnectionError("refused"))
    result = RemoteExpositionSource("rp", "http://rp/metrics", session=session).read()

    assert isinstance(result.error, FetchFailed)
    assert result.error.source == "rp"


def test_remote_fetch_non_success_status():
    session = FakeSession(text="oops", status_code=503)
    result = RemoteExpositionSource("rp", "http://rp/metrics", session=session).read()

    assert not result.ok
    assert "503" in result.error.reason


def test_remote_prefix_and_labels():
    source = RemoteExpositionSource(
        "rp",
        "http://rp/metrics",
        prefix="redpanda_",
        labels={"cluster": "prod", "topic": "default"},
        session=FakeSession(),
    )

    result = source.parse('requests{topic="orders"} 5\n')
    sample = result.samples[0]

    assert sample.name == "redpanda_requests"
    assert sample.labels == {"cluster": "prod", "topic": "orders"}


def test_remote_close_closes_session():
    session = FakeSession()
    RemoteExpositionSource("rp", "http://rp/metrics", session=session).close()
    assert session.closed


def test_meminfo_source(meminfo_file):
    source = MeminfoSource(path=meminfo_file)
    result = source.read()

    assert result.ok
    names = [s.name for s in source.parse(result.raw)]
    assert "memory_used_bytes" in names


def test_missing_file_is_read_failed(tmp_path):
    result = MeminfoSource(path=str(tmp_path / "missing")).read()

    assert not result.ok
    assert isinstance(result.error, ReadFailed)


def test_cpu_source_tracks_previous_totals(stat_file, tmp_path):
    source = CpuStatSource(path=stat_file)
    first = source.parse(source.read().raw)
    usage = {s.name: s.value for s in first}["cpu_usage_percent"]
    assert usage == 15.0

    later = tmp_path / "stat2"
    later.write_text("cpu  200 0 100 1550 50 0 0 0 0 0\n")
    source.path = str(later)
    second = source.parse(source.read().raw)
    usage = {s.name: s.value for s in second}["cpu_usage_percent"]
    assert round(usage, 3) == round(100.0 * 150 / 900, 3)
