"""Tests for the exposition, meminfo and /proc/stat parsers."""
import math

import pytest

from conftest import MEMINFO, PROC_STAT
from metrics_bridge.parser import CpuTimes, parse_cpu_stat, parse_exposition, parse_meminfo
from metrics_bridge.series import MetricKind

UPSTREAM = """\
# HELP kafka_requests_total Requests handled.
# TYPE kafka_requests_total counter
kafka_requests_total{topic="orders",partition="0"} 42
kafka_requests_total{topic="orders",partition="1"} 7 1700000000000
# TYPE queue_depth gauge
queue_depth 3.5

up 1
# TYPE latency_seconds histogram
latency_seconds_bucket{le="+Inf"} 10
latency_seconds_count 10
"""

MALFORMED = [
    "bad line without value",
    'metric{unterminated="x" 1',
    'metric{a="1",a="2"} 1',
    "metric NaNx",
    '{a="1"} 2',
    'metric{1a="x"} 2',
    "metric 1 notatimestamp",
]


def by_key(result):
    return {(s.name, tuple(sorted(s.labels.items()))): s for s in result}


def test_parse_well_formed_exposition():
    result = parse_exposition(UPSTREAM)
    samples = by_key(result)

    assert result.skipped == 0
    assert len(result) == 6

    requests = samples[("kafka_requests_total", (("partition", "0"), ("topic", "orders")))]
    assert requests.value == 42.0
    assert requests.kind == MetricKind.COUNTER
    assert requests.help == "Requests handled."

    assert samples[("queue_depth", ())].kind == MetricKind.GAUGE
    assert samples[("up", ())].value == 1.0
    assert samples[("up", ())].kind == MetricKind.GAUGE
    # histogram children are merged as gauges
    assert samples[("latency_seconds_bucket", (("le", "+Inf"),))].kind == MetricKind.GAUGE


def test_malformed_lines_are_skipped_and_counted():
    text = UPSTREAM + "\n".join(MALFORMED) + "\n"
    result = parse_exposition(text)

    assert result.skipped == len(MALFORMED)
    assert len(result) == 6


def test_special_values():
    result = parse_exposition("a NaN\nb +Inf\nc -Inf\nd 1e3\n")
    values = {s.name: s.value for s in result}

    assert math.isnan(values["a"])
    assert values["b"] == math.inf
    assert values["c"] == -math.inf
    assert values["d"] == 1000.0


def test_label_escapes():
    result = parse_exposition('m{path="C:\\\\tmp",msg="say \\"hi\\"\\n",empty=""} 1\n')

    assert result.skipped == 0
    assert result.samples[0].labels == {"path": "C:\\tmp", "msg": 'say "hi"\n', "empty": ""}


def test_counter_without_total_suffix():
    result = parse_exposition("# TYPE restarts_total counter\nrestarts 4\n")
    assert result.samples[0].kind == MetricKind.COUNTER


def test_parse_is_restartable():
    first = parse_exposition(UPSTREAM)
    second = parse_exposition(UPSTREAM)
    assert first.samples == second.samples


def test_meminfo_scenario():
    """Used memory is total minus available, in bytes."""
    result = parse_meminfo("MemTotal: 1000000 kB\nMemAvailable: 400000 kB\n")
    samples = by_key(result)

    assert samples[("memory_used_bytes", ())].value == (1000000 - 400000) * 1024
    assert samples[("memory_total_bytes", ())].value == 1000000 * 1024
    assert all(s.kind == MetricKind.GAUGE for s in result)


def test_meminfo_full_file():
    result = parse_meminfo(MEMINFO)
    samples = by_key(result)

    assert result.skipped == 0
    assert samples[("memory_free_bytes", ())].value == 250000 * 1024
    assert samples[("memory_swap_total_bytes", ())].value == 512000 * 1024
    assert samples[("memory_used_bytes", ())].value == 600000 * 1024


def test_meminfo_without_memavailable():
    result = parse_meminfo(
        "MemTotal: 1000 kB\nMemFree: 100 kB\nBuffers: 50 kB\nCached: 250 kB\n"
    )
    samples = by_key(result)

    assert samples[("memory_available_bytes", ())].value == 400 * 1024
    assert samples[("memory_used_bytes", ())].value == 600 * 1024


def test_meminfo_malformed_lines():
    result = parse_meminfo("MemTotal: 1000 kB\ngarbage\nMemFree: abc kB\nFoo: 1 MB\n")

    assert result.skipped == 3
    assert [s.name for s in result] == ["memory_total_bytes"]


def test_cpu_stat_counters():
    result = parse_cpu_stat(PROC_STAT)
    samples = by_key(result)

    assert result.skipped == 0
    assert result.times == CpuTimes(busy=150, total=1000)
    user = samples[("cpu_seconds_total", (("mode", "user"),))]
    assert user.value == 1.0
    assert user.kind == MetricKind.COUNTER
    assert samples[("cpu_seconds_total", (("cpu", "0"), ("mode", "user")))].value == 0.6
    assert samples[("context_switches_total", ())].value == 98765
    assert samples[("processes_forked_total", ())].kind == MetricKind.COUNTER
    assert samples[("procs_running", ())].value == 3
    assert samples[("procs_blocked", ())].kind == MetricKind.GAUGE


def test_cpu_usage_since_boot_and_since_previous():
    first = parse_cpu_stat(PROC_STAT)
    assert by_key(first)[("cpu_usage_percent", ())].value == pytest.approx(15.0)

    second = parse_cpu_stat("cpu  200 0 100 1550 50 0 0 0 0 0\n", previous=first.times)
    usage = by_key(second)[("cpu_usage_percent", ())].value
    assert usage == pytest.approx(100.0 * 150 / 900)


def test_cpu_usage_omitted_without_progress():
    first = parse_cpu_stat(PROC_STAT)
    second = parse_cpu_stat(PROC_STAT, previous=first.times)
    assert ("cpu_usage_percent", ()) not in by_key(second)


def test_cpu_stat_malformed_lines():
    result = parse_cpu_stat("cpu abc def\ncpuX 1 2 3 4\nctxt notanumber\ncpu 1 2 3 4\n")

    assert result.skipped == 3
    assert result.times == CpuTimes(busy=6, total=10)


def test_non_exposition_number_spellings_are_skipped():
    result = parse_exposition("a 1_000\nb infinity\nc iNf\nd nan\ne 0x10\nf 1.5e-3\ng Inf\n")

    assert result.skipped == 5
    assert {s.name: s.value for s in result} == {"f": 0.0015, "g": math.inf}


def test_help_text_is_unescaped():
    result = parse_exposition("# HELP h a\\\\b line\\nnext \\t\nh 1\n")
    assert result.samples[0].help == "a\\b line\nnext \\t"
