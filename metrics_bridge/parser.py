"""Line-oriented parsers turning raw source text into samples.

All parsers are pure: they never touch the registry, and parsing the same
text twice yields the same samples. Lines that cannot be understood are
dropped and counted in ``ParseResult.skipped``.
"""
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
import math
import re

from metrics_bridge.series import MetricKind, ParseResult, RawSample

METRIC_NAME_RE = re.compile(r'[a-zA-Z_:][a-zA-Z0-9_:]*')
LABEL_PAIR_RE = re.compile(r'\s*([a-zA-Z_][a-zA-Z0-9_]*)\s*=\s*"((?:[^"\\]|\\.)*)"\s*')
FLOAT_RE = re.compile(r'[+-]?(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?')

# Sample suffixes that belong to a family declared under the base name
_FAMILY_SUFFIXES = ("_total", "_bucket", "_count", "_sum", "_created", "_info")

_ESCAPES = {"\\": "\\", '"': '"', "n": "\n"}


class _MalformedLine(ValueError):
    pass


def parse_value(text: str) -> float:
    """Parse an exposition value, accepting NaN and signed infinities."""
    if text in ("+Inf", "Inf"):
        return math.inf
    if text == "-Inf":
        return -math.inf
    if text == "NaN":
        return math.nan
    if not FLOAT_RE.fullmatch(text):
        raise _MalformedLine(f"non-numeric value {text!r}")
    return float(text)


def _unescape(value: str) -> str:
    out = []
    i = 0
    while i < len(value):
        ch = value[i]
        if ch == "\\" and i + 1 < len(value):
            nxt = value[i + 1]
            if nxt not in _ESCAPES:
                raise _MalformedLine(f"bad escape \\{nxt}")
            out.append(_ESCAPES[nxt])
            i += 2
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def _unescape_help(text: str) -> str:
    """HELP text only escapes backslash and newline; other sequences stay literal."""
    out = []
    i = 0
    while i < len(text):
        if text[i] == "\\" and i + 1 < len(text) and text[i + 1] in ("\\", "n"):
            out.append("\\" if text[i + 1] == "\\" else "\n")
            i += 2
            continue
        out.append(text[i])
        i += 1
    return "".join(out)


def _parse_labels(body: str) -> Dict[str, str]:
    """Parse the inside of ``{...}`` into a label dict."""
    labels: Dict[str, str] = {}
    pos = 0
    body = body.strip()
    while pos < len(body):
        match = LABEL_PAIR_RE.match(body, pos)
        if not match:
            raise _MalformedLine(f"bad label syntax near {body[pos:]!r}")
        key, raw_value = match.group(1), match.group(2)
        if key in labels:
            raise _MalformedLine(f"duplicate label {key}")
        labels[key] = _unescape(raw_value)
        pos = match.end()
        if pos < len(body):
            if body[pos] != ",":
                raise _MalformedLine(f"expected ',' near {body[pos:]!r}")
            pos += 1
    return labels


def _find_label_end(line: str, start: int) -> int:
    """Index of the closing brace, honoring quoted values."""
    in_quotes = False
    i = start
    while i < len(line):
        ch = line[i]
        if in_quotes:
            if ch == "\\":
                i += 2
                continue
            if ch == '"':
                in_quotes = False
        elif ch == '"':
            in_quotes = True
        elif ch == "}":
            return i
        i += 1
    raise _MalformedLine("unterminated label set")


def parse_sample_line(line: str) -> Tuple[str, Dict[str, str], float]:
    """Split one exposition sample line into name, labels and value."""
    match = METRIC_NAME_RE.match(line)
    if not match:
        raise _MalformedLine("missing metric name")
    name = match.group(0)
    pos = match.end()

    labels: Dict[str, str] = {}
    if pos < len(line) and line[pos] == "{":
        end = _find_label_end(line, pos + 1)
        labels = _parse_labels(line[pos + 1:end])
        pos = end + 1

    rest = line[pos:]
    if not rest or not rest[0].isspace():
        raise _MalformedLine("missing separator before value")
    parts = rest.split()
    # value, optionally followed by a millisecond timestamp
    if len(parts) not in (1, 2):
        raise _MalformedLine("unexpected trailing fields")
    value = parse_value(parts[0])
    if len(parts) == 2:
        try:
            int(parts[1])
        except ValueError:
            raise _MalformedLine(f"bad timestamp {parts[1]!r}")
    return name, labels, value


def _family_of(name: str, types: Dict[str, str]) -> Optional[str]:
    if name in types:
        return name
    # Counters without a _total suffix are declared as name_total
    if types.get(name + "_total") == "counter":
        return name + "_total"
    for suffix in _FAMILY_SUFFIXES:
        if name.endswith(suffix) and name[:-len(suffix)] in types:
            return name[:-len(suffix)]
    return None


def parse_exposition(text: str) -> ParseResult:
    """Parse Prometheus text exposition into samples.

    ``# TYPE`` comments decide the kind of the samples of that family: only
    counters keep counter semantics; gauges, untyped metrics and the child
    series of histograms and summaries are treated as gauges.
    """
    result = ParseResult()
    types: Dict[str, str] = {}
    helps: Dict[str, str] = {}

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        if line.startswith("#"):
            parts = line[1:].split(None, 2)
            if len(parts) >= 3 and parts[0] == "TYPE":
                types[parts[1]] = parts[2].strip().lower()
            elif len(parts) >= 2 and parts[0] == "HELP":
                helps[parts[1]] = _unescape_help(parts[2]) if len(parts) == 3 else ""
            continue

        try:
            name, labels, value = parse_sample_line(line)
        except _MalformedLine:
            result.skipped += 1
            continue

        family = _family_of(name, types)
        kind = MetricKind.GAUGE
        if family is not None and types[family] == "counter":
            kind = MetricKind.COUNTER
        help_text = helps.get(family or name, helps.get(name, ""))
        result.samples.append(RawSample(name, labels, value, kind, help_text))

    return result


# --- /proc/meminfo ---------------------------------------------------------

MEMINFO_GAUGES = {
    "MemTotal": "memory_total_bytes",
    "MemFree": "memory_free_bytes",
    "MemAvailable": "memory_available_bytes",
    "Buffers": "memory_buffers_bytes",
    "Cached": "memory_cached_bytes",
    "SwapTotal": "memory_swap_total_bytes",
    "SwapFree": "memory_swap_free_bytes",
}


def parse_meminfo(text: str) -> ParseResult:
    """Parse ``/proc/meminfo`` into byte-valued gauges.

    Derives ``memory_used_bytes`` as MemTotal minus MemAvailable. Kernels
    without MemAvailable get it estimated from MemFree, Buffers and Cached.
    """
    result = ParseResult()
    values: Dict[str, float] = {}

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        key, sep, rest = line.partition(":")
        fields = rest.split()
        if not sep or not key or not fields or len(fields) > 2:
            result.skipped += 1
            continue
        try:
            value = float(int(fields[0]))
        except ValueError:
            result.skipped += 1
            continue
        if len(fields) == 2:
            if fields[1].lower() != "kb":
                result.skipped += 1
                continue
            value *= 1024
        values[key.strip()] = value

    if "MemAvailable" not in values and all(
        k in values for k in ("MemFree", "Buffers", "Cached")
    ):
        values["MemAvailable"] = values["MemFree"] + values["Buffers"] + values["Cached"]

    for key, metric_name in MEMINFO_GAUGES.items():
        if key in values:
            result.samples.append(
                RawSample(metric_name, {}, values[key], MetricKind.GAUGE)
            )

    if "MemTotal" in values and "MemAvailable" in values:
        result.samples.append(
            RawSample(
                "memory_used_bytes",
                {},
                values["MemTotal"] - values["MemAvailable"],
                MetricKind.GAUGE,
                "Memory in use, total minus available.",
            )
        )

    return result


# --- /proc/stat ------------------------------------------------------------

CPU_MODES = ("user", "nice", "system", "idle", "iowait", "irq", "softirq", "steal")
IDLE_MODES = ("idle", "iowait")

STAT_COUNTERS = {
    "ctxt": "context_switches_total",
    "processes": "processes_forked_total",
}
STAT_GAUGES = {
    "procs_running": "procs_running",
    "procs_blocked": "procs_blocked",
}


@dataclass(frozen=True)
class CpuTimes:
    """Cumulative tick totals of the aggregate ``cpu`` line."""
    busy: int
    total: int


@dataclass
class CpuParseResult(ParseResult):
    """Parse result of ``/proc/stat`` carrying totals for the next call."""
    times: Optional[CpuTimes] = None


def _cpu_ticks(fields: List[str]) -> Dict[str, int]:
    if len(fields) < 4:
        raise _MalformedLine("cpu line needs at least four counters")
    try:
        ticks = [int(f) for f in fields[:len(CPU_MODES)]]
    except ValueError:
        raise _MalformedLine("non-numeric cpu counter")
    return dict(zip(CPU_MODES, ticks))


def parse_cpu_stat(
    text: str,
    previous: Optional[CpuTimes] = None,
    ticks_per_second: int = 100,
) -> CpuParseResult:
    """Parse ``/proc/stat`` into CPU time counters and a usage gauge.

    Args:
        text: Contents of ``/proc/stat``
        previous: Totals returned by the previous call; usage is computed
            over the interval since then, or since boot when None
        ticks_per_second: USER_HZ of the host

    Returns:
        Samples plus the current totals in ``times``
    """
    result = CpuParseResult()

    for raw_line in text.splitlines():
        fields = raw_line.split()
        if not fields:
            continue
        key, values = fields[0], fields[1:]

        if key.startswith("cpu"):
            core = key[3:]
            if core and not core.isdigit():
                result.skipped += 1
                continue
            try:
                ticks = _cpu_ticks(values)
            except _MalformedLine:
                result.skipped += 1
                continue
            for mode, count in ticks.items():
                labels = {"mode": mode} if not core else {"cpu": core, "mode": mode}
                result.samples.append(
                    RawSample(
                        "cpu_seconds_total",
                        labels,
                        count / ticks_per_second,
                        MetricKind.COUNTER,
                        "Seconds the CPUs spent in each mode.",
                    )
                )
            if not core:
                total = sum(ticks.values())
                busy = total - sum(ticks.get(m, 0) for m in IDLE_MODES)
                result.times = CpuTimes(busy, total)
            continue

        if key in STAT_COUNTERS or key in STAT_GAUGES:
            if len(values) != 1 or not values[0].isdigit():
                result.skipped += 1
                continue
            if key in STAT_COUNTERS:
                result.samples.append(
                    RawSample(STAT_COUNTERS[key], {}, float(values[0]), MetricKind.COUNTER)
                )
            else:
                result.samples.append(
                    RawSample(STAT_GAUGES[key], {}, float(values[0]), MetricKind.GAUGE)
                )

    if result.times is not None:
        busy, total = result.times.busy, result.times.total
        if previous is not None:
            busy -= previous.busy
            total -= previous.total
        if total > 0:
            result.samples.append(
                RawSample(
                    "cpu_usage_percent",
                    {},
                    100.0 * busy / total,
                    MetricKind.GAUGE,
                    "Share of non-idle CPU time since the previous read.",
                )
            )

    return result
