"""Source readers: one per kind of metric source.

A reader produces a ``SourceResult`` for one collection cycle and knows how
to parse its own raw payload. Readers never raise for source-level problems;
failures come back inside the result so the coordinator can carry on with
the other sources.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional
import logging
import threading

import requests

from metrics_bridge.errors import FetchFailed, ReadFailed, SourceError
from metrics_bridge.parser import CpuTimes, parse_cpu_stat, parse_exposition, parse_meminfo
from metrics_bridge.series import ParseResult

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 5.0


@dataclass
class SourceResult:
    """Raw payload of one source read, or the reason it failed."""
    source: str
    raw: Optional[str] = None
    error: Optional[SourceError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, source: str, raw: str) -> "SourceResult":
        return cls(source, raw=raw)

    @classmethod
    def failure(cls, source: str, error: SourceError) -> "SourceResult":
        return cls(source, error=error)


class Source(ABC):
    """Base class for source readers."""

    kind = "unknown"

    def __init__(self, name: str):
        self.name = name

    @abstractmethod
    def read(self) -> SourceResult:
        """Fetch the raw payload for this cycle."""
        pass

    @abstractmethod
    def parse(self, raw: str) -> ParseResult:
        """Turn a raw payload into samples."""
        pass

    def describe(self) -> Dict[str, str]:
        return {"name": self.name, "kind": self.kind}

    def close(self) -> None:
        pass


class RemoteExpositionSource(Source):
    """Fetches Prometheus text exposition from an upstream HTTP endpoint."""

    kind = "remote"

    def __init__(
        self,
        name: str,
        url: str,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        prefix: str = "",
        labels: Optional[Dict[str, str]] = None,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(name)
        self.url = url
        self.timeout_s = timeout_s
        self.prefix = prefix
        self.labels = dict(labels or {})
        self.session = session or requests.Session()

    def read(self) -> SourceResult:
        try:
            response = self.session.get(self.url, timeout=self.timeout_s)
        except requests.Timeout:
            return SourceResult.failure(
                self.name, FetchFailed(self.name, f"timed out after {self.timeout_s}s")
            )
        except requests.RequestException as e:
            return SourceResult.failure(self.name, FetchFailed(self.name, str(e)))

        if not 200 <= response.status_code < 300:
            return SourceResult.failure(
                self.name,
                FetchFailed(self.name, f"HTTP {response.status_code} from {self.url}"),
            )
        return SourceResult.success(self.name, response.text)

    def parse(self, raw: str) -> ParseResult:
        result = parse_exposition(raw)
        if self.prefix or self.labels:
            for sample in result.samples:
                sample.name = f"{self.prefix}{sample.name}"
                # Upstream labels win over constant labels
                sample.labels = {**self.labels, **sample.labels}
        return result

    def describe(self) -> Dict[str, str]:
        return {"name": self.name, "kind": self.kind, "url": self.url}

    def close(self) -> None:
        self.session.close()


class FileSource(Source):
    """Reads a kernel pseudo-file as text."""

    kind = "file"

    def __init__(self, name: str, path: str):
        super().__init__(name)
        self.path = path

    def read(self) -> SourceResult:
        try:
            with open(self.path, "r") as f:
                return SourceResult.success(self.name, f.read())
        except OSError as e:
            return SourceResult.failure(
                self.name, ReadFailed(self.name, f"cannot read {self.path}: {e.strerror or e}")
            )

    def describe(self) -> Dict[str, str]:
        return {"name": self.name, "kind": self.kind, "path": self.path}


class MeminfoSource(FileSource):
    """Memory gauges from ``/proc/meminfo``."""

    kind = "meminfo"

    def __init__(self, name: str = "meminfo", path: str = "/proc/meminfo"):
        super().__init__(name, path)

    def parse(self, raw: str) -> ParseResult:
        return parse_meminfo(raw)


class CpuStatSource(FileSource):
    """CPU time counters and usage from ``/proc/stat``.

    Keeps the previous tick totals so usage covers the interval since the
    last successful parse.
    """

    kind = "cpu"

    def __init__(self, name: str = "cpu", path: str = "/proc/stat", ticks_per_second: int = 100):
        super().__init__(name, path)
        self.ticks_per_second = ticks_per_second
        self._previous: Optional[CpuTimes] = None
        self._lock = threading.Lock()

    def parse(self, raw: str) -> ParseResult:
        with self._lock:
            result = parse_cpu_stat(raw, self._previous, self.ticks_per_second)
            if result.times is not None:
                self._previous = result.times
        return result
