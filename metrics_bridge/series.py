"""Data structures for metric identities and samples."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Mapping, Optional, Tuple


class MetricKind(str, Enum):
    """Type of a metric as exposed to scrapers."""
    COUNTER = "counter"
    GAUGE = "gauge"


def type_name(name: str, kind: MetricKind) -> str:
    """Name a sample's family is declared under on the ``# TYPE`` line.

    Counters are always exposed as ``<family>_total``, so a counter ``foo``
    and a gauge ``foo_total`` would share a declaration.
    """
    if kind == MetricKind.COUNTER and not name.endswith("_total"):
        return name + "_total"
    return name


@dataclass(frozen=True)
class MetricIdentity:
    """A metric name plus its label set.

    Labels are stored as a tuple of (key, value) pairs sorted by key, so two
    identities built from the same pairs in a different order compare equal.
    """
    name: str
    labels: Tuple[Tuple[str, str], ...] = ()

    @classmethod
    def of(cls, name: str, labels: Optional[Mapping[str, str]] = None) -> "MetricIdentity":
        """Build an identity from a name and a label mapping."""
        items = tuple(sorted((labels or {}).items()))
        return cls(name, items)

    def label_dict(self) -> Dict[str, str]:
        return dict(self.labels)

    def label_key(self) -> str:
        """Generate a stable key from sorted labels."""
        return ",".join(f"{k}={v}" for k, v in self.labels)


@dataclass
class RawSample:
    """A single parsed sample, before it is merged into the registry."""
    name: str
    labels: Dict[str, str]
    value: float
    kind: MetricKind = MetricKind.GAUGE
    help: str = ""

    def identity(self) -> MetricIdentity:
        return MetricIdentity.of(self.name, self.labels)


@dataclass
class ParseResult:
    """Samples produced by one parse, plus the number of lines dropped."""
    samples: List[RawSample] = field(default_factory=list)
    skipped: int = 0

    def __iter__(self) -> Iterator[RawSample]:
        return iter(self.samples)

    def __len__(self) -> int:
        return len(self.samples)
