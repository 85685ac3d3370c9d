"""Renders registry snapshots as Prometheus text exposition."""
from itertools import groupby
from typing import Iterable, List, Sequence, Tuple

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest
from prometheus_client.core import Metric as MetricFamily

from metrics_bridge.registry import Metric
from metrics_bridge.series import MetricKind


class _SnapshotCollector:
    """Collector that replays a fixed list of metric families."""

    def __init__(self, families: List[MetricFamily]):
        self._families = families

    def collect(self):
        return iter(self._families)


def family_name(name: str, kind: MetricKind) -> str:
    """Family name for a sample name; counters drop their ``_total`` suffix."""
    if kind == MetricKind.COUNTER and name.endswith("_total") and name != "_total":
        return name[:-len("_total")]
    return name


def build_families(snapshot: Sequence[Metric]) -> List[MetricFamily]:
    """Group a snapshot into prometheus_client metric families.

    Sample names are kept exactly as registered; labels are sorted by key.
    """
    families = {}
    ordered = sorted(snapshot, key=lambda m: (m.identity.name, m.identity.labels))
    for (name, kind), group in groupby(ordered, key=lambda m: (m.identity.name, m.kind)):
        metrics = list(group)
        fname = family_name(name, kind)
        family = families.get((fname, kind))
        if family is None:
            doc = next((m.help for m in metrics if m.help), "")
            family = MetricFamily(fname, doc, kind.value)
            families[(fname, kind)] = family
        for metric in metrics:
            family.add_sample(name, dict(metric.identity.labels), metric.value)
    return [families[key] for key in sorted(families, key=lambda k: (k[0], k[1].value))]


def render(snapshot: Sequence[Metric], failures: Iterable[str] = ()) -> Tuple[bytes, str]:
    """Serialize a snapshot into an exposition payload and its content type.

    Each failure message is appended as a comment line, so a scrape always
    gets a valid body even when no source produced data.
    """
    registry = CollectorRegistry(auto_describe=False)
    registry.register(_SnapshotCollector(build_families(snapshot)))
    payload = generate_latest(registry)
    for failure in failures:
        comment = " ".join(str(failure).split())
        payload += f"# {comment}\n".encode("utf-8")
    return payload, CONTENT_TYPE_LATEST
