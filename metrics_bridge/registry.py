"""Thread-safe registry of named, labeled metrics."""
from dataclasses import dataclass, replace
from typing import Dict, List, Optional
import logging
import math
import threading

from metrics_bridge.errors import InvalidDelta, KindMismatch
from metrics_bridge.series import MetricIdentity, MetricKind, type_name

logger = logging.getLogger(__name__)


@dataclass
class Metric:
    """Registry entry: identity, kind and current value."""
    identity: MetricIdentity
    kind: MetricKind
    value: float = 0.0
    help: str = ""

    @property
    def name(self) -> str:
        return self.identity.name

    @property
    def labels(self) -> Dict[str, str]:
        return self.identity.label_dict()


class MetricRegistry:
    """Process-wide table of counters and gauges with get-or-create lookups.

    Every read and write goes through a single lock, so a snapshot always
    reflects one instant and never a half-applied update. Returned metrics
    are copies; mutating them does not touch the registry.
    """

    def __init__(self):
        self._metrics: Dict[MetricIdentity, Metric] = {}
        # One kind per metric name across all label sets
        self._kinds: Dict[str, MetricKind] = {}
        # One kind per exposed family declaration
        self._declared: Dict[str, MetricKind] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._metrics)

    def _get_or_create_locked(self, identity: MetricIdentity, kind: MetricKind, help: str = "") -> Metric:
        existing_kind = self._kinds.get(identity.name)
        if existing_kind is not None and existing_kind != kind:
            raise KindMismatch(identity.name, existing_kind.value, kind.value)
        declared = type_name(identity.name, kind)
        declared_kind = self._declared.get(declared)
        if declared_kind is not None and declared_kind != kind:
            raise KindMismatch(declared, declared_kind.value, kind.value)

        metric = self._metrics.get(identity)
        if metric is None:
            metric = Metric(identity, kind, 0.0, help)
            self._metrics[identity] = metric
            self._kinds[identity.name] = kind
            self._declared[declared] = kind
            logger.debug(f"Registered {kind.value} {identity.name}{{{identity.label_key()}}}")
        elif help and not metric.help:
            metric.help = help
        return metric

    def get_or_create(self, identity: MetricIdentity, kind: MetricKind, help: str = "") -> Metric:
        """Return the metric for identity, creating it at zero if absent."""
        with self._lock:
            return replace(self._get_or_create_locked(identity, kind, help))

    def get(self, identity: MetricIdentity) -> Optional[Metric]:
        """Return a copy of the metric for identity, or None."""
        with self._lock:
            metric = self._metrics.get(identity)
            return replace(metric) if metric is not None else None

    def set_gauge(self, identity: MetricIdentity, value: float, help: str = "") -> None:
        """Set a gauge's value (last write wins)."""
        with self._lock:
            metric = self._get_or_create_locked(identity, MetricKind.GAUGE, help)
            metric.value = float(value)

    def increment_counter(self, identity: MetricIdentity, delta: float, help: str = "") -> None:
        """Add a finite, non-negative delta to a counter."""
        if not math.isfinite(delta) or delta < 0:
            raise InvalidDelta(identity.name, delta)
        with self._lock:
            metric = self._get_or_create_locked(identity, MetricKind.COUNTER, help)
            metric.value += float(delta)

    def snapshot(self) -> List[Metric]:
        """Point-in-time copy of every metric, ordered by name then labels."""
        with self._lock:
            metrics = [replace(m) for m in self._metrics.values()]
        metrics.sort(key=lambda m: (m.identity.name, m.identity.labels))
        return metrics
