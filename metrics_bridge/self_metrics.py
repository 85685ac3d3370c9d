"""Self-monitoring metrics for the bridge."""
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest


class SelfMetrics:
    """Counters and timings describing the bridge's own collection cycles."""

    def __init__(self, registry=None, prefix="bridge_"):
        if registry is None:
            registry = CollectorRegistry()
        self.registry = registry

        self.cycles_total = Counter(
            f"{prefix}cycles_total",
            "Total number of collection cycles by outcome",
            ["outcome"],
            registry=registry
        )

        self.source_failures_total = Counter(
            f"{prefix}source_failures_total",
            "Total number of failed source reads",
            ["source"],
            registry=registry
        )

        self.parse_skipped_lines_total = Counter(
            f"{prefix}parse_skipped_lines_total",
            "Total number of malformed lines dropped while parsing",
            ["source"],
            registry=registry
        )

        self.kind_mismatches_total = Counter(
            f"{prefix}kind_mismatches_total",
            "Total number of samples rejected for reusing a name with another kind",
            registry=registry
        )

        self.cycle_duration_seconds = Histogram(
            f"{prefix}cycle_duration_seconds",
            "Duration of each collection cycle in seconds",
            buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
            registry=registry
        )

        self.registry_metrics = Gauge(
            f"{prefix}registry_metrics",
            "Number of metrics held in the bridge registry",
            registry=registry
        )

    def record_cycle(self, outcome: str, duration: float):
        """Record a finished cycle."""
        self.cycles_total.labels(outcome=outcome).inc()
        self.cycle_duration_seconds.observe(duration)

    def record_source_failure(self, source: str):
        """Record a failed source read."""
        self.source_failures_total.labels(source=source).inc()

    def record_skipped(self, source: str, count: int):
        """Record dropped lines."""
        if count:
            self.parse_skipped_lines_total.labels(source=source).inc(count)

    def record_kind_mismatch(self):
        self.kind_mismatches_total.inc()

    def set_registry_size(self, count: int):
        self.registry_metrics.set(count)

    def render(self) -> bytes:
        return generate_latest(self.registry)
