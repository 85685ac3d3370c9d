"""Collection cycle coordinator and scheduler."""
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple
import logging
import math
import threading
import time

from metrics_bridge.errors import InvalidDelta, KindMismatch, SourceError
from metrics_bridge.registry import MetricRegistry
from metrics_bridge.self_metrics import SelfMetrics
from metrics_bridge.series import MetricIdentity, MetricKind, RawSample
from metrics_bridge.sources import Source, SourceResult

logger = logging.getLogger(__name__)


class CycleState(str, Enum):
    """Lifecycle of a collection cycle."""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIALLY_FAILED = "partially_failed"


@dataclass
class SourceReport:
    """What one source contributed to a cycle."""
    source: str
    ok: bool
    samples: int = 0
    skipped: int = 0
    error: Optional[str] = None


@dataclass
class CycleReport:
    """Outcome of one collection cycle."""
    cycle: int
    outcome: CycleState
    started_at: float
    duration_s: float = 0.0
    sources: List[SourceReport] = field(default_factory=list)
    kind_mismatches: int = 0

    @property
    def all_failed(self) -> bool:
        return bool(self.sources) and not any(s.ok for s in self.sources)

    def failures(self) -> List[str]:
        """One message per failed source, suitable for exposition comments."""
        return [
            f"source {s.source} failed: {s.error}" for s in self.sources if not s.ok
        ]

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["outcome"] = self.outcome.value
        data["all_failed"] = self.all_failed
        return data


class CollectionCoordinator:
    """Runs collection cycles over all sources and merges into the registry.

    Sources are read in parallel; their samples are merged one source at a
    time while the cycle lock is held, so two cycles never interleave writes.
    Only one cycle runs at a time: callers arriving while a cycle is in flight
    wait for it and share its report.

    Counters are reported by every source as cumulative totals. The
    coordinator remembers the last total seen per source and identity and
    increments the registry counter by the difference. A total that goes
    backwards is treated as a source restart and applied in full.
    """

    def __init__(
        self,
        registry: MetricRegistry,
        sources: Sequence[Source],
        max_workers: int = 4,
        self_metrics: Optional[SelfMetrics] = None,
    ):
        self.registry = registry
        self.sources = list(sources)
        self.self_metrics = self_metrics
        self.state = CycleState.IDLE
        self.cycle_count = 0
        self.last_report: Optional[CycleReport] = None
        self.running = False

        self._cycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._last_totals: Dict[Tuple[str, MetricIdentity], float] = {}
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, min(max_workers, len(self.sources) or 1)),
            thread_name_prefix="source-reader",
        )

    def collect(self) -> CycleReport:
        """Run one cycle, or wait for the one in flight and return its report."""
        if self._cycle_lock.acquire(blocking=False):
            try:
                return self._run_cycle()
            finally:
                self._cycle_lock.release()

        logger.debug("Cycle already running, waiting for its result")
        with self._cycle_lock:
            if self.last_report is not None:
                return self.last_report
            return self._run_cycle()

    def _read(self, source: Source) -> SourceResult:
        try:
            return source.read()
        except Exception as e:
            logger.error(f"Source '{source.name}' raised while reading: {e}", exc_info=True)
            return SourceResult.failure(source.name, SourceError(source.name, str(e)))

    def _run_cycle(self) -> CycleReport:
        started = time.time()
        self.state = CycleState.RUNNING
        self.cycle_count += 1
        report = CycleReport(self.cycle_count, CycleState.RUNNING, started)

        results = list(self._executor.map(self._read, self.sources))

        for source, result in zip(self.sources, results):
            report.sources.append(self._merge(source, result, report))

        report.outcome = (
            CycleState.COMPLETED
            if all(s.ok for s in report.sources)
            else CycleState.PARTIALLY_FAILED
        )
        report.duration_s = time.time() - started
        self.state = report.outcome
        self.last_report = report

        if self.self_metrics:
            self.self_metrics.record_cycle(report.outcome.value, report.duration_s)
            self.self_metrics.set_registry_size(len(self.registry))

        if report.all_failed:
            logger.warning(f"Cycle {report.cycle}: every source failed")
        logger.debug(
            f"Cycle {report.cycle} {report.outcome.value} in {report.duration_s:.3f}s: "
            f"{sum(s.samples for s in report.sources)} samples from {len(report.sources)} sources"
        )
        return report

    def _merge(self, source: Source, result: SourceResult, report: CycleReport) -> SourceReport:
        if not result.ok:
            logger.warning(f"Source '{source.name}' unavailable: {result.error.reason}")
            if self.self_metrics:
                self.self_metrics.record_source_failure(source.name)
            return SourceReport(source.name, False, error=result.error.reason)

        try:
            parsed = source.parse(result.raw)
        except Exception as e:
            logger.error(f"Error parsing source '{source.name}': {e}", exc_info=True)
            if self.self_metrics:
                self.self_metrics.record_source_failure(source.name)
            return SourceReport(source.name, False, error=f"parse error: {e}")

        if parsed.skipped:
            logger.debug(f"Source '{source.name}': skipped {parsed.skipped} malformed lines")
        if self.self_metrics:
            self.self_metrics.record_skipped(source.name, parsed.skipped)

        applied = 0
        for sample in parsed:
            try:
                if self._apply(source.name, sample):
                    applied += 1
            except KindMismatch as e:
                report.kind_mismatches += 1
                logger.error(f"Source '{source.name}': {e}")
                if self.self_metrics:
                    self.self_metrics.record_kind_mismatch()

        return SourceReport(source.name, True, samples=applied, skipped=parsed.skipped)

    def _apply(self, source_name: str, sample: RawSample) -> bool:
        identity = sample.identity()

        if sample.kind == MetricKind.GAUGE:
            self.registry.set_gauge(identity, sample.value, sample.help)
            return True

        if not math.isfinite(sample.value):
            logger.debug(f"Ignoring non-finite counter {sample.name}={sample.value}")
            return False

        key = (source_name, identity)
        last = self._last_totals.get(key)
        delta = sample.value if last is None else sample.value - last
        if delta < 0:
            logger.warning(
                f"Counter {sample.name}{{{identity.label_key()}}} from '{source_name}' "
                f"went backwards ({last} -> {sample.value}), treating as reset"
            )
            delta = sample.value

        try:
            self.registry.increment_counter(identity, delta, sample.help)
        except InvalidDelta as e:
            logger.warning(f"Source '{source_name}': {e}")
            return False
        self._last_totals[key] = sample.value
        return True

    def run(self, interval_s: float):
        """Collect every interval_s seconds until stop() is called."""
        self.running = True
        self._stop_event.clear()
        logger.info(f"Starting collection loop, interval {interval_s}s")

        while self.running:
            cycle_start = time.time()
            try:
                self.collect()
            except Exception as e:
                logger.error(f"Error in collection cycle: {e}", exc_info=True)

            cycle_duration = time.time() - cycle_start
            sleep_time = max(0, interval_s - cycle_duration)
            if sleep_time > 0:
                self._stop_event.wait(sleep_time)
            else:
                logger.warning(
                    f"Cycle took {cycle_duration:.3f}s, longer than interval {interval_s}s"
                )

    def stop(self):
        """Stop the collection loop."""
        logger.info("Stopping collection loop")
        self.running = False
        self._stop_event.set()

    def close(self):
        self.stop()
        self._executor.shutdown(wait=False)
        for source in self.sources:
            source.close()


def run_collector_thread(coordinator: CollectionCoordinator, interval_s: float):
    """Run the collection loop in a separate thread."""
    try:
        coordinator.run(interval_s)
    except Exception as e:
        logger.error(f"Collector thread error: {e}", exc_info=True)
        coordinator.stop()
