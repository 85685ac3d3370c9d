"""Wires configuration, sources, registry and coordinator together."""
from typing import List, Optional, Tuple
import logging
import threading

from metrics_bridge.config import Config
from metrics_bridge.coordinator import CollectionCoordinator, CycleReport, run_collector_thread
from metrics_bridge.exposition import render
from metrics_bridge.registry import MetricRegistry
from metrics_bridge.self_metrics import SelfMetrics
from metrics_bridge.sources import CpuStatSource, MeminfoSource, RemoteExpositionSource, Source

logger = logging.getLogger(__name__)


def build_sources(config: Config) -> List[Source]:
    """Create one reader per configured source."""
    sources: List[Source] = []
    for upstream in config.upstreams:
        sources.append(
            RemoteExpositionSource(
                upstream.name,
                upstream.url,
                timeout_s=upstream.timeout_s,
                prefix=upstream.prefix,
                labels=upstream.labels,
            )
        )
    if config.local.meminfo.enabled:
        sources.append(MeminfoSource(path=config.local.meminfo.path))
    if config.local.cpu.enabled:
        sources.append(
            CpuStatSource(
                path=config.local.cpu.path,
                ticks_per_second=config.local.cpu.ticks_per_second,
            )
        )
    return sources


class BridgeApp:
    """Owns the registry and the collection pipeline for the process lifetime."""

    def __init__(self, config: Config, sources: Optional[List[Source]] = None):
        self.config = config
        self.registry = MetricRegistry()
        self.self_metrics = None
        if config.exporter.self_metrics:
            self.self_metrics = SelfMetrics(prefix=config.exporter.self_metrics_prefix)

        self.sources = sources if sources is not None else build_sources(config)
        self.coordinator = CollectionCoordinator(
            self.registry,
            self.sources,
            max_workers=config.collection.max_workers,
            self_metrics=self.self_metrics,
        )
        self._collector_thread: Optional[threading.Thread] = None

        logger.info(
            f"Bridge initialized with {len(self.sources)} sources: "
            f"{', '.join(s.name for s in self.sources)}"
        )

    @property
    def scrape_triggers_cycle(self) -> bool:
        return self.config.collection.mode == "on_scrape"

    def start(self):
        """Start the background collection loop in interval mode."""
        if self.scrape_triggers_cycle or self._collector_thread is not None:
            return
        self._collector_thread = threading.Thread(
            target=run_collector_thread,
            args=(self.coordinator, self.config.collection.interval_s),
            daemon=True,
            name="collector",
        )
        self._collector_thread.start()
        logger.info("Collection loop started")

    def stop(self):
        self.coordinator.close()

    def scrape(self) -> Tuple[bytes, str]:
        """Produce the exposition payload for one scrape request."""
        if self.scrape_triggers_cycle:
            report: Optional[CycleReport] = self.coordinator.collect()
        else:
            report = self.coordinator.last_report

        failures = report.failures() if report is not None else []
        if report is not None and report.all_failed:
            failures.insert(0, f"collection failed for all sources in cycle {report.cycle}")

        payload, content_type = render(self.registry.snapshot(), failures)
        if self.self_metrics:
            payload += self.self_metrics.render()
        return payload, content_type

    def status(self) -> dict:
        report = self.coordinator.last_report
        return {
            "state": self.coordinator.state.value,
            "cycle_count": self.coordinator.cycle_count,
            "registry_metrics": len(self.registry),
            "mode": self.config.collection.mode,
            "sources": [s.describe() for s in self.sources],
            "last_cycle": report.to_dict() if report is not None else None,
        }
