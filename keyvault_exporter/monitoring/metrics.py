"""
Self-monitoring metrics for the exporter.

These describe the exporter's own behaviour (cycle outcomes, durations,
skipped ticks) and are updated live, unlike the Key Vault families which
only change when a snapshot is published.

Usage:
    metrics = ExporterMetrics(registry.registry)
    with metrics.cycle_timer():
        ...
    metrics.record_cycle("success", vaults=12, observations=340)
"""
import time
from typing import Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
)

from keyvault_exporter import __version__

CYCLE_RESULTS = ("success", "aborted", "timeout")

NAMESPACE = "azurerm_keyvault_exporter"


class ExporterMetrics:
    """
    Convenience wrapper around the exporter's own Prometheus metrics.

    Metrics are created on an explicit registry so several exporters (or
    tests) can live in one process.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry or CollectorRegistry()

        # -- Counters --
        self.cycles_total = Counter(
            f"{NAMESPACE}_cycles_total",
            "Collection cycles by result",
            ["result"],
            registry=self.registry,
        )
        self.ticks_skipped_total = Counter(
            f"{NAMESPACE}_ticks_skipped_total",
            "Scheduler ticks skipped because a cycle was still running",
            registry=self.registry,
        )
        self.resource_failures_total = Counter(
            f"{NAMESPACE}_resource_failures_total",
            "Sub-resource listings that failed, by scope",
            ["scope"],
            registry=self.registry,
        )

        # -- Histograms --
        self.cycle_duration = Histogram(
            f"{NAMESPACE}_cycle_duration_seconds",
            "Duration of a collection cycle in seconds",
            buckets=(1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1800.0),
            registry=self.registry,
        )

        # -- Gauges --
        self.last_success_timestamp = Gauge(
            f"{NAMESPACE}_last_success_timestamp_seconds",
            "Unix time of the last published snapshot",
            registry=self.registry,
        )
        self.vaults_collected = Gauge(
            f"{NAMESPACE}_vaults_collected",
            "Vaults contained in the last published snapshot",
            registry=self.registry,
        )
        self.observations_published = Gauge(
            f"{NAMESPACE}_observations_published",
            "Samples contained in the last published snapshot",
            registry=self.registry,
        )

        # -- Info --
        self.build_info = Info(
            f"{NAMESPACE}_build",
            "Key Vault exporter build information",
            registry=self.registry,
        )
        self.build_info.info({"version": __version__})

        for result in CYCLE_RESULTS:
            self.cycles_total.labels(result=result)

    def cycle_timer(self):
        """
        Context manager measuring a cycle.

        Usage:
            with metrics.cycle_timer():
                orchestrator.run_cycle()
        """
        return self.cycle_duration.time()

    def record_cycle(self, result: str, vaults: int = 0, observations: int = 0) -> None:
        """Count a finished cycle; successful cycles also update the snapshot gauges."""
        if result not in CYCLE_RESULTS:
            raise ValueError(f"Unknown cycle result: {result}")
        self.cycles_total.labels(result=result).inc()
        if result == "success":
            self.last_success_timestamp.set(time.time())
            self.vaults_collected.set(vaults)
            self.observations_published.set(observations)

    def inc_ticks_skipped(self) -> None:
        self.ticks_skipped_total.inc()

    def inc_resource_failure(self, scope: str) -> None:
        self.resource_failures_total.labels(scope=scope).inc()

    # -- Accessors for testing ----------------------------------------------

    def get_cycles(self, result: str) -> float:
        return self.registry.get_sample_value(
            f"{NAMESPACE}_cycles_total", {"result": result}
        ) or 0.0

    def get_ticks_skipped(self) -> float:
        return self.registry.get_sample_value(f"{NAMESPACE}_ticks_skipped_total") or 0.0

    def get_resource_failures(self, scope: str) -> float:
        return self.registry.get_sample_value(
            f"{NAMESPACE}_resource_failures_total", {"scope": scope}
        ) or 0.0
