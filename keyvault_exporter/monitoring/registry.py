"""
Metric registry and exposition sink for the Key Vault families.

The registry holds exactly one immutable ``MetricSnapshot``. Collection
cycles never touch it while they run; the orchestrator builds a complete
snapshot and swaps it in with ``publish()``. A scrape reads the current
reference once, so it always sees either the previous snapshot or the new
one, never a mixture.
"""
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, Mapping, Optional, Tuple

from prometheus_client import CollectorRegistry
from prometheus_client.core import GaugeMetricFamily
from prometheus_client.exposition import choose_encoder

from keyvault_exporter.collector.models import Observation
from keyvault_exporter.monitoring.families import MetricFamilySpec

Sample = Tuple[Tuple[str, ...], float]


@dataclass(frozen=True)
class MetricSnapshot:
    """All samples produced by one completed collection cycle."""
    families: Mapping[str, Tuple[Sample, ...]]
    cycle_id: str = ""
    published_at: float = field(default_factory=time.time)

    @property
    def sample_count(self) -> int:
        return sum(len(samples) for samples in self.families.values())

    def samples(self, metric: str) -> Dict[Tuple[str, ...], float]:
        return dict(self.families.get(metric, ()))


def build_snapshot(
    observations: Iterable[Observation],
    specs: Mapping[str, MetricFamilySpec],
    cycle_id: str = "",
) -> MetricSnapshot:
    """
    Group observations into per-family samples.

    Label values are ordered by the family's label schema; labels missing
    from an observation are exported as empty strings. Samples are sorted
    so two cycles over identical inputs expose identical output.

    Raises:
        ValueError: unknown metric name or a label outside the schema
    """
    grouped: Dict[str, Dict[Tuple[str, ...], float]] = {name: {} for name in specs}

    for obs in observations:
        spec = specs.get(obs.metric)
        if spec is None:
            raise ValueError(f"Observation for unknown metric family: {obs.metric}")

        labels = obs.label_dict()
        unknown = set(labels) - set(spec.label_names)
        if unknown:
            raise ValueError(
                f"Labels {sorted(unknown)} are not part of {obs.metric} "
                f"schema {list(spec.label_names)}"
            )

        key = tuple(labels.get(name, "") for name in spec.label_names)
        grouped[obs.metric][key] = obs.value

    families = {
        name: tuple(sorted(samples.items()))
        for name, samples in grouped.items()
    }
    return MetricSnapshot(families=families, cycle_id=cycle_id)


class MetricRegistry:
    """
    Owns a ``CollectorRegistry`` and serves the current snapshot from it.

    Usage:
        registry = MetricRegistry(build_family_specs(["owner"]))
        registry.publish(build_snapshot(observations, registry.specs, cycle_id))
        body, content_type = registry.render(accept_header)
    """

    def __init__(
        self,
        specs: Mapping[str, MetricFamilySpec],
        registry: Optional[CollectorRegistry] = None,
    ):
        self.specs = dict(specs)
        self.registry = registry or CollectorRegistry()
        self._snapshot: Optional[MetricSnapshot] = None
        self._lock = threading.Lock()
        self.registry.register(self)

    @property
    def snapshot(self) -> Optional[MetricSnapshot]:
        """The last published snapshot, or None before the first cycle."""
        with self._lock:
            return self._snapshot

    def publish(self, snapshot: MetricSnapshot) -> None:
        """Replace the visible snapshot in one step."""
        missing = set(self.specs) - set(snapshot.families)
        if missing:
            raise ValueError(f"Snapshot lacks families: {sorted(missing)}")
        with self._lock:
            self._snapshot = snapshot

    def clear(self) -> None:
        with self._lock:
            self._snapshot = None

    def describe(self) -> Iterator[GaugeMetricFamily]:
        # Names only; lets CollectorRegistry detect duplicate registrations
        for spec in self.specs.values():
            yield GaugeMetricFamily(spec.name, spec.documentation, labels=spec.label_names)

    def collect(self) -> Iterator[GaugeMetricFamily]:
        """prometheus_client collector hook; yields nothing before the first publish."""
        snapshot = self.snapshot
        if snapshot is None:
            return

        for name, spec in self.specs.items():
            family = GaugeMetricFamily(name, spec.documentation, labels=spec.label_names)
            for label_values, value in snapshot.families.get(name, ()):
                family.add_metric(list(label_values), value)
            yield family

    def render(self, accept_header: Optional[str] = None) -> Tuple[bytes, str]:
        """
        Render the whole registry for a scrape.

        Returns:
            ``(body, content_type)`` in text or OpenMetrics format,
            negotiated from the ``Accept`` header
        """
        encoder, content_type = choose_encoder(accept_header or "")
        return encoder(self.registry), content_type
