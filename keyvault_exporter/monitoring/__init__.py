"""
Monitoring module - Key Vault metric families, snapshot registry and
exporter self-metrics.
"""
from keyvault_exporter.monitoring.families import MetricFamilySpec, build_family_specs
from keyvault_exporter.monitoring.metrics import ExporterMetrics
from keyvault_exporter.monitoring.registry import (
    MetricRegistry,
    MetricSnapshot,
    build_snapshot,
)

__all__ = [
    "MetricFamilySpec",
    "build_family_specs",
    "ExporterMetrics",
    "MetricRegistry",
    "MetricSnapshot",
    "build_snapshot",
]
