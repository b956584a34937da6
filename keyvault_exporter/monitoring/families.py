"""
Static schema of the Key Vault metric families.

Label names are fixed for the lifetime of the process: the configured
resource tags and content tags become extra ``tag_<name>`` labels on the
vault and item ``info`` families.
"""
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Tuple

from keyvault_exporter.collector.models import ItemKind

TAG_LABEL_PREFIX = "tag_"

_TAG_NAME_SANITIZER = re.compile(r"[^_a-zA-Z0-9]")

VAULT_INFO = "azurerm_keyvault_info"
VAULT_STATUS = "azurerm_keyvault_status"
VAULT_ENTRIES = "azurerm_keyvault_entries"

STATUS_TYPES = ("created", "updated", "notBefore", "expiry")


@dataclass(frozen=True)
class MetricFamilySpec:
    name: str
    documentation: str
    label_names: Tuple[str, ...]


def tag_label_name(tag_name: str) -> str:
    """Prometheus label for an Azure tag, e.g. ``Cost-Center`` -> ``tag_cost_center``."""
    return TAG_LABEL_PREFIX + _TAG_NAME_SANITIZER.sub("_", tag_name.lower())


def tag_labels(tag_names: Iterable[str], tags: Dict[str, str]) -> Dict[str, str]:
    """
    Build the tag labels for one resource.

    Azure tag names are case-insensitive, so the lookup is too. Missing
    tags produce an empty label value to keep the label set complete.
    """
    folded = {str(k).lower(): v for k, v in (tags or {}).items()}
    return {
        tag_label_name(name): str(folded.get(name.lower()) or "")
        for name in tag_names
    }


def item_info_metric(kind: ItemKind) -> str:
    return f"azurerm_keyvault_{kind.label_prefix}_info"


def item_status_metric(kind: ItemKind) -> str:
    return f"azurerm_keyvault_{kind.label_prefix}_status"


def build_family_specs(
    resource_tags: Iterable[str] = (),
    content_tags: Iterable[str] = (),
) -> Dict[str, MetricFamilySpec]:
    """
    Build every family spec keyed by metric name.

    Args:
        resource_tags: Vault tag names exposed on ``azurerm_keyvault_info``
        content_tags: Item tag names exposed on the item ``info`` families
    """
    resource_tag_labels = _unique(tag_label_name(t) for t in resource_tags)
    content_tag_labels = _unique(tag_label_name(t) for t in content_tags)

    specs = [
        MetricFamilySpec(
            VAULT_INFO,
            "Azure KeyVault information",
            (
                "subscriptionID",
                "subscriptionName",
                "resourceID",
                "vaultName",
                "location",
                "resourceGroup",
            ) + resource_tag_labels,
        ),
        MetricFamilySpec(
            VAULT_STATUS,
            "Azure KeyVault status",
            ("resourceID", "vaultName", "type", "scope"),
        ),
        MetricFamilySpec(
            VAULT_ENTRIES,
            "Azure KeyVault entries",
            ("resourceID", "vaultName", "type"),
        ),
    ]

    for kind in ItemKind:
        prefix = kind.label_prefix
        specs.append(MetricFamilySpec(
            item_info_metric(kind),
            f"Azure KeyVault {prefix} information",
            (
                "resourceID",
                "vaultName",
                f"{prefix}Name",
                f"{prefix}ID",
                "enabled",
            ) + content_tag_labels,
        ))
        specs.append(MetricFamilySpec(
            item_status_metric(kind),
            f"Azure KeyVault {prefix} status",
            ("resourceID", "vaultName", f"{prefix}ID", "type"),
        ))

    return {spec.name: spec for spec in specs}


def _unique(labels: Iterable[str]) -> Tuple[str, ...]:
    seen: List[str] = []
    for label in labels:
        if label not in seen:
            seen.append(label)
    return tuple(seen)
