"""
Observation builder: one vault -> its observations.

Each sub-resource kind is listed independently. A failed listing is
recorded as ``azurerm_keyvault_status{type="access"} 0`` for that scope
and never affects the other kinds. No call is retried here; the next
cycle is the retry.
"""
import threading
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from keyvault_exporter.collector.models import (
    ItemKind,
    Observation,
    ResourceInstance,
    SubResourceItem,
)
from keyvault_exporter.common.logging_config import get_logger
from keyvault_exporter.monitoring.families import (
    VAULT_ENTRIES,
    VAULT_INFO,
    VAULT_STATUS,
    item_info_metric,
    item_status_metric,
    tag_labels,
)

logger = get_logger(__name__)


def unix_timestamp(value: Optional[datetime]) -> int:
    """Seconds since the epoch, 0 when the attribute is unset."""
    if value is None:
        return 0
    return int(value.timestamp())


class ObservationBuilder:
    """
    Turn one vault into observations.

    Args:
        api: Object providing ``list_item_pages(instance, kind)``
        resource_tags: Vault tag names exported as labels on the vault info
        content_tags: Item tag names exported as labels on the item info
        metrics: Optional ``ExporterMetrics`` for failure counting
    """

    def __init__(
        self,
        api,
        resource_tags: Iterable[str] = (),
        content_tags: Iterable[str] = (),
        metrics=None,
    ):
        self.api = api
        self.resource_tags = tuple(resource_tags)
        self.content_tags = tuple(content_tags)
        self.metrics = metrics

    def build(
        self,
        instance: ResourceInstance,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[Observation]:
        logger.debug(
            f"Collecting vault {instance.name}",
            extra={"vault": instance.name, "subscription": instance.subscription.subscription_id},
        )

        observations = [self._vault_info(instance)]

        for kind in ItemKind:
            # A cancelled cycle is never published
            if cancel_event is not None and cancel_event.is_set():
                logger.debug(
                    f"Cycle cancelled, skipping remaining listings of vault {instance.name}",
                    extra={"vault": instance.name, "scope": kind.value},
                )
                return observations

            items, ok = self._list_items(instance, kind, cancel_event)

            for item in items:
                observations.extend(self._item_observations(instance, item))

            observations.append(Observation.of(VAULT_STATUS, {
                "resourceID": instance.resource_id,
                "vaultName": instance.name,
                "type": "access",
                "scope": kind.value,
            }, 1 if ok else 0))

            observations.append(Observation.of(VAULT_ENTRIES, {
                "resourceID": instance.resource_id,
                "vaultName": instance.name,
                "type": kind.value,
            }, len(items)))

        return observations

    def _vault_info(self, instance: ResourceInstance) -> Observation:
        labels = {
            "subscriptionID": instance.subscription.subscription_id,
            "subscriptionName": instance.subscription.display_name,
            "resourceID": instance.resource_id,
            "vaultName": instance.name,
            "location": instance.location,
            "resourceGroup": instance.resource_group,
        }
        labels.update(tag_labels(self.resource_tags, dict(instance.tags)))
        return Observation.of(VAULT_INFO, labels, 1)

    def _list_items(
        self,
        instance: ResourceInstance,
        kind: ItemKind,
        cancel_event: Optional[threading.Event],
    ) -> Tuple[List[SubResourceItem], bool]:
        """
        Page through one kind.

        Returns:
            Items seen and whether the listing completed. Items from pages
            before a failing page are kept.
        """
        items: List[SubResourceItem] = []

        for page in self.api.list_item_pages(instance, kind):
            if not page.ok:
                logger.warning(
                    f"Listing {kind.value} of vault {instance.name} failed: {page.error}",
                    extra={"vault": instance.name, "scope": kind.value},
                )
                if self.metrics is not None:
                    self.metrics.inc_resource_failure(kind.value)
                return items, False

            items.extend(page.items)

            if cancel_event is not None and cancel_event.is_set():
                break

        return items, True

    def _item_observations(
        self,
        instance: ResourceInstance,
        item: SubResourceItem,
    ) -> List[Observation]:
        prefix = item.kind.label_prefix
        info_labels = {
            "resourceID": instance.resource_id,
            "vaultName": instance.name,
            f"{prefix}Name": item.name,
            f"{prefix}ID": item.item_id,
            "enabled": "true" if item.enabled else "false",
        }
        info_labels.update(tag_labels(self.content_tags, dict(item.tags)))

        status_metric = item_status_metric(item.kind)
        timestamps = (
            ("created", item.created),
            ("updated", item.updated),
            ("notBefore", item.not_before),
            ("expiry", item.expires),
        )

        observations = [Observation.of(item_info_metric(item.kind), info_labels, 1)]
        for status_type, value in timestamps:
            observations.append(Observation.of(status_metric, {
                "resourceID": instance.resource_id,
                "vaultName": instance.name,
                f"{prefix}ID": item.item_id,
                "type": status_type,
            }, unix_timestamp(value)))
        return observations
