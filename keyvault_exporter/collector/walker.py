"""
Resource walker: subscriptions -> vaults.

Produces the vaults to examine in one cycle as a lazy generator so the
orchestrator can start collecting the first vaults while later pages are
still being fetched.
"""
import threading
from typing import AbstractSet, Iterable, Iterator, Optional

from keyvault_exporter.collector.models import ResourceInstance, Subscription
from keyvault_exporter.common.logging_config import get_logger

logger = get_logger(__name__)


class ResourceWalker:
    """
    Walk the vaults of a set of subscriptions.

    Args:
        api: Object providing ``list_vault_pages(subscription, resource_group)``
        resource_group: Restrict listing to one resource group ("" = all)
    """

    def __init__(self, api, resource_group: str = ""):
        self.api = api
        self.resource_group = resource_group

    def walk(
        self,
        subscriptions: Iterable[Subscription],
        inclusion: Optional[AbstractSet[str]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Iterator[ResourceInstance]:
        """
        Yield every vault of every subscription.

        A failing page ends that subscription's walk only. When
        ``inclusion`` is given (lower-case resource IDs), vaults outside
        it are skipped.
        """
        for subscription in subscriptions:
            if cancel_event is not None and cancel_event.is_set():
                return
            yield from self._walk_subscription(subscription, inclusion, cancel_event)

    def _walk_subscription(
        self,
        subscription: Subscription,
        inclusion: Optional[AbstractSet[str]],
        cancel_event: Optional[threading.Event],
    ) -> Iterator[ResourceInstance]:
        seen = 0
        skipped = 0

        for page in self.api.list_vault_pages(subscription, self.resource_group):
            if not page.ok:
                logger.error(
                    f"Vault listing failed, skipping rest of subscription: {page.error}",
                    extra={"subscription": subscription.subscription_id},
                )
                break

            for instance in page.items:
                if inclusion is not None and instance.resource_id.lower() not in inclusion:
                    skipped += 1
                    logger.debug(
                        f"Vault {instance.name} not matched by filter",
                        extra={"subscription": subscription.subscription_id},
                    )
                    continue
                seen += 1
                yield instance

            if cancel_event is not None and cancel_event.is_set():
                logger.warning(
                    "Cycle cancelled, stopping vault listing",
                    extra={"subscription": subscription.subscription_id},
                )
                return

        logger.info(
            f"Found {seen} vault(s) in subscription {subscription.display_name or '-'}"
            + (f" ({skipped} filtered out)" if skipped else ""),
            extra={"subscription": subscription.subscription_id},
        )
