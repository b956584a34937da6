"""
Shared fixtures: an in-memory stand-in for the Azure resource API.
"""
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import pytest
from azure.core.exceptions import HttpResponseError

from keyvault_exporter.collector.models import (
    ItemKind,
    PageResult,
    ResourceInstance,
    SubResourceItem,
    Subscription,
)
from keyvault_exporter.common.exceptions import SubscriptionListError

KEY_CREATED = datetime(2024, 1, 1, tzinfo=timezone.utc)
KEY_EXPIRES = datetime(2027, 1, 1, tzinfo=timezone.utc)


class FakeKeyVaultApi:
    """
    Same interface as ``KeyVaultApiClient``, backed by dictionaries.

    Listings are split into pages of ``page_size``; an injected failure
    is delivered as an error page after the items, or after the first
    ``after`` items when a vault listing is told to fail early.
    """

    def __init__(self, page_size: int = 2):
        self.page_size = page_size
        self.subscriptions: List[Subscription] = []
        self.vaults: Dict[str, List[ResourceInstance]] = {}
        self.items: Dict[Tuple[str, ItemKind], List[SubResourceItem]] = {}
        self.item_failures: Dict[Tuple[str, ItemKind], Exception] = {}
        self.vault_failures: Dict[str, Tuple[Exception, Optional[int]]] = {}
        self.gates: Dict[str, threading.Event] = {}
        self.subscription_error: Optional[Exception] = None
        self.filter_ids: Optional[set] = None
        self.filter_error: Optional[Exception] = None

        self.list_subscription_calls = 0
        self.filter_calls: List[Tuple[str, List[str]]] = []
        self.item_calls: List[Tuple[str, ItemKind]] = []
        self._lock = threading.Lock()

    # -- Setup ----------------------------------------------------------------

    def add_subscription(self, subscription_id: str, display_name: str = "") -> Subscription:
        subscription = Subscription(subscription_id, display_name)
        self.subscriptions.append(subscription)
        self.vaults.setdefault(subscription_id, [])
        return subscription

    def add_vault(
        self,
        subscription: Subscription,
        name: str,
        resource_group: str = "rg-keyvault",
        location: str = "westeurope",
        tags: Optional[dict] = None,
    ) -> ResourceInstance:
        resource_id = (
            f"/subscriptions/{subscription.subscription_id}/resourceGroups/{resource_group}"
            f"/providers/Microsoft.KeyVault/vaults/{name}"
        ).lower()
        instance = ResourceInstance(
            resource_id=resource_id,
            name=name,
            location=location,
            resource_group=resource_group,
            subscription=subscription,
            vault_uri=f"https://{name}.vault.azure.net/",
            tags=tags or {},
        )
        self.vaults.setdefault(subscription.subscription_id, []).append(instance)
        return instance

    def add_item(
        self,
        instance: ResourceInstance,
        kind: ItemKind,
        name: str,
        enabled: bool = True,
        created: Optional[datetime] = None,
        updated: Optional[datetime] = None,
        not_before: Optional[datetime] = None,
        expires: Optional[datetime] = None,
        tags: Optional[dict] = None,
    ) -> SubResourceItem:
        item = SubResourceItem(
            kind=kind,
            item_id=f"{instance.vault_uri}{kind.value}/{name}",
            name=name,
            enabled=enabled,
            created=created,
            updated=updated,
            not_before=not_before,
            expires=expires,
            tags=tags or {},
        )
        self.items.setdefault((instance.resource_id, kind), []).append(item)
        return item

    def fail_items(self, instance: ResourceInstance, kind: ItemKind, error: Optional[Exception] = None):
        self.item_failures[(instance.resource_id, kind)] = error or HttpResponseError(
            message="Forbidden: caller lacks list permission"
        )

    def fail_vault_listing(
        self,
        subscription: Subscription,
        error: Optional[Exception] = None,
        after: Optional[int] = None,
    ):
        self.vault_failures[subscription.subscription_id] = (
            error or HttpResponseError(message="Service unavailable"),
            after,
        )

    def gate(self, instance: ResourceInstance) -> threading.Event:
        """Hold the instance's key listing until the returned event is set."""
        event = threading.Event()
        self.gates[instance.resource_id] = event
        return event

    def release_all(self) -> None:
        for event in self.gates.values():
            event.set()

    # -- API ------------------------------------------------------------------

    def list_subscriptions(self) -> List[Subscription]:
        self.list_subscription_calls += 1
        if self.subscription_error is not None:
            raise self.subscription_error
        return list(self.subscriptions)

    def get_subscription(self, subscription_id: str) -> Subscription:
        for subscription in self.subscriptions:
            if subscription.subscription_id == subscription_id:
                return subscription
        raise SubscriptionListError(f"Subscription {subscription_id} not found")

    def list_vault_pages(self, subscription: Subscription, resource_group: str = ""):
        vaults = [
            vault for vault in self.vaults.get(subscription.subscription_id, [])
            if not resource_group or vault.resource_group.lower() == resource_group.lower()
        ]
        error, after = self.vault_failures.get(subscription.subscription_id, (None, None))
        if after is not None:
            vaults = vaults[:after]
        yield from self._pages(vaults, error)

    def list_item_pages(self, instance: ResourceInstance, kind: ItemKind):
        with self._lock:
            self.item_calls.append((instance.resource_id, kind))

        gate = self.gates.get(instance.resource_id)
        if gate is not None and kind is ItemKind.KEYS:
            gate.wait(timeout=5)

        key = (instance.resource_id, kind)
        yield from self._pages(self.items.get(key, []), self.item_failures.get(key))

    def resolve_filter(self, query: str, subscription_ids) -> set:
        self.filter_calls.append((query, list(subscription_ids)))
        if self.filter_error is not None:
            raise self.filter_error
        return set(self.filter_ids or ())

    def _pages(self, items, error):
        for start in range(0, len(items), self.page_size):
            yield PageResult(items=tuple(items[start:start + self.page_size]))
        if error is not None:
            yield PageResult(error=error)


def build_scenario(api: FakeKeyVaultApi) -> Tuple[ResourceInstance, ResourceInstance]:
    """
    Two subscriptions, one vault each. Every vault holds two keys (one
    with an expiry, one without), no secrets and no certificates.
    """
    instances = []
    for index in (1, 2):
        subscription = api.add_subscription(
            f"0000000{index}-0000-0000-0000-000000000000", f"Subscription {index}"
        )
        instance = api.add_vault(subscription, f"kv-team{index}", tags={"owner": f"team{index}"})
        api.add_item(instance, ItemKind.KEYS, "signing", created=KEY_CREATED, expires=KEY_EXPIRES)
        api.add_item(instance, ItemKind.KEYS, "wrapping", created=KEY_CREATED)
        instances.append(instance)
    return instances[0], instances[1]


@pytest.fixture
def fake_api():
    api = FakeKeyVaultApi()
    yield api
    api.release_all()


@pytest.fixture
def scenario(fake_api):
    """``(api, vault1, vault2)`` for the two-subscription scenario."""
    vault1, vault2 = build_scenario(fake_api)
    return fake_api, vault1, vault2
