"""
Azure resource API client.

Wraps the management SDKs (subscriptions, Key Vault, Resource Graph) and
the Key Vault data-plane SDKs (keys, secrets, certificates) behind the
small interface the collector needs. Listings are returned as
``PageResult`` sequences; a failing page ends the sequence with an error
value instead of raising.
"""
import re
from typing import Iterator, List, Optional, Sequence, Set

from azure.core.credentials import TokenCredential
from azure.core.exceptions import AzureError
from azure.keyvault.certificates import CertificateClient
from azure.keyvault.keys import KeyClient
from azure.keyvault.secrets import SecretClient
from azure.mgmt.keyvault import KeyVaultManagementClient
from azure.mgmt.resourcegraph import ResourceGraphClient
from azure.mgmt.resourcegraph.models import QueryRequest, QueryRequestOptions
from azure.mgmt.subscription import SubscriptionClient

from keyvault_exporter.cloud.credentials import CloudEnvironment
from keyvault_exporter.collector.models import (
    ItemKind,
    PageResult,
    ResourceInstance,
    SubResourceItem,
    Subscription,
)
from keyvault_exporter.collector.paging import iter_pages
from keyvault_exporter.common.exceptions import FilterResolutionError, SubscriptionListError
from keyvault_exporter.common.logging_config import get_logger

logger = get_logger(__name__)

_RESOURCE_GROUP_RE = re.compile(r"/resourceGroups/([^/]*)", re.IGNORECASE)

KEYVAULT_RESOURCE_TYPE = "microsoft.keyvault/vaults"

# Resource Graph accepts at most this many subscriptions per query
GRAPH_SUBSCRIPTION_CHUNK = 1000

_ITEM_CLIENTS = {
    ItemKind.KEYS: (KeyClient, "list_properties_of_keys"),
    ItemKind.SECRETS: (SecretClient, "list_properties_of_secrets"),
    ItemKind.CERTIFICATES: (CertificateClient, "list_properties_of_certificates"),
}


def extract_resource_group(resource_id: str) -> str:
    """Resource group segment of an ARM resource ID, or "" if absent."""
    match = _RESOURCE_GROUP_RE.search(resource_id or "")
    return match.group(1) if match else ""


def vault_to_instance(vault, subscription: Subscription) -> ResourceInstance:
    """Convert an ``azure.mgmt.keyvault`` ``Vault`` model."""
    resource_id = (vault.id or "").lower()
    properties = getattr(vault, "properties", None)
    return ResourceInstance(
        resource_id=resource_id,
        name=vault.name or "",
        location=vault.location or "",
        resource_group=extract_resource_group(vault.id or ""),
        subscription=subscription,
        vault_uri=(getattr(properties, "vault_uri", None) or ""),
        tags=dict(vault.tags or {}),
    )


def properties_to_item(kind: ItemKind, props) -> SubResourceItem:
    """Convert ``KeyProperties`` / ``SecretProperties`` / ``CertificateProperties``."""
    return SubResourceItem(
        kind=kind,
        item_id=props.id or "",
        name=props.name or "",
        enabled=bool(props.enabled),
        created=props.created_on,
        updated=props.updated_on,
        not_before=props.not_before,
        expires=props.expires_on,
        tags=dict(props.tags or {}),
    )


class KeyVaultApiClient:
    """
    Azure listing calls used by the collector.

    Args:
        credential: Validated token credential
        environment: Cloud endpoints
        request_timeout: Connection and read timeout applied to every client
    """

    def __init__(
        self,
        credential: TokenCredential,
        environment: CloudEnvironment,
        request_timeout: float = 60.0,
    ):
        self.credential = credential
        self.environment = environment
        self.request_timeout = request_timeout

    def _mgmt_kwargs(self) -> dict:
        return {
            "base_url": self.environment.resource_manager,
            "credential_scopes": [self.environment.management_scope],
            "connection_timeout": self.request_timeout,
            "read_timeout": self.request_timeout,
        }

    def _data_kwargs(self) -> dict:
        return {
            "connection_timeout": self.request_timeout,
            "read_timeout": self.request_timeout,
        }

    # -- Subscriptions --------------------------------------------------------

    def list_subscriptions(self) -> List[Subscription]:
        """
        List every subscription visible to the credential.

        Raises:
            SubscriptionListError: listing failed
        """
        client = SubscriptionClient(self.credential, **self._mgmt_kwargs())
        try:
            return [
                Subscription(sub.subscription_id, sub.display_name or "")
                for sub in client.subscriptions.list()
            ]
        except AzureError as e:
            raise SubscriptionListError(f"Failed to list subscriptions: {e}") from e
        finally:
            client.close()

    def get_subscription(self, subscription_id: str) -> Subscription:
        """
        Resolve one subscription by ID.

        Raises:
            SubscriptionListError: lookup failed
        """
        client = SubscriptionClient(self.credential, **self._mgmt_kwargs())
        try:
            sub = client.subscriptions.get(subscription_id)
            return Subscription(sub.subscription_id, sub.display_name or "")
        except AzureError as e:
            raise SubscriptionListError(
                f"Failed to get subscription {subscription_id}: {e}"
            ) from e
        finally:
            client.close()

    # -- Vaults ---------------------------------------------------------------

    def list_vault_pages(
        self,
        subscription: Subscription,
        resource_group: str = "",
    ) -> Iterator[PageResult]:
        """Page through the vaults of one subscription (optionally one resource group)."""
        client = KeyVaultManagementClient(
            self.credential, subscription.subscription_id, **self._mgmt_kwargs()
        )
        with client:
            if resource_group:
                paged = client.vaults.list_by_resource_group(resource_group)
            else:
                paged = client.vaults.list_by_subscription()
            yield from iter_pages(paged, lambda v: vault_to_instance(v, subscription))

    # -- Keys / secrets / certificates ---------------------------------------

    def list_item_pages(
        self,
        instance: ResourceInstance,
        kind: ItemKind,
    ) -> Iterator[PageResult]:
        """Page through the properties of one sub-resource kind of a vault."""
        client_cls, list_method = _ITEM_CLIENTS[kind]
        vault_url = instance.vault_uri or (
            f"https://{instance.name}.{self.environment.vault_dns_suffix}"
        )

        try:
            client = client_cls(vault_url, self.credential, **self._data_kwargs())
        except ValueError as e:
            yield PageResult(error=e)
            return

        with client:
            paged = getattr(client, list_method)()
            yield from iter_pages(paged, lambda p: properties_to_item(kind, p))

    # -- Resource Graph filter ------------------------------------------------

    def resolve_filter(
        self,
        query_filter: str,
        subscription_ids: Sequence[str],
    ) -> Set[str]:
        """
        Evaluate a Kusto filter against the vaults of the given subscriptions.

        Args:
            query_filter: Kusto pipeline stage(s), e.g. ``where tags.env == "prod"``
            subscription_ids: Subscriptions to search

        Returns:
            Lower-cased resource IDs of matching vaults

        Raises:
            FilterResolutionError: the query failed
        """
        query = "\n| ".join([
            "Resources",
            f"where type =~ '{KEYVAULT_RESOURCE_TYPE}'",
            query_filter.strip().lstrip("|").strip(),
            "project id",
        ])

        resource_ids: Set[str] = set()
        client = ResourceGraphClient(self.credential, **self._mgmt_kwargs())
        try:
            ids = list(subscription_ids)
            for start in range(0, len(ids), GRAPH_SUBSCRIPTION_CHUNK):
                chunk = ids[start:start + GRAPH_SUBSCRIPTION_CHUNK]
                resource_ids.update(self._query_resource_ids(client, query, chunk))
        except AzureError as e:
            raise FilterResolutionError(f"Resource Graph filter query failed: {e}") from e
        finally:
            client.close()

        logger.info(f"Resource Graph filter matched {len(resource_ids)} vault(s)")
        return resource_ids

    @staticmethod
    def _query_resource_ids(client, query: str, subscription_ids: List[str]) -> Set[str]:
        found: Set[str] = set()
        skip_token: Optional[str] = None

        while True:
            options = QueryRequestOptions(result_format="objectArray")
            if skip_token:
                options.skip_token = skip_token

            response = client.resources(QueryRequest(
                subscriptions=subscription_ids,
                query=query,
                options=options,
            ))

            for row in response.data or []:
                resource_id = row.get("id") if isinstance(row, dict) else None
                if resource_id:
                    found.add(resource_id.lower())

            skip_token = getattr(response, "skip_token", None)
            if not skip_token:
                return found
