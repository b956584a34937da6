"""
Value types shared by the walker, the observation builder and the
orchestrator. All of them are immutable snapshots of remote state taken
during a single collection cycle.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Mapping, Optional, Tuple


class ItemKind(Enum):
    """Sub-resource kinds stored inside a vault"""
    KEYS = "keys"
    SECRETS = "secrets"
    CERTIFICATES = "certificates"

    @property
    def label_prefix(self) -> str:
        """Singular label stem, e.g. ``key`` for ``keyName`` / ``keyID``."""
        return {
            ItemKind.KEYS: "key",
            ItemKind.SECRETS: "secret",
            ItemKind.CERTIFICATES: "certificate",
        }[self]


@dataclass(frozen=True)
class Subscription:
    subscription_id: str
    display_name: str = ""


@dataclass(frozen=True)
class ResourceInstance:
    """One Key Vault as listed by the management API."""
    resource_id: str
    name: str
    location: str
    resource_group: str
    subscription: Subscription
    vault_uri: str
    tags: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class SubResourceItem:
    """A key, secret or certificate entry (properties only, never values)."""
    kind: ItemKind
    item_id: str
    name: str
    enabled: bool = False
    created: Optional[datetime] = None
    updated: Optional[datetime] = None
    not_before: Optional[datetime] = None
    expires: Optional[datetime] = None
    tags: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PageResult:
    """
    One page of a remote listing.

    A page either carries items or the error that ended the listing;
    paging stops after the first page with an error.
    """
    items: Tuple = ()
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class Observation:
    """A single (metric-name, label-set, value) data point."""
    metric: str
    labels: Tuple[Tuple[str, str], ...]
    value: float

    @classmethod
    def of(cls, metric: str, labels: Mapping[str, str], value: float) -> "Observation":
        return cls(metric, tuple(sorted(labels.items())), float(value))

    def label_dict(self) -> Dict[str, str]:
        return dict(self.labels)


@dataclass(frozen=True)
class TaskResult:
    """What a vault task hands to the aggregation channel."""
    resource_id: str
    observations: List[Observation]
