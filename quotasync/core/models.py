# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
quotasync Models

Pydantic models for the two object kinds the manager works with and for the
notifications delivered by the change feed.

- QuotaLimit: accounting object (a ``Queue`` custom resource), read-only here
- HardLimit: enforcement object (a core ``ResourceQuota``), owned here
- Notification: Added/Removed event, resolved to typed snapshots at the
  feed boundary
"""

import copy
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

ZERO_QUANTITY = "0"


def _quantities(value: Any) -> Dict[str, str]:
    """Coerce a resource mapping to ``{name: quantity-string}``."""
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError("resource mapping must be a dict")
    return {str(k): str(v) for k, v in value.items()}


# =============================================================================
# Quota Limit
# =============================================================================


class QuotaLimit(BaseModel):
    """A workload group's resource accounting record."""

    snapshot_kind: Literal["quota_limit"] = "quota_limit"

    namespace: str
    name: str
    allocated: Dict[str, str] = Field(default_factory=dict)
    resource_version: Optional[str] = None

    @field_validator("allocated", mode="before")
    @classmethod
    def coerce_allocated(cls, v):
        return _quantities(v)

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def from_object(cls, obj: Dict[str, Any]) -> "QuotaLimit":
        """Build from a ``Queue`` object as returned by the API server."""
        metadata = obj.get("metadata") or {}
        status = obj.get("status") or {}
        allocated = (status.get("allocated") or {}).get("resources") or {}
        return cls(
            namespace=metadata.get("namespace", ""),
            name=metadata["name"],
            allocated=allocated,
            resource_version=metadata.get("resourceVersion"),
        )


# Snapshot delivered with an Added notification
QuotaLimitSnapshot = QuotaLimit


class TombstoneSnapshot(BaseModel):
    """
    Final state of a Quota Limit whose deletion was observed indirectly.

    Produced when the feed relists and an object it knew about is gone; the
    last known snapshot may be missing.
    """

    snapshot_kind: Literal["tombstone"] = "tombstone"

    namespace: str
    name: str
    last_known: Optional[QuotaLimit] = None

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"


# =============================================================================
# Hard Limit
# =============================================================================


class HardLimit(BaseModel):
    """
    Enforcement record derived from a Quota Limit.

    ``raw`` keeps the full wire object so fields this package does not model
    (labels, scopes, other ``spec`` keys) survive an update.
    """

    namespace: str
    name: str
    hard: Dict[str, str] = Field(default_factory=dict)
    resource_version: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict, repr=False)

    @field_validator("hard", mode="before")
    @classmethod
    def coerce_hard(cls, v):
        return _quantities(v)

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def from_object(cls, obj: Dict[str, Any]) -> "HardLimit":
        """Build from a ``ResourceQuota`` object."""
        metadata = obj.get("metadata") or {}
        spec = obj.get("spec") or {}
        return cls(
            namespace=metadata.get("namespace", ""),
            name=metadata["name"],
            hard=spec.get("hard") or {},
            resource_version=metadata.get("resourceVersion"),
            raw=copy.deepcopy(obj),
        )

    def to_object(self) -> Dict[str, Any]:
        """Render as a ``ResourceQuota`` body for create/update calls."""
        obj = copy.deepcopy(self.raw) if self.raw else {}
        obj["apiVersion"] = "v1"
        obj["kind"] = "ResourceQuota"

        metadata = obj.setdefault("metadata", {})
        metadata["name"] = self.name
        metadata["namespace"] = self.namespace
        if self.resource_version:
            metadata["resourceVersion"] = self.resource_version
        else:
            metadata.pop("resourceVersion", None)

        obj.setdefault("spec", {})["hard"] = dict(self.hard)
        obj.pop("status", None)
        return obj


# =============================================================================
# Notifications
# =============================================================================


class NotificationType(str, Enum):
    ADDED = "added"
    REMOVED = "removed"


Snapshot = Annotated[
    Union[QuotaLimit, TombstoneSnapshot], Field(discriminator="snapshot_kind")
]


class Notification(BaseModel):
    """A single Added/Removed event for one Quota Limit."""

    type: NotificationType
    namespace: str
    name: str
    snapshot: Snapshot

    @classmethod
    def added(cls, quota_limit: QuotaLimit) -> "Notification":
        return cls(
            type=NotificationType.ADDED,
            namespace=quota_limit.namespace,
            name=quota_limit.name,
            snapshot=quota_limit,
        )

    @classmethod
    def removed(
        cls, last_known: Union[QuotaLimit, TombstoneSnapshot]
    ) -> "Notification":
        return cls(
            type=NotificationType.REMOVED,
            namespace=last_known.namespace,
            name=last_known.name,
            snapshot=last_known,
        )
